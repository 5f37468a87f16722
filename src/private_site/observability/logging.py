"""structlog setup: console output plus an append-only JSON-lines run log."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Any

import structlog
from structlog.typing import EventDict, WrappedLogger

from private_site.config.models import LoggingConfig


class RunLog:
    """Processor that appends every event to the invocation's run log.

    One file per invocation, ``<log_dir>/deploy_<timestamp>_<pid>.log``;
    the ``latest_link`` symlink is repointed at it.  The file is written,
    never read back.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._render = structlog.processors.JSONRenderer(sort_keys=True)
        self._fh: IO[str] | None = path.open("a", encoding="utf-8")

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        if self._fh is not None:
            self._fh.write(str(self._render(logger, method_name, dict(event_dict))) + "\n")
            self._fh.flush()
        return event_dict

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


def run_log_path(log_dir: str | Path, now: datetime | None = None) -> Path:
    now = now or datetime.now(UTC)
    return Path(log_dir) / f"deploy_{now:%Y%m%d_%H%M%S}_{os.getpid()}.log"


def _link_latest(path: Path, link_name: str) -> None:
    link = path.parent / link_name
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(path.name)


def configure_logging(
    config: LoggingConfig | None = None,
    *,
    now: datetime | None = None,
) -> RunLog | None:
    """Configure structlog for one CLI invocation.

    Returns the :class:`RunLog` when one is written so the caller can close
    it on exit.
    """
    config = config or LoggingConfig()
    run_log: RunLog | None = None
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if config.run_log:
        path = run_log_path(config.log_dir, now)
        path.parent.mkdir(parents=True, exist_ok=True)
        run_log = RunLog(path)
        processors.append(run_log)
        if config.latest_link:
            try:
                _link_latest(path, config.latest_link)
            except OSError as exc:
                structlog.get_logger().warning(
                    "logging.latest_link_failed", link=config.latest_link, error=str(exc)
                )
    processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.level.upper())
        ),
        cache_logger_on_first_use=False,
    )
    return run_log
