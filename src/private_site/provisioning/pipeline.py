"""Sequential step pipeline with output hand-off and fail-fast semantics."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from private_site.errors import ProvisioningError, StepFailed

logger = structlog.get_logger()


class RunContext:
    """Outputs accumulated by the steps of one run."""

    def __init__(self, outputs: Mapping[str, Any] | None = None) -> None:
        self.outputs: dict[str, Any] = dict(outputs or {})

    def require(self, name: str) -> Any:
        try:
            return self.outputs[name]
        except KeyError:
            msg = f"Output '{name}' has not been produced by an earlier step"
            raise ProvisioningError(msg) from None

    def get(self, name: str, default: Any = None) -> Any:
        return self.outputs.get(name, default)


StepAction = Callable[[RunContext], Mapping[str, Any] | None]


@dataclass(frozen=True)
class PipelineStep:
    """One unit of work in a run.

    *requires* names outputs that must exist before the step runs,
    *provides* names outputs the step publishes.  The completion predicate
    defaults to "every provided output is present".
    """

    name: str
    action: StepAction
    requires: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()
    resource_key: str | None = None
    is_complete: Callable[[RunContext], bool] | None = None

    def completed(self, ctx: RunContext) -> bool:
        if self.is_complete is not None:
            return self.is_complete(ctx)
        return all(name in ctx.outputs for name in self.provides)


@dataclass
class RunResult:
    name: str
    completed: list[str] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)


def order_steps(
    steps: Iterable[PipelineStep], available: Iterable[str] = ()
) -> list[PipelineStep]:
    """Order *steps* so that each runs after the providers of its requirements.

    Declaration order is kept wherever the dependencies allow it.
    """
    pending = list(steps)
    names = [s.name for s in pending]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        msg = f"Duplicate step names: {duplicates}"
        raise ValueError(msg)

    satisfied = set(available)
    ordered: list[PipelineStep] = []
    while pending:
        ready = next(
            (s for s in pending if all(r in satisfied for r in s.requires)), None
        )
        if ready is None:
            unmet = {
                s.name: sorted(r for r in s.requires if r not in satisfied)
                for s in pending
            }
            msg = f"Unsatisfiable step dependencies: {unmet}"
            raise ValueError(msg)
        pending.remove(ready)
        ordered.append(ready)
        satisfied.update(ready.provides)
    return ordered


class ProvisioningRun:
    """Executes steps in dependency order and stops at the first failure.

    Nothing is rolled back: resources reconciled before the failing step
    stay in place, and because every step is idempotent a re-run with the
    same parameters turns those steps into no-ops and resumes at the
    failure point.
    """

    def __init__(
        self,
        name: str,
        steps: Iterable[PipelineStep],
        *,
        outputs: Mapping[str, Any] | None = None,
    ) -> None:
        self.name = name
        self._ctx = RunContext(outputs)
        self._steps = order_steps(steps, self._ctx.outputs)
        self._completed: list[str] = []

    @property
    def steps(self) -> list[PipelineStep]:
        return list(self._steps)

    @property
    def outputs(self) -> dict[str, Any]:
        return dict(self._ctx.outputs)

    @property
    def completed(self) -> list[str]:
        return list(self._completed)

    def execute(self) -> RunResult:
        log = logger.bind(run=self.name)
        log.info("run.started", steps=[s.name for s in self._steps])
        for step in self._steps:
            log.info("step.started", step=step.name, key=step.resource_key)
            try:
                produced = step.action(self._ctx)
                if produced:
                    self._ctx.outputs.update(produced)
                if not step.completed(self._ctx):
                    missing = [p for p in step.provides if p not in self._ctx.outputs]
                    msg = f"Step '{step.name}' did not complete (missing {missing})"
                    raise ProvisioningError(msg, key=step.resource_key)
            except KeyboardInterrupt:
                log.warning(
                    "run.interrupted",
                    step=step.name,
                    completed=self._completed,
                    outputs=self._ctx.outputs,
                )
                raise
            except Exception as exc:
                log.error(
                    "step.failed",
                    step=step.name,
                    key=getattr(exc, "key", None) or step.resource_key,
                    error=str(exc),
                    completed=self._completed,
                    outputs=self._ctx.outputs,
                )
                raise StepFailed(
                    step.name,
                    exc,
                    completed=list(self._completed),
                    outputs=dict(self._ctx.outputs),
                    key=step.resource_key,
                ) from exc
            self._completed.append(step.name)
            log.info("step.completed", step=step.name)

        log.info("run.completed", outputs=self._ctx.outputs)
        return RunResult(
            name=self.name,
            completed=list(self._completed),
            outputs=dict(self._ctx.outputs),
        )
