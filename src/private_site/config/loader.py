"""Site config loading: YAML file, ``${VAR}`` expansion, CLI override layer."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from private_site.config.defaults import build_site_config
from private_site.config.models import SiteConfig

# ${NAME} or ${NAME:-fallback}; a backslash escapes "}" inside the fallback
_ENV_REFERENCE = re.compile(
    r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>(?:\\.|[^}\\])*))?\}"
)


def _expand(text: str) -> str:
    def _lookup(match: re.Match[str]) -> str:
        name = match.group("name")
        if name in os.environ:
            return os.environ[name]
        fallback = match.group("fallback")
        if fallback is None:
            msg = f"Environment variable '{name}' is not set and no default provided"
            raise ValueError(msg)
        return fallback.replace("\\}", "}")

    return _ENV_REFERENCE.sub(_lookup, text)


def resolve_env_vars(data: Any) -> Any:
    """Expand environment references in every string of a parsed YAML tree."""
    if isinstance(data, dict):
        return {key: resolve_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return _expand(data) if isinstance(data, str) else data


def prune_none(data: dict[str, Any]) -> dict[str, Any]:
    """Drop ``None`` leaves (and mappings left empty) from an override tree."""
    pruned: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            nested = prune_none(value)
            if nested:
                pruned[key] = nested
        elif value is not None and value != []:
            pruned[key] = value
    return pruned


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse a site file and expand its environment references."""
    source = Path(path)
    if not source.is_file():
        msg = f"Config file not found: {source}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(source.read_text())
    except yaml.MarkedYAMLError as exc:
        where = ""
        if exc.problem_mark is not None:
            where = f" at line {exc.problem_mark.line + 1}, column {exc.problem_mark.column + 1}"
        msg = f"Failed to parse YAML in {source}{where}: {exc.problem or exc}"
        raise ValueError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {source}: {exc}"
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {source}, got {type(data).__name__}"
        raise TypeError(msg)
    return resolve_env_vars(data)  # type: ignore[no-any-return]


def load_site_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> SiteConfig:
    """Load a site config: built-in defaults ← YAML file ← explicit overrides."""
    layers: list[dict[str, Any]] = []
    if path is not None:
        layers.append(load_yaml(path))
    if overrides:
        layers.append(prune_none(overrides))
    try:
        return build_site_config(*layers)
    except ValidationError as exc:
        source = path or "command-line options"
        msg = f"Invalid site config ({source}):\n{exc}"
        raise ValueError(msg) from exc
