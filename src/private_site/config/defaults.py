"""Built-in site defaults and override layering."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from private_site.config.models import SiteConfig

DEFAULTS_DIR = Path(__file__).parent / "defaults"


def available_profiles() -> list[str]:
    return sorted(p.stem for p in DEFAULTS_DIR.glob("*.yaml"))


def load_defaults(profile: str = "site") -> dict[str, Any]:
    """Settings shipped in ``defaults/<profile>.yaml``; the bucket is never defaulted."""
    path = DEFAULTS_DIR / f"{profile}.yaml"
    if not path.is_file():
        known = ", ".join(available_profiles()) or "none"
        msg = f"Unknown defaults profile '{profile}' (available: {known})"
        raise FileNotFoundError(msg)
    return yaml.safe_load(path.read_text()) or {}


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Layer *overrides* over *base*, leaving both untouched.

    Sections merge key by key.  Scalars and lists, such as the allowed
    networks, are replaced whole and never appended to.
    """
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        section = merged.get(key)
        if isinstance(section, dict) and isinstance(value, dict):
            merged[key] = merge_configs(section, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def build_site_config(*layers: dict[str, Any], defaults: str = "site") -> SiteConfig:
    """Validate the defaults profile with *layers* applied in order, last wins."""
    merged = load_defaults(defaults)
    for layer in layers:
        merged = merge_configs(merged, layer)
    return SiteConfig.model_validate(merged)
