"""roster_sync.config

YAML run configuration for student roster syncs.

Usage:
    from pathlib import Path
    from roster_sync.config import load_config

    config = load_config(Path("config/roster_sync.yml"))
    base = config.base_for_school(3)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "roster_sync.yml"

KNOWN_KEYS = frozenset({
    "default_roster_id_base",
    "roster_id_base",
    "identity",
    "soft_delete",
    "audit_user",
    "reject_duplicate_codes",
})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when a YAML config file fails schema validation."""


# ---------------------------------------------------------------------------
# SyncConfig dataclass
# ---------------------------------------------------------------------------

@dataclass
class SyncConfig:
    """Parsed, validated run configuration."""

    default_roster_id_base: int = 0
    roster_id_base: dict[int, int] = field(default_factory=dict)
    extended_check: bool = True
    min_agreements: int = 2
    soft_delete: bool = False
    audit_user: str = "roster_sync"
    reject_duplicate_codes: bool = True
    yaml_hash: str = ""

    def base_for_school(self, school_id: int) -> int:
        return self.roster_id_base.get(school_id, self.default_roster_id_base)


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_config(yaml_path: Path | None = None) -> SyncConfig:
    """Load, validate, and return a SyncConfig.

    With no path, the bundled config/roster_sync.yml is used when present
    and built-in defaults otherwise.

    Raises:
        ConfigValidationError: If any key is unknown or has a bad value.
        FileNotFoundError: If an explicit yaml_path does not exist.
    """
    if yaml_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return SyncConfig()
        yaml_path = DEFAULT_CONFIG_PATH

    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw) or {}
    validate_config(data)

    identity = data.get("identity") or {}
    return SyncConfig(
        default_roster_id_base=int(data.get("default_roster_id_base", 0)),
        roster_id_base={
            int(k): int(v) for k, v in (data.get("roster_id_base") or {}).items()
        },
        extended_check=bool(identity.get("extended_check", True)),
        min_agreements=int(identity.get("min_agreements", 2)),
        soft_delete=bool(data.get("soft_delete", False)),
        audit_user=str(data.get("audit_user", "roster_sync")),
        reject_duplicate_codes=bool(data.get("reject_duplicate_codes", True)),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
    )


def _check_int(name: str, value: Any, minimum: int, maximum: int | None = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"'{name}' value {value!r} is not an integer.")
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"[{minimum}, {maximum}]" if maximum is not None else f">= {minimum}"
        raise ConfigValidationError(f"'{name}' value {value} must be {bound}.")


def _check_bool(name: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise ConfigValidationError(f"'{name}' value {value!r} is not a boolean.")


def validate_config(data: dict[str, Any]) -> None:
    """Raise ConfigValidationError if data does not match the config schema."""
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")

    unknown = set(data.keys()) - KNOWN_KEYS
    if unknown:
        raise ConfigValidationError(f"Unknown config keys: {sorted(unknown)}")

    if "default_roster_id_base" in data:
        _check_int("default_roster_id_base", data["default_roster_id_base"], 0)

    bases = data.get("roster_id_base") or {}
    if not isinstance(bases, dict):
        raise ConfigValidationError("'roster_id_base' must be a mapping of school id to base.")
    for school_id, base in bases.items():
        _check_int("roster_id_base key", school_id, 0)
        _check_int(f"roster_id_base[{school_id}]", base, 0)

    identity = data.get("identity") or {}
    if not isinstance(identity, dict):
        raise ConfigValidationError("'identity' must be a mapping.")
    unknown_identity = set(identity.keys()) - {"extended_check", "min_agreements"}
    if unknown_identity:
        raise ConfigValidationError(f"Unknown identity keys: {sorted(unknown_identity)}")
    if "extended_check" in identity:
        _check_bool("identity.extended_check", identity["extended_check"])
    if "min_agreements" in identity:
        _check_int("identity.min_agreements", identity["min_agreements"], 1, 3)

    for key in ("soft_delete", "reject_duplicate_codes"):
        if key in data:
            _check_bool(key, data[key])

    if "audit_user" in data:
        audit_user = data["audit_user"]
        if not isinstance(audit_user, str) or not audit_user.strip():
            raise ConfigValidationError("'audit_user' must be a non-empty string.")
