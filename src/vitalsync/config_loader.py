"""Load, validate, and hot-reload the VitalSync reconciliation configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an edit — no restart required.

Usage::

    from src.vitalsync.config_loader import get_sync_config

    config = get_sync_config()
    config.classify_sleep_stage("ASLEEP_REM")      # "rem"
    config.convert(150.0, "lb", "kg")              # 68.0388
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.vitalsync.base import MetricType

logger = logging.getLogger("vitalsync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

# Sleep stages the engine keeps per-stage totals for.
SLEEP_STAGES: tuple[str, ...] = ("awake", "rem", "core", "deep")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class FetchConfig:
    """Concurrency and timeout limits for platform fetches."""

    timeout_seconds: float
    max_concurrent: int


@dataclass
class PermissionConfig:
    """Which capabilities a sync cannot proceed without."""

    required: frozenset[MetricType]
    optional: frozenset[MetricType]

    def is_required(self, metric: MetricType) -> bool:
        return metric in self.required


@dataclass
class SleepStageRule:
    """One stage classification rule; matched in declaration order."""

    stage: str
    keywords: tuple[str, ...]


@dataclass
class UnitConversion:
    """Linear conversion ``value * factor + offset`` between two units."""

    from_unit: str
    to_unit: str
    factor: float
    offset: float = 0.0

    def apply(self, value: float) -> float:
        return value * self.factor + self.offset


@dataclass
class SyncConfig:
    """Fully validated reconciliation configuration.

    Attributes:
        version:         Config schema version string.
        fetch:           Per-fetch timeout and concurrency limit.
        permissions:     Required and optional capabilities.
        sleep_stages:    Ordered stage classification rules.
        canonical_units: Unit every metric is normalized to.
        conversions:     Conversions keyed by lower-cased (from, to) units.
    """

    version: str
    fetch: FetchConfig
    permissions: PermissionConfig
    sleep_stages: list[SleepStageRule]
    canonical_units: dict[MetricType, str]
    conversions: dict[tuple[str, str], UnitConversion]
    _raw: dict = field(default_factory=dict, repr=False)

    def classify_sleep_stage(self, label: str | None) -> str | None:
        """Map a platform stage label to awake / rem / core / deep.

        Matching is a case-insensitive substring test; the first rule that
        matches wins.  Returns None for unrecognized or empty labels.
        """
        if not label:
            return None
        normalized = str(label).upper()
        for rule in self.sleep_stages:
            if any(keyword in normalized for keyword in rule.keywords):
                return rule.stage
        return None

    def canonical_unit(self, metric: MetricType) -> str | None:
        return self.canonical_units.get(metric)

    def convert(self, value: float, from_unit: str | None, to_unit: str | None) -> float | None:
        """Convert ``value`` between units.

        Returns the value unchanged when either unit is unknown (None) or the
        units already agree, and None when no conversion is configured.
        """
        if from_unit is None or to_unit is None:
            return value
        source = from_unit.strip().lower()
        target = to_unit.strip().lower()
        if source == target:
            return value
        conversion = self.conversions.get((source, target))
        if conversion is None:
            return None
        return conversion.apply(value)


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Every problem is collected before raising so one edit cycle fixes them all.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated SyncConfig instance.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _metrics(values: Any, section: str) -> frozenset[MetricType]:
        parsed: set[MetricType] = set()
        if values is None:
            return frozenset()
        if not isinstance(values, list):
            errors.append(f"{section} must be a list of metric names")
            return frozenset()
        for name in values:
            try:
                parsed.add(MetricType(name))
            except ValueError:
                errors.append(f"{section} names unknown metric {name!r}")
        return frozenset(parsed)

    def _number(value: Any, where: str, default: float | None = None) -> float | None:
        if value is None:
            if default is None:
                errors.append(f"Missing required number '{where}'")
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            errors.append(f"{where} must be a number, got {value!r}")
            return default

    version = str(raw.get("version", "1.0"))

    # ── Fetch ──
    fetch_raw = raw.get("fetch") or {}
    timeout = _number(fetch_raw.get("timeout_seconds"), "fetch.timeout_seconds", 15.0)
    max_concurrent = _number(fetch_raw.get("max_concurrent"), "fetch.max_concurrent", 6.0)
    if timeout is not None and timeout <= 0:
        errors.append(f"fetch.timeout_seconds must be positive, got {timeout}")
    if max_concurrent is not None and max_concurrent < 1:
        errors.append(f"fetch.max_concurrent must be at least 1, got {max_concurrent}")
    fetch = FetchConfig(
        timeout_seconds=timeout or 15.0,
        max_concurrent=int(max_concurrent or 1),
    )

    # ── Permissions ──
    perm_raw = raw.get("permissions") or {}
    required = _metrics(perm_raw.get("required"), "permissions.required")
    optional = _metrics(perm_raw.get("optional"), "permissions.optional")
    overlap = required & optional
    if overlap:
        errors.append(
            "permissions lists metrics as both required and optional: "
            + ", ".join(sorted(m.value for m in overlap))
        )
    permissions = PermissionConfig(required=required, optional=optional)

    # ── Sleep stages ──
    stages_raw = raw.get("sleep_stages") or []
    if not stages_raw:
        errors.append("'sleep_stages' section is missing or empty")
    sleep_stages: list[SleepStageRule] = []
    for index, rule in enumerate(stages_raw):
        if not isinstance(rule, dict):
            errors.append(f"sleep_stages[{index}] must be a mapping")
            continue
        stage = rule.get("stage")
        keywords = rule.get("keywords") or []
        if stage not in SLEEP_STAGES:
            errors.append(
                f"sleep_stages[{index}].stage must be one of {SLEEP_STAGES}, got {stage!r}"
            )
            continue
        if not isinstance(keywords, list) or not keywords:
            errors.append(f"sleep_stages[{index}].keywords must be a non-empty list")
            continue
        sleep_stages.append(
            SleepStageRule(stage=stage, keywords=tuple(str(k).upper() for k in keywords))
        )

    # ── Units ──
    units_raw = raw.get("units") or {}
    canonical_units: dict[MetricType, str] = {}
    for name, unit in (units_raw.get("canonical") or {}).items():
        try:
            canonical_units[MetricType(name)] = str(unit)
        except ValueError:
            errors.append(f"units.canonical names unknown metric {name!r}")
    missing_units = [m.value for m in MetricType if m not in canonical_units]
    if missing_units:
        errors.append("units.canonical is missing " + ", ".join(missing_units))

    conversions: dict[tuple[str, str], UnitConversion] = {}
    for index, conv in enumerate(units_raw.get("conversions") or []):
        if not isinstance(conv, dict) or "from" not in conv or "to" not in conv:
            errors.append(f"units.conversions[{index}] needs 'from' and 'to'")
            continue
        factor = _number(conv.get("factor"), f"units.conversions[{index}].factor")
        offset = _number(conv.get("offset"), f"units.conversions[{index}].offset", 0.0)
        if factor is None:
            continue
        if factor == 0:
            errors.append(f"units.conversions[{index}].factor must not be zero")
            continue
        key = (str(conv["from"]).strip().lower(), str(conv["to"]).strip().lower())
        conversions[key] = UnitConversion(
            from_unit=str(conv["from"]),
            to_unit=str(conv["to"]),
            factor=factor,
            offset=offset or 0.0,
        )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        fetch=fetch,
        permissions=permissions,
        sleep_stages=sleep_stages,
        canonical_units=canonical_units,
        conversions=conversions,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
