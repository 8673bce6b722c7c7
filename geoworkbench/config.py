# geoworkbench/config.py

import json
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

from loguru import logger

from geoworkbench.constants import COLOR_RAMPS, UNIT_METERS
from geoworkbench.errors import ValidationError

DEFAULT_CONFIG_PATH = "geoworkbench.json"


@dataclass
class WorkbenchConfig:
    """Defaults used by WorkbenchService when a caller does not pass a parameter."""

    default_classes: int = 5
    default_ramp: str = "reds"
    buffer_unit: str = "kilometers"
    cluster_multiplier: float = 1.0
    min_cluster_points: int = 2
    concavity_step_divisor: float = 10.0
    cross_section_unit: str = "meters"
    ee_project_id: Optional[str] = None
    ee_max_retries: int = 5
    ee_backoff_factor: float = 0.6
    extra_ramps: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def ramps(self) -> Dict[str, Dict[str, str]]:
        merged = dict(COLOR_RAMPS)
        merged.update(self.extra_ramps)
        return merged

    def _check_types(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "ee_project_id":
                ok = value is None or isinstance(value, str)
            elif f.type in (int, "int"):
                ok = isinstance(value, int) and not isinstance(value, bool)
            elif f.type in (float, "float"):
                ok = isinstance(value, (int, float)) and not isinstance(value, bool)
            elif f.type in (str, "str"):
                ok = isinstance(value, str)
            else:
                ok = isinstance(value, dict)
            if not ok:
                raise ValidationError(f"Setting '{f.name}' has the wrong type: {value!r}")

    def validate(self) -> None:
        self._check_types()
        if self.default_classes < 2:
            raise ValidationError("default_classes must be at least 2")
        if self.default_ramp not in self.ramps():
            raise ValidationError(f"Unknown default_ramp '{self.default_ramp}'. Available: {sorted(self.ramps())}")
        for key in ("buffer_unit", "cross_section_unit"):
            unit = getattr(self, key)
            if unit not in UNIT_METERS:
                raise ValidationError(f"Unknown {key} '{unit}'. Available: {list(UNIT_METERS)}")
        if self.min_cluster_points < 1:
            raise ValidationError("min_cluster_points must be at least 1")
        if self.concavity_step_divisor <= 0:
            raise ValidationError("concavity_step_divisor must be positive")
        for name, ramp in self.extra_ramps.items():
            if not isinstance(ramp, dict) or "start" not in ramp or "end" not in ramp:
                raise ValidationError(f"Ramp '{name}' needs 'start' and 'end' colors")


def load_config(path: str = DEFAULT_CONFIG_PATH, overrides: Optional[Dict[str, Any]] = None) -> WorkbenchConfig:
    """
    Builds a WorkbenchConfig from a JSON file (if it exists) and explicit overrides.

    Args:
        path: JSON file with any subset of the WorkbenchConfig keys.
        overrides: Values applied after the file, e.g. from a caller's own settings.
    """
    values: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, 'r', encoding='utf-8') as f:
            values.update(json.load(f))
        logger.debug(f"Loaded settings from {path}")
    if overrides:
        values.update(overrides)

    known = {f.name for f in fields(WorkbenchConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValidationError(f"Unknown settings: {unknown}")

    config = WorkbenchConfig(**values)
    config.validate()
    return config
