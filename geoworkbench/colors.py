# geoworkbench/colors.py

import math
import re
from typing import Dict, List, Optional, Tuple

from geoworkbench.constants import COLOR_RAMPS, CUSTOM_RAMP
from geoworkbench.errors import ValidationError

RGB = Tuple[int, int, int]

_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)


def hex_to_rgb(hex_color: str) -> RGB:
    """Parse #RRGGBB (leading '#' optional). Anything else is black."""
    match = _HEX_RE.match(hex_color or "")
    if not match:
        return (0, 0, 0)
    return tuple(int(part, 16) for part in match.groups())


def rgb_to_hex(rgb: RGB) -> str:
    r, g, b = (max(0, min(255, int(c))) for c in rgb)
    return f"#{r:02x}{g:02x}{b:02x}"


def _round_half_up(value: float) -> int:
    # Math.round semantics: .5 goes up
    return int(math.floor(value + 0.5))


def interpolate_color(c1: RGB, c2: RGB, t: float) -> RGB:
    return tuple(_round_half_up(a + t * (b - a)) for a, b in zip(c1, c2))


def generate_ramp(start_hex: str, end_hex: str, count: int) -> List[str]:
    """
    Linear RGB ramp of `count` colors from start to end.
    With one class (or fewer) only the start color is returned.
    """
    if count <= 1:
        return [start_hex]
    start = hex_to_rgb(start_hex)
    end = hex_to_rgb(end_hex)
    return [rgb_to_hex(interpolate_color(start, end, i / (count - 1))) for i in range(count)]


def ramp_endpoints(ramp_id: str, custom: Optional[Dict[str, str]] = None,
                   ramps: Optional[Dict[str, Dict[str, str]]] = None) -> Tuple[str, str]:
    if ramp_id == CUSTOM_RAMP:
        if not custom or "start" not in custom or "end" not in custom:
            raise ValidationError("A custom ramp needs 'start' and 'end' colors")
        return custom["start"], custom["end"]
    ramps = ramps or COLOR_RAMPS
    if ramp_id not in ramps:
        raise ValidationError(f"Unknown color ramp '{ramp_id}'. Available: {sorted(ramps) + [CUSTOM_RAMP]}")
    return ramps[ramp_id]["start"], ramps[ramp_id]["end"]


def ramp_for(ramp_id: str, count: int, custom: Optional[Dict[str, str]] = None,
             ramps: Optional[Dict[str, Dict[str, str]]] = None) -> List[str]:
    start, end = ramp_endpoints(ramp_id, custom, ramps)
    return generate_ramp(start, end, count)
