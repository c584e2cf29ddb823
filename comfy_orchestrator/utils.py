from typing import Any, Optional, Tuple
import random
import re

# Generated seeds are drawn from [1, SEED_BOUND). Any given seed >= 0 is kept as is.
SEED_BOUND = 1_000_000_000

DEFAULT_SIZE = 1024

_ASPECT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*[:x]\s*(\d+(?:\.\d+)?)\s*$")


def generate_seed(provided: Any = None) -> int:
    try:
        v = int(provided)
        return v if v >= 0 else random.randint(1, SEED_BOUND - 1)
    except (TypeError, ValueError):
        return random.randint(1, SEED_BOUND - 1)


def round_to_multiple(value: float, multiple: int = 64) -> int:
    return max(multiple, int(round(value / multiple)) * multiple)


def parse_aspect_ratio(aspect_ratio: Optional[str], base: int = DEFAULT_SIZE) -> Tuple[int, int]:
    """Turn "16:9" style ratios into a (width, height) pair around `base` pixels.

    The longer side is `base`; the shorter side is scaled and snapped to a
    multiple of 64. Unparseable ratios give a square.
    """
    match = _ASPECT_RE.match(aspect_ratio or "")
    if not match:
        return base, base
    w, h = float(match.group(1)), float(match.group(2))
    if w <= 0 or h <= 0:
        return base, base
    if w >= h:
        return base, round_to_multiple(base * h / w)
    return round_to_multiple(base * w / h), base
