"""
Display formatting for widget values (formatConfig).
"""
from typing import Any, Optional

from cockpit.metrics.models import FormatConfig, FormatType

EMPTY = "-"

_DEFAULT_DECIMALS = {
    FormatType.NUMBER: 0,
    FormatType.CURRENCY: 2,
    FormatType.PERCENTAGE: 1,
    FormatType.COMPACT: 1,
}


def _compact(value: float, decimals: int) -> str:
    magnitude = abs(value)
    if magnitude >= 1_000_000_000:
        return f"{value / 1_000_000_000:.{decimals}f}B"
    if magnitude >= 1_000_000:
        return f"{value / 1_000_000:.{decimals}f}M"
    if magnitude >= 1_000:
        return f"{value / 1_000:.{decimals}f}K"
    return f"{value:.{decimals}f}"


def format_value(value: Any, config: Optional[FormatConfig] = None) -> str:
    """
    Render a widget value for display.

    None renders as "-", lists as "<n> rows", non-numeric values as text.
    Prefix and suffix wrap the number.
    """
    config = config or FormatConfig()
    if value is None:
        return EMPTY
    if isinstance(value, (list, tuple)):
        return f"{len(value)} rows"
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return str(value)

    decimals = config.decimals if config.decimals is not None else _DEFAULT_DECIMALS[config.type]
    if config.type == FormatType.COMPACT:
        text = _compact(float(value), decimals)
    elif config.type == FormatType.PERCENTAGE:
        text = f"{value:,.{decimals}f}%"
    else:
        text = f"{value:,.{decimals}f}"
    return f"{config.prefix or ''}{text}{config.suffix or ''}"


def target_progress(value: Optional[float], target: Optional[float]) -> Optional[int]:
    """Percent of target reached, rounded and clamped to [0, 100]; None without a positive target."""
    if value is None or target is None or target <= 0:
        return None
    return max(0, min(100, round(value / target * 100)))
