"""Display helpers shared by the WHOOP report tools."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import pytz

PLACEHOLDER = "—"
KJ_PER_KCAL = 4.184
MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (unlike round())."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def today(timezone_name: str = "UTC") -> str:
    """Current date in the given timezone as YYYY-MM-DD."""
    return datetime.now(pytz.timezone(timezone_name)).strftime("%Y-%m-%d")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a WHOOP ISO timestamp into an aware datetime (UTC if unspecified)."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt


def ms_to_hours(ms: float) -> str:
    """Format milliseconds as H:MM."""
    total_minutes = round_half_up((ms or 0) / 60000)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}:{minutes:02d}"


def ms_to_hours_decimal(ms: float) -> float:
    """Milliseconds as decimal hours, one decimal place."""
    return round_half_up((ms or 0) / 360000) / 10


def pct(value: Optional[float]) -> str:
    if value is None:
        return PLACEHOLDER
    return f"{round_half_up(value)}%"


def num(value: Optional[float], decimals: int = 1) -> str:
    if value is None:
        return PLACEHOLDER
    return f"{value:.{decimals}f}"


def kcal(kilojoules: Optional[float]) -> int:
    return round_half_up((kilojoules or 0) / KJ_PER_KCAL)


def recovery_color(score: Optional[float]) -> str:
    if score is None:
        return "unscored"
    if score >= 67:
        return "green"
    if score >= 34:
        return "yellow"
    return "red"


def recovery_emoji(score: Optional[float]) -> str:
    return {"green": "🟢", "yellow": "🟡", "red": "🔴"}.get(recovery_color(score), "⚪")


def short_date(value: Optional[str]) -> str:
    """Format an ISO date or timestamp like 'Feb 26'."""
    dt = parse_iso(value)
    if dt is None:
        return value or PLACEHOLDER
    return f"{MONTHS[dt.month - 1]} {dt.day}"


def percent_of(part: Optional[float], total: Optional[float]) -> int:
    """Whole-percent share, 0 when the total is empty."""
    if not total:
        return 0
    return round_half_up((part or 0) / total * 100)
