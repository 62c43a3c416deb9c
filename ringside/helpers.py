import time
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional


THAILAND_TZ = timezone(timedelta(hours=7))

# tickets for today's card can't be bought from 20:30 Thailand time on
PURCHASE_CUTOFF = (20, 30)

DAY_NAMES = {
    "en": ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday",
           "Friday", "Saturday"],
    "th": ["อาทิตย์", "จันทร์", "อังคาร", "พุธ", "พฤหัสบดี", "ศุกร์", "เสาร์"],
}
MONTH_NAMES = {
    "en": ["January", "February", "March", "April", "May", "June", "July",
           "August", "September", "October", "November", "December"],
    "th": ["มกราคม", "กุมภาพันธ์", "มีนาคม", "เมษายน", "พฤษภาคม",
           "มิถุนายน", "กรกฎาคม", "สิงหาคม", "กันยายน", "ตุลาคม",
           "พฤศจิกายน", "ธันวาคม"],
}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_STADIUM_ID_RE = re.compile(r"^[a-z0-9_-]{1,50}$")


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def from_iso(value: str | None) -> Optional[float]:
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def is_valid_stadium_id(stadium_id: Optional[str]) -> bool:
    if not stadium_id or not isinstance(stadium_id, str):
        return False
    return _STADIUM_ID_RE.match(stadium_id) is not None


def parse_date(value: Optional[str]) -> Optional[date]:
    """YYYY-MM-DD -> date, None for anything else (including 2025-02-30)."""
    if not value or not isinstance(value, str) or not _DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def is_valid_date(value: Optional[str]) -> bool:
    return parse_date(value) is not None


def js_weekday(d: date) -> int:
    # 0 = Sunday ... 6 = Saturday, the numbering stored in ticket schedules
    return (d.weekday() + 1) % 7


def thailand_now(ts: float | None = None) -> datetime:
    return datetime.fromtimestamp(now_ts() if ts is None else ts,
                                  tz=THAILAND_TZ)


def can_purchase_for_date(value: str, ts: float | None = None) -> bool:
    d = parse_date(value)
    if d is None:
        return False
    now = thailand_now(ts)
    today = now.date()
    if d < today:
        return False
    if d == today:
        return (now.hour, now.minute) < PURCHASE_CUTOFF
    return True


def format_date_display(value: str, language: str = "en") -> str:
    d = parse_date(value)
    if d is None:
        return value
    lang = language if language in DAY_NAMES else "en"
    # Thai dates use the Buddhist era
    year = d.year + 543 if lang == "th" else d.year
    day_name = DAY_NAMES[lang][js_weekday(d)]
    month_name = MONTH_NAMES[lang][d.month - 1]
    return f"{day_name}, {month_name} {d.day}, {year}"
