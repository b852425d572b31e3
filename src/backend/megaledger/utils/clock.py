from datetime import datetime
from zoneinfo import ZoneInfo

from megaledger.config import settings


def now() -> datetime:
    """Current time in the bot's configured timezone."""
    return datetime.now(ZoneInfo(settings.TIMEZONE))


def local_date_key(moment: datetime) -> str:
    """YYYY-MM-DD bucket for a timestamp in the configured timezone."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(ZoneInfo(settings.TIMEZONE))
    return moment.date().isoformat()


def calendar_days_between(earlier: datetime, later: datetime) -> int:
    """Whole calendar days between two timestamps, ignoring time of day."""
    tz = ZoneInfo(settings.TIMEZONE)
    if earlier.tzinfo is not None:
        earlier = earlier.astimezone(tz)
    if later.tzinfo is not None:
        later = later.astimezone(tz)
    return (later.date() - earlier.date()).days
