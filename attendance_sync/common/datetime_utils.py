from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Horodatage UTC courant (aware).

    Isolé pour pouvoir être patché dans les tests.
    """
    return datetime.now(timezone.utc)


def now_local() -> datetime:
    """Heure locale murale (naive), utilisée pour les check-ins."""
    return datetime.now()


def as_utc(value: datetime) -> datetime:
    """SQLite rend des datetimes naive : on les considère comme UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse un horodatage ISO 8601 (paramètre persisté ou champ JSON distant)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
