from datetime import datetime, timezone

from room_staging.app.domain.common.result import Err, Ok, Result


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["Ok", "Err", "Result", "utcnow"]
