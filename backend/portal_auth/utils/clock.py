"""
Wall-clock helper. Database timestamps are stored as naive UTC.
"""
from datetime import datetime, timezone


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)
