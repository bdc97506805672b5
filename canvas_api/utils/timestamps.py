"""Timestamp helpers shared by responses and headers"""

from datetime import datetime, timezone


def iso_timestamp(moment: datetime = None) -> str:
    """UTC ISO-8601 with millisecond precision and a trailing Z"""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_from_epoch(seconds: float) -> str:
    return iso_timestamp(datetime.fromtimestamp(seconds, tz=timezone.utc))
