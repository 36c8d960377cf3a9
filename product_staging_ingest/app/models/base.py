from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in the staging tables."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StagingBase(DeclarativeBase):
    """Base class for all Product Staging database models."""

    pass
