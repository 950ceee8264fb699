"""SQLAlchemy declarative base and common utilities."""

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class EpochTimestampMixin:
    """Mixin for created_at / updated_at stored as epoch milliseconds.

    Business-day bucketing works on UTC epoch values, so timestamps are kept
    as integers rather than timezone-aware datetimes.
    """

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)


class VersionMixin:
    """Save counter for document-style aggregates.

    ``version`` starts at 1 and is incremented on every save.  It is exposed
    to clients but not checked on write: concurrent saves of the same
    document resolve as last writer wins.
    """

    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)

    def increment_version(self) -> None:
        """Increment the version counter before a save."""
        self.version = (self.version or 0) + 1
