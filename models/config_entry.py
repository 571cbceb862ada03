"""
ConfigEntry ORM model — admin-editable key/value settings.

Unlike config/settings.py (deploy-time, environment driven), these rows are
changed at runtime from the dashboard. The pricing lookup reads the session
prices from here.
"""

from datetime import datetime

from sqlalchemy import JSON, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from models.base import Base, UTCDateTime, utcnow


class ConfigEntry(Base):
    __tablename__ = "config_entries"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[object] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    @classmethod
    def get_value(cls, session: Session, key: str, default=None):
        value = session.scalar(select(cls.value).where(cls.key == key))
        return default if value is None else value

    def __repr__(self) -> str:
        return f"<ConfigEntry {self.key}={self.value!r}>"
