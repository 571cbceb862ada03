"""
User ORM model — only the columns the scheduling core reads.

Registration, authentication and profile management live outside this
service; the booking engine needs a name for log lines and alerts and the
account type to resolve the session price.
"""

import uuid
from datetime import datetime

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, UTCDateTime, utcnow
from models.enums import AccountType


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    account_type: Mapped[str] = mapped_column(
        String(20), default=AccountType.DOMESTIC.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email}>"
