"""
Imports every ORM model so Base.metadata knows all tables.

Entry points (worker, API, tests) import this module before calling
Base.metadata.create_all(); foreign keys between tables only resolve once
every model class has been declared.
"""

from models.base import Base
from models.booking import BookingSlot
from models.config_entry import ConfigEntry
from models.job import JobRecord
from models.payment import Payment
from models.series import RecurringSeries
from models.user import User

__all__ = [
    "Base",
    "BookingSlot",
    "ConfigEntry",
    "JobRecord",
    "Payment",
    "RecurringSeries",
    "User",
]
