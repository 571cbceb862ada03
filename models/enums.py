"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("pending", not "JobStatus.PENDING")
- They work as SQLAlchemy column values
- They work as FastAPI query parameters
- Typos become immediate errors instead of silent bugs
"""

import enum


class JobStatus(str, enum.Enum):
    PENDING = "pending"        # persisted, waiting for its run_at to enter the promotion window
    PROMOTED = "promoted"      # handed to the Redis fast dispatcher
    RUNNING = "running"        # a worker claimed it and is executing the handler
    COMPLETED = "completed"    # handler finished (including expected skips)
    FAILED = "failed"          # fatal result or retries exhausted → dead-letter queue
    CANCELLED = "cancelled"    # withdrawn before execution


# Statuses that still hold the dedup key
ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.PROMOTED, JobStatus.RUNNING)
# Statuses the executor is allowed to claim from
CLAIMABLE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.PROMOTED)
TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobName(str, enum.Enum):
    REFRESH_RECURRING_BUFFER = "refreshRecurringBuffer"
    CALENDAR_EVENT_SYNC = "GoogleCalendarEventSync"
    CALENDAR_EVENT_DELETION = "GoogleCalendarEventDeletion"
    SYSTEM_ALERT = "SystemAlert"


class DispatchOutcome(str, enum.Enum):
    IMMEDIATE = "immediate"    # in Redis now, runs after its delay
    SCHEDULED = "scheduled"    # too far out, the promoter will pick it up
    DEFERRED = "deferred"      # Redis unavailable, the promoter will retry


class RecurringInterval(str, enum.Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class BookingStatus(str, enum.Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class BookingSource(str, enum.Enum):
    SYSTEM = "system"          # generated by the recurring buffer
    ADMIN = "admin"            # created by hand from the dashboard


class LocationType(str, enum.Enum):
    ONLINE = "online"
    IN_PERSON = "in-person"


class AccountType(str, enum.Enum):
    DOMESTIC = "domestic"
    INTERNATIONAL = "international"


class PaymentStatus(str, enum.Enum):
    NOT_INITIATED = "Not Initiated"
    PENDING = "Pending"
    COMPLETED = "Completed"
    REFUNDED = "Refunded"


class SyncState(str, enum.Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    NOT_APPLICABLE = "not_applicable"
    ACCESS_DENIED = "access_denied"
    AUTH_FAILED = "auth_failed"
    DELETED = "deleted"


class AlertKind(str, enum.Enum):
    BUFFER_REFRESH_FAILED = "buffer_refresh_failed"
    SESSION_PRICE_MISSING = "session_price_missing"
