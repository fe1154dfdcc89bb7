"""
Data Models
Dataclasses for all entities. These are pure Python objects, no database logic.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Union


CUSTOMER_TYPES = ('basic', 'pt')
RECURRENCE_TYPES = ('daily', 'weekly', 'custom')

# Fixed step for the interval model; 'custom' uses recurrence_interval
_INTERVAL_DAYS = {'daily': 1, 'weekly': 7}


class NotificationKind(str, Enum):
    """Every message the system can send. Renderers are registered per member."""
    WELCOME = 'welcome'
    PT_CONFIRMATION = 'pt_confirmation'
    PT_REMINDER = 'pt_reminder'
    PT_DATE_CHANGED = 'pt_date_changed'
    PT_CANCELLED = 'pt_cancelled'
    FOLLOW_UP = 'follow_up'
    BROADCAST = 'broadcast'


class Channel(str, Enum):
    EMAIL = 'email'
    WHATSAPP = 'whatsapp'


class Role(str, Enum):
    CUSTOMER = 'customer'
    TRAINER = 'trainer'


# =============================================================================
# RECURRENCE
# =============================================================================

@dataclass(frozen=True)
class WeeklyPattern:
    """Sessions on a fixed set of weekdays (Sunday=0 .. Saturday=6)."""
    days: FrozenSet[int]

    def occurs_on(self, day: date) -> bool:
        return weekday_index(day) in self.days


@dataclass(frozen=True)
class IntervalPattern:
    """Sessions every N days starting from pt_date, optionally ending on `until`."""
    every_days: int
    until: Optional[date] = None


RecurrencePattern = Union[WeeklyPattern, IntervalPattern]


def weekday_index(day: date) -> int:
    """Weekday number with Sunday=0, matching the pt_days convention."""
    return day.isoweekday() % 7


# =============================================================================
# ENTITIES
# =============================================================================

@dataclass
class Customer:
    """Customer or lead. PT fields only matter when customer_type == 'pt'."""
    id: Optional[int] = None
    name: str = ''
    phone: str = ''
    email: Optional[str] = None
    child_name: Optional[str] = None
    referral_source: Optional[str] = None
    notes: Optional[str] = None
    wants_pt: bool = False
    customer_type: str = 'basic'
    pt_date: Optional[date] = None
    pt_time: Optional[str] = None
    trainer_email: Optional[str] = None
    is_recurring: bool = False
    pt_days: Optional[List[int]] = None
    recurrence_type: Optional[str] = None
    recurrence_interval: Optional[int] = None
    recurrence_end_date: Optional[date] = None
    last_reminder_date: Optional[date] = None
    archived: bool = False
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_pt(self) -> bool:
        return self.customer_type == 'pt'

    @property
    def recurrence(self) -> Optional[RecurrencePattern]:
        """
        The customer's recurrence as a single tagged value.
        pt_days (the weekday model) takes precedence over recurrence_type.
        Returns None for non-recurring customers or incomplete descriptors.
        """
        if not self.is_recurring:
            return None
        if self.pt_days:
            return WeeklyPattern(frozenset(int(d) for d in self.pt_days))
        if self.recurrence_type == 'custom':
            if self.recurrence_interval and self.recurrence_interval > 0:
                return IntervalPattern(self.recurrence_interval, self.recurrence_end_date)
            return None
        step = _INTERVAL_DAYS.get(self.recurrence_type or '')
        if step:
            return IntervalPattern(step, self.recurrence_end_date)
        return None

    @property
    def session_display(self) -> str:
        """'2026-03-02 at 09:00', or just the date when no time is set."""
        if self.pt_date is None:
            return ''
        return f"{self.pt_date} at {self.pt_time}" if self.pt_time else str(self.pt_date)


@dataclass
class Trainer:
    """Static trainer directory entry, keyed by email."""
    name: str
    email: str
    phone: Optional[str] = None


@dataclass
class ReminderRecord:
    """Ad hoc follow-up reminder, joined with its customer's contact fields."""
    id: Optional[int] = None
    customer_id: int = 0
    reminder_date: Optional[date] = None
    reminder_type: str = 'follow_up'
    completed: bool = False
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_archived: bool = False


# =============================================================================
# DELIVERY
# =============================================================================

@dataclass
class NotificationContext:
    """Per-notification values that are not stored on the customer row."""
    pt_date: Optional[date] = None
    pt_time: Optional[str] = None
    old_date_time: Optional[str] = None
    new_date_time: Optional[str] = None
    reminder_type: Optional[str] = None
    reminder_date: Optional[date] = None
    reminder_notes: Optional[str] = None
    message: Optional[str] = None


@dataclass
class EmailContent:
    subject: str
    html: str
    text: str


@dataclass
class WhatsAppContent:
    text: str


@dataclass
class SendResult:
    """What a channel adapter reports for a single send."""
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class NotificationOutcome:
    """Per-send result, used for logging and reports only. Never persisted."""
    kind: NotificationKind
    channel: Channel
    role: Role
    recipient: str
    success: bool
    error: Optional[str] = None


@dataclass
class CheckReport:
    """Summary of one Reminder Engine invocation."""
    check: str
    day: date
    selected: int = 0
    notified: int = 0
    skipped: int = 0
    outcomes: List[NotificationOutcome] = field(default_factory=list)
    # customers whose dispatch raised before any outcome was recorded
    failed_customers: List[int] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None

    @property
    def failures(self) -> List[NotificationOutcome]:
        return [o for o in self.outcomes if not o.success]
