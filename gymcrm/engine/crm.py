"""
CRM Engine - Core Database Operations
Pure Python module with no delivery dependency. Handles all CRUD operations for
customers and ad hoc reminders, plus the queries and single-row writes the
Reminder Engine consumes as its store.
"""

import logging
import re
from datetime import date
from typing import List, Optional, Dict, Any, Iterable

from gymcrm.db.connection import get_db_cursor, read_schema
from gymcrm.models import Customer, ReminderRecord, CUSTOMER_TYPES, RECURRENCE_TYPES
from gymcrm.bus.events import (
    bus, EVENT_CUSTOMER_CREATED, EVENT_CUSTOMER_UPDATED, EVENT_CUSTOMER_ARCHIVED,
    EVENT_CUSTOMER_RESTORED, EVENT_CUSTOMER_DELETED, EVENT_REMINDER_CREATED,
    EVENT_REMINDER_COMPLETED, EVENT_REMINDER_DELETED,
)

logger = logging.getLogger(__name__)

# Allowlists for dynamic UPDATE queries; column names never come from user input directly
_CUSTOMER_COLUMNS = {
    'name', 'phone', 'email', 'child_name', 'referral_source', 'notes', 'wants_pt',
    'customer_type', 'pt_date', 'pt_time', 'trainer_email', 'is_recurring', 'pt_days',
    'recurrence_type', 'recurrence_interval', 'recurrence_end_date',
}
_REMINDER_STATUSES = ('all', 'due', 'pending', 'completed')

_PT_TIME_RE = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')

_ACTIVE = "archived = FALSE"


def _validate_columns(updates: Dict[str, Any], allowed: set, entity: str) -> None:
    """Raise ValueError if any key in updates is not an allowed column name."""
    invalid = set(updates.keys()) - allowed
    if invalid:
        raise ValueError(f"Invalid {entity} fields: {invalid}")


def _normalize_pt_days(pt_days: Optional[Iterable[int]]) -> Optional[List[int]]:
    if not pt_days:
        return None
    return sorted({int(d) for d in pt_days})


def _validate_field_values(values: Dict[str, Any]) -> None:
    """Check the shape of individual customer fields that are present in values."""
    if 'customer_type' in values and values['customer_type'] not in CUSTOMER_TYPES:
        raise ValueError(f"customer_type must be one of {CUSTOMER_TYPES}")

    pt_time = values.get('pt_time')
    if pt_time and not _PT_TIME_RE.match(pt_time):
        raise ValueError(f"Invalid pt_time {pt_time!r}. Use HH:MM")

    for d in values.get('pt_days') or []:
        if int(d) not in range(7):
            raise ValueError(f"Invalid pt_days value {d!r}. Use 0 (Sunday) to 6 (Saturday)")

    recurrence_type = values.get('recurrence_type')
    if recurrence_type and recurrence_type not in RECURRENCE_TYPES:
        raise ValueError(f"recurrence_type must be one of {RECURRENCE_TYPES}")


def validate_customer(customer: Customer) -> None:
    """
    Enforce the customer invariants before a write.
    Raises ValueError with a user-facing message on the first violation.
    An unknown trainer_email is deliberately accepted.
    """
    if not customer.name or not customer.phone:
        raise ValueError("Name and phone are required")

    _validate_field_values(customer.__dict__)

    if customer.customer_type == 'pt' and not customer.pt_date:
        raise ValueError("PT date is required for PT customers")

    if customer.is_recurring:
        if not customer.pt_days and not customer.recurrence_type:
            raise ValueError("Recurring sessions need pt_days or a recurrence_type")
        if not customer.pt_time:
            raise ValueError("Recurring sessions need a pt_time")
        if (customer.recurrence_type == 'custom' and not customer.pt_days
                and not (customer.recurrence_interval and customer.recurrence_interval > 0)):
            raise ValueError("Custom recurrence needs a positive recurrence_interval")


# =============================================================================
# SCHEMA
# =============================================================================

def init_schema() -> None:
    """Create tables and indexes if they do not exist."""
    with get_db_cursor() as cur:
        cur.execute(read_schema())
    logger.info("Database schema initialised")


# =============================================================================
# CUSTOMER OPERATIONS
# =============================================================================

def create_customer(customer: Customer) -> int:
    """
    Create a new customer after validating it.
    Returns: customer_id
    """
    validate_customer(customer)
    customer.pt_days = _normalize_pt_days(customer.pt_days)

    with get_db_cursor() as cur:
        cur.execute("""
            INSERT INTO customers (
                name, phone, email, child_name, referral_source, notes, wants_pt,
                customer_type, pt_date, pt_time, trainer_email, is_recurring, pt_days,
                recurrence_type, recurrence_interval, recurrence_end_date,
                created_at, updated_at
            ) VALUES (
                %(name)s, %(phone)s, %(email)s, %(child_name)s, %(referral_source)s,
                %(notes)s, %(wants_pt)s, %(customer_type)s, %(pt_date)s, %(pt_time)s,
                %(trainer_email)s, %(is_recurring)s, %(pt_days)s, %(recurrence_type)s,
                %(recurrence_interval)s, %(recurrence_end_date)s, NOW(), NOW()
            ) RETURNING id
        """, customer.__dict__)

        customer_id = cur.fetchone()['id']
        logger.info(f"Created customer ID {customer_id}: {customer.name} ({customer.customer_type})")

        bus.emit(EVENT_CUSTOMER_CREATED, {'customer_id': customer_id, 'customer': customer})

        return customer_id


def get_customer(customer_id: int) -> Optional[Customer]:
    """Get customer by ID, archived or not."""
    with get_db_cursor() as cur:
        cur.execute("SELECT * FROM customers WHERE id = %s", (customer_id,))

        row = cur.fetchone()
        if row:
            return Customer(**row)
        logger.debug(f"get_customer: customer_id={customer_id} not found")
        return None


def update_customer(customer_id: int, updates: Dict[str, Any]) -> bool:
    """
    Update customer fields on a non-archived customer.
    Args:
        customer_id: ID of customer to update
        updates: Dict of field_name: new_value
    Returns: True if updated, False if not found
    """
    if not updates:
        return False

    # Guard: only known columns may appear in the SET clause
    _validate_columns(updates, _CUSTOMER_COLUMNS, 'customer')
    _validate_field_values(updates)
    if 'pt_days' in updates:
        updates['pt_days'] = _normalize_pt_days(updates['pt_days'])

    # Build SET clause; keys are validated against the allowlist above
    set_clause = ', '.join(f"{key} = %({key})s" for key in updates.keys())

    params = dict(updates, customer_id=customer_id)

    with get_db_cursor() as cur:
        cur.execute(f"""
            UPDATE customers
            SET {set_clause}, updated_at = NOW()
            WHERE id = %(customer_id)s AND {_ACTIVE}
        """, params)

        if cur.rowcount > 0:
            logger.info(f"Updated customer ID {customer_id}: {list(updates.keys())}")
            bus.emit(EVENT_CUSTOMER_UPDATED, {'customer_id': customer_id, 'updates': updates})
            return True
        return False


def search_customers(
    customer_type: Optional[str] = None,
    name: Optional[str] = None,
    limit: int = 500
) -> List[Customer]:
    """
    List non-archived customers with optional filters.
    PT customers are ordered by session date, everyone else newest first.
    """
    conditions = [_ACTIVE]
    params = {}

    if customer_type:
        conditions.append("customer_type = %(customer_type)s")
        params['customer_type'] = customer_type

    if name:
        conditions.append("name ILIKE %(name)s")
        params['name'] = f"%{name}%"

    params['limit'] = limit

    where_clause = " AND ".join(conditions)
    order_by = "pt_date ASC NULLS LAST" if customer_type == 'pt' else "created_at DESC"

    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM customers
            WHERE {where_clause}
            ORDER BY {order_by}
            LIMIT %(limit)s
        """, params)

        rows = cur.fetchall()
        logger.debug(f"search_customers: {len(rows)} results (type={customer_type}, name={name})")
        return [Customer(**row) for row in rows]


def list_archived_customers(sort: str = 'newest') -> List[Customer]:
    """Archived customers, ordered by archive time ('newest' or 'oldest' first)."""
    direction = 'ASC' if sort == 'oldest' else 'DESC'
    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM customers
            WHERE archived = TRUE
            ORDER BY archived_at {direction}
        """)
        rows = cur.fetchall()
        logger.debug(f"list_archived_customers: {len(rows)} results")
        return [Customer(**row) for row in rows]


def archive_customer(customer_id: int) -> bool:
    """
    Soft-delete a customer. Archived customers are invisible to every reminder check.
    Returns: True if archived, False if not found or already archived
    """
    with get_db_cursor() as cur:
        cur.execute(f"""
            UPDATE customers
            SET archived = TRUE, archived_at = NOW()
            WHERE id = %s AND {_ACTIVE}
        """, (customer_id,))

        if cur.rowcount > 0:
            logger.info(f"Archived customer ID {customer_id}")
            bus.emit(EVENT_CUSTOMER_ARCHIVED, {'customer_id': customer_id})
            return True
        return False


def restore_customer(customer_id: int) -> bool:
    """Bring an archived customer back. Returns False if not archived."""
    with get_db_cursor() as cur:
        cur.execute("""
            UPDATE customers
            SET archived = FALSE, archived_at = NULL
            WHERE id = %s AND archived = TRUE
        """, (customer_id,))

        if cur.rowcount > 0:
            logger.info(f"Restored customer ID {customer_id}")
            bus.emit(EVENT_CUSTOMER_RESTORED, {'customer_id': customer_id})
            return True
        return False


def delete_customer_permanently(customer_id: int) -> bool:
    """
    Erase an archived customer and their reminders.
    Active customers are never erased; archive them first.
    Returns: True if deleted, False if no archived customer has that ID
    """
    with get_db_cursor() as cur:
        cur.execute("SELECT id FROM customers WHERE id = %s AND archived = TRUE", (customer_id,))
        if not cur.fetchone():
            logger.debug(f"delete_customer_permanently: no archived customer {customer_id}")
            return False

        cur.execute("DELETE FROM reminders WHERE customer_id = %s", (customer_id,))
        cur.execute("DELETE FROM customers WHERE id = %s", (customer_id,))

        logger.info(f"Permanently deleted customer ID {customer_id}")
        bus.emit(EVENT_CUSTOMER_DELETED, {'customer_id': customer_id})
        return True


def list_broadcast_recipients(
    customer_ids: Optional[List[int]] = None,
    customer_type: Optional[str] = None
) -> List[Customer]:
    """
    Non-archived customers with a phone number, either by explicit IDs or by
    type ('all', 'pt', 'basic').
    """
    conditions = [_ACTIVE, "phone IS NOT NULL", "phone <> ''"]
    params: Dict[str, Any] = {}

    if customer_ids:
        conditions.append("id = ANY(%(ids)s)")
        params['ids'] = list(customer_ids)
    elif customer_type and customer_type != 'all':
        conditions.append("customer_type = %(customer_type)s")
        params['customer_type'] = customer_type
    elif not customer_type:
        raise ValueError("Either customer_ids or customer_type is required")

    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM customers
            WHERE {" AND ".join(conditions)}
            ORDER BY id
        """, params)
        rows = cur.fetchall()
        logger.debug(f"list_broadcast_recipients: {len(rows)} recipients")
        return [Customer(**row) for row in rows]


# =============================================================================
# AD HOC REMINDER OPERATIONS
# =============================================================================

_REMINDER_SELECT = """
    SELECT r.*, c.name AS customer_name, c.email AS customer_email,
           c.phone AS customer_phone, c.archived AS customer_archived
    FROM reminders r
    JOIN customers c ON r.customer_id = c.id
"""


def create_reminder(reminder: ReminderRecord) -> int:
    """
    Create a follow-up reminder for an existing customer.
    Returns: reminder_id
    """
    if not reminder.customer_id or not reminder.reminder_date:
        raise ValueError("Customer ID and reminder date are required")

    with get_db_cursor() as cur:
        cur.execute("SELECT id FROM customers WHERE id = %s", (reminder.customer_id,))
        if not cur.fetchone():
            raise ValueError(f"Customer {reminder.customer_id} not found")

        cur.execute("""
            INSERT INTO reminders (customer_id, reminder_date, reminder_type, notes, created_at)
            VALUES (%(customer_id)s, %(reminder_date)s, %(reminder_type)s, %(notes)s, NOW())
            RETURNING id
        """, {
            'customer_id': reminder.customer_id,
            'reminder_date': reminder.reminder_date,
            'reminder_type': reminder.reminder_type or 'follow_up',
            'notes': reminder.notes,
        })

        reminder_id = cur.fetchone()['id']
        logger.info(f"Created reminder ID {reminder_id} for customer {reminder.customer_id} on {reminder.reminder_date}")
        bus.emit(EVENT_REMINDER_CREATED, {'reminder_id': reminder_id, 'customer_id': reminder.customer_id})
        return reminder_id


def get_reminders(
    status: str = 'all',
    customer_id: Optional[int] = None,
    today: Optional[date] = None
) -> List[ReminderRecord]:
    """
    List reminders joined with customer contact fields.
    status: 'all', 'due' (open and on/before today), 'pending' (open), 'completed'
    """
    if status not in _REMINDER_STATUSES:
        raise ValueError(f"status must be one of {_REMINDER_STATUSES}")

    conditions = []
    params: Dict[str, Any] = {}

    if status == 'due':
        conditions.append("r.reminder_date <= %(today)s AND r.completed = FALSE")
        params['today'] = today or date.today()
    elif status == 'pending':
        conditions.append("r.completed = FALSE")
    elif status == 'completed':
        conditions.append("r.completed = TRUE")

    if customer_id is not None:
        conditions.append("r.customer_id = %(customer_id)s")
        params['customer_id'] = customer_id

    where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    order_by = "r.reminder_date DESC" if status == 'completed' else "r.reminder_date ASC, r.created_at DESC"

    with get_db_cursor() as cur:
        cur.execute(f"{_REMINDER_SELECT} {where_clause} ORDER BY {order_by}", params)
        rows = cur.fetchall()
        logger.debug(f"get_reminders: {len(rows)} results (status={status}, customer_id={customer_id})")
        return [ReminderRecord(**row) for row in rows]


def complete_reminder(reminder_id: int, completed: bool = True) -> bool:
    """Mark a reminder done (or reopen it). This is the only way ad hoc reminders stop firing."""
    with get_db_cursor() as cur:
        cur.execute("UPDATE reminders SET completed = %s WHERE id = %s", (completed, reminder_id))
        if cur.rowcount > 0:
            logger.info(f"Reminder ID {reminder_id} completed={completed}")
            bus.emit(EVENT_REMINDER_COMPLETED, {'reminder_id': reminder_id, 'completed': completed})
            return True
        return False


def delete_reminder(reminder_id: int) -> bool:
    with get_db_cursor() as cur:
        cur.execute("DELETE FROM reminders WHERE id = %s", (reminder_id,))
        if cur.rowcount > 0:
            logger.info(f"Deleted reminder ID {reminder_id}")
            bus.emit(EVENT_REMINDER_DELETED, {'reminder_id': reminder_id})
            return True
        return False


# =============================================================================
# REMINDER ENGINE STORE
# =============================================================================

def list_due_one_time_pt_customers(today: date) -> List[Customer]:
    """Non-recurring PT customers whose session is today."""
    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM customers
            WHERE customer_type = 'pt'
              AND is_recurring = FALSE
              AND pt_date = %s
              AND {_ACTIVE}
            ORDER BY pt_time ASC NULLS LAST, id
        """, (today,))
        rows = cur.fetchall()
        logger.debug(f"list_due_one_time_pt_customers: {len(rows)} sessions on {today}")
        return [Customer(**row) for row in rows]


def list_recurring_pt_customers() -> List[Customer]:
    """Recurring PT customers on the weekday model; weekday and watermark filters are the caller's."""
    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM customers
            WHERE customer_type = 'pt'
              AND is_recurring = TRUE
              AND pt_days IS NOT NULL
              AND cardinality(pt_days) > 0
              AND pt_time IS NOT NULL
              AND {_ACTIVE}
            ORDER BY id
        """)
        rows = cur.fetchall()
        logger.debug(f"list_recurring_pt_customers: {len(rows)} customers")
        return [Customer(**row) for row in rows]


def list_overdue_reminders(today: date) -> List[ReminderRecord]:
    """Open reminders due today or earlier, for non-archived customers."""
    with get_db_cursor() as cur:
        cur.execute(f"""
            {_REMINDER_SELECT}
            WHERE r.reminder_date <= %s
              AND r.completed = FALSE
              AND c.archived = FALSE
            ORDER BY r.reminder_date ASC
        """, (today,))
        rows = cur.fetchall()
        logger.debug(f"list_overdue_reminders: {len(rows)} reminders on/before {today}")
        return [ReminderRecord(**row) for row in rows]


def list_past_date_recurring_sessions(today: date) -> List[Customer]:
    """Interval-model recurring customers whose pt_date is already behind us."""
    with get_db_cursor() as cur:
        cur.execute(f"""
            SELECT * FROM customers
            WHERE customer_type = 'pt'
              AND is_recurring = TRUE
              AND recurrence_type IS NOT NULL
              AND (pt_days IS NULL OR cardinality(pt_days) = 0)
              AND pt_date < %s
              AND {_ACTIVE}
            ORDER BY pt_date ASC, id
        """, (today,))
        rows = cur.fetchall()
        logger.debug(f"list_past_date_recurring_sessions: {len(rows)} sessions before {today}")
        return [Customer(**row) for row in rows]


def update_last_reminder_date(customer_id: int, day: date) -> None:
    """Set the once-per-day reminder watermark."""
    with get_db_cursor() as cur:
        cur.execute("UPDATE customers SET last_reminder_date = %s WHERE id = %s", (day, customer_id))
    logger.debug(f"update_last_reminder_date: customer {customer_id} -> {day}")


def advance_pt_date(customer_id: int, new_date: date) -> None:
    with get_db_cursor() as cur:
        cur.execute(
            "UPDATE customers SET pt_date = %s, updated_at = NOW() WHERE id = %s",
            (new_date, customer_id),
        )
    logger.info(f"Advanced customer {customer_id} pt_date to {new_date}")


def disable_recurrence(customer_id: int) -> None:
    with get_db_cursor() as cur:
        cur.execute(
            "UPDATE customers SET is_recurring = FALSE, updated_at = NOW() WHERE id = %s",
            (customer_id,),
        )
    logger.info(f"Recurrence ended for customer {customer_id}")
