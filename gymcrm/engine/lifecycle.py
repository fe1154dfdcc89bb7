"""
Customer Lifecycle - CRUD operations that also notify the customer and trainer.

Thin async wrappers around gymcrm.engine.crm:
  register_customer  -> welcome (basic) or pt_confirmation (+ pt_reminder when the session is today)
  edit_customer      -> pt_date_changed when a PT session date or time moves
  archive_customer   -> pt_cancelled for PT customers with a session date
"""

import asyncio
import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytz

from gymcrm.config import config
from gymcrm.engine import crm
from gymcrm.engine.notifier import Notifier, default_notifier
from gymcrm.logging_config import log_call
from gymcrm.models import Customer, NotificationContext, NotificationKind, NotificationOutcome, WeeklyPattern

logger = logging.getLogger(__name__)


def _local_today() -> date:
    return datetime.now(pytz.timezone(config.TIMEZONE)).date()


@log_call
async def register_customer(
    customer: Customer,
    notifier: Optional[Notifier] = None,
    today: Optional[date] = None,
) -> int:
    """
    Validate and create a customer, then send the matching welcome/confirmation.
    Raises ValueError on invalid input (nothing is sent).
    Returns: customer_id
    """
    customer_id = await asyncio.to_thread(crm.create_customer, customer)
    customer.id = customer_id
    notifier = notifier or default_notifier()
    today = today or _local_today()

    outcomes: List[NotificationOutcome] = []
    if customer.is_pt:
        context = NotificationContext(pt_date=customer.pt_date, pt_time=customer.pt_time)
        outcomes += await notifier.notify(NotificationKind.PT_CONFIRMATION, customer, context)
        if customer.pt_date == today:
            outcomes += await notifier.notify(NotificationKind.PT_REMINDER, customer, context)
            # the weekday check must not remind this customer again today
            if isinstance(customer.recurrence, WeeklyPattern):
                await asyncio.to_thread(crm.update_last_reminder_date, customer_id, today)
                customer.last_reminder_date = today
    else:
        outcomes += await notifier.notify(NotificationKind.WELCOME, customer)

    logger.info(f"Registered customer {customer_id}: {len(outcomes)} notifications attempted")
    return customer_id


@log_call
async def edit_customer(
    customer_id: int,
    updates: Dict[str, Any],
    notifier: Optional[Notifier] = None,
) -> bool:
    """
    Update a customer. When a PT customer that already had a session date gets
    a new date or time, both parties receive pt_date_changed.
    Returns False when the customer does not exist or is archived.
    """
    before = await asyncio.to_thread(crm.get_customer, customer_id)
    if before is None or before.archived:
        return False
    crm.validate_customer(replace(before, **{k: v for k, v in updates.items() if hasattr(before, k)}))

    if not await asyncio.to_thread(crm.update_customer, customer_id, updates):
        return False

    after = await asyncio.to_thread(crm.get_customer, customer_id)
    moved = (
        after is not None and after.is_pt and before.pt_date and after.pt_date
        and (str(before.pt_date) != str(after.pt_date) or before.pt_time != after.pt_time)
    )
    if moved:
        context = NotificationContext(
            pt_date=after.pt_date,
            pt_time=after.pt_time,
            old_date_time=before.session_display,
            new_date_time=after.session_display,
        )
        logger.info(f"Customer {customer_id} rescheduled: {context.old_date_time} -> {context.new_date_time}")
        await (notifier or default_notifier()).notify(NotificationKind.PT_DATE_CHANGED, after, context)
    return True


@log_call
async def archive_customer(customer_id: int, notifier: Optional[Notifier] = None) -> bool:
    """Soft-delete a customer. PT customers with a booked session get a cancellation."""
    customer = await asyncio.to_thread(crm.get_customer, customer_id)
    if customer is None:
        return False

    if not await asyncio.to_thread(crm.archive_customer, customer_id):
        return False

    if customer.is_pt and customer.pt_date:
        context = NotificationContext(
            pt_date=customer.pt_date,
            pt_time=customer.pt_time,
            old_date_time=customer.session_display,
        )
        await (notifier or default_notifier()).notify(NotificationKind.PT_CANCELLED, customer, context)
    return True
