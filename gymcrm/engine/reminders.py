"""
Reminder Engine - decides, for each scheduled check, who is notified today.

Every check takes `now`, converts it to the configured timezone to find
"today", asks the store for candidates and walks them one customer at a time.
Sends go through the Notifier. An error while dispatching for one customer is
logged and listed in CheckReport.failed_customers, and the loop moves on to the
next customer. A store failure aborts the rest of the check and is reported on
the returned CheckReport.

The store is anything exposing the query/write functions of gymcrm.engine.crm
(the default). Store functions are synchronous and run via asyncio.to_thread.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

import pytz

from gymcrm.bus.events import (
    bus, EVENT_PT_REMINDER_SENT, EVENT_SESSION_ADVANCED, EVENT_RECURRENCE_ENDED, EVENT_FOLLOW_UP_SENT,
)
from gymcrm.config import config
from gymcrm.engine import crm
from gymcrm.engine.notifier import Notifier, default_notifier
from gymcrm.logging_config import log_call
from gymcrm.models import (
    CheckReport, Customer, IntervalPattern, NotificationContext, NotificationKind, WeeklyPattern,
)

logger = logging.getLogger(__name__)


def _day_key(value) -> str:
    """YYYY-MM-DD for a date, datetime or ISO string; '' for None."""
    if value is None:
        return ''
    return str(value)[:10]


class ReminderEngine:

    def __init__(self, store=crm, notifier: Optional[Notifier] = None, timezone: Optional[str] = None):
        self.store = store
        self.notifier = notifier or default_notifier()
        self.tz = pytz.timezone(timezone or config.TIMEZONE)

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    def today(self, now: Optional[datetime] = None) -> date:
        """Calendar date of `now` in the gym's timezone. Naive datetimes are taken as local."""
        if now is None:
            return datetime.now(self.tz).date()
        if now.tzinfo is None:
            return now.date()
        return now.astimezone(self.tz).date()

    async def _store(self, name: str, *args):
        return await asyncio.to_thread(getattr(self.store, name), *args)

    def _abort(self, report: CheckReport, exc: Exception) -> CheckReport:
        logger.error(f"{report.check} aborted on {report.day}: {type(exc).__name__}: {exc}", exc_info=True)
        report.aborted = True
        report.error = f"{type(exc).__name__}: {exc}"
        return report

    def _finish(self, report: CheckReport) -> CheckReport:
        logger.info(
            f"{report.check} {report.day}: selected={report.selected} notified={report.notified} "
            f"skipped={report.skipped} failures={len(report.failures)} "
            f"failed_customers={len(report.failed_customers)}"
        )
        return report

    async def _notify(self, report: CheckReport, kind: NotificationKind, customer: Customer,
                      context: NotificationContext) -> bool:
        """Dispatch for one customer. An unexpected error is recorded and False returned."""
        try:
            report.outcomes.extend(await self.notifier.notify(kind, customer, context))
        except Exception as e:
            logger.error(
                f"{report.check}: {kind.value} for customer {customer.id} failed: {type(e).__name__}: {e}",
                exc_info=True,
            )
            report.failed_customers.append(customer.id)
            return False
        return True

    # -------------------------------------------------------------------------
    # one-time sessions
    # -------------------------------------------------------------------------

    @log_call
    async def check_one_time_sessions(self, now: Optional[datetime] = None) -> CheckReport:
        """
        Day-of reminder for non-recurring PT sessions dated today.
        There is no watermark, so this must only be driven once per day.
        """
        today = self.today(now)
        report = CheckReport('one_time_sessions', today)
        try:
            customers = await self._store('list_due_one_time_pt_customers', today)
        except Exception as e:
            return self._abort(report, e)

        report.selected = len(customers)
        for customer in customers:
            if customer.archived or customer.is_recurring:
                report.skipped += 1
                continue
            context = NotificationContext(pt_date=today, pt_time=customer.pt_time)
            if not await self._notify(report, NotificationKind.PT_REMINDER, customer, context):
                continue
            report.notified += 1
            bus.emit(EVENT_PT_REMINDER_SENT, {'customer_id': customer.id, 'day': today, 'recurring': False})

        return self._finish(report)

    # -------------------------------------------------------------------------
    # recurring sessions (weekday model)
    # -------------------------------------------------------------------------

    @log_call
    async def check_recurring_sessions(self, now: Optional[datetime] = None) -> CheckReport:
        """
        Day-of reminder for weekday-recurring customers.
        Safe to run every few minutes: last_reminder_date limits it to one send per day.
        """
        today = self.today(now)
        report = CheckReport('recurring_sessions', today)
        try:
            customers = await self._store('list_recurring_pt_customers')
        except Exception as e:
            return self._abort(report, e)

        report.selected = len(customers)
        for customer in customers:
            pattern = customer.recurrence
            if customer.archived or not isinstance(pattern, WeeklyPattern) or not pattern.occurs_on(today):
                report.skipped += 1
                continue
            if _day_key(customer.last_reminder_date) == _day_key(today):
                logger.debug(f"Customer {customer.id} already reminded on {today}")
                report.skipped += 1
                continue

            context = NotificationContext(pt_date=today, pt_time=customer.pt_time)
            if await self._notify(report, NotificationKind.PT_REMINDER, customer, context):
                report.notified += 1

            # Written even when the dispatch failed; a failed day is not retried
            try:
                await self._store('update_last_reminder_date', customer.id, today)
            except Exception as e:
                return self._abort(report, e)
            customer.last_reminder_date = today
            bus.emit(EVENT_PT_REMINDER_SENT, {'customer_id': customer.id, 'day': today, 'recurring': True})

        return self._finish(report)

    # -------------------------------------------------------------------------
    # recurring sessions (interval model)
    # -------------------------------------------------------------------------

    @log_call
    async def advance_recurring_session_date(self, customer: Customer,
                                             now: Optional[datetime] = None) -> CheckReport:
        """
        Move an interval-recurring customer's pt_date to the next session on or
        after today and confirm it. Ends the recurrence instead when the next
        session would fall after recurrence_end_date.
        """
        today = self.today(now)
        report = CheckReport('advance_recurring_session_date', today, selected=1)

        pattern = customer.recurrence
        if (customer.archived or not isinstance(pattern, IntervalPattern)
                or customer.pt_date is None or customer.pt_date >= today):
            report.skipped = 1
            return report

        behind = (today - customer.pt_date).days
        steps = -(-behind // pattern.every_days)
        next_date = customer.pt_date + timedelta(days=steps * pattern.every_days)

        if pattern.until is not None and next_date > pattern.until:
            try:
                await self._store('disable_recurrence', customer.id)
            except Exception as e:
                return self._abort(report, e)
            customer.is_recurring = False
            report.skipped = 1
            logger.info(f"Customer {customer.id}: next session {next_date} is after {pattern.until}, recurrence ended")
            bus.emit(EVENT_RECURRENCE_ENDED, {'customer_id': customer.id, 'end_date': pattern.until})
            return report

        old_date = customer.pt_date
        try:
            await self._store('advance_pt_date', customer.id, next_date)
        except Exception as e:
            return self._abort(report, e)
        customer.pt_date = next_date

        context = NotificationContext(pt_date=next_date, pt_time=customer.pt_time)
        if await self._notify(report, NotificationKind.PT_CONFIRMATION, customer, context):
            report.notified = 1
        bus.emit(EVENT_SESSION_ADVANCED, {'customer_id': customer.id, 'old_date': old_date, 'new_date': next_date})
        return report

    @log_call
    async def check_past_recurring_sessions(self, now: Optional[datetime] = None) -> CheckReport:
        """Advance every interval-recurring customer whose pt_date has passed."""
        today = self.today(now)
        report = CheckReport('past_recurring_sessions', today)
        try:
            customers = await self._store('list_past_date_recurring_sessions', today)
        except Exception as e:
            return self._abort(report, e)

        report.selected = len(customers)
        for customer in customers:
            single = await self.advance_recurring_session_date(customer, now)
            report.notified += single.notified
            report.skipped += single.skipped
            report.outcomes.extend(single.outcomes)
            report.failed_customers.extend(single.failed_customers)
            if single.aborted:
                report.aborted, report.error = True, single.error
                return report

        return self._finish(report)

    # -------------------------------------------------------------------------
    # ad hoc reminders
    # -------------------------------------------------------------------------

    @log_call
    async def check_ad_hoc_reminders(self, now: Optional[datetime] = None) -> CheckReport:
        """
        Follow-up for every open reminder due today or earlier.
        Reminders are not marked done here; they repeat daily until completed.
        """
        today = self.today(now)
        report = CheckReport('ad_hoc_reminders', today)
        try:
            reminders = await self._store('list_overdue_reminders', today)
        except Exception as e:
            return self._abort(report, e)

        report.selected = len(reminders)
        for reminder in reminders:
            if reminder.customer_archived or reminder.completed:
                report.skipped += 1
                continue
            customer = Customer(
                id=reminder.customer_id,
                name=reminder.customer_name or '',
                email=reminder.customer_email,
                phone=reminder.customer_phone or '',
            )
            context = NotificationContext(
                reminder_type=reminder.reminder_type,
                reminder_date=reminder.reminder_date,
                reminder_notes=reminder.notes,
            )
            if not await self._notify(report, NotificationKind.FOLLOW_UP, customer, context):
                continue
            report.notified += 1
            bus.emit(EVENT_FOLLOW_UP_SENT, {'reminder_id': reminder.id, 'customer_id': reminder.customer_id})

        return self._finish(report)

    # -------------------------------------------------------------------------

    async def run_all(self, now: Optional[datetime] = None) -> List[CheckReport]:
        """Every check once, dates advanced first."""
        return [
            await self.check_past_recurring_sessions(now),
            await self.check_one_time_sessions(now),
            await self.check_recurring_sessions(now),
            await self.check_ad_hoc_reminders(now),
        ]
