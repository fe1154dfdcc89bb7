"""
Reminder check scenarios run through the CLI against a real ReminderEngine.
The store is the patched crm module and the notifier records instead of sending.
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
import pytz
from pytest_bdd import scenarios, given, when, then, parsers

from gymcrm.cli.main import cli
from gymcrm.config import config
from gymcrm.engine.reminders import ReminderEngine
from gymcrm.models import Channel, Customer, NotificationKind, NotificationOutcome, ReminderRecord, Role

scenarios("features/reminder_checks.feature")


def _today():
    return datetime.now(pytz.timezone(config.TIMEZONE)).date()


class RecordingNotifier:

    def __init__(self):
        self.sent = []

    async def notify(self, kind, customer, context=None):
        recipients = [(Role.CUSTOMER, customer.email)]
        if customer.trainer_email and kind != NotificationKind.FOLLOW_UP:
            recipients.append((Role.TRAINER, customer.trainer_email))
        outcomes = []
        for role, address in recipients:
            self.sent.append((kind, role, address))
            outcomes.append(NotificationOutcome(kind, Channel.EMAIL, role, address, True))
        return outcomes


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(autouse=True)
def engine(mock_crm, notifier):
    """Every `check` command builds an engine over the patched store."""
    def factory():
        return ReminderEngine(store=mock_crm, notifier=notifier, timezone=config.TIMEZONE)

    with patch("gymcrm.cli.main.ReminderEngine", side_effect=factory):
        yield


def _pt(**kwargs):
    defaults = dict(id=1, name="Rana Khoury", phone="03123456", email="rana@example.com",
                    customer_type="pt", pt_date=_today(), pt_time="09:00",
                    trainer_email="maya.haddad@example.com")
    defaults.update(kwargs)
    return Customer(**defaults)


@given("a recurring PT customer training every day")
def every_day_customer(mock_crm, context):
    context["customer"] = _pt(is_recurring=True, pt_days=[0, 1, 2, 3, 4, 5, 6])
    mock_crm.list_recurring_pt_customers.return_value = [context["customer"]]


@given("the customer was already reminded today")
def already_reminded(context):
    context["customer"].last_reminder_date = _today()


@given("a one-time PT session today")
def one_time_today(mock_crm):
    mock_crm.list_due_one_time_pt_customers.return_value = [_pt()]


@given("a follow-up reminder that was due yesterday")
def overdue_follow_up(mock_crm, context):
    context["reminder"] = ReminderRecord(
        id=10, customer_id=1, reminder_date=_today() - timedelta(days=1), reminder_type="payment_due",
        customer_name="Rana Khoury", customer_email="rana@example.com", customer_phone="03123456",
    )
    mock_crm.list_overdue_reminders.return_value = [context["reminder"]]


@given("the database is unreachable")
def database_down(mock_crm):
    mock_crm.list_recurring_pt_customers.side_effect = ConnectionError("could not connect to server")


@given(parsers.parse("reminder {reminder_id:d} exists"))
def reminder_exists(mock_crm):
    mock_crm.complete_reminder.return_value = True


@when(parsers.parse('the front desk runs the "{check}" check'))
def run_check(runner, context, check):
    context["result"] = runner.invoke(cli, ["check", check])


@when(parsers.parse("the front desk completes reminder {reminder_id:d}"))
def complete_reminder(runner, context, reminder_id):
    context["result"] = runner.invoke(cli, ["reminders", "complete", str(reminder_id)])


@then("the customer and the trainer were reminded")
def customer_and_trainer_reminded(notifier):
    assert notifier.sent == [
        (NotificationKind.PT_REMINDER, Role.CUSTOMER, "rana@example.com"),
        (NotificationKind.PT_REMINDER, Role.TRAINER, "maya.haddad@example.com"),
    ]


@then("the reminder watermark is set to today")
def watermark_set(mock_crm):
    mock_crm.update_last_reminder_date.assert_called_once_with(1, _today())


@then("nobody was notified")
def nobody_notified(notifier, mock_crm):
    assert notifier.sent == []
    mock_crm.update_last_reminder_date.assert_not_called()


@then("the follow-up is still open")
def follow_up_open(context, notifier, mock_crm):
    assert [s[0] for s in notifier.sent] == [NotificationKind.FOLLOW_UP]
    assert context["reminder"].completed is False
    mock_crm.complete_reminder.assert_not_called()
