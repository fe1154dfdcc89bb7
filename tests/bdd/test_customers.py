from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from pytest_bdd import scenarios, given, when, then, parsers

from gymcrm.cli.main import cli
from gymcrm.engine.trainers import TrainerDirectory
from gymcrm.models import Customer, Trainer

scenarios("features/customers.feature")

_CUSTOMER = Customer(
    id=1, name="Rana Khoury", phone="03123456", email="rana@example.com",
    customer_type="pt", pt_date=date(2026, 3, 2), pt_time="09:00",
    trainer_email="maya.haddad@example.com", is_recurring=True, pt_days=[1, 3],
)

_DIRECTORY = TrainerDirectory([Trainer("Maya Haddad", "maya.haddad@example.com", "96170000001")])


@pytest.fixture
def mock_lifecycle():
    with patch("gymcrm.cli.main.lifecycle") as mock:
        yield mock


@given("there are no customers in the system")
def no_customers(mock_crm):
    mock_crm.search_customers.return_value = []
    mock_crm.get_customer.return_value = None


@given("a recurring PT customer exists")
def pt_customer_exists(mock_crm):
    mock_crm.search_customers.return_value = [_CUSTOMER]
    mock_crm.get_customer.return_value = _CUSTOMER
    mock_crm.get_reminders.return_value = []


@given("registration will succeed")
def registration_succeeds(mock_lifecycle):
    mock_lifecycle.register_customer = AsyncMock(return_value=42)


@given("the customer can be edited")
def customer_editable(mock_lifecycle):
    mock_lifecycle.edit_customer = AsyncMock(return_value=True)


@given("no customer can be archived")
def nothing_to_archive(mock_lifecycle):
    mock_lifecycle.archive_customer = AsyncMock(return_value=False)


@when("the front desk lists customers")
def list_customers(runner, context):
    context["result"] = runner.invoke(cli, ["customers", "list"])


@when(parsers.parse("the front desk views customer {customer_id:d}"))
def view_customer(runner, context, customer_id):
    with patch("gymcrm.cli.main.get_directory", return_value=_DIRECTORY):
        context["result"] = runner.invoke(cli, ["customers", "show", str(customer_id)])


@when(parsers.parse('the front desk adds a basic customer named "{name}"'))
def add_basic_customer(runner, context, name):
    # name, phone, email, child, referral, notes, type, wants pt
    user_input = f"{name}\n03111111\n\n\n\n\nbasic\nn\n"
    context["result"] = runner.invoke(cli, ["customers", "add"], input=user_input)


@when(parsers.parse('the front desk moves customer {customer_id:d} to "{new_date}" at "{new_time}"'))
def move_session(runner, context, customer_id, new_date, new_time):
    context["result"] = runner.invoke(cli, [
        "customers", "edit", str(customer_id), "--pt-date", new_date, "--pt-time", new_time,
    ])


@when(parsers.parse("the front desk archives customer {customer_id:d}"))
def archive(runner, context, customer_id):
    context["result"] = runner.invoke(cli, ["customers", "archive", str(customer_id)])


@then("the new session date was passed on")
def new_date_passed(mock_lifecycle):
    customer_id, updates = mock_lifecycle.edit_customer.call_args[0]
    assert customer_id == 1
    assert updates == {"pt_date": date(2026, 3, 5), "pt_time": "10:00"}
