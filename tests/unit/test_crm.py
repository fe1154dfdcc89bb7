"""
Unit tests for the CRM Engine (gymcrm/engine/crm.py).

Strategy: patch gymcrm.engine.crm.get_db_cursor with a contextmanager that yields
a MagicMock cursor. Rows returned by the cursor are plain dicts, which unpack
cleanly into Customer / ReminderRecord dataclasses. Bus events are verified by
patching gymcrm.engine.crm.bus.emit.
"""

import pytest
from contextlib import contextmanager
from datetime import date
from unittest.mock import MagicMock, patch

from gymcrm.models import Customer, ReminderRecord
from gymcrm.engine.crm import (
    _validate_columns,
    _CUSTOMER_COLUMNS,
    validate_customer,
    init_schema,
    create_customer,
    get_customer,
    update_customer,
    search_customers,
    list_archived_customers,
    archive_customer,
    restore_customer,
    delete_customer_permanently,
    list_broadcast_recipients,
    create_reminder,
    get_reminders,
    complete_reminder,
    delete_reminder,
    list_due_one_time_pt_customers,
    list_recurring_pt_customers,
    list_overdue_reminders,
    list_past_date_recurring_sessions,
    update_last_reminder_date,
    advance_pt_date,
    disable_recurrence,
)
from gymcrm.bus.events import (
    EVENT_CUSTOMER_CREATED, EVENT_CUSTOMER_UPDATED, EVENT_CUSTOMER_ARCHIVED,
    EVENT_CUSTOMER_RESTORED, EVENT_CUSTOMER_DELETED, EVENT_REMINDER_CREATED,
    EVENT_REMINDER_COMPLETED,
)


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

# A complete customer row as returned by RealDictCursor
CUSTOMER_ROW = {
    'id': 1, 'name': 'Rana Khoury', 'phone': '03123456', 'email': 'rana@example.com',
    'child_name': None, 'referral_source': 'Instagram', 'notes': None, 'wants_pt': True,
    'customer_type': 'pt', 'pt_date': date(2026, 3, 2), 'pt_time': '09:00',
    'trainer_email': 'maya.haddad@example.com', 'is_recurring': True, 'pt_days': [1, 3, 5],
    'recurrence_type': None, 'recurrence_interval': None, 'recurrence_end_date': None,
    'last_reminder_date': None, 'archived': False, 'archived_at': None,
    'created_at': None, 'updated_at': None,
}

REMINDER_ROW = {
    'id': 10, 'customer_id': 1, 'reminder_date': date(2026, 3, 1),
    'reminder_type': 'payment_due', 'completed': False, 'notes': 'Monthly fee',
    'created_at': None, 'customer_name': 'Rana Khoury', 'customer_email': 'rana@example.com',
    'customer_phone': '03123456', 'customer_archived': False,
}


def make_cursor(fetchone=None, fetchall=None, rowcount=1):
    """Build a MagicMock cursor with preset return values."""
    cur = MagicMock()
    cur.fetchone.return_value = fetchone
    cur.fetchall.return_value = fetchall if fetchall is not None else []
    cur.rowcount = rowcount
    return cur


def cursor_patch(cur):
    """Return a patch context manager that replaces get_db_cursor with one yielding cur."""
    @contextmanager
    def _mock_ctx():
        yield cur

    return patch('gymcrm.engine.crm.get_db_cursor', _mock_ctx)


def _sql(cur, call_index=0):
    return cur.execute.call_args_list[call_index][0][0]


def _params(cur, call_index=0):
    return cur.execute.call_args_list[call_index][0][1]


# ---------------------------------------------------------------------------
# validation
# ---------------------------------------------------------------------------

def test_validate_columns_invalid_raises():
    with pytest.raises(ValueError, match='customer'):
        _validate_columns({'name': 'X', 'DROP TABLE': 'bad'}, _CUSTOMER_COLUMNS, 'customer')


def test_watermark_is_not_an_editable_column():
    assert 'last_reminder_date' not in _CUSTOMER_COLUMNS
    assert 'archived' not in _CUSTOMER_COLUMNS


def test_validate_customer_requires_name_and_phone():
    with pytest.raises(ValueError, match='Name and phone are required'):
        validate_customer(Customer(name='Rana'))


def test_validate_customer_pt_requires_date():
    with pytest.raises(ValueError, match='PT date is required'):
        validate_customer(Customer(name='Rana', phone='1', customer_type='pt'))


def test_validate_customer_rejects_bad_time():
    with pytest.raises(ValueError, match='HH:MM'):
        validate_customer(Customer(name='Rana', phone='1', customer_type='pt',
                                   pt_date=date(2026, 3, 2), pt_time='9am'))


def test_validate_customer_rejects_out_of_range_day():
    with pytest.raises(ValueError, match='pt_days'):
        validate_customer(Customer(name='Rana', phone='1', customer_type='pt', pt_date=date(2026, 3, 2),
                                   pt_time='09:00', is_recurring=True, pt_days=[7]))


def test_validate_customer_recurring_needs_schedule():
    with pytest.raises(ValueError, match='pt_days or a recurrence_type'):
        validate_customer(Customer(name='Rana', phone='1', customer_type='pt', pt_date=date(2026, 3, 2),
                                   pt_time='09:00', is_recurring=True))


def test_validate_customer_recurring_needs_time():
    with pytest.raises(ValueError, match='pt_time'):
        validate_customer(Customer(name='Rana', phone='1', customer_type='pt', pt_date=date(2026, 3, 2),
                                   is_recurring=True, pt_days=[1]))


def test_validate_customer_custom_needs_interval():
    with pytest.raises(ValueError, match='recurrence_interval'):
        validate_customer(Customer(name='Rana', phone='1', customer_type='pt', pt_date=date(2026, 3, 2),
                                   pt_time='09:00', is_recurring=True, recurrence_type='custom'))


def test_validate_customer_unknown_trainer_accepted():
    validate_customer(Customer(name='Rana', phone='1', customer_type='pt', pt_date=date(2026, 3, 2),
                               trainer_email='nobody@example.com'))


# ---------------------------------------------------------------------------
# schema
# ---------------------------------------------------------------------------

def test_init_schema_executes_ddl():
    cur = make_cursor()
    with cursor_patch(cur):
        init_schema()
    assert 'CREATE TABLE IF NOT EXISTS customers' in _sql(cur)
    assert 'CREATE TABLE IF NOT EXISTS reminders' in _sql(cur)


# ---------------------------------------------------------------------------
# create / get / update customer
# ---------------------------------------------------------------------------

def test_create_customer_returns_id_and_emits():
    customer = Customer(name='Rana', phone='03123456')
    cur = make_cursor(fetchone={'id': 42})
    with cursor_patch(cur), patch('gymcrm.engine.crm.bus.emit') as mock_emit:
        customer_id = create_customer(customer)
    assert customer_id == 42
    assert 'INSERT INTO customers' in _sql(cur)
    mock_emit.assert_called_once_with(EVENT_CUSTOMER_CREATED, {'customer_id': 42, 'customer': customer})


def test_create_customer_normalizes_pt_days():
    customer = Customer(name='Rana', phone='1', customer_type='pt', pt_date=date(2026, 3, 2),
                        pt_time='09:00', is_recurring=True, pt_days=[5, 1, 3, 1])
    cur = make_cursor(fetchone={'id': 1})
    with cursor_patch(cur):
        create_customer(customer)
    assert _params(cur)['pt_days'] == [1, 3, 5]


def test_create_customer_invalid_never_touches_db():
    cur = make_cursor()
    with cursor_patch(cur), pytest.raises(ValueError):
        create_customer(Customer(name='', phone=''))
    cur.execute.assert_not_called()


def test_get_customer_found():
    cur = make_cursor(fetchone=CUSTOMER_ROW)
    with cursor_patch(cur):
        customer = get_customer(1)
    assert isinstance(customer, Customer)
    assert customer.pt_days == [1, 3, 5]


def test_get_customer_not_found():
    cur = make_cursor(fetchone=None)
    with cursor_patch(cur):
        assert get_customer(999) is None


def test_update_customer_only_touches_active_rows():
    cur = make_cursor(rowcount=1)
    with cursor_patch(cur), patch('gymcrm.engine.crm.bus.emit') as mock_emit:
        assert update_customer(1, {'pt_time': '10:00'}) is True
    sql = _sql(cur)
    assert 'pt_time = %(pt_time)s' in sql
    assert 'archived = FALSE' in sql
    mock_emit.assert_called_once_with(EVENT_CUSTOMER_UPDATED, {'customer_id': 1, 'updates': {'pt_time': '10:00'}})


def test_update_customer_rejects_unknown_column():
    cur = make_cursor()
    with cursor_patch(cur), pytest.raises(ValueError):
        update_customer(1, {'last_reminder_date': date(2026, 1, 1)})
    cur.execute.assert_not_called()


def test_update_customer_empty_updates_returns_false():
    assert update_customer(1, {}) is False


def test_update_customer_missing_returns_false():
    cur = make_cursor(rowcount=0)
    with cursor_patch(cur):
        assert update_customer(1, {'name': 'X'}) is False


# ---------------------------------------------------------------------------
# listing and archive lifecycle
# ---------------------------------------------------------------------------

def test_search_customers_excludes_archived_and_filters():
    cur = make_cursor(fetchall=[CUSTOMER_ROW])
    with cursor_patch(cur):
        results = search_customers(customer_type='pt', name='ran')
    assert len(results) == 1
    sql, params = _sql(cur), _params(cur)
    assert 'archived = FALSE' in sql
    assert 'ILIKE' in sql
    assert params['name'] == '%ran%'
    assert 'pt_date ASC' in sql


def test_list_archived_customers_sort_oldest():
    cur = make_cursor(fetchall=[])
    with cursor_patch(cur):
        list_archived_customers(sort='oldest')
    assert 'archived = TRUE' in _sql(cur)
    assert 'archived_at ASC' in _sql(cur)


def test_archive_customer_emits():
    cur = make_cursor(rowcount=1)
    with cursor_patch(cur), patch('gymcrm.engine.crm.bus.emit') as mock_emit:
        assert archive_customer(1) is True
    assert 'archived_at = NOW()' in _sql(cur)
    mock_emit.assert_called_once_with(EVENT_CUSTOMER_ARCHIVED, {'customer_id': 1})


def test_archive_already_archived_returns_false():
    cur = make_cursor(rowcount=0)
    with cursor_patch(cur), patch('gymcrm.engine.crm.bus.emit') as mock_emit:
        assert archive_customer(1) is False
    mock_emit.assert_not_called()


def test_restore_customer_emits():
    cur = make_cursor(rowcount=1)
    with cursor_patch(cur), patch('gymcrm.engine.crm.bus.emit') as mock_emit:
        assert restore_customer(1) is True
    mock_emit.assert_called_once_with(EVENT_CUSTOMER_RESTORED, {'customer_id': 1})


def test_delete_permanently_requires_archived():
    cur = make_cursor(fetchone=None)
    with cursor_patch(cur):
        assert delete_customer_permanently(1) is False
    assert cur.execute.call_count == 1


def test_delete_permanently_removes_reminders_then_customer():
    cur = make_cursor(fetchone={'id': 1})
    with cursor_patch(cur), patch('gymcrm.engine.crm.bus.emit') as mock_emit:
        assert delete_customer_permanently(1) is True
    assert 'DELETE FROM reminders' in _sql(cur, 1)
    assert 'DELETE FROM customers' in _sql(cur, 2)
    mock_emit.assert_called_once_with(EVENT_CUSTOMER_DELETED, {'customer_id': 1})


def test_broadcast_recipients_by_ids():
    cur = make_cursor(fetchall=[CUSTOMER_ROW])
    with cursor_patch(cur):
        list_broadcast_recipients(customer_ids=[1, 2])
    assert 'id = ANY' in _sql(cur)
    assert _params(cur)['ids'] == [1, 2]


def test_broadcast_recipients_all_has_no_type_filter():
    cur = make_cursor(fetchall=[])
    with cursor_patch(cur):
        list_broadcast_recipients(customer_type='all')
    assert 'customer_type' not in _params(cur)


def test_broadcast_recipients_requires_target():
    with pytest.raises(ValueError):
        list_broadcast_recipients()


# ---------------------------------------------------------------------------
# ad hoc reminders
# ---------------------------------------------------------------------------

def test_create_reminder_unknown_customer_raises():
    cur = make_cursor(fetchone=None)
    with cursor_patch(cur), pytest.raises(ValueError, match='not found'):
        create_reminder(ReminderRecord(customer_id=99, reminder_date=date(2026, 3, 1)))


def test_create_reminder_returns_id_and_emits():
    cur = make_cursor()
    cur.fetchone.side_effect = [{'id': 1}, {'id': 10}]
    with cursor_patch(cur), patch('gymcrm.engine.crm.bus.emit') as mock_emit:
        reminder_id = create_reminder(ReminderRecord(customer_id=1, reminder_date=date(2026, 3, 1)))
    assert reminder_id == 10
    assert _params(cur, 1)['reminder_type'] == 'follow_up'
    mock_emit.assert_called_once_with(EVENT_REMINDER_CREATED, {'reminder_id': 10, 'customer_id': 1})


def test_create_reminder_requires_date():
    with pytest.raises(ValueError):
        create_reminder(ReminderRecord(customer_id=1))


def test_get_reminders_due_filters_open_on_or_before_today():
    cur = make_cursor(fetchall=[REMINDER_ROW])
    with cursor_patch(cur):
        results = get_reminders(status='due', today=date(2026, 3, 1))
    assert isinstance(results[0], ReminderRecord)
    assert results[0].customer_name == 'Rana Khoury'
    assert 'r.completed = FALSE' in _sql(cur)
    assert _params(cur)['today'] == date(2026, 3, 1)


def test_get_reminders_invalid_status():
    with pytest.raises(ValueError):
        get_reminders(status='overdue')


def test_complete_reminder_emits():
    cur = make_cursor(rowcount=1)
    with cursor_patch(cur), patch('gymcrm.engine.crm.bus.emit') as mock_emit:
        assert complete_reminder(10) is True
    mock_emit.assert_called_once_with(EVENT_REMINDER_COMPLETED, {'reminder_id': 10, 'completed': True})


def test_delete_reminder_missing_returns_false():
    cur = make_cursor(rowcount=0)
    with cursor_patch(cur):
        assert delete_reminder(10) is False


# ---------------------------------------------------------------------------
# reminder engine store queries
# ---------------------------------------------------------------------------

def test_due_one_time_query_filters():
    cur = make_cursor(fetchall=[dict(CUSTOMER_ROW, is_recurring=False, pt_days=None)])
    with cursor_patch(cur):
        results = list_due_one_time_pt_customers(date(2026, 3, 2))
    sql = _sql(cur)
    assert "customer_type = 'pt'" in sql
    assert 'is_recurring = FALSE' in sql
    assert 'archived = FALSE' in sql
    assert _params(cur) == (date(2026, 3, 2),)
    assert results[0].is_recurring is False


def test_recurring_query_requires_days_and_time():
    cur = make_cursor(fetchall=[CUSTOMER_ROW])
    with cursor_patch(cur):
        results = list_recurring_pt_customers()
    sql = _sql(cur)
    assert 'cardinality(pt_days) > 0' in sql
    assert 'pt_time IS NOT NULL' in sql
    assert 'archived = FALSE' in sql
    assert results[0].recurrence is not None


def test_overdue_reminders_excludes_archived_customers():
    cur = make_cursor(fetchall=[REMINDER_ROW])
    with cursor_patch(cur):
        list_overdue_reminders(date(2026, 3, 2))
    sql = _sql(cur)
    assert 'c.archived = FALSE' in sql
    assert 'r.completed = FALSE' in sql
    assert 'r.reminder_date <= %s' in sql


def test_past_date_recurring_query_is_interval_model_only():
    cur = make_cursor(fetchall=[])
    with cursor_patch(cur):
        list_past_date_recurring_sessions(date(2026, 3, 2))
    sql = _sql(cur)
    assert 'recurrence_type IS NOT NULL' in sql
    assert 'cardinality(pt_days) = 0' in sql
    assert 'pt_date < %s' in sql


def test_update_last_reminder_date():
    cur = make_cursor()
    with cursor_patch(cur):
        update_last_reminder_date(1, date(2026, 3, 2))
    assert 'last_reminder_date = %s' in _sql(cur)
    assert _params(cur) == (date(2026, 3, 2), 1)


def test_advance_pt_date():
    cur = make_cursor()
    with cursor_patch(cur):
        advance_pt_date(1, date(2026, 3, 9))
    assert 'SET pt_date = %s' in _sql(cur)
    assert _params(cur) == (date(2026, 3, 9), 1)


def test_disable_recurrence():
    cur = make_cursor()
    with cursor_patch(cur):
        disable_recurrence(1)
    assert 'is_recurring = FALSE' in _sql(cur)
