#!/usr/bin/env python3
"""
Gym CRM Terminal CLI
Command-line interface for customers, reminders and the notification scheduler.
"""

import asyncio
import logging
import re
import click
from datetime import date
from typing import List, Optional

from gymcrm.engine import crm, lifecycle
from gymcrm.engine.notifier import default_notifier
from gymcrm.engine.reminders import ReminderEngine
from gymcrm.engine.scheduler import SchedulerDriver, parse_hhmm
from gymcrm.engine.trainers import get_directory
from gymcrm.models import CheckReport, Customer, ReminderRecord, RECURRENCE_TYPES
from gymcrm.logging_config import configure_logging, log_call

_EMAIL_RE = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

DAY_NAMES = ['sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat']


def parse_days(raw: str) -> List[int]:
    """'mon,wed,fri' or '1,3,5' -> [1, 3, 5] (Sunday=0)."""
    days = set()
    for part in re.split(r'[\s,]+', raw.strip().lower()):
        if not part:
            continue
        if part.isdigit() and int(part) in range(7):
            days.add(int(part))
        elif part[:3] in DAY_NAMES:
            days.add(DAY_NAMES.index(part[:3]))
        else:
            raise ValueError(f"Unknown day {part!r}. Use sun..sat or 0..6")
    return sorted(days)


def format_days(days: Optional[List[int]]) -> str:
    return ','.join(DAY_NAMES[d] for d in days) if days else ''


@log_call
def _prompt_date(label: str, default: Optional[date] = None) -> Optional[date]:
    """Prompt for a date, re-prompting on bad format. Returns None if left blank."""
    logger = logging.getLogger("gymcrm")
    default_str = str(default) if default else ""
    while True:
        raw = click.prompt(label, default=default_str, show_default=bool(default_str)) or ""
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except ValueError:
            logger.debug(f"_prompt_date | rejected input={raw!r}")
            click.echo("  Invalid format, please use YYYY-MM-DD.", err=True)


@log_call
def _prompt_email(label: str = "Email") -> Optional[str]:
    """Prompt for an email address, re-prompting on bad format. Returns None if left blank."""
    logger = logging.getLogger("gymcrm")
    while True:
        raw = click.prompt(label, default="", show_default=False) or None
        if raw is None:
            return None
        if _EMAIL_RE.match(raw):
            return raw
        logger.debug(f"_prompt_email | rejected input={raw!r}")
        click.echo("  Invalid email address, please try again or press Enter to skip.", err=True)


def _prompt_time(label: str = "Session time (HH:MM)") -> Optional[str]:
    while True:
        raw = click.prompt(label, default="", show_default=False) or None
        if raw is None:
            return None
        try:
            hour, minute = parse_hhmm(raw)
            return f"{hour:02d}:{minute:02d}"
        except ValueError as e:
            click.echo(f"  {e}", err=True)


def _prompt_days() -> List[int]:
    while True:
        raw = click.prompt("Session days (e.g. mon,wed,fri)")
        try:
            days = parse_days(raw)
        except ValueError as e:
            click.echo(f"  {e}", err=True)
            continue
        if days:
            return days


def _run(coro):
    return asyncio.run(coro)


def _echo_report(report: CheckReport) -> None:
    if report.aborted:
        click.echo(f"✗ {report.check} ({report.day}) aborted: {report.error}", err=True)
        return
    click.echo(
        f"✓ {report.check} ({report.day}): {report.notified} notified, "
        f"{report.skipped} skipped of {report.selected} selected"
    )
    for outcome in report.failures:
        click.echo(
            f"  ✗ {outcome.kind.value} via {outcome.channel.value} to {outcome.role.value} "
            f"{outcome.recipient}: {outcome.error}",
            err=True,
        )
    if report.failed_customers:
        ids = ', '.join(str(i) for i in report.failed_customers)
        click.echo(f"  ✗ dispatch failed for customers: {ids}", err=True)


@click.group()
def cli():
    """Gym CRM - Customers, PT Sessions & Reminders"""
    configure_logging()


@cli.command('initdb')
@log_call
def initdb():
    """Create the database tables"""
    crm.init_schema()
    click.echo("✓ Database schema ready")


# =============================================================================
# CUSTOMERS COMMANDS
# =============================================================================

@cli.group()
def customers():
    """Manage customers and PT sessions"""
    pass


@customers.command('list')
@click.option('--type', 'customer_type', type=click.Choice(['basic', 'pt']), help='Filter by customer type')
@click.option('--name', help='Filter by name (partial match)')
@click.option('--limit', default=500, help='Max results (default: 500)')
@log_call
def customers_list(customer_type, name, limit):
    """List active customers"""
    results = crm.search_customers(customer_type=customer_type, name=name, limit=limit)

    if not results:
        click.echo("No customers found.")
        return

    click.echo(f"\nFound {len(results)} customers:\n")
    click.echo(f"{'ID':<6} {'Name':<25} {'Phone':<16} {'Type':<6} {'Session':<20} {'Repeats':<15}")
    click.echo("-" * 92)

    for c in results:
        if c.pt_days:
            repeats = format_days(c.pt_days)
        elif c.is_recurring:
            repeats = c.recurrence_type or ''
        else:
            repeats = ''
        click.echo(
            f"{c.id:<6} {c.name[:23]:<25} {(c.phone or '')[:14]:<16} "
            f"{c.customer_type:<6} {c.session_display[:18]:<20} {repeats[:13]:<15}"
        )


@customers.command('show')
@click.argument('customer_id', type=int)
@log_call
def customers_show(customer_id):
    """Show full customer details"""
    logger = logging.getLogger("gymcrm")
    customer = crm.get_customer(customer_id)

    if not customer:
        logger.warning(f"customers_show | customer_id={customer_id} not found")
        click.echo(f"Customer ID {customer_id} not found.", err=True)
        return

    directory = get_directory()

    click.echo(f"\n{'='*80}")
    click.echo(f"CUSTOMER #{customer.id}: {customer.name}" + ("  [ARCHIVED]" if customer.archived else ""))
    click.echo(f"{'='*80}")
    click.echo(f"Phone:       {customer.phone or '(not set)'}")
    click.echo(f"Email:       {customer.email or '(not set)'}")
    click.echo(f"Child:       {customer.child_name or '(not set)'}")
    click.echo(f"Referral:    {customer.referral_source or '(not set)'}")
    click.echo(f"Type:        {customer.customer_type}")
    click.echo(f"Wants PT:    {'yes' if customer.wants_pt else 'no'}")

    if customer.is_pt:
        click.echo(f"Session:     {customer.session_display or '(not set)'}")
        click.echo(f"Trainer:     {directory.name_for(customer.trainer_email)}"
                   + (f" <{customer.trainer_email}>" if customer.trainer_email else ""))
        if customer.is_recurring:
            if customer.pt_days:
                click.echo(f"Repeats:     every {format_days(customer.pt_days)}")
            else:
                every = customer.recurrence_interval if customer.recurrence_type == 'custom' else None
                click.echo(f"Repeats:     {customer.recurrence_type}" + (f" (every {every} days)" if every else ""))
            if customer.recurrence_end_date:
                click.echo(f"Until:       {customer.recurrence_end_date}")
            click.echo(f"Last remind: {customer.last_reminder_date or '(never)'}")

    click.echo(f"Created:     {customer.created_at}")
    click.echo(f"Updated:     {customer.updated_at}")

    if customer.notes:
        click.echo(f"\nNotes:\n{customer.notes}")

    click.echo(f"\n{'='*80}")
    click.echo("REMINDERS")
    click.echo(f"{'='*80}")

    reminders = crm.get_reminders(customer_id=customer_id)
    if reminders:
        for r in reminders:
            mark = '✓' if r.completed else ' '
            click.echo(f"[{mark}] #{r.id} {r.reminder_date} {r.reminder_type}" + (f": {r.notes[:80]}" if r.notes else ""))
    else:
        click.echo("No reminders.")

    click.echo()


@customers.command('add')
@log_call
def customers_add():
    """Add a new customer (interactive) and send the welcome/confirmation"""
    click.echo("\n=== ADD NEW CUSTOMER ===\n")

    name = click.prompt("Name", type=str)
    phone = click.prompt("Phone", type=str)
    email = _prompt_email()
    child_name = click.prompt("Child name", default="", show_default=False) or None
    referral_source = click.prompt("How did they hear about us", default="", show_default=False) or None
    notes = click.prompt("Notes", default="", show_default=False) or None
    customer_type = click.prompt("Type", type=click.Choice(['basic', 'pt'], case_sensitive=False), default="basic")

    customer = Customer(
        name=name,
        phone=phone,
        email=email,
        child_name=child_name,
        referral_source=referral_source,
        notes=notes,
        customer_type=customer_type,
    )

    if customer_type == 'pt':
        customer.wants_pt = True
        customer.pt_date = _prompt_date("Session date (YYYY-MM-DD)", default=date.today())
        customer.pt_time = _prompt_time()
        customer.trainer_email = _prompt_email("Trainer email")
        customer.is_recurring = click.confirm("Recurring sessions?", default=False)

        if customer.is_recurring:
            model = click.prompt(
                "Repeat on",
                type=click.Choice(['days', 'interval'], case_sensitive=False),
                default="days",
            )
            if model == 'days':
                customer.pt_days = _prompt_days()
            else:
                customer.recurrence_type = click.prompt(
                    "Interval", type=click.Choice(list(RECURRENCE_TYPES)), default="weekly"
                )
                if customer.recurrence_type == 'custom':
                    customer.recurrence_interval = click.prompt("Every how many days", type=click.IntRange(min=1))
                customer.recurrence_end_date = _prompt_date("End date (YYYY-MM-DD, Enter for none)")
    else:
        customer.wants_pt = click.confirm("Interested in PT?", default=False)

    try:
        customer_id = _run(lifecycle.register_customer(customer))
    except ValueError as e:
        logging.getLogger("gymcrm").warning(f"customers_add rejected: {e}")
        click.echo(f"Error: {e}", err=True)
        return

    click.echo(f"\n✓ Created customer #{customer_id}: {name}")


@customers.command('edit')
@click.argument('customer_id', type=int)
@click.option('--name', help='Update name')
@click.option('--phone', help='Update phone')
@click.option('--email', help='Update email')
@click.option('--notes', help='Update notes')
@click.option('--type', 'customer_type', type=click.Choice(['basic', 'pt']), help='Update customer type')
@click.option('--pt-date', type=click.DateTime(formats=['%Y-%m-%d']), help='Move the session date')
@click.option('--pt-time', help='Move the session time (HH:MM)')
@click.option('--trainer', help='Assign trainer by email')
@click.option('--days', help='Weekly session days, e.g. mon,wed,fri')
@click.option('--stop-recurring', is_flag=True, help='Turn recurring sessions off')
@log_call
def customers_edit(customer_id, name, phone, email, notes, customer_type, pt_date, pt_time, trainer, days,
                   stop_recurring):
    """Edit a customer (use options to set fields). Rescheduling notifies customer and trainer."""
    logger = logging.getLogger("gymcrm")
    updates = {}
    if name:
        updates['name'] = name
    if phone:
        updates['phone'] = phone
    if email:
        updates['email'] = email
    if notes:
        updates['notes'] = notes
    if customer_type:
        updates['customer_type'] = customer_type
    if pt_date:
        updates['pt_date'] = pt_date.date()
    if pt_time:
        updates['pt_time'] = pt_time
    if trainer:
        updates['trainer_email'] = trainer
    if days:
        try:
            updates['pt_days'] = parse_days(days)
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            return
        updates['is_recurring'] = True
    if stop_recurring:
        updates['is_recurring'] = False

    if not updates:
        click.echo("No updates specified. Use --help to see the available options", err=True)
        return

    try:
        success = _run(lifecycle.edit_customer(customer_id, updates))
    except ValueError as e:
        logger.warning(f"customers_edit rejected for customer {customer_id}: {e}")
        click.echo(f"Error: {e}", err=True)
        return

    if success:
        click.echo(f"✓ Updated customer #{customer_id}")
    else:
        logger.warning(f"customers_edit | customer_id={customer_id} not found")
        click.echo(f"Customer #{customer_id} not found", err=True)


@customers.command('archive')
@click.argument('customer_id', type=int)
@log_call
def customers_archive(customer_id):
    """Archive a customer (PT sessions are cancelled and both parties notified)"""
    if _run(lifecycle.archive_customer(customer_id)):
        click.echo(f"✓ Archived customer #{customer_id}")
    else:
        logging.getLogger("gymcrm").warning(f"customers_archive | customer_id={customer_id} not found")
        click.echo(f"Customer #{customer_id} not found or already archived", err=True)


@customers.command('restore')
@click.argument('customer_id', type=int)
@log_call
def customers_restore(customer_id):
    """Restore an archived customer"""
    if crm.restore_customer(customer_id):
        click.echo(f"✓ Restored customer #{customer_id}")
    else:
        click.echo(f"Customer #{customer_id} is not archived", err=True)


@customers.command('archived')
@click.option('--sort', type=click.Choice(['newest', 'oldest']), default='newest', show_default=True)
@log_call
def customers_archived(sort):
    """List archived customers"""
    results = crm.list_archived_customers(sort=sort)

    if not results:
        click.echo("No archived customers.")
        return

    click.echo(f"\n{len(results)} archived customers:\n")
    click.echo(f"{'ID':<6} {'Name':<25} {'Type':<6} {'Archived':<20}")
    click.echo("-" * 60)
    for c in results:
        archived_at = c.archived_at.strftime('%Y-%m-%d %H:%M') if c.archived_at else ''
        click.echo(f"{c.id:<6} {c.name[:23]:<25} {c.customer_type:<6} {archived_at:<20}")


@customers.command('purge')
@click.argument('customer_id', type=int)
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@log_call
def customers_purge(customer_id, yes):
    """Permanently delete an archived customer and their reminders"""
    if not yes and not click.confirm(f"Permanently delete customer #{customer_id}? This cannot be undone"):
        click.echo("Cancelled.")
        return

    if crm.delete_customer_permanently(customer_id):
        click.echo(f"✓ Deleted customer #{customer_id}")
    else:
        click.echo(f"Customer #{customer_id} is not archived (archive it first)", err=True)


# =============================================================================
# REMINDERS COMMANDS
# =============================================================================

@cli.group()
def reminders():
    """Manage ad hoc follow-up reminders"""
    pass


@reminders.command('list')
@click.option('--status', type=click.Choice(['all', 'due', 'pending', 'completed']), default='pending',
              show_default=True)
@click.option('--customer', 'customer_id', type=int, help='Only this customer')
@log_call
def reminders_list(status, customer_id):
    """List reminders"""
    results = crm.get_reminders(status=status, customer_id=customer_id)

    if not results:
        click.echo("No reminders found.")
        return

    click.echo(f"\nFound {len(results)} reminders:\n")
    click.echo(f"{'ID':<6} {'Date':<12} {'Type':<15} {'Customer':<25} {'Done':<5}")
    click.echo("-" * 66)
    for r in results:
        click.echo(
            f"{r.id:<6} {str(r.reminder_date):<12} {r.reminder_type[:13]:<15} "
            f"{(r.customer_name or '')[:23]:<25} {'yes' if r.completed else 'no':<5}"
        )


@reminders.command('add')
@click.argument('customer_id', type=int)
@log_call
def reminders_add(customer_id):
    """Add a follow-up reminder for a customer (interactive)"""
    logger = logging.getLogger("gymcrm")
    customer = crm.get_customer(customer_id)
    if not customer:
        logger.warning(f"reminders_add | customer_id={customer_id} not found")
        click.echo(f"Customer ID {customer_id} not found.", err=True)
        return

    click.echo(f"\n=== ADD REMINDER: {customer.name} ===\n")

    reminder_date = None
    while reminder_date is None:
        reminder_date = _prompt_date("Reminder date (YYYY-MM-DD)", default=date.today())
    reminder_type = click.prompt("Type", default="follow_up")
    notes = click.prompt("Notes", default="", show_default=False) or None

    reminder = ReminderRecord(
        customer_id=customer_id,
        reminder_date=reminder_date,
        reminder_type=reminder_type,
        notes=notes,
    )

    try:
        reminder_id = crm.create_reminder(reminder)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        return
    click.echo(f"\n✓ Created reminder #{reminder_id} for {reminder_date}")


@reminders.command('complete')
@click.argument('reminder_id', type=int)
@click.option('--undo', is_flag=True, help='Reopen the reminder instead')
@log_call
def reminders_complete(reminder_id, undo):
    """Mark a reminder done (it stops being sent)"""
    if crm.complete_reminder(reminder_id, completed=not undo):
        click.echo(f"✓ Reminder #{reminder_id} {'reopened' if undo else 'completed'}")
    else:
        click.echo(f"Reminder #{reminder_id} not found", err=True)


@reminders.command('delete')
@click.argument('reminder_id', type=int)
@log_call
def reminders_delete(reminder_id):
    """Delete a reminder"""
    if crm.delete_reminder(reminder_id):
        click.echo(f"✓ Deleted reminder #{reminder_id}")
    else:
        click.echo(f"Reminder #{reminder_id} not found", err=True)


# =============================================================================
# TRAINERS
# =============================================================================

@cli.command('trainers')
@log_call
def trainers():
    """List trainers from the trainer directory"""
    directory = get_directory()
    if not len(directory):
        click.echo("No trainers configured. Set TRAINERS_FILE in .env.")
        return

    click.echo(f"\n{'Name':<25} {'Email':<35} {'WhatsApp':<16}")
    click.echo("-" * 78)
    for t in directory.all():
        click.echo(f"{t.name[:23]:<25} {t.email[:33]:<35} {t.phone or '':<16}")


# =============================================================================
# REMINDER CHECKS
# =============================================================================

@cli.group()
def check():
    """Run a reminder check now"""
    pass


def _check_command(name: str, method: str, help_text: str):
    def command():
        engine = ReminderEngine()
        report = _run(getattr(engine, method)())
        _echo_report(report)

    command.__name__ = f"check_{name.replace('-', '_')}"
    command.__doc__ = help_text
    check.command(name)(log_call(command))


_check_command('one-time', 'check_one_time_sessions', "Day-of reminders for one-time PT sessions")
_check_command('recurring', 'check_recurring_sessions', "Day-of reminders for weekday-recurring sessions")
_check_command('ad-hoc', 'check_ad_hoc_reminders', "Follow-ups for due reminders")
_check_command('advance', 'check_past_recurring_sessions', "Move past interval sessions to their next date")


@check.command('all')
@log_call
def check_all():
    """Run every check once"""
    engine = ReminderEngine()
    for report in _run(engine.run_all()):
        _echo_report(report)


# =============================================================================
# BROADCAST
# =============================================================================

@cli.command('broadcast')
@click.option('--message', '-m', required=True, help='Message text; {name} is replaced per customer')
@click.option('--type', 'customer_type', type=click.Choice(['all', 'pt', 'basic']), default='all',
              show_default=True)
@click.option('--ids', help='Comma-separated customer IDs (overrides --type)')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@log_call
def broadcast(message, customer_type, ids, yes):
    """Send a WhatsApp message to many customers"""
    customer_ids = [int(i) for i in re.split(r'[\s,]+', ids.strip()) if i] if ids else None
    recipients = crm.list_broadcast_recipients(customer_ids=customer_ids, customer_type=customer_type)

    if not recipients:
        click.echo("No recipients with a phone number.")
        return

    if not yes and not click.confirm(f"Send to {len(recipients)} customers?"):
        click.echo("Cancelled.")
        return

    summary = _run(default_notifier().broadcast(recipients, message))
    click.echo(f"\n✓ Sent {summary['sent']}/{summary['total']}")
    for d in summary['details']:
        if not d['success']:
            click.echo(f"  ✗ #{d['customer_id']} {d['name']}: {d['error']}", err=True)


# =============================================================================
# SCHEDULER
# =============================================================================

@cli.command('scheduler')
@log_call
def scheduler():
    """Run the reminder scheduler until interrupted (Ctrl+C)"""
    configure_logging(console=True)
    driver = SchedulerDriver(ReminderEngine())
    click.echo("Reminder scheduler running. Press Ctrl+C to stop.")
    try:
        _run(driver.serve())
    except KeyboardInterrupt:
        click.echo("\nScheduler stopped.")


# =============================================================================
# MAIN
# =============================================================================

if __name__ == '__main__':
    cli()
