"""
Message Renderer - notification text for email and WhatsApp.

Pure functions: (kind, role, customer, context) -> rendered content. No I/O,
no side effects; the only lookup is the static trainer directory.

Every NotificationKind has a customer renderer per channel. Kinds that concern
a scheduled session also have a trainer renderer, which always carries the
client's contact details.
"""

import re
from dataclasses import dataclass
from html import escape
from typing import Callable, Dict, Optional

from gymcrm.config import config
from gymcrm.engine.trainers import TrainerDirectory, get_directory
from gymcrm.models import (
    Customer, EmailContent, NotificationContext, NotificationKind, Role, WhatsAppContent,
)


@dataclass(frozen=True)
class _Values:
    """Everything a template may interpolate, already resolved to strings."""
    gym: str
    name: str
    email: str
    phone: str
    trainer: str
    date: str
    time: str
    old_date_time: str
    new_date_time: str
    reminder_type: str
    reminder_date: str
    reminder_notes: str
    message: str

    @property
    def at_time(self) -> str:
        return f" at {self.time}" if self.time else ""

    @property
    def date_time(self) -> str:
        return f"{self.date}{self.at_time}"


def _values(customer: Customer, context: Optional[NotificationContext],
            directory: TrainerDirectory) -> _Values:
    ctx = context or NotificationContext()
    pt_date = ctx.pt_date or customer.pt_date
    pt_time = ctx.pt_time if ctx.pt_time is not None else customer.pt_time
    reminder_type = (ctx.reminder_type or 'follow_up').replace('_', ' ').upper()
    return _Values(
        gym=config.GYM_NAME,
        name=customer.name,
        email=customer.email or '',
        phone=customer.phone or '',
        trainer=directory.name_for(customer.trainer_email),
        date=str(pt_date) if pt_date else '',
        time=pt_time or '',
        old_date_time=ctx.old_date_time or '',
        new_date_time=ctx.new_date_time or '',
        reminder_type=reminder_type,
        reminder_date=str(ctx.reminder_date) if ctx.reminder_date else '',
        reminder_notes=ctx.reminder_notes or '',
        message=personalize(ctx.message or '', customer),
    )


# =============================================================================
# EMAIL LAYOUT
# =============================================================================

def _email_page(title: str, accent: str, paragraphs, footer: str) -> str:
    """Wrap already-escaped HTML paragraphs in the shared email layout."""
    body = "\n".join(f"<p>{p}</p>" for p in paragraphs)
    return f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: {accent}; color: white; padding: 24px; text-align: center;">
      <h1 style="margin: 0; font-size: 24px;">{escape(title)}</h1>
    </div>
    <div style="padding: 24px; background-color: #f9f9f9;">
{body}
    </div>
    <div style="text-align: center; padding: 16px; color: #666; font-size: 12px;">{escape(footer)}</div>
  </div>
</body>
</html>"""


def _b(value: str) -> str:
    return f"<strong>{escape(value)}</strong>"


def _client_lines(v: _Values):
    """Client contact block shared by every trainer-facing message."""
    lines = [
        f"Client: {v.name}",
        f"Phone: {v.phone or 'Not provided'}",
    ]
    if v.email:
        lines.append(f"Email: {v.email}")
    return lines


def _plain(*blocks) -> str:
    return "\n\n".join(b for b in blocks if b)


# =============================================================================
# CUSTOMER EMAILS
# =============================================================================

def _welcome_email(v: _Values) -> EmailContent:
    text = _plain(
        f"Hi {v.name},",
        f"Thank you for your interest in {v.gym}! We're excited to have you as part of our community.",
        "If you have any questions or need assistance, please don't hesitate to reach out to us.",
        f"Best regards,\nThe {v.gym} Team",
    )
    html = _email_page(f"Welcome to {v.gym}!", "#007bff", [
        f"Hi {escape(v.name)},",
        f"Thank you for your interest in {escape(v.gym)}! We're excited to have you as part of our community.",
        "If you have any questions or need assistance, please don't hesitate to reach out to us.",
        f"Best regards,<br>The {escape(v.gym)} Team",
    ], f"This is an automated welcome email from {v.gym}.")
    return EmailContent(subject=f"Welcome to {v.gym}!", html=html, text=text)


def _confirmation_email(v: _Values) -> EmailContent:
    text = _plain(
        f"Hi {v.name},",
        f"Thank you for booking a private session with us at {v.gym}!",
        "YOUR PRIVATE SESSION IS SCHEDULED:\n"
        f"Date: {v.date}" + (f"\nTime: {v.time}" if v.time else "") + f"\nCoach: {v.trainer}",
        "What to bring:\n- Comfortable workout clothes\n- Water bottle\n- Positive attitude!",
        "Please arrive a few minutes early. If you need to reschedule, please contact us as soon as possible.",
        f"Best regards,\nThe {v.gym} Team",
    )
    html = _email_page("Your Private Session is Scheduled", "#28a745", [
        f"Hi {escape(v.name)},",
        f"Thank you for booking a private session with us at {escape(v.gym)}!",
        f"Date: {_b(v.date)}" + (f"<br>Time: {_b(v.time)}" if v.time else "") + f"<br>Coach: {_b(v.trainer)}",
        "Please bring comfortable workout clothes and a water bottle, and arrive a few minutes early.",
        f"Best regards,<br>The {escape(v.gym)} Team",
    ], f"{v.gym} - Your Fitness Journey Starts Here")
    return EmailContent(
        subject=f"Your Private Session at {v.gym} - {v.date_time}",
        html=html,
        text=text,
    )


def _reminder_email(v: _Values) -> EmailContent:
    text = _plain(
        f"Hi {v.name},",
        f"Just a friendly reminder that your PRIVATE SESSION with {v.trainer} at {v.gym} is scheduled for TODAY{v.at_time}!",
        f"Session Date: {v.date}" + (f"\nTime: {v.time}" if v.time else "") + f"\nCoach: {v.trainer}",
        "QUICK CHECKLIST:\n- Comfortable workout clothes\n- Water bottle\n- Arrive a few minutes early",
        f"See you soon!\n\nBest regards,\nThe {v.gym} Team",
    )
    html = _email_page("Your Session is TODAY!", "#ff6b35", [
        f"Hi {escape(v.name)},",
        f"Just a friendly reminder that your private session with {_b(v.trainer)} "
        f"at {escape(v.gym)} is scheduled for {_b('today' + v.at_time)}!",
        f"Session Date: {_b(v.date)}" + (f"<br>Time: {_b(v.time)}" if v.time else "") + f"<br>Coach: {_b(v.trainer)}",
        f"See you soon!<br>The {escape(v.gym)} Team",
    ], f"{v.gym} - Your Fitness Journey Starts Here")
    return EmailContent(
        subject=f"TODAY{v.at_time}: Your Private Session with {v.trainer} at {v.gym}!",
        html=html,
        text=text,
    )


def _date_changed_email(v: _Values) -> EmailContent:
    text = _plain(
        f"Hi {v.name},",
        f"Your private session with {v.trainer} at {v.gym} has been rescheduled.",
        f"OLD DATE: {v.old_date_time}\nNEW DATE: {v.new_date_time}\nCoach: {v.trainer}",
        "Please make note of your new session date. If you have any questions, please contact us.",
        f"Best regards,\nThe {v.gym} Team",
    )
    html = _email_page("Session Rescheduled", "#ffc107", [
        f"Hi {escape(v.name)},",
        f"Your private session with {_b(v.trainer)} at {escape(v.gym)} has been rescheduled.",
        f"Old date: <s>{escape(v.old_date_time)}</s><br>New date: {_b(v.new_date_time)}",
        f"Best regards,<br>The {escape(v.gym)} Team",
    ], f"{v.gym} - Your Fitness Journey Starts Here")
    return EmailContent(subject=f"Session Date Changed - New Date: {v.new_date_time}", html=html, text=text)


def _cancelled_email(v: _Values) -> EmailContent:
    when = v.old_date_time or v.date_time
    text = _plain(
        f"Hi {v.name},",
        f"We're writing to inform you that your private session with {v.trainer} at {v.gym} has been CANCELLED.",
        f"Cancelled Session: {when}\nCoach: {v.trainer}",
        "If you did not request this cancellation or would like to reschedule, please contact us as soon as possible.",
        f"Best regards,\nThe {v.gym} Team",
    )
    html = _email_page("Session Cancelled", "#dc3545", [
        f"Hi {escape(v.name)},",
        f"Your private session with {_b(v.trainer)} at {escape(v.gym)} has been cancelled.",
        f"Cancelled session: {_b(when)}",
        "If you did not request this cancellation or would like to reschedule, please contact us.",
        f"Best regards,<br>The {escape(v.gym)} Team",
    ], f"{v.gym} - Your Fitness Journey Starts Here")
    return EmailContent(subject=f"Session Cancelled - {when}", html=html, text=text)


def _follow_up_email(v: _Values) -> EmailContent:
    text = _plain(
        f"Hi {v.name},",
        f"This is a reminder for: {v.reminder_type}\nDate: {v.reminder_date}"
        + (f"\nNotes: {v.reminder_notes}" if v.reminder_notes else ""),
        f"Best regards,\nThe {v.gym} Team",
    )
    paragraphs = [
        f"Hi {escape(v.name)},",
        f"This is a reminder for: {_b(v.reminder_type)}",
        f"Date: {_b(v.reminder_date)}",
    ]
    if v.reminder_notes:
        paragraphs.append(f"Notes: {escape(v.reminder_notes)}")
    paragraphs.append(f"Best regards,<br>The {escape(v.gym)} Team")
    html = _email_page("Reminder", "#007bff", paragraphs, "This is an automated reminder email.")
    return EmailContent(subject=f"Reminder: {v.reminder_type} - {v.reminder_date}", html=html, text=text)


# =============================================================================
# TRAINER EMAILS
# =============================================================================

def _trainer_email(v: _Values, subject: str, title: str, accent: str, intro: str,
                   details, closing: str) -> EmailContent:
    lines = list(details) + _client_lines(v)[1:]
    text = _plain("Hi,", intro, "\n".join(lines), closing, f"Best regards,\n{v.gym}")
    html = _email_page(title, accent, [
        "Hi,",
        escape(intro),
        "<br>".join(escape(line) for line in lines),
        escape(closing),
        f"Best regards,<br>{escape(v.gym)}",
    ], f"{v.gym} - Trainer Notification")
    return EmailContent(subject=subject, html=html, text=text)


def _trainer_confirmation_email(v: _Values) -> EmailContent:
    details = [f"Client Name: {v.name}", f"Session Date: {v.date}"]
    if v.time:
        details.append(f"Session Time: {v.time}")
    return _trainer_email(
        v, f"New Client Session Scheduled - {v.name} on {v.date_time}", "New Session Scheduled", "#6f42c1",
        f"A new private session has been scheduled for you at {v.gym}!", details,
        "Please make sure to prepare for this session and contact the client if needed.",
    )


def _trainer_reminder_email(v: _Values) -> EmailContent:
    details = [f"Client: {v.name}", f"Date: {v.date}"]
    if v.time:
        details.append(f"Time: {v.time}")
    return _trainer_email(
        v, f"TODAY{v.at_time}: Session with {v.name}", "Session TODAY", "#ff6b35",
        f"Just a reminder that you have a PRIVATE SESSION TODAY{v.at_time}!", details,
        "Make sure you're prepared and have everything ready for the session!",
    )


def _trainer_date_changed_email(v: _Values) -> EmailContent:
    details = [f"Client: {v.name}", f"Old Date: {v.old_date_time}", f"New Date: {v.new_date_time}"]
    return _trainer_email(
        v, f"Session Date Changed - {v.name}: {v.new_date_time}", "Client Session Rescheduled", "#ffc107",
        "A client's session date has been changed.", details,
        "Please update your schedule accordingly.",
    )


def _trainer_cancelled_email(v: _Values) -> EmailContent:
    when = v.old_date_time or v.date_time
    details = [f"Client: {v.name}", f"Cancelled Date: {when}"]
    return _trainer_email(
        v, f"Session Cancelled - {v.name} ({when})", "Session Cancelled", "#dc3545",
        "A client's session has been CANCELLED.", details,
        "Please update your schedule accordingly. This time slot is now available.",
    )


def _broadcast_email(v: _Values) -> EmailContent:
    html = _email_page(f"Message from {v.gym}", "#007bff", [
        escape(line) for line in v.message.split("\n\n")
    ], f"You are receiving this because you are a member of {v.gym}.")
    return EmailContent(subject=f"Message from {v.gym}", html=html, text=v.message)


# =============================================================================
# WHATSAPP
# =============================================================================

def _lines(*lines) -> str:
    return "\n".join(line for line in lines if line is not None)


def _welcome_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(_lines(
        f"👋 Hi {v.name}!",
        "",
        f"Welcome to *{v.gym}*! 🏋️",
        "",
        "We're excited to have you as part of our fitness community.",
        "If you have any questions, feel free to reply to this message.",
        "",
        f"_The {v.gym} Team_",
    ))


def _confirmation_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(_lines(
        "✅ *Session Confirmed!*",
        "",
        f"Hi {v.name},",
        "",
        f"Your private training session at *{v.gym}* is booked!",
        "",
        f"📅 *Date:* {v.date}" + (f" at *{v.time}*" if v.time else ""),
        f"🏋️ *Coach:* {v.trainer}",
        "",
        "Please arrive a few minutes early. If you need to reschedule, contact us ASAP.",
        "",
        f"_The {v.gym} Team_",
    ))


def _reminder_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(_lines(
        "⏰ *Reminder: Your Session is TODAY!*",
        "",
        f"Hi {v.name},",
        "",
        f"Your private training session with *{v.trainer}* is TODAY" + (f" at *{v.time}*" if v.time else "") + "!",
        "",
        f"📅 *Date:* {v.date}",
        f"🏋️ *Coach:* {v.trainer}",
        "",
        "See you soon! 💪",
        f"_The {v.gym} Team_",
    ))


def _date_changed_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(_lines(
        "📅 *Session Rescheduled*",
        "",
        f"Hi {v.name},",
        "",
        f"Your session with *{v.trainer}* has been rescheduled:",
        "",
        f"❌ ~{v.old_date_time}~",
        f"✅ *{v.new_date_time}*",
        "",
        "Please update your calendar. If you have any questions, let us know!",
        f"_The {v.gym} Team_",
    ))


def _cancelled_whatsapp(v: _Values) -> WhatsAppContent:
    when = v.old_date_time or v.date_time
    return WhatsAppContent(_lines(
        "❌ *Session Cancelled*",
        "",
        f"Hi {v.name},",
        "",
        f"Your session with *{v.trainer}* scheduled for *{when}* has been cancelled.",
        "",
        "If you didn't request this cancellation or would like to reschedule, please contact us.",
        f"_The {v.gym} Team_",
    ))


def _follow_up_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(_lines(
        f"📌 *Reminder: {v.reminder_type}*",
        "",
        f"Hi {v.name},",
        "",
        f"This is a reminder for: *{v.reminder_type}*",
        f"📅 *Date:* {v.reminder_date}",
        f"📝 *Notes:* {v.reminder_notes}" if v.reminder_notes else None,
        "",
        f"_The {v.gym} Team_",
    ))


def _broadcast_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(v.message)


def _client_block(v: _Values):
    return [
        f"👤 *Client:* {v.name}",
        f"📱 *Phone:* {v.phone or 'Not provided'}",
        f"📧 *Email:* {v.email}" if v.email else None,
    ]


def _trainer_confirmation_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(_lines(
        "📋 *New Session Scheduled*",
        "",
        f"📅 *Date:* {v.date}" + (f" at *{v.time}*" if v.time else ""),
        *_client_block(v),
        "",
        f"Please prepare for this session!\n_{v.gym}_",
    ))


def _trainer_reminder_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(_lines(
        f"⏰ *Session TODAY{v.at_time}!*",
        "",
        f"You have a session with *{v.name}* today!",
        f"📅 *Date:* {v.date}",
        *_client_block(v),
        "",
        f"Have a great session! 💪\n_{v.gym}_",
    ))


def _trainer_date_changed_whatsapp(v: _Values) -> WhatsAppContent:
    return WhatsAppContent(_lines(
        "📅 *Client Session Rescheduled*",
        "",
        f"❌ ~{v.old_date_time}~",
        f"✅ *{v.new_date_time}*",
        *_client_block(v),
        "",
        f"Please update your schedule.\n_{v.gym}_",
    ))


def _trainer_cancelled_whatsapp(v: _Values) -> WhatsAppContent:
    when = v.old_date_time or v.date_time
    return WhatsAppContent(_lines(
        "❌ *Session Cancelled*",
        "",
        f"Session with *{v.name}* for *{when}* has been cancelled.",
        *_client_block(v),
        "",
        f"This time slot is now available.\n_{v.gym}_",
    ))


# =============================================================================
# REGISTRY
# =============================================================================

@dataclass(frozen=True)
class _KindRenderers:
    email: Callable[[_Values], EmailContent]
    whatsapp: Callable[[_Values], WhatsAppContent]
    trainer_email: Optional[Callable[[_Values], EmailContent]] = None
    trainer_whatsapp: Optional[Callable[[_Values], WhatsAppContent]] = None


_RENDERERS: Dict[NotificationKind, _KindRenderers] = {
    NotificationKind.WELCOME: _KindRenderers(_welcome_email, _welcome_whatsapp),
    NotificationKind.PT_CONFIRMATION: _KindRenderers(
        _confirmation_email, _confirmation_whatsapp,
        _trainer_confirmation_email, _trainer_confirmation_whatsapp,
    ),
    NotificationKind.PT_REMINDER: _KindRenderers(
        _reminder_email, _reminder_whatsapp,
        _trainer_reminder_email, _trainer_reminder_whatsapp,
    ),
    NotificationKind.PT_DATE_CHANGED: _KindRenderers(
        _date_changed_email, _date_changed_whatsapp,
        _trainer_date_changed_email, _trainer_date_changed_whatsapp,
    ),
    NotificationKind.PT_CANCELLED: _KindRenderers(
        _cancelled_email, _cancelled_whatsapp,
        _trainer_cancelled_email, _trainer_cancelled_whatsapp,
    ),
    NotificationKind.FOLLOW_UP: _KindRenderers(_follow_up_email, _follow_up_whatsapp),
    NotificationKind.BROADCAST: _KindRenderers(_broadcast_email, _broadcast_whatsapp),
}

_unregistered = set(NotificationKind) - set(_RENDERERS)
if _unregistered:
    raise RuntimeError(f"No renderers registered for {sorted(k.value for k in _unregistered)}")


def has_trainer_variant(kind: NotificationKind) -> bool:
    return _RENDERERS[kind].trainer_email is not None


def _pick(kind: NotificationKind, role: Role, email: bool):
    renderers = _RENDERERS[NotificationKind(kind)]
    if role == Role.CUSTOMER:
        return renderers.email if email else renderers.whatsapp
    fn = renderers.trainer_email if email else renderers.trainer_whatsapp
    if fn is None:
        raise ValueError(f"'{kind.value}' has no trainer-facing variant")
    return fn


def render_email(
    kind: NotificationKind,
    role: Role,
    customer: Customer,
    context: Optional[NotificationContext] = None,
    directory: Optional[TrainerDirectory] = None,
) -> EmailContent:
    """Subject, HTML and plain-text body for one recipient."""
    v = _values(customer, context, directory if directory is not None else get_directory())
    return _pick(kind, role, email=True)(v)


def render_whatsapp(
    kind: NotificationKind,
    role: Role,
    customer: Customer,
    context: Optional[NotificationContext] = None,
    directory: Optional[TrainerDirectory] = None,
) -> WhatsAppContent:
    """WhatsApp text (Markdown-ish: *bold*, _italic_, ~strike~) for one recipient."""
    v = _values(customer, context, directory if directory is not None else get_directory())
    return _pick(kind, role, email=False)(v)


def personalize(message: str, customer: Customer) -> str:
    """Replace {name} (any case) in a free-text broadcast message."""
    return re.sub(r'\{name\}', lambda _: customer.name, message, flags=re.IGNORECASE)
