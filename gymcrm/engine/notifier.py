"""
Notifier - renders and dispatches one notification kind to a customer and their trainer.

Order per call: customer email, customer WhatsApp, trainer email, trainer WhatsApp.
A missing address skips that channel. Render and send errors (timeouts too) are turned
into failed outcomes; nothing here raises to the caller.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from gymcrm.bus.events import bus, EVENT_NOTIFICATION_FAILED, EVENT_BROADCAST_COMPLETE
from gymcrm.channels.smtp import EmailChannel
from gymcrm.channels.whatsapp import WhatsAppChannel
from gymcrm.config import config
from gymcrm.engine import renderer
from gymcrm.engine.trainers import TrainerDirectory, get_directory
from gymcrm.models import (
    Channel, Customer, NotificationContext, NotificationKind, NotificationOutcome, Role,
    SendResult,
)

logger = logging.getLogger(__name__)


class Notifier:

    def __init__(
        self,
        email_channel,
        whatsapp_channel,
        directory: Optional[TrainerDirectory] = None,
        send_timeout: Optional[float] = None,
        broadcast_delay: Optional[float] = None,
    ):
        self.email_channel = email_channel
        self.whatsapp_channel = whatsapp_channel
        self.directory = directory if directory is not None else get_directory()
        self.send_timeout = send_timeout if send_timeout is not None else config.SEND_TIMEOUT_SECONDS
        self.broadcast_delay = broadcast_delay if broadcast_delay is not None else config.BROADCAST_DELAY_SECONDS

    async def _deliver(self, kind: NotificationKind, channel: Channel, role: Role, recipient: str,
                       customer: Customer, context: Optional[NotificationContext]) -> NotificationOutcome:
        """Render and send one message. Any render or send error becomes a failed outcome."""
        if channel == Channel.EMAIL:
            adapter, render = self.email_channel, renderer.render_email
        else:
            adapter, render = self.whatsapp_channel, renderer.render_whatsapp
        try:
            content = render(kind, role, customer, context, self.directory)
            result: SendResult = await asyncio.wait_for(
                adapter.send(kind, recipient, content), timeout=self.send_timeout
            )
            success, error = result.success, result.error
        except asyncio.TimeoutError:
            success, error = False, f"timed out after {self.send_timeout}s"
        except Exception as e:
            success, error = False, f"{type(e).__name__}: {e}"

        outcome = NotificationOutcome(kind, channel, role, recipient, success, error)
        if not success:
            logger.error(
                f"{kind.value} via {channel.value} to {role.value} {recipient} "
                f"(customer {customer.id}) failed: {error}"
            )
            bus.emit(EVENT_NOTIFICATION_FAILED, {'customer_id': customer.id, 'outcome': outcome})
        return outcome

    async def notify(
        self,
        kind: NotificationKind,
        customer: Customer,
        context: Optional[NotificationContext] = None,
    ) -> List[NotificationOutcome]:
        """Send `kind` on every channel the customer (and trainer, if any) can receive."""
        outcomes: List[NotificationOutcome] = []

        if customer.email:
            outcomes.append(await self._deliver(
                kind, Channel.EMAIL, Role.CUSTOMER, customer.email, customer, context
            ))
        if customer.phone:
            outcomes.append(await self._deliver(
                kind, Channel.WHATSAPP, Role.CUSTOMER, customer.phone, customer, context
            ))

        if customer.trainer_email and renderer.has_trainer_variant(kind):
            outcomes.append(await self._deliver(
                kind, Channel.EMAIL, Role.TRAINER, customer.trainer_email, customer, context
            ))
            trainer_phone = self.directory.phone_for(customer.trainer_email)
            if trainer_phone:
                outcomes.append(await self._deliver(
                    kind, Channel.WHATSAPP, Role.TRAINER, trainer_phone, customer, context
                ))

        return outcomes

    async def broadcast(self, customers: Iterable[Customer], message: str) -> Dict[str, Any]:
        """
        WhatsApp a free-text message to each customer, replacing {name}.
        Returns {'total', 'sent', 'failed', 'details': [...]}.
        """
        details = []
        customers = list(customers)

        for i, customer in enumerate(customers):
            if i:
                await asyncio.sleep(self.broadcast_delay)
            if not customer.phone:
                details.append({'customer_id': customer.id, 'name': customer.name,
                                'success': False, 'error': 'No phone number'})
                continue
            outcome = await self._deliver(
                NotificationKind.BROADCAST, Channel.WHATSAPP, Role.CUSTOMER, customer.phone,
                customer, NotificationContext(message=message),
            )
            details.append({'customer_id': customer.id, 'name': customer.name,
                            'success': outcome.success, 'error': outcome.error})

        sent = sum(1 for d in details if d['success'])
        summary = {'total': len(customers), 'sent': sent, 'failed': len(customers) - sent, 'details': details}
        logger.info(f"Broadcast complete: {sent}/{len(customers)} sent")
        bus.emit(EVENT_BROADCAST_COMPLETE, {k: v for k, v in summary.items() if k != 'details'})
        return summary


def default_notifier() -> Notifier:
    """Notifier wired to the SMTP and WhatsApp channels from config."""
    return Notifier(EmailChannel(), WhatsAppChannel())
