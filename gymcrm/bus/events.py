"""
Event Bus - Decoupled Module Communication
Modules emit events, other modules listen. No direct imports between modules.
"""

from typing import Callable, Dict, List, Any
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple event bus for decoupled module communication.
    Modules emit events, other modules register handlers to listen.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, handler: Callable):
        """
        Register a handler for an event.

        Args:
            event_name: Name of the event to listen for
            handler: Callable that receives event_data dict
        """
        self._handlers.setdefault(event_name, []).append(handler)
        logger.debug(f"Registered handler for event '{event_name}': {getattr(handler, '__name__', handler)}")

    def off(self, event_name: str, handler: Callable) -> bool:
        """Unregister a handler. Returns False if it was not registered."""
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, event_name: str, event_data: Dict[str, Any] = None):
        """
        Emit an event to all registered handlers.
        A failing handler is logged and does not stop the others.

        Args:
            event_name: Name of the event
            event_data: Optional dict of data to pass to handlers
        """
        if event_data is None:
            event_data = {}

        logger.debug(f"Emitting event '{event_name}' with data: {event_data}")

        for handler in list(self._handlers.get(event_name, [])):
            try:
                handler(event_data)
            except Exception as e:
                logger.error(f"Error in handler {getattr(handler, '__name__', handler)} for event '{event_name}': {e}")

    def clear(self):
        """Clear all handlers (useful for testing)."""
        self._handlers.clear()


# Singleton instance
bus = EventBus()


# =============================================================================
# STANDARD EVENTS
# =============================================================================

# Customer store events
EVENT_CUSTOMER_CREATED = 'customer_created'
EVENT_CUSTOMER_UPDATED = 'customer_updated'
EVENT_CUSTOMER_ARCHIVED = 'customer_archived'
EVENT_CUSTOMER_RESTORED = 'customer_restored'
EVENT_CUSTOMER_DELETED = 'customer_deleted'

# Ad hoc reminder events
EVENT_REMINDER_CREATED = 'reminder_created'
EVENT_REMINDER_COMPLETED = 'reminder_completed'
EVENT_REMINDER_DELETED = 'reminder_deleted'

# Reminder engine events
EVENT_PT_REMINDER_SENT = 'pt_reminder_sent'
EVENT_SESSION_ADVANCED = 'session_advanced'
EVENT_RECURRENCE_ENDED = 'recurrence_ended'
EVENT_FOLLOW_UP_SENT = 'follow_up_sent'

# Delivery events
EVENT_NOTIFICATION_FAILED = 'notification_failed'
EVENT_BROADCAST_COMPLETE = 'broadcast_complete'
