"""Migration and maintenance events.

Each event is a Django ``Signal``. Receivers get the keyword arguments
passed to ``emit``; nothing in the storage layer listens to them.
"""
import logging

from django.dispatch import Signal

logger = logging.getLogger(__name__)

import_skip_existing = Signal()
import_success = Signal()
import_failure = Signal()
content_moved = Signal()

EVENTS = {
    "import_skip_existing": import_skip_existing,
    "import_success": import_success,
    "import_failure": import_failure,
    "content_moved": content_moved,
}


def emit(event_name: str, **context):
    signal = EVENTS.get(event_name)
    if signal is None:
        raise ValueError(f"Unknown widget posts event: {event_name}")
    logger.debug("Widget posts event %s: %s", event_name, context)
    return signal.send(sender=event_name, **context)
