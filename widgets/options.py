"""Named option storage and the widget settings read/write path.

Options are rows of ``widgets.Option`` holding JSON text. Legacy widget
settings live in ``widget_{id_base}`` options as one monolithic mapping of
number -> instance plus the ``_multiwidget`` marker.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from django.db import IntegrityError, transaction

from .collection import MULTIWIDGET_KEY, WidgetSettings
from .models import Option

logger = logging.getLogger(__name__)


def widget_option_name(id_base: str) -> str:
    return f"widget_{id_base}"


def encode_value(value: Any) -> str:
    return json.dumps(value)


def get_option(name: str, default: Any = None) -> Any:
    raw = Option.objects.filter(name=name).values_list("value", flat=True).first()
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Option %s holds invalid JSON, using default", name)
        return default


def add_option(name: str, value: Any) -> bool:
    """Create the option unless it already exists. First write wins."""
    try:
        with transaction.atomic():
            Option.objects.create(name=name, value=encode_value(value))
    except IntegrityError:
        return False
    return True


def update_option(name: str, value: Any) -> bool:
    """Write the option, creating it if needed. Returns whether anything changed."""
    encoded = encode_value(value)
    option = Option.objects.filter(name=name).first()
    if option is None:
        return add_option(name, value)
    if option.value == encoded:
        return False
    option.value = encoded
    option.save(update_fields=["value"])
    return True


def compare_and_swap_option(name: str, expected: Any, value: Any) -> bool:
    """Set the option to ``value`` only if it still holds ``expected``."""
    if expected is None:
        return add_option(name, value)
    updated = Option.objects.filter(name=name, value=encode_value(expected)).update(
        value=encode_value(value)
    )
    return updated == 1


def delete_option(name: str) -> bool:
    deleted, _ = Option.objects.filter(name=name).delete()
    return bool(deleted)


def decode_legacy_instances(raw: Any) -> dict:
    """Normalize a stored legacy mapping so instance numbers are ints."""
    if not isinstance(raw, dict):
        return {}
    instances: dict = {}
    for key, value in raw.items():
        if isinstance(key, str) and key.isdigit():
            instances[int(key)] = value
        else:
            instances[key] = value
    return instances


def get_legacy_instances(id_base: str) -> dict:
    return decode_legacy_instances(get_option(widget_option_name(id_base), {}))


def as_legacy_value(value: Any) -> Any:
    if isinstance(value, WidgetSettings):
        value = value.to_dict()
        value[MULTIWIDGET_KEY] = 1
    return value


class WidgetOptionStore:
    """Generic read/write path for ``widget_{id_base}`` options.

    Reads return, in order of precedence: a value captured by a preview in
    this request, the interceptor's consistent view, the literal option.
    Writes go through the interceptor first; when it short-circuits the
    literal option is left alone.
    """

    def __init__(self, interceptor=None):
        self.interceptor = interceptor

    def get_settings(self, context, id_base: str):
        name = widget_option_name(id_base)
        if context.has_captured(name):
            return context.get_captured(name)
        if self.interceptor is not None:
            settings = self.interceptor.intercept_read(context, id_base)
            if settings is not None:
                return settings
        return get_legacy_instances(id_base)

    def save_settings(self, context, id_base: str, value) -> bool:
        name = widget_option_name(id_base)
        old_value = self.get_settings(context, id_base)
        if self.interceptor is not None:
            value, short_circuit = self.interceptor.intercept_write(
                context, id_base, value, old_value
            )
            if short_circuit:
                return False
        if context.is_capturing(id_base):
            context.capture(name, value)
            return True
        return update_option(name, as_legacy_value(value))
