"""Durable per-id_base widget number counters.

Each id_base has one counter option, ``{id_base}_max_number``, holding the
highest number ever handed out. Counters only move up, and every move is a
compare-and-swap on the option row, so two editors adding the same kind of
widget at the same moment never receive the same number.
"""
from __future__ import annotations

import logging

from django.core import signing

from core.plugins import registry

from .collection import MIN_NUMBER, parse_number
from .conf import get_config
from .exceptions import AllocationError, WidgetNumberRequestError
from .options import add_option, compare_and_swap_option, get_legacy_instances, get_option

logger = logging.getLogger(__name__)

AJAX_ACTION = "incr_widget_number"
OPTION_NAME_MAX_LENGTH = 191

_signer = signing.TimestampSigner(salt="widgets.numbers")


def _as_number(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class WidgetNumbers:
    def __init__(self, posts=None):
        self._posts = posts

    @property
    def posts(self):
        if self._posts is None:
            from .posts import WidgetPosts

            self._posts = WidgetPosts(numbers=self)
        return self._posts

    def option_name(self, id_base: str) -> str:
        name = f"{id_base}_max_number"
        if len(name) > OPTION_NAME_MAX_LENGTH:
            raise ValueError(f"option name is too long: {name}")
        return name

    def get_max_existing_widget_number(self, id_base: str) -> int:
        """Highest number used by a stored instance or the legacy option, at least 2."""
        numbers = set(self.posts.get_instance_numbers(id_base))
        for key in get_legacy_instances(id_base):
            number = parse_number(key)
            if number is not None:
                numbers.add(number)
        numbers.add(MIN_NUMBER)
        return max(numbers)

    def add_widget_number_option(self, id_base: str) -> bool:
        name = self.option_name(id_base)
        if get_option(name) is not None:
            return False
        return add_option(name, self.get_max_existing_widget_number(id_base))

    def get_max_allocated(self, id_base: str) -> int:
        self.add_widget_number_option(id_base)
        current = get_option(self.option_name(id_base))
        if current is None:
            return self.get_max_existing_widget_number(id_base)
        return _as_number(current)

    def _advance(self, id_base: str, floor: int = 0, increment: int = 0) -> int:
        name = self.option_name(id_base)
        retries = get_config("allocation_retries")
        for attempt in range(1, retries + 1):
            self.add_widget_number_option(id_base)
            current = get_option(name)
            number = max(
                MIN_NUMBER,
                _as_number(current),
                self.get_max_existing_widget_number(id_base),
                floor,
            )
            number += increment
            if current is not None and number == current:
                return number
            if compare_and_swap_option(name, current, number):
                return number
            logger.warning(
                "Counter %s changed concurrently (attempt %d of %d)", name, attempt, retries
            )
        raise AllocationError(f"Unable to advance widget number counter {name}.")

    def set_min(self, id_base: str, number: int) -> int:
        """Raise the counter to at least ``number``. Never lowers it."""
        return self._advance(id_base, floor=_as_number(number))

    def allocate_next(self, id_base: str) -> int:
        return self._advance(id_base, increment=1)


def create_nonce(user, action: str = AJAX_ACTION) -> str:
    return _signer.sign(f"{action}:{user.pk}")


def verify_nonce(nonce: str, user, action: str = AJAX_ACTION) -> bool:
    try:
        value = _signer.unsign(nonce, max_age=get_config("nonce_max_age"))
    except signing.BadSignature:
        return False
    return value == f"{action}:{user.pk}"


def request_incr_widget_number(user, params: dict, numbers: WidgetNumbers | None = None) -> dict:
    """Allocate a widget number on behalf of a remote caller.

    Raises ``WidgetNumberRequestError`` with an HTTP-like code when the
    caller or its parameters are rejected.
    """
    if user is None or not user.is_authenticated:
        raise WidgetNumberRequestError("not_logged_in", 403)
    if not user.has_perm(get_config("capability")):
        raise WidgetNumberRequestError("unauthorized", 403)
    nonce = params.get("nonce")
    id_base = params.get("id_base")
    if not nonce:
        raise WidgetNumberRequestError("missing_nonce_param", 400)
    if not id_base:
        raise WidgetNumberRequestError("missing_id_base_param", 400)
    if not verify_nonce(nonce, user):
        raise WidgetNumberRequestError("invalid_nonce", 403)
    if not registry.is_recognized_widget_type(id_base):
        raise WidgetNumberRequestError("unrecognized_id_base", 400)
    numbers = numbers or WidgetNumbers()
    return {"number": numbers.allocate_next(id_base)}
