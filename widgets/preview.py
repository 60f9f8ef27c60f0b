"""Per-request preview of unsaved widget edits.

Pending values arrive with the request, keyed by setting ID
(``widget_{id_base}[{number}]``). A ``PreviewOverlay`` lays them over the
request's consistent view so everything rendered in this request sees them.
They are written to storage only by ``promote_on_save``.
"""
from __future__ import annotations

import copy
import logging
import re
from contextlib import contextmanager

from django.db import transaction

from core.plugins import registry

from .conf import get_config
from .context import Phase
from .posts import WidgetPosts, parse_widget_id

logger = logging.getLogger(__name__)

SETTING_ID_RE = re.compile(r"^(?P<option_name>widget_(?P<id_base>.+?))(?:\[(?P<number>\d+)\])?$")
UPDATE_WIDGET_ACTION = "update-widget"
SAVE_ACTION = "customize_save"


def parse_setting_id(setting_id: str) -> tuple[str, int | None]:
    match = SETTING_ID_RE.match(setting_id or "")
    if not match:
        raise ValueError(f"Illegal widget setting ID: {setting_id}")
    number = match.group("number")
    return match.group("id_base"), int(number) if number is not None else None


def get_setting_id(widget_id: str) -> str | None:
    parsed = parse_widget_id(widget_id)
    if parsed is None:
        return None
    return f"widget_{parsed[0]}[{parsed[1]}]"


class PreviewOverlay:
    def __init__(self, context, posts: WidgetPosts | None = None):
        self.context = context
        self.posts = posts or WidgetPosts()
        self.overrides: dict[str, dict] = {}
        self.originals: dict[str, dict] = {}
        self.promoted = False
        context.overlay = self

    def _is_previewing_new_widget(self, setting_id: str) -> bool:
        return (
            self.context.action == UPDATE_WIDGET_ACTION
            and bool(self.context.widget_id)
            and get_setting_id(self.context.widget_id) == setting_id
        )

    def apply(self, setting_id: str, pending_value=None) -> bool:
        """Make ``pending_value`` the value of ``setting_id`` for this request.

        Each setting is overlaid at most once. A missing value for the widget
        being added in this request counts as an empty instance.
        """
        if setting_id in self.overrides:
            return False
        id_base, number = parse_setting_id(setting_id)
        if number is None:
            return False
        if pending_value is None and self._is_previewing_new_widget(setting_id):
            pending_value = {}
        if not isinstance(pending_value, dict):
            return False

        self.originals[setting_id] = copy.deepcopy(
            self.posts.get_record(id_base, number, context=self.context)
        )
        self.overrides[setting_id] = pending_value
        settings = self.posts.intercept_read(self.context, id_base)
        if settings is not None:
            settings.replace(number, pending_value)
        return True

    def is_applied(self, setting_id: str) -> bool:
        return setting_id in self.overrides

    def current_value(self, setting_id: str) -> dict:
        if setting_id in self.overrides:
            return self.overrides[setting_id]
        id_base, number = parse_setting_id(setting_id)
        if number is None:
            return {}
        return self.posts.get_record(id_base, number, context=self.context)

    @contextmanager
    def capturing(self, id_base: str):
        """Capture writes to ``widget_{id_base}`` in the request instead of storing them."""
        with self.context.capturing(id_base):
            yield self

    def promote_on_save(self, user=None) -> list:
        """Persist every changed override the user may edit.

        Runs once per overlay. Either every promoted instance is saved or
        none is.
        """
        if self.promoted:
            return []
        self.promoted = True
        user = user if user is not None else self.context.user
        capability = get_config("capability")
        saved = []
        with transaction.atomic():
            for setting_id, value in self.overrides.items():
                if value == self.originals.get(setting_id):
                    continue
                if user is None or not user.has_perm(capability):
                    logger.warning("Not saving %s: user lacks %s", setting_id, capability)
                    continue
                id_base, number = parse_setting_id(setting_id)
                saved.append(self.posts.save_record(id_base, value, number=number))
        return saved


def pending_widget_values(post_values: dict) -> dict[str, dict]:
    pending = {}
    for setting_id, value in post_values.items():
        try:
            id_base, number = parse_setting_id(setting_id)
        except ValueError:
            continue
        if number is not None and registry.is_recognized_widget_type(id_base):
            pending[setting_id] = value
    return pending


def prepare_request(context, posts: WidgetPosts | None = None) -> PreviewOverlay:
    """Run the request pipeline up to the point where reads are filtered."""
    posts = posts or WidgetPosts()

    context.advance(Phase.DISCOVER)
    pending = pending_widget_values(context.post_values)
    new_setting_id = None
    if context.action == UPDATE_WIDGET_ACTION and context.widget_id:
        new_setting_id = get_setting_id(context.widget_id)

    context.advance(Phase.SNAPSHOT)
    id_bases = {parse_setting_id(setting_id)[0] for setting_id in pending}
    for id_base in sorted(id_bases):
        posts.intercept_read(context, id_base)

    context.advance(Phase.REGISTER)
    overlay = PreviewOverlay(context, posts)
    for setting_id, value in pending.items():
        overlay.apply(setting_id, value)
    if new_setting_id is not None and not overlay.is_applied(new_setting_id):
        overlay.apply(new_setting_id)

    context.advance(Phase.FILTER_ACTIVE)
    return overlay
