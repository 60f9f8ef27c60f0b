"""Keyed document storage for widget instances.

``DocumentStore`` is a thin layer over ``WidgetInstance`` rows and the
Django cache. It knows nothing about numbers or sanitizing; that lives in
``widgets.posts``.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging

from django.core.cache import cache

from .conf import get_config
from .exceptions import SerializationError
from .models import WidgetInstance

logger = logging.getLogger(__name__)


def encode_json(record) -> str:
    """Serialize a record, refusing anything that would not read back equal."""
    try:
        encoded = json.dumps(record, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Record is not JSON serializable: {exc}") from exc
    if json.loads(encoded) != record:
        raise SerializationError("Record does not survive a JSON round-trip unchanged.")
    return encoded


def decode_json(raw: str):
    return json.loads(raw)


def encode_legacy_content(record) -> str:
    return base64.b64encode(json.dumps(record).encode("utf-8")).decode("ascii")


def decode_legacy_content(raw: str):
    return json.loads(base64.b64decode(raw.encode("ascii"), validate=True).decode("utf-8"))


def get_instance_content(document: WidgetInstance) -> dict:
    """Return the record stored in a document.

    The legacy side-channel wins when present. Undecodable or non-object
    content yields an empty record.
    """
    try:
        if document.legacy_content:
            record = decode_legacy_content(document.legacy_content)
        elif document.content:
            record = decode_json(document.content)
        else:
            record = {}
    except (ValueError, binascii.Error):
        logger.warning("Widget instance %s has undecodable content", document.widget_id)
        return {}
    if not isinstance(record, dict):
        logger.warning("Widget instance %s content is not an object", document.widget_id)
        return {}
    return record


class DocumentStore:
    cache_prefix = "widget_posts"

    def get(self, key: str) -> WidgetInstance | None:
        return WidgetInstance.objects.filter(widget_id=key).first()

    def get_by_pk(self, pk: int) -> WidgetInstance | None:
        return WidgetInstance.objects.filter(pk=pk).first()

    def put(self, key: str, content: str, metadata: dict | None = None) -> int:
        """Upsert the document for ``key`` and return its primary key.

        Writing primary content always clears the legacy side-channel.
        """
        defaults = {"content": content, "legacy_content": ""}
        defaults.update(metadata or {})
        document, _ = WidgetInstance.objects.update_or_create(widget_id=key, defaults=defaults)
        return document.pk

    def delete(self, key: str) -> bool:
        deleted = 0
        # Delete row by row so post_delete fires for each document.
        for document in WidgetInstance.objects.filter(widget_id=key):
            document.delete()
            deleted += 1
        return bool(deleted)

    def query_by_prefix(self, prefix: str) -> list[tuple[str, int]]:
        """Return ``(widget_id, pk)`` pairs whose key is ``prefix`` plus digits."""
        rows = WidgetInstance.objects.filter(widget_id__startswith=prefix).values_list(
            "widget_id", "pk"
        )
        # startswith is case-insensitive on SQLite.
        return [
            (widget_id, pk)
            for widget_id, pk in rows
            if widget_id.startswith(prefix) and widget_id[len(prefix):].isdigit()
        ]

    # Process-wide cache

    def _cache_key(self, scope: str, key: str) -> str:
        return f"{self.cache_prefix}:{scope}:{key}"

    def cache_get(self, scope: str, key: str):
        return cache.get(self._cache_key(scope, key))

    def cache_set(self, scope: str, key: str, value) -> None:
        cache.set(self._cache_key(scope, key), value, get_config("number_cache_timeout"))

    def cache_delete(self, scope: str, key: str) -> None:
        cache.delete(self._cache_key(scope, key))
