from __future__ import annotations

from typing import Any

from django.conf import settings

DEFAULT_CONFIG = {
    "capability": "widgets.change_widgetinstance",
    "allocation_retries": 5,
    "migrate_batch_size": 50,
    "nonce_max_age": 60 * 60 * 24,
    "number_cache_timeout": None,
    "customized_param": "customized",
}


def get_config(key: str | None = None) -> Any:
    """Return the WIDGET_POSTS settings merged over the defaults.

    With a key, return that single entry, or None when it is unknown.
    """
    config = dict(DEFAULT_CONFIG)
    config.update(getattr(settings, "WIDGET_POSTS", None) or {})
    if key is None:
        return config
    return config.get(key)
