"""Widget instances stored one per document.

``WidgetPosts`` owns the documents behind every widget instance. It reads
and writes individual instances, keeps a per-request consistent view of each
id_base (``intercept_read``/``intercept_write``), and moves legacy
monolithic ``widget_{id_base}`` options into documents.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from django.db import DatabaseError, reset_queries, transaction

from core.plugins import registry

from .collection import WidgetSettings, parse_number
from .conf import DEFAULT_CONFIG, get_config
from .context import Phase
from .events import emit
from .exceptions import NotFoundError, UnrecognizedCategoryError, ValidationError, WidgetPostsError
from .models import WidgetInstance
from .numbers import WidgetNumbers
from .options import WidgetOptionStore, get_option, update_option
from .store import DocumentStore, decode_legacy_content, encode_json, get_instance_content

logger = logging.getLogger(__name__)

WIDGET_ID_RE = re.compile(r"^(?P<id_base>.+)-(?P<number>\d+)$")
OPTION_KEY_RE = re.compile(r"^widget_(?P<id_base>.+)$")


def parse_widget_id(widget_id) -> tuple[str, int] | None:
    """Split ``"search-12"`` into ``("search", 12)``."""
    if not isinstance(widget_id, str):
        return None
    match = WIDGET_ID_RE.match(widget_id)
    if not match:
        return None
    return match.group("id_base"), int(match.group("number"))


def _previous_instance(old_value, number: int):
    if isinstance(old_value, WidgetSettings):
        return old_value.get(number)
    if isinstance(old_value, dict):
        return old_value.get(number, old_value.get(str(number)))
    return None


@dataclass
class MigrationResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, other: "MigrationResult") -> "MigrationResult":
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        return self

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.skipped + self.failed


class WidgetPosts:
    MODULE_SLUG = "widget_posts"
    ENABLED_OPTION = "widget_posts_enabled"
    NUMBERS_CACHE_SCOPE = "widget_instance_numbers"

    def __init__(self, store: DocumentStore | None = None, numbers: WidgetNumbers | None = None):
        self.store = store or DocumentStore()
        if numbers is None:
            numbers = WidgetNumbers(posts=self)
        self.numbers = numbers
        self.option_store = WidgetOptionStore(interceptor=self)

    # Configuration

    @staticmethod
    def default_config() -> dict:
        return dict(DEFAULT_CONFIG)

    def config(self, key: str | None = None):
        return get_config(key)

    def is_enabled(self) -> bool:
        return bool(get_option(self.ENABLED_OPTION, False))

    def enable(self) -> bool:
        return update_option(self.ENABLED_OPTION, True)

    def disable(self) -> bool:
        return update_option(self.ENABLED_OPTION, False)

    # Widget types

    def get_widget_type(self, id_base: str):
        cls = registry.get_widget_type(id_base)
        if cls is None:
            raise UnrecognizedCategoryError(f"Unrecognized widget id_base: {id_base}")
        return cls()

    def sanitize_instance(self, id_base: str, new_instance, old_instance=None) -> dict:
        """Run an instance through its widget type's ``update``.

        Anything the widget type raises becomes a ``ValidationError``.
        """
        widget = self.get_widget_type(id_base)
        if not isinstance(new_instance, dict):
            raise ValidationError("new_instance data must be a dict")
        if old_instance is None:
            old_instance = {}
        if not isinstance(old_instance, dict):
            raise ValidationError("old_instance data must be a dict")
        try:
            instance = widget.update(dict(new_instance), dict(old_instance))
        except Exception as exc:
            raise ValidationError(f"Widget type {id_base} failed to sanitize the instance: {exc}") from exc
        if not isinstance(instance, dict):
            raise ValidationError(f"Widget type {id_base} returned a non-dict instance")
        return instance

    # Number index

    def get_instance_numbers(self, id_base: str) -> dict[int, int]:
        """Map each stored instance number of ``id_base`` to its document pk."""
        numbers = self.store.cache_get(self.NUMBERS_CACHE_SCOPE, id_base)
        if numbers is None:
            prefix = f"{id_base}-"
            found = {
                int(widget_id[len(prefix):]): pk
                for widget_id, pk in self.store.query_by_prefix(prefix)
            }
            numbers = dict(sorted(found.items()))
            self.store.cache_set(self.NUMBERS_CACHE_SCOPE, id_base, numbers)
        return dict(numbers)

    def flush_instance_numbers_cache(self, id_base: str) -> None:
        self.store.cache_delete(self.NUMBERS_CACHE_SCOPE, id_base)

    # Records

    def _resolve_key(self, key: str, number=None) -> tuple[str, int | None]:
        if number is not None:
            try:
                return key, int(number)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid widget number: {number!r}") from None
        parsed = parse_widget_id(key)
        if parsed is not None:
            return parsed
        return key, None

    def get_widget_post(self, widget_id: str) -> WidgetInstance | None:
        return self.store.get(widget_id)

    def get_widget_instance_data(self, document) -> dict:
        """Return the instance held by a document, widget ID or document pk."""
        if isinstance(document, str):
            document = self.store.get(document)
        elif isinstance(document, int):
            document = self.store.get_by_pk(document)
        if document is None:
            logger.warning("Invalid widget instance document")
            return {}
        return get_instance_content(document)

    def get_record(self, key: str, number=None, context=None) -> dict:
        id_base, number = self._resolve_key(key, number)
        if parse_number(number) is None:
            return {}
        if context is not None:
            settings = self.intercept_read(context, id_base)
            if settings is not None:
                return settings.get(number) or {}
        return self.get_widget_instance_data(f"{id_base}-{number}")

    def save_record(self, key: str, record, number=None, sanitize: bool = True) -> WidgetInstance:
        """Insert or update one instance and return its document.

        A bare id_base inserts a new instance under a freshly allocated
        number; a widget ID (or an explicit number) updates that instance,
        creating it when missing.
        """
        id_base, number = self._resolve_key(key, number)
        return self._save(id_base, number, record, sanitize)

    def _save(self, id_base: str, number, record, sanitize: bool) -> WidgetInstance:
        self.get_widget_type(id_base)
        if not isinstance(record, dict):
            raise ValidationError(f"Widget instance for {id_base} must be a dict")
        if number is not None and parse_number(number) is None:
            raise ValidationError(f"Widget numbers start at 2, got {number}")

        old_instance = {}
        if number is not None:
            document = self.store.get(f"{id_base}-{number}")
            if document is not None:
                old_instance = get_instance_content(document)

        if sanitize:
            instance = self.sanitize_instance(id_base, record, old_instance)
            if not instance and old_instance:
                raise ValidationError(
                    f"Refusing to replace widget {id_base}-{number} with an empty instance"
                )
        else:
            instance = dict(record)
        content = encode_json(instance)

        if number is None:
            number = self.numbers.allocate_next(id_base)
        widget_id = f"{id_base}-{number}"
        title = instance.get("title") or ""
        with transaction.atomic():
            self.numbers.set_min(id_base, number)
            pk = self.store.put(widget_id, content, {"title": str(title)[:255]})
        self.flush_instance_numbers_cache(id_base)
        return self.store.get_by_pk(pk)

    def insert_widget(self, id_base: str, instance=None) -> WidgetInstance:
        return self._save(id_base, None, instance if instance is not None else {}, sanitize=True)

    def update_widget(self, widget_id: str, instance=None) -> WidgetInstance:
        if parse_widget_id(widget_id) is None:
            raise ValidationError(f"Invalid widget_id: {widget_id}")
        return self.save_record(widget_id, instance if instance is not None else {})

    def delete_record(self, key: str, number=None, missing_ok: bool = False) -> bool:
        id_base, number = self._resolve_key(key, number)
        if number is None:
            raise ValidationError(f"Invalid widget_id: {key}")
        widget_id = f"{id_base}-{number}"
        deleted = self.store.delete(widget_id)
        self.flush_instance_numbers_cache(id_base)
        if not deleted and not missing_ok:
            raise NotFoundError(f"Widget instance {widget_id} does not exist")
        return deleted

    # Consistency filter

    def _filters(self, context, id_base: str) -> bool:
        return (
            context.phase >= Phase.SNAPSHOT
            and not context.filtering_suspended
            and registry.is_recognized_widget_type(id_base)
            and self.is_enabled()
        )

    def build_settings(self, id_base: str) -> WidgetSettings:
        return WidgetSettings(self.get_instance_numbers(id_base), fetch=self.get_widget_instance_data)

    def intercept_read(self, context, id_base: str) -> WidgetSettings | None:
        """Return this request's view of ``id_base``, building it on first use.

        Returns None when reads should fall through to the literal option.
        """
        if not self._filters(context, id_base):
            return None
        settings = context.snapshots.get(id_base)
        if settings is None:
            settings = self.build_settings(id_base)
            context.snapshots[id_base] = settings
        return settings

    def intercept_write(self, context, id_base: str, value, old_value):
        """Persist changed instances individually instead of the whole option.

        Returns ``(effective_value, short_circuit)``. When ``short_circuit``
        is true the caller must not write the option itself.
        """
        if not self._filters(context, id_base) or context.is_capturing(id_base):
            return value, False

        if isinstance(value, WidgetSettings):
            if not value.is_dirty():
                return old_value, True
            changed = {number: value.get(number) for number in sorted(value.dirty_numbers)}
            deletions = list(value.pending_deletions)
        elif isinstance(value, dict):
            changed = {}
            for key, instance in value.items():
                number = parse_number(key)
                if number is None or not isinstance(instance, dict):
                    continue
                if instance != _previous_instance(old_value, number):
                    changed[number] = instance
            if not changed:
                return old_value, True
            deletions = []
        else:
            return value, False

        with transaction.atomic():
            for number, instance in changed.items():
                self.save_record(id_base, instance, number=number, sanitize=False)
            existing = self.get_instance_numbers(id_base)
            for number in deletions:
                if number in existing:
                    self.delete_record(id_base, number, missing_ok=True)

        if isinstance(value, WidgetSettings):
            value.mark_clean()
            value.take_pending_deletions()
        snapshot = context.snapshots.get(id_base)
        if snapshot is not None and snapshot is not value:
            for number, instance in changed.items():
                snapshot.replace(number, instance)
            for number in deletions:
                snapshot.discard(number)
        return old_value, True

    def get_settings(self, context, id_base: str):
        return self.option_store.get_settings(context, id_base)

    def save_settings(self, context, id_base: str, value) -> bool:
        return self.option_store.save_settings(context, id_base, value)

    # Migration

    def release_memory(self) -> None:
        reset_queries()

    def migrate_from_legacy(
        self, id_base: str, records: dict, update: bool = False, dry_run: bool = False
    ) -> MigrationResult:
        """Copy legacy instances of ``id_base`` into documents.

        Existing documents are skipped unless ``update`` is set, so running
        this again after an interruption only fills the gaps.
        """
        self.get_widget_type(id_base)
        result = MigrationResult()
        batch_size = get_config("migrate_batch_size") or 0
        for position, (key, instance) in enumerate(records.items(), start=1):
            number = parse_number(key)
            if number is None:
                continue
            widget_id = f"{id_base}-{number}"
            event = {
                "widget_id": widget_id,
                "instance": instance,
                "widget_number": number,
                "id_base": id_base,
            }
            exists = self.store.get(widget_id) is not None
            if exists and not update:
                result.skipped += 1
                emit("import_skip_existing", **event)
                continue
            try:
                document = None
                if not dry_run:
                    document = self.save_record(id_base, instance, number=number, sanitize=False)
            except (WidgetPostsError, DatabaseError) as exc:
                logger.exception("Failed to import widget %s", widget_id)
                result.failed += 1
                emit("import_failure", exception=exc, update=exists, **event)
            else:
                if exists:
                    result.updated += 1
                else:
                    result.inserted += 1
                emit("import_success", document=document, update=exists, dry_run=dry_run, **event)
            if batch_size and position % batch_size == 0:
                self.release_memory()
        return result

    def migrate_widgets_from_options(
        self, context, id_bases=None, update: bool = False, dry_run: bool = False
    ) -> MigrationResult:
        if not id_bases:
            id_bases = registry.widget_slugs()
        for id_base in id_bases:
            self.get_widget_type(id_base)
        result = MigrationResult()
        with context.suspend_filtering():
            for id_base in id_bases:
                records = self.option_store.get_settings(context, id_base)
                if isinstance(records, WidgetSettings):
                    records = records.to_dict()
                result.add(self.migrate_from_legacy(id_base, records, update=update, dry_run=dry_run))
        return result

    def import_widget_instances_from_json(
        self, data, update: bool = False, dry_run: bool = False
    ) -> MigrationResult:
        """Import a JSON dump keyed by widget ID, id_base or option name.

        Accepted layouts::

            {"search-123": {"title": "Find"}}
            {"search": {"123": {"title": "Find"}}}
            {"widget_search": {"123": {"title": "Find"}}}
        """
        if not isinstance(data, dict):
            raise ValidationError("Expected the JSON document to be an object.")
        result = MigrationResult()
        if not data:
            return result

        first_key = next(iter(data))
        instances_by_type: dict = {}
        if registry.is_recognized_widget_type(first_key):
            instances_by_type = dict(data)
        elif OPTION_KEY_RE.match(first_key):
            for key, value in data.items():
                match = OPTION_KEY_RE.match(key)
                if not match:
                    raise ValidationError(f"Unexpected key: {key}")
                instances_by_type[match.group("id_base")] = value
        else:
            for widget_id, instance in data.items():
                parsed = parse_widget_id(widget_id)
                if parsed is None or parse_number(parsed[1]) is None:
                    logger.warning("Rejecting instance with invalid widget ID: %s", widget_id)
                    continue
                instances_by_type.setdefault(parsed[0], {})[parsed[1]] = instance

        for id_base, instances in instances_by_type.items():
            if not isinstance(instances, dict):
                logger.warning("Expected a mapping of %s instances, skipping", id_base)
                continue
            try:
                result.add(self.migrate_from_legacy(id_base, instances, update=update, dry_run=dry_run))
            except UnrecognizedCategoryError as exc:
                logger.warning("Skipping: %s", exc)
                result.skipped += len(instances)
        return result

    def move_legacy_content(self, dry_run: bool = False) -> int:
        """Move records out of the legacy side-channel into primary content."""
        moved = 0
        batch_size = get_config("migrate_batch_size") or 0
        documents = WidgetInstance.objects.exclude(legacy_content="").order_by("pk")
        for position, document in enumerate(documents.iterator(), start=1):
            try:
                record = decode_legacy_content(document.legacy_content)
                if not isinstance(record, dict):
                    raise ValueError("content is not an object")
                content = encode_json(record)
            except (ValueError, WidgetPostsError) as exc:
                emit(
                    "content_moved",
                    type="warning",
                    widget_id=document.widget_id,
                    message=f"Unable to decode legacy content of {document.widget_id}: {exc}",
                )
                continue
            if not dry_run:
                document.content = content
                document.legacy_content = ""
                document.save(update_fields=["content", "legacy_content", "updated_at"])
            moved += 1
            message = f"Moved content of {document.widget_id}."
            if dry_run:
                message += " (DRY RUN)"
            emit("content_moved", type="success", widget_id=document.widget_id, message=message)
            if batch_size and position % batch_size == 0:
                self.release_memory()
        return moved
