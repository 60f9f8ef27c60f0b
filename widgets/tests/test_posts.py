"""Tests for widgets/posts.py."""
import json
from unittest.mock import patch

from widgets.collection import WidgetSettings
from widgets.context import WidgetRequestContext
from widgets.events import content_moved, import_failure, import_skip_existing, import_success
from widgets.exceptions import NotFoundError, UnrecognizedCategoryError, ValidationError
from widgets.models import Option, WidgetInstance
from widgets.options import get_option, update_option
from widgets.posts import MigrationResult, WidgetPosts, parse_widget_id
from widgets.store import encode_legacy_content
from widgets.tests.base import WidgetPostsTestCase


class ParseWidgetIdTests(WidgetPostsTestCase):
    def test_parses_widget_ids(self):
        self.assertEqual(parse_widget_id("search-12"), ("search", 12))
        self.assertEqual(parse_widget_id("my-widget-3"), ("my-widget", 3))

    def test_rejects_other_values(self):
        for value in ("search", "search-", "-3", "search-x", None, 12):
            self.assertIsNone(parse_widget_id(value), value)


class RecordTests(WidgetPostsTestCase):
    def test_round_trip(self):
        record = {
            "title": "Find",
            "nested": {"list": [1, 2, {"x": None}]},
            "flag": True,
            "ratio": 0.5,
        }
        self.posts.save_record("search-2", record, sanitize=False)
        self.assertEqual(self.posts.get_record("search-2"), record)
        self.assertEqual(self.posts.get_record("search", 2), record)

    def test_save_returns_document(self):
        doc = self.posts.save_record("search-2", {"title": "Find"})
        self.assertIsInstance(doc, WidgetInstance)
        self.assertEqual(doc.widget_id, "search-2")
        self.assertEqual(doc.title, "Find")
        self.assertEqual(json.loads(doc.content), {"title": "Find"})

    def test_save_sanitizes_through_widget_type(self):
        self.posts.save_record("search-2", {"title": "<b>Find</b>", "junk": 1})
        self.assertEqual(self.posts.get_record("search-2"), {"title": "Find"})

    def test_missing_record_is_empty(self):
        self.assertEqual(self.posts.get_record("search-99"), {})
        self.assertEqual(self.posts.get_record("search"), {})

    def test_category_key_inserts_with_new_number(self):
        first = self.posts.save_record("search", {"title": "a"})
        second = self.posts.insert_widget("search", {"title": "b"})
        self.assertEqual(first.widget_id, "search-3")
        self.assertEqual(second.widget_id, "search-4")

    def test_update_raises_counter_floor(self):
        self.posts.update_widget("search-9", {"title": "a"})
        self.assertEqual(get_option("search_max_number"), 9)
        self.assertEqual(self.posts.insert_widget("search").widget_id, "search-10")

    def test_update_widget_requires_widget_id(self):
        with self.assertRaises(ValidationError):
            self.posts.update_widget("search", {"title": "a"})

    def test_reserved_numbers_are_rejected(self):
        with self.assertRaises(ValidationError):
            self.posts.save_record("search-1", {"title": "a"})

    def test_non_dict_record_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.posts.save_record("search-2", ["not", "a", "dict"])

    def test_unrecognized_id_base(self):
        with self.assertRaises(UnrecognizedCategoryError):
            self.posts.save_record("bogus-2", {"title": "a"})
        self.assertFalse(WidgetInstance.objects.exists())

    def test_unserializable_record_is_not_stored(self):
        from widgets.exceptions import SerializationError

        with self.assertRaises(SerializationError):
            self.posts.save_record("search-2", {"ratio": float("inf")}, sanitize=False)
        self.assertFalse(WidgetInstance.objects.exists())

    def test_failsafe_against_emptying(self):
        self.posts.save_record("text-2", {"title": "T", "text": "body"}, sanitize=False)
        with patch("widgets.widget_types.TextWidget.update", return_value={}):
            with self.assertRaises(ValidationError):
                self.posts.save_record("text-2", {"title": "new"})
        self.assertEqual(self.posts.get_record("text-2"), {"title": "T", "text": "body"})

    def test_empty_instance_allowed_for_new_record(self):
        with patch("widgets.widget_types.TextWidget.update", return_value={}):
            self.posts.save_record("text-2", {})
        self.assertEqual(self.posts.get_record("text-2"), {})

    def test_sanitizer_errors_become_validation_errors(self):
        with patch("widgets.widget_types.SearchWidget.update", side_effect=KeyError("title")):
            with self.assertRaises(ValidationError):
                self.posts.save_record("search-2", {})

    def test_delete_record(self):
        self.posts.save_record("search-2", {"title": "a"})
        self.assertTrue(self.posts.delete_record("search-2"))
        self.assertEqual(self.posts.get_record("search-2"), {})
        with self.assertRaises(NotFoundError):
            self.posts.delete_record("search-2")
        self.assertFalse(self.posts.delete_record("search", 2, missing_ok=True))

    def test_get_widget_instance_data_by_pk(self):
        doc = self.posts.save_record("search-2", {"title": "a"})
        self.assertEqual(self.posts.get_widget_instance_data(doc.pk), {"title": "a"})
        with self.assertLogs("widgets.posts", level="WARNING"):
            self.assertEqual(self.posts.get_widget_instance_data(doc.pk + 100), {})


class InstanceNumberTests(WidgetPostsTestCase):
    def test_numbers_map_to_documents(self):
        doc = self.posts.save_record("search-2", {"title": "a"})
        self.assertEqual(self.posts.get_instance_numbers("search"), {2: doc.pk})

    def test_cache_is_invalidated_on_save_and_delete(self):
        self.assertEqual(self.posts.get_instance_numbers("search"), {})

        WidgetInstance.objects.create(widget_id="search-4", content="{}")
        self.assertEqual(list(self.posts.get_instance_numbers("search")), [4])

        WidgetInstance.objects.filter(widget_id="search-4").delete()
        self.assertEqual(self.posts.get_instance_numbers("search"), {})

    def test_prefix_isolation(self):
        for id_base in ("search", "archives"):
            records = {n: {"title": f"{id_base} {n}"} for n in (2, 3, 4)}
            self.posts.migrate_from_legacy(id_base, records)

        numbers = self.posts.get_instance_numbers("search")

        self.assertEqual(sorted(numbers), [2, 3, 4])
        search_pks = set(WidgetInstance.objects.filter(widget_id__startswith="search-").values_list("pk", flat=True))
        self.assertEqual(set(numbers.values()), search_pks)


class ConsistencyFilterTests(WidgetPostsTestCase):
    def test_snapshot_is_reused_within_request(self):
        self.posts.save_record("search-2", {"title": "A"}, sanitize=False)
        context = self.make_context()

        settings = self.posts.intercept_read(context, "search")
        self.assertEqual(settings.get(2), {"title": "A"})

        WidgetPosts().save_record("search-2", {"title": "B"}, sanitize=False)
        WidgetPosts().save_record("search-3", {"title": "C"}, sanitize=False)

        again = self.posts.intercept_read(context, "search")
        self.assertIs(again, settings)
        self.assertEqual(again.get(2), {"title": "A"})
        self.assertFalse(again.exists(3))
        self.assertEqual(self.posts.get_record("search-2", context=context), {"title": "A"})

        fresh = self.posts.intercept_read(self.make_context(), "search")
        self.assertEqual(fresh.get(2), {"title": "B"})
        self.assertTrue(fresh.exists(3))

    def test_unread_slots_hydrate_on_first_access(self):
        self.posts.save_record("search-2", {"title": "A"}, sanitize=False)
        self.posts.save_record("search-3", {"title": "B"}, sanitize=False)
        context = self.make_context()
        settings = self.posts.intercept_read(context, "search")
        self.assertEqual(settings.get(2), {"title": "A"})

        other = WidgetPosts()
        other.save_record("search-2", {"title": "A2"}, sanitize=False)
        other.save_record("search-3", {"title": "B2"}, sanitize=False)
        other.save_record("search-4", {"title": "C"}, sanitize=False)

        # Hydrated values and the number set are pinned; untouched slots are not.
        self.assertEqual(settings.get(2), {"title": "A"})
        self.assertEqual(settings.get(3), {"title": "B2"})
        self.assertEqual(settings.numbers(), [2, 3])

    def test_read_falls_through_when_not_filtering(self):
        context = self.make_context()
        self.assertIsNone(self.posts.intercept_read(context, "bogus"))
        with context.suspend_filtering():
            self.assertIsNone(self.posts.intercept_read(context, "search"))
        self.assertIsNone(self.posts.intercept_read(WidgetRequestContext(), "search"))
        self.posts.disable()
        self.assertIsNone(self.posts.intercept_read(context, "search"))

    def test_get_settings_returns_lazy_collection(self):
        self.posts.save_record("search-2", {"title": "A"}, sanitize=False)
        context = self.make_context()
        settings = self.posts.get_settings(context, "search")
        self.assertIsInstance(settings, WidgetSettings)
        self.assertEqual(settings.numbers(), [2])

    def test_write_persists_changes_and_deletions(self):
        self.posts.save_record("search-2", {"title": "A"}, sanitize=False)
        self.posts.save_record("search-3", {"title": "B"}, sanitize=False)
        context = self.make_context()

        settings = self.posts.get_settings(context, "search")
        settings.set(2, {"title": "A2"})
        settings.set(5, {"title": "new"})
        settings.unset(3)
        stored_literally = self.posts.save_settings(context, "search", settings)

        self.assertFalse(stored_literally)
        self.assertEqual(self.posts.get_record("search-2"), {"title": "A2"})
        self.assertEqual(self.posts.get_record("search-5"), {"title": "new"})
        self.assertIsNone(self.posts.get_widget_post("search-3"))
        self.assertFalse(Option.objects.filter(name="widget_search").exists())
        self.assertFalse(settings.is_dirty())

    def test_unchanged_write_is_noop(self):
        self.posts.save_record("search-2", {"title": "A"}, sanitize=False)
        context = self.make_context()
        settings = self.posts.get_settings(context, "search")
        before = WidgetInstance.objects.get(widget_id="search-2").updated_at

        value, short_circuit = self.posts.intercept_write(context, "search", settings, settings)

        self.assertIs(value, settings)
        self.assertTrue(short_circuit)
        self.assertEqual(WidgetInstance.objects.get(widget_id="search-2").updated_at, before)

    def test_plain_dict_write_updates_snapshot(self):
        context = self.make_context()
        snapshot = self.posts.get_settings(context, "search")

        self.posts.save_settings(context, "search", {2: {"title": "A"}, "_multiwidget": 1, 3: 103})

        self.assertEqual(self.posts.get_record("search-2"), {"title": "A"})
        self.assertIsNone(self.posts.get_widget_post("search-3"))
        self.assertEqual(snapshot.get(2), {"title": "A"})
        self.assertFalse(snapshot.is_dirty())

    def test_equal_plain_dict_write_is_noop(self):
        self.posts.save_record("search-2", {"title": "A"}, sanitize=False)
        self.posts.save_record("search-3", {"title": "B"}, sanitize=False)
        context = self.make_context()
        before = {
            doc.widget_id: doc.updated_at for doc in WidgetInstance.objects.all()
        }

        old_value = {"2": {"title": "A"}, 3: {"title": "B"}}
        with patch.object(self.posts, "save_record") as save_record:
            value, short_circuit = self.posts.intercept_write(
                context, "search", {2: {"title": "A"}, "3": {"title": "B"}}, old_value
            )
        self.assertIs(value, old_value)
        self.assertTrue(short_circuit)
        save_record.assert_not_called()

        self.posts.save_settings(context, "search", {2: {"title": "A"}, 3: {"title": "B2"}})
        self.assertEqual(self.posts.get_record("search-3"), {"title": "B2"})
        self.assertEqual(
            WidgetInstance.objects.get(widget_id="search-2").updated_at, before["search-2"]
        )

    def test_write_defers_while_capturing(self):
        context = self.make_context()
        with context.capturing("search"):
            value = {2: {"title": "preview"}}
            self.assertEqual(
                self.posts.intercept_write(context, "search", value, {}), (value, False)
            )
            self.posts.save_settings(context, "search", value)
        self.assertFalse(WidgetInstance.objects.exists())
        self.assertEqual(self.posts.get_settings(context, "search"), value)

    def test_disabled_writes_literal_option(self):
        self.posts.disable()
        context = self.make_context()
        self.assertTrue(self.posts.save_settings(context, "search", {2: {"title": "A"}}))
        self.assertEqual(get_option("widget_search"), {"2": {"title": "A"}})
        self.assertFalse(WidgetInstance.objects.exists())

    def test_failed_write_rolls_back_every_instance(self):
        context = self.make_context()
        settings = self.posts.get_settings(context, "search")
        settings.set(2, {"title": "ok"})
        settings.set(3, {"ratio": float("nan")})

        from widgets.exceptions import SerializationError

        with self.assertRaises(SerializationError):
            self.posts.save_settings(context, "search", settings)
        self.assertFalse(WidgetInstance.objects.exists())
        self.assertTrue(settings.is_dirty())


class MigrationTests(WidgetPostsTestCase):
    def connect(self, signal):
        received = []

        def receiver(sender, **kwargs):
            received.append(kwargs)

        signal.connect(receiver, weak=False)
        self.addCleanup(signal.disconnect, receiver)
        return received

    def test_migration_is_idempotent(self):
        records = {2: {"title": "a"}, "3": {"title": "b"}, "_multiwidget": 1}

        first = self.posts.migrate_from_legacy("search", records)
        self.posts.save_record("search-2", {"title": "changed"}, sanitize=False)
        second = self.posts.migrate_from_legacy("search", records)

        self.assertEqual(first, MigrationResult(inserted=2))
        self.assertEqual(second, MigrationResult(skipped=2))
        self.assertEqual(WidgetInstance.objects.count(), 2)
        self.assertEqual(self.posts.get_record("search-2"), {"title": "changed"})

        third = self.posts.migrate_from_legacy("search", records, update=True)
        self.assertEqual(third, MigrationResult(updated=2))
        self.assertEqual(self.posts.get_record("search-2"), {"title": "a"})

    def test_migration_emits_events(self):
        skipped = self.connect(import_skip_existing)
        succeeded = self.connect(import_success)
        self.posts.save_record("search-2", {"title": "existing"}, sanitize=False)

        self.posts.migrate_from_legacy("search", {2: {"title": "a"}, 3: {"title": "b"}})

        self.assertEqual([event["widget_id"] for event in skipped], ["search-2"])
        self.assertEqual([event["widget_id"] for event in succeeded], ["search-3"])
        self.assertFalse(succeeded[0]["update"])
        self.assertEqual(succeeded[0]["document"].widget_id, "search-3")

    def test_failures_are_reported_and_migration_continues(self):
        failed = self.connect(import_failure)
        with self.assertLogs("widgets.posts", level="ERROR"):
            result = self.posts.migrate_from_legacy("search", {2: "not a dict", 3: {"title": "b"}})
        self.assertEqual(result, MigrationResult(inserted=1, failed=1))
        self.assertIsInstance(failed[0]["exception"], ValidationError)
        self.assertEqual(failed[0]["widget_id"], "search-2")

    def test_dry_run_writes_nothing(self):
        result = self.posts.migrate_from_legacy("search", {2: {"title": "a"}}, dry_run=True)
        self.assertEqual(result.inserted, 1)
        self.assertFalse(WidgetInstance.objects.exists())

    def test_unrecognized_id_base(self):
        with self.assertRaises(UnrecognizedCategoryError):
            self.posts.migrate_from_legacy("bogus", {2: {}})

    def test_releases_memory_in_batches(self):
        records = {n: {"title": str(n)} for n in range(2, 7)}
        with self.settings(WIDGET_POSTS={"migrate_batch_size": 2}):
            with patch.object(self.posts, "release_memory") as release:
                self.posts.migrate_from_legacy("search", records)
        self.assertEqual(release.call_count, 2)

    def test_migrate_widgets_from_options_reads_literal_options(self):
        update_option("widget_search", {"2": {"title": "a"}, "3": {"title": "b"}, "_multiwidget": 1})
        update_option("widget_text", {"2": {"title": "t", "text": "x"}})
        context = self.make_context()

        result = self.posts.migrate_widgets_from_options(context)

        self.assertEqual(result, MigrationResult(inserted=3))
        self.assertFalse(context.filtering_suspended)
        self.assertEqual(self.posts.get_record("text-2"), {"title": "t", "text": "x"})

    def test_migrate_widgets_from_options_validates_id_bases(self):
        with self.assertRaises(UnrecognizedCategoryError):
            self.posts.migrate_widgets_from_options(self.make_context(), ["bogus"])


class JsonImportTests(WidgetPostsTestCase):
    def test_widget_id_layout(self):
        data = {"search-2": {"title": "a"}, "archives-3": {"title": "b"}, "bogus": {"title": "c"}}
        with self.assertLogs("widgets.posts", level="WARNING"):
            result = self.posts.import_widget_instances_from_json(data)
        self.assertEqual(result.inserted, 2)
        self.assertEqual(self.posts.get_record("archives-3"), {"title": "b"})

    def test_id_base_layout(self):
        data = {"search": {"2": {"title": "a"}}, "text": {"4": {"title": "t"}}}
        result = self.posts.import_widget_instances_from_json(data)
        self.assertEqual(result.inserted, 2)
        self.assertEqual(self.posts.get_record("text-4"), {"title": "t"})

    def test_option_name_layout(self):
        data = {"widget_search": {"2": {"title": "a"}, "_multiwidget": 1}}
        result = self.posts.import_widget_instances_from_json(data)
        self.assertEqual(result, MigrationResult(inserted=1))

    def test_option_name_layout_rejects_stray_keys(self):
        with self.assertRaises(ValidationError):
            self.posts.import_widget_instances_from_json(
                {"widget_search": {"2": {}}, "search-3": {}}
            )

    def test_unknown_id_base_is_skipped(self):
        data = {"search": {"2": {"title": "a"}}, "bogus": {"2": {}, "3": {}}}
        with self.assertLogs("widgets.posts", level="WARNING"):
            result = self.posts.import_widget_instances_from_json(data)
        self.assertEqual(result, MigrationResult(inserted=1, skipped=2))

    def test_rejects_non_object(self):
        with self.assertRaises(ValidationError):
            self.posts.import_widget_instances_from_json([1, 2])


class MoveLegacyContentTests(WidgetPostsTestCase):
    def test_moves_side_channel_into_content(self):
        moved_events = []

        def receiver(sender, **kwargs):
            moved_events.append(kwargs)

        content_moved.connect(receiver, weak=False)
        self.addCleanup(content_moved.disconnect, receiver)
        WidgetInstance.objects.create(
            widget_id="search-2", legacy_content=encode_legacy_content({"title": "old"})
        )
        WidgetInstance.objects.create(widget_id="search-3", legacy_content="!!not base64!!")

        moved = self.posts.move_legacy_content()

        self.assertEqual(moved, 1)
        doc = WidgetInstance.objects.get(widget_id="search-2")
        self.assertEqual(json.loads(doc.content), {"title": "old"})
        self.assertEqual(doc.legacy_content, "")
        self.assertEqual(
            sorted(event["type"] for event in moved_events), ["success", "warning"]
        )

    def test_dry_run_leaves_documents(self):
        legacy = encode_legacy_content({"title": "old"})
        WidgetInstance.objects.create(widget_id="search-2", legacy_content=legacy)
        self.assertEqual(self.posts.move_legacy_content(dry_run=True), 1)
        self.assertEqual(WidgetInstance.objects.get(widget_id="search-2").legacy_content, legacy)


class ConfigTests(WidgetPostsTestCase):
    def test_config_merges_settings(self):
        with self.settings(WIDGET_POSTS={"migrate_batch_size": 7}):
            self.assertEqual(self.posts.config("migrate_batch_size"), 7)
            self.assertEqual(self.posts.config("allocation_retries"), 5)
        self.assertIsNone(self.posts.config("unknown"))
        self.assertEqual(WidgetPosts.default_config()["customized_param"], "customized")

    def test_enable_disable(self):
        self.assertTrue(self.posts.is_enabled())
        self.assertTrue(self.posts.disable())
        self.assertFalse(self.posts.is_enabled())
        self.assertFalse(self.posts.disable())
        self.assertTrue(self.posts.enable())
