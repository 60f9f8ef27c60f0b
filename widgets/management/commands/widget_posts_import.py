import json
import sys

from django.core.management.base import BaseCommand, CommandError

from widgets.exceptions import WidgetPostsError
from widgets.management.reporting import ImportReporter
from widgets.posts import WidgetPosts


class Command(BaseCommand):
    help = "Import widget instances from a JSON file (use - for stdin)."

    def add_arguments(self, parser):
        parser.add_argument("file", help="Path to the JSON export, or - to read stdin.")
        parser.add_argument(
            "--update",
            action="store_true",
            default=False,
            help="Overwrite instances that already exist.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            default=False,
            help="Report what would be imported without writing anything.",
        )

    def read_json(self, path):
        try:
            if path == "-":
                raw = sys.stdin.read()
            else:
                with open(path, encoding="utf-8") as fh:
                    raw = fh.read()
        except OSError as exc:
            raise CommandError(f"{path} could not be read: {exc}") from exc
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise CommandError(f"JSON parse error: {exc}") from exc

    def handle(self, *args, **options):
        data = self.read_json(options["file"])
        reporter = ImportReporter(self)
        try:
            with reporter.connected():
                result = WidgetPosts().import_widget_instances_from_json(
                    data, update=options["update"], dry_run=options["dry_run"]
                )
        except WidgetPostsError as exc:
            raise CommandError(f"{type(exc).__name__}: {exc}") from exc
        reporter.write_summary(result)
