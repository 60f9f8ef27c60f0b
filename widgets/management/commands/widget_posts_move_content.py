from django.core.management.base import BaseCommand

from widgets.management.reporting import ImportReporter
from widgets.posts import WidgetPosts


class Command(BaseCommand):
    help = "Move widget instances out of the legacy content field into primary content."

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            default=False,
            help="Report what would be moved without writing anything.",
        )

    def handle(self, *args, **options):
        reporter = ImportReporter(self)
        with reporter.connected():
            moved = WidgetPosts().move_legacy_content(dry_run=options["dry_run"])
        self.stdout.write(self.style.SUCCESS(f"Done. Moved {moved} widget instances."))
