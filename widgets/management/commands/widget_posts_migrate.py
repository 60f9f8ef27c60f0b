from django.core.management.base import BaseCommand, CommandError

from core.plugins import registry
from widgets.context import WidgetRequestContext
from widgets.exceptions import WidgetPostsError
from widgets.management.reporting import ImportReporter
from widgets.posts import WidgetPosts


class Command(BaseCommand):
    help = "Copy widget instances from widget_{id_base} options into widget instance documents."

    def add_arguments(self, parser):
        parser.add_argument(
            "id_bases",
            nargs="*",
            help="Widget id_bases to migrate. Defaults to every registered widget type.",
        )
        parser.add_argument(
            "--update",
            action="store_true",
            default=False,
            help="Overwrite instances that were already migrated.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            default=False,
            help="Report what would be migrated without writing anything.",
        )

    def handle(self, *args, **options):
        id_bases = options["id_bases"]
        for id_base in id_bases:
            if not registry.is_recognized_widget_type(id_base):
                raise CommandError(f"Unrecognized id_base: {id_base}")

        posts = WidgetPosts()
        context = WidgetRequestContext()
        reporter = ImportReporter(self)
        try:
            with reporter.connected():
                result = posts.migrate_widgets_from_options(
                    context,
                    id_bases=id_bases,
                    update=options["update"],
                    dry_run=options["dry_run"],
                )
        except WidgetPostsError as exc:
            raise CommandError(f"{type(exc).__name__}: {exc}") from exc
        finally:
            context.close()
        reporter.write_summary(result)
