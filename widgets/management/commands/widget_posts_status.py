from django.core.management.base import BaseCommand, CommandError

from widgets.posts import WidgetPosts


class Command(BaseCommand):
    help = "Show, enable or disable storing widget instances as individual documents."

    def add_arguments(self, parser):
        group = parser.add_mutually_exclusive_group()
        group.add_argument("--enable", action="store_true", default=False)
        group.add_argument("--disable", action="store_true", default=False)

    def handle(self, *args, **options):
        posts = WidgetPosts()
        if options["enable"]:
            if posts.is_enabled():
                self.stdout.write(self.style.WARNING("Widget Posts already enabled."))
            elif posts.enable():
                self.stdout.write(self.style.SUCCESS("Widget Posts enabled."))
            else:
                raise CommandError("Failed to enable Widget Posts.")
        elif options["disable"]:
            if not posts.is_enabled():
                self.stdout.write(self.style.WARNING("Widget Posts already disabled."))
            elif posts.disable():
                self.stdout.write(self.style.SUCCESS("Widget Posts disabled."))
            else:
                raise CommandError("Failed to disable Widget Posts.")
        else:
            state = "enabled" if posts.is_enabled() else "disabled"
            self.stdout.write(f"Widget Posts {state}.")
