import json

from django.core.management.base import BaseCommand

from widgets.posts import WidgetPosts


class Command(BaseCommand):
    help = "Print the stored instance of a widget as JSON."

    def add_arguments(self, parser):
        parser.add_argument("widget_id", help='Widget ID, e.g. "search-3".')

    def handle(self, *args, **options):
        widget_id = options["widget_id"]
        posts = WidgetPosts()
        document = posts.get_widget_post(widget_id)
        if document is None:
            self.stderr.write(self.style.WARNING(f"Widget post {widget_id} does not exist."))
            return
        data = posts.get_widget_instance_data(document)
        self.stdout.write(json.dumps(data, indent=4, ensure_ascii=False))
