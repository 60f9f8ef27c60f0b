from core.plugins import BasePlugin


class WidgetsPlugin(BasePlugin):
    name = "widgets"
    label = "Widgets"
    description = "Search, archives and text widgets stored one instance per document."

    def get_widget_types(self):
        from .widget_types import ArchivesWidget, SearchWidget, TextWidget
        return [SearchWidget, ArchivesWidget, TextWidget]
