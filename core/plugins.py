from __future__ import annotations

from abc import ABC, abstractmethod


class BaseWidget(ABC):
    slug: str = ""
    label: str = ""
    template_name: str = ""

    def update(self, new_instance: dict, old_instance: dict) -> dict:
        """Sanitize a submitted instance against the previously stored one.

        Subclasses return the instance that should be persisted. The default
        keeps the submitted values as-is.
        """
        return dict(new_instance)

    @abstractmethod
    def render(self, config: dict, request=None) -> str: ...


class BasePlugin:
    name: str = ""
    label: str = ""
    description: str = ""

    def get_widget_types(self) -> list[type[BaseWidget]]:
        return []


class PluginRegistry:
    def __init__(self):
        self._plugins: dict[str, BasePlugin] = {}

    def register(self, plugin: BasePlugin) -> None:
        self._plugins[plugin.name] = plugin

    def unregister(self, name: str) -> None:
        self._plugins.pop(name, None)

    def get_all_widget_types(self) -> list[type[BaseWidget]]:
        types = []
        for plugin in self._plugins.values():
            types.extend(plugin.get_widget_types())
        return types

    def get_widget_type(self, slug: str) -> type[BaseWidget] | None:
        for cls in self.get_all_widget_types():
            if cls.slug == slug:
                return cls
        return None

    def is_recognized_widget_type(self, slug: str) -> bool:
        return bool(slug) and self.get_widget_type(slug) is not None

    def widget_slugs(self) -> list[str]:
        return [cls.slug for cls in self.get_all_widget_types()]


registry = PluginRegistry()
