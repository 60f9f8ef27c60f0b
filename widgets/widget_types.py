from __future__ import annotations

import markdown
from django.template.loader import render_to_string
from django.utils.html import strip_tags
from django.utils.safestring import mark_safe

from core.plugins import BaseWidget


def _text_field(value) -> str:
    if value is None:
        return ""
    return strip_tags(str(value)).strip()


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.lower() in {"1", "true", "on", "yes"}
    return bool(value)


class SearchWidget(BaseWidget):
    slug = "search"
    label = "Search"
    template_name = "widgets/search_widget.html"

    def update(self, new_instance: dict, old_instance: dict) -> dict:
        instance = dict(old_instance)
        instance["title"] = _text_field(new_instance.get("title", ""))
        return instance

    def render(self, config: dict, request=None) -> str:
        return render_to_string(
            self.template_name,
            {"title": config.get("title", "")},
            request=request,
        )


class ArchivesWidget(BaseWidget):
    slug = "archives"
    label = "Archives"
    template_name = "widgets/archives_widget.html"

    def update(self, new_instance: dict, old_instance: dict) -> dict:
        instance = dict(old_instance)
        instance["title"] = _text_field(new_instance.get("title", ""))
        instance["count"] = 1 if _flag(new_instance.get("count")) else 0
        instance["dropdown"] = 1 if _flag(new_instance.get("dropdown")) else 0
        return instance

    def render(self, config: dict, request=None) -> str:
        # Months are provided by whatever view renders the page.
        archives = getattr(request, "archive_months", None) or []
        return render_to_string(
            self.template_name,
            {
                "title": config.get("title", ""),
                "archives": archives,
                "show_count": _flag(config.get("count")),
                "dropdown": _flag(config.get("dropdown")),
            },
            request=request,
        )


class TextWidget(BaseWidget):
    slug = "text"
    label = "Text / HTML Block"
    template_name = "widgets/text_widget.html"

    def update(self, new_instance: dict, old_instance: dict) -> dict:
        instance = dict(old_instance)
        instance["title"] = _text_field(new_instance.get("title", ""))
        instance["text"] = _text_field(new_instance.get("text"))
        return instance

    def render(self, config: dict, request=None) -> str:
        md = markdown.Markdown(extensions=["fenced_code"])
        content_html = mark_safe(md.convert(config.get("text", "")))
        return render_to_string(
            self.template_name,
            {"title": config.get("title", ""), "content_html": content_html},
            request=request,
        )
