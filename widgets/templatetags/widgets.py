import logging

from django import template
from django.utils.safestring import mark_safe

register = template.Library()
logger = logging.getLogger(__name__)


@register.simple_tag(takes_context=True)
def render_widget(context, widget_id: str) -> str:
    from core.plugins import registry
    from widgets.posts import WidgetPosts, parse_widget_id
    from widgets.preview import get_setting_id

    parsed = parse_widget_id(widget_id)
    if parsed is None:
        return ""
    id_base, number = parsed
    cls = registry.get_widget_type(id_base)
    if cls is None:
        return ""

    request = context.get("request")
    widget_context = getattr(request, "widget_context", None)
    overlay = getattr(widget_context, "overlay", None)
    if overlay is not None:
        instance = overlay.current_value(get_setting_id(widget_id))
    else:
        instance = WidgetPosts().get_record(id_base, number, context=widget_context)
    try:
        return mark_safe(cls().render(instance or {}, request=request))
    except Exception:
        logger.exception("Widget %s failed to render", widget_id)
        return ""
