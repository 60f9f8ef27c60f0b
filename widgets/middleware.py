import json
import logging

from django.http import JsonResponse

from .conf import get_config
from .context import WidgetRequestContext
from .exceptions import WidgetPostsError
from .preview import SAVE_ACTION, prepare_request

logger = logging.getLogger(__name__)


def _parse_customized(raw) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring undecodable %s payload", get_config("customized_param"))
        return {}
    return value if isinstance(value, dict) else {}


class WidgetRequestContextMiddleware:
    """Give every request its own widget context and tear it down afterwards."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        param = get_config("customized_param")
        raw = request.POST.get(param) if request.method == "POST" else request.GET.get(param)
        user = getattr(request, "user", None)
        context = WidgetRequestContext(
            user=user,
            post_values=_parse_customized(raw),
            action=request.POST.get("action", "") if request.method == "POST" else "",
            widget_id=request.POST.get("widget-id", "") if request.method == "POST" else "",
        )
        request.widget_context = context
        try:
            overlay = prepare_request(context)
            if context.action == SAVE_ACTION:
                try:
                    overlay.promote_on_save()
                except WidgetPostsError as exc:
                    logger.warning("Customizer save failed: %s", exc)
                    return JsonResponse(
                        {"success": False, "data": {"code": 400, "message": str(exc)}},
                        status=400,
                    )
            return self.get_response(request)
        finally:
            context.close()
