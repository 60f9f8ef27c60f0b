from django.http import JsonResponse

from .exceptions import WidgetNumberRequestError
from .numbers import request_incr_widget_number


def incr_widget_number(request):
    try:
        if request.method != "POST":
            raise WidgetNumberRequestError("POST method required", 405)
        params = {
            "nonce": request.POST.get("nonce"),
            "id_base": request.POST.get("idBase"),
        }
        data = request_incr_widget_number(getattr(request, "user", None), params)
    except WidgetNumberRequestError as exc:
        return JsonResponse(
            {"success": False, "data": {"code": exc.code, "message": str(exc)}},
            status=exc.code,
        )
    return JsonResponse({"success": True, "data": data})
