"""
Error handling views.
JSON 404 and 500 handlers; every client of this service speaks JSON.
"""

import logging

from django.http import HttpRequest, JsonResponse

logger = logging.getLogger(__name__)


def error_404(request: HttpRequest, exception: Exception) -> JsonResponse:
    logger.warning(f"404 error for path: {request.path}", extra={"request": request})
    return JsonResponse({"ok": False, "success": False, "error": "Not found"}, status=404)


def error_500(request: HttpRequest) -> JsonResponse:
    logger.error(f"500 error for path: {request.path}", extra={"request": request})
    return JsonResponse({"ok": False, "success": False, "error": "Internal server error"}, status=500)
