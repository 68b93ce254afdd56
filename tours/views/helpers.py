"""
Shared helpers for the JSON views.
"""

import hmac
import json
from functools import wraps
from typing import Any, Callable

from django.conf import settings
from django.http import HttpRequest, JsonResponse

from ..invoker import JOB_TOKEN_HEADER


# -------------------------------------------------------------------------------------------------
# JSON Response Helpers
# -------------------------------------------------------------------------------------------------

def json_ok(**payload: Any) -> JsonResponse:
    """Return a successful JSON response with ok=True."""
    data = {"ok": True}
    data.update(payload)
    return JsonResponse(data)


def json_err(msg: str, status: int = 400, **extra: Any) -> JsonResponse:
    """Return an error JSON response with ok=False."""
    data = {"ok": False, "success": False, "error": msg}
    data.update(extra)
    return JsonResponse(data, status=status)


def parse_json_body(request: HttpRequest) -> dict:
    """
    Decode a JSON object from the request body.

    Raises:
        ValueError: body is not a JSON object
    """
    try:
        body = json.loads(request.body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid JSON body: {e}")
    if not isinstance(body, dict):
        raise ValueError("JSON body must be an object")
    return body


# -------------------------------------------------------------------------------------------------
# Job Token
# -------------------------------------------------------------------------------------------------

def require_job_token(view: Callable) -> Callable:
    """
    Reject requests without the shared job token.

    Nothing is checked while ``TOURKEEP_JOB_TOKEN`` is empty (local development).
    """
    @wraps(view)
    def wrapper(request: HttpRequest, *args, **kwargs):
        expected = getattr(settings, "TOURKEEP_JOB_TOKEN", "")
        if expected:
            provided = request.headers.get(JOB_TOKEN_HEADER, "")
            if not hmac.compare_digest(provided, expected):
                return json_err("Invalid job token", status=403)
        return view(request, *args, **kwargs)
    return wrapper
