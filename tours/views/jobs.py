"""
Job control endpoints.

- /api/jobs/: backup queue, worker steps and continuations, status and downloads
- /api/photo-sync/: client-facing photo sync jobs

Both take a JSON body with an ``action`` field.
"""

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from ..exceptions import PermanentBackupError, RecordNotFound
from ..jobs import handle_job_action, handle_photo_sync_action
from .helpers import json_err, parse_json_body, require_job_token

logger = logging.getLogger(__name__)


def _run(request: HttpRequest, handler, **kwargs) -> JsonResponse:
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return json_err(str(e), status=400)

    try:
        result = handler(body, **kwargs)
    except RecordNotFound as e:
        return json_err(str(e), status=404)
    except PermanentBackupError as e:
        return json_err(str(e), status=400)
    except Exception as e:
        logger.exception(f"Job action {body.get('action')} failed")
        return json_err("Job action failed", status=500, details=str(e))

    return JsonResponse(result)


@csrf_exempt
@require_POST
@require_job_token
def jobs(request: HttpRequest) -> JsonResponse:
    """
    Job-control actions: process_queue, process_job, continue,
    cleanup_stuck_jobs, enqueue, get_status, get_download_urls,
    cancel_backup, restore.
    """
    return _run(request, handle_job_action, absolute_url=request.build_absolute_uri)


@csrf_exempt
@require_POST
def photo_sync(request: HttpRequest) -> JsonResponse:
    """Photo sync actions: start_job, get_progress, cancel_job, resume_job, sync_floor_plans."""
    return _run(request, handle_photo_sync_action)
