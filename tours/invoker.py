"""
Invocation of the job handler.

The worker re-invokes itself to continue a multipart backup, and photo sync
jobs are started in the background the same way. The concrete invoker is
chosen with the ``TOURKEEP_JOB_INVOKER`` setting.
"""

import logging
import threading
from typing import Any, Optional

import requests
from django.conf import settings
from django.urls import reverse
from django.utils.module_loading import import_string

from .constants import EXTERNAL_API_TIMEOUT, FIRE_AND_FORGET_TIMEOUT

logger = logging.getLogger(__name__)

JOB_TOKEN_HEADER = "X-Job-Token"


class JobInvoker:
    """Interface: deliver a JSON body to the job handler."""

    def invoke(self, body: dict[str, Any], wait: bool = False) -> Optional[dict[str, Any]]:
        raise NotImplementedError


class HttpJobInvoker(JobInvoker):
    """
    POST the body to this deployment's job endpoint.

    With ``wait=False`` the request runs on a daemon thread and the caller
    returns at once; the durable queue covers a request that never arrives.
    """

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None):
        self.base_url = (base_url or settings.TOURKEEP_SELF_URL).rstrip("/")
        self.token = token if token is not None else getattr(settings, "TOURKEEP_JOB_TOKEN", "")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{reverse('tours:jobs')}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers[JOB_TOKEN_HEADER] = self.token
        return headers

    def invoke(self, body, wait=False):
        if wait:
            response = requests.post(self.endpoint, json=body, headers=self._headers(), timeout=EXTERNAL_API_TIMEOUT)
            response.raise_for_status()
            return response.json()

        thread = threading.Thread(target=self._fire, args=(body,), daemon=True)
        thread.start()
        return None

    def _fire(self, body: dict[str, Any]) -> None:
        try:
            requests.post(self.endpoint, json=body, headers=self._headers(), timeout=FIRE_AND_FORGET_TIMEOUT)
        except requests.Timeout:
            # The handler keeps running server side; we only stop waiting for it.
            logger.debug(f"Fire-and-forget {body.get('action')} sent, not waiting for the response")
        except requests.RequestException as e:
            logger.warning(f"Fire-and-forget {body.get('action')} failed: {e}; the queue will pick it up")


class QueueOnlyJobInvoker(JobInvoker):
    """
    Deliver nothing and rely on the durable queue.

    Use when a long-running process drains the queue in a loop
    (``manage.py process_backup_queue --loop``).
    """

    def invoke(self, body, wait=False):
        logger.debug(f"Leaving {body.get('action')} to the queue processor")
        return None


class InlineJobInvoker(JobInvoker):
    """Run the handler in-process, synchronously."""

    def invoke(self, body, wait=False):
        from .jobs import handle_job_action

        return handle_job_action(body, invoker=self)


def get_job_invoker() -> JobInvoker:
    cls = import_string(getattr(settings, "TOURKEEP_JOB_INVOKER", "tours.invoker.HttpJobInvoker"))
    return cls()
