"""
Blob/object store used by the backup pipeline.

Thin wrapper over Django's storage backends (``STORAGES`` setting) exposing
the operations the pipeline needs: upload, download, delete and time-limited
signed download URLs.
"""

import logging

from django.conf import settings
from django.core import signing
from django.core.files.base import ContentFile
from django.core.files.storage import storages
from django.urls import reverse

from .constants import SIGNED_URL_MAX_AGE, SIGNED_URL_SALT
from .exceptions import BlobNotFound

logger = logging.getLogger(__name__)


class BlobStore:
    """One bucket, backed by the Django storage registered under ``alias``."""

    def __init__(self, alias: str = "default"):
        self.alias = alias

    @property
    def storage(self):
        return storages[self.alias]

    def upload(self, path: str, content: bytes, overwrite: bool = True) -> str:
        """
        Write ``content`` at ``path`` and return the name it was stored under.

        With ``overwrite`` an existing object is replaced, so a retried upload
        to a deterministic path never leaves a second copy behind. Without it
        the storage may pick another name, which callers must record.
        """
        if overwrite and self.storage.exists(path):
            self.storage.delete(path)
        saved_path = self.storage.save(path, ContentFile(content))
        if saved_path != path:
            logger.warning(f"Storage '{self.alias}' renamed {path} to {saved_path}")
        return saved_path

    def download(self, path: str) -> bytes:
        if not path:
            raise BlobNotFound("Empty blob path")
        try:
            with self.storage.open(path, "rb") as fh:
                return fh.read()
        except (FileNotFoundError, OSError) as e:
            raise BlobNotFound(f"{self.alias}:{path}: {e}") from e

    def exists(self, path: str) -> bool:
        return bool(path) and self.storage.exists(path)

    def delete(self, path: str) -> None:
        if self.exists(path):
            self.storage.delete(path)

    def sign_url(self, path: str) -> str:
        """Relative URL that serves ``path`` until the signature expires."""
        token = signing.dumps({"a": self.alias, "p": path}, salt=SIGNED_URL_SALT)
        return reverse("tours:blob_download", kwargs={"token": token})


def signed_url_max_age() -> int:
    return getattr(settings, "TOURKEEP_SIGNED_URL_MAX_AGE", SIGNED_URL_MAX_AGE)


def resolve_signed_token(token: str) -> tuple["BlobStore", str]:
    """
    Validate a token produced by ``BlobStore.sign_url``.

    Raises ``signing.BadSignature`` (or its subclass ``SignatureExpired``).
    """
    payload = signing.loads(token, salt=SIGNED_URL_SALT, max_age=signed_url_max_age())
    return BlobStore(payload["a"]), payload["p"]


def tour_images() -> BlobStore:
    return BlobStore("default")


def backup_archives() -> BlobStore:
    return BlobStore("backups")


def backup_destination() -> BlobStore:
    return BlobStore("backup_destination")
