"""
Blob storage for record files.

Two backends share the ``BlobStore`` interface:

* ``LocalBlobStore`` keeps files under a directory and issues signed URLs
  pointing back at this service (``/record/blob?token=...``).
* ``HttpBlobStore`` talks to a storage REST API (object upload, signed URL,
  bulk remove) with ``requests``.

Signed URLs are capability tokens: once issued they work until their TTL
runs out, whatever happens to the access permission in the meantime.
"""

import logging
import os
from abc import ABC, abstractmethod
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from urllib.parse import quote

import jwt
import requests

from medportal.config import settings
from medportal.exceptions import InvalidRequest, NotFound, UpstreamFailure
from medportal.utils.clock import utcnow

logger = logging.getLogger(__name__)

BLOB_TOKEN_TYPE = "blob"


def validate_path(path: str) -> str:
    """Reject paths that could escape the bucket: absolute, empty, or with '..' segments."""
    if not path or path.startswith("/") or "\\" in path:
        raise InvalidRequest(f"Invalid storage path '{path}'.")
    parts = path.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise InvalidRequest(f"Invalid storage path '{path}'.")
    return path


class BlobStore(ABC):

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str = None) -> None:
        ...

    @abstractmethod
    def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        ...

    @abstractmethod
    def remove(self, path: str) -> None:
        ...


class LocalBlobStore(BlobStore):
    def __init__(self, root: str, public_base_url: str, secret_key: str, algorithm: str = "HS256"):
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self._secret_key = secret_key
        self._algorithm = algorithm

    def _full_path(self, path: str) -> Path:
        full = (self.root / validate_path(path)).resolve()
        if self.root not in full.parents:
            raise InvalidRequest(f"Invalid storage path '{path}'.")
        return full

    def upload(self, path: str, data: bytes, content_type: str = None) -> None:
        full = self._full_path(path)
        if full.exists():
            raise UpstreamFailure(f"Object '{path}' already exists.")
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(data)
        except OSError as e:
            raise UpstreamFailure(f"Storage upload failed: {e}")
        logger.debug("Blob stored. path=%s bytes=%d", path, len(data))

    def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        if not self._full_path(path).is_file():
            raise NotFound("Stored file not found.")
        token = jwt.encode(
            {"path": path, "typ": BLOB_TOKEN_TYPE, "exp": utcnow() + timedelta(seconds=ttl_seconds)},
            self._secret_key,
            algorithm=self._algorithm,
        )
        return f"{self.public_base_url}/record/blob?token={quote(token)}"

    def resolve_signed_token(self, token: str) -> Path:
        """Check a signed-URL token and return the file it grants. Only signature and expiry are checked."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise InvalidRequest("Download link has expired.")
        except jwt.InvalidTokenError:
            raise InvalidRequest("Invalid download link.")
        if payload.get("typ") != BLOB_TOKEN_TYPE:
            raise InvalidRequest("Invalid download link.")
        full = self._full_path(payload.get("path", ""))
        if not full.is_file():
            raise NotFound("Stored file not found.")
        return full

    def remove(self, path: str) -> None:
        full = self._full_path(path)
        try:
            full.unlink(missing_ok=True)
        except OSError as e:
            raise UpstreamFailure(f"Storage removal failed: {e}")
        parent = full.parent
        if parent != self.root and parent.is_dir() and not any(parent.iterdir()):
            try:
                os.rmdir(parent)
            except OSError as e:
                # another upload may have landed in the folder meanwhile
                logger.debug("Kept blob folder. path=%s error=%s", parent, e)


class HttpBlobStore(BlobStore):
    def __init__(self, base_url: str, bucket: str, api_key: str = None, timeout: int = 30, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}", "apikey": api_key})

    def _object_url(self, *parts: str) -> str:
        return "/".join([self.base_url, "object", *parts])

    def _call(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamFailure(f"Storage request failed: {e}")
        if response.status_code >= 400:
            logger.error("Storage call failed. method=%s url=%s status=%s", method, url, response.status_code)
            raise UpstreamFailure(f"Storage returned HTTP {response.status_code}.")
        return response

    def upload(self, path: str, data: bytes, content_type: str = None) -> None:
        validate_path(path)
        self._call(
            "POST",
            self._object_url(self.bucket, quote(path)),
            data=data,
            headers={"Content-Type": content_type or "application/octet-stream", "x-upsert": "false"},
        )

    def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        validate_path(path)
        response = self._call(
            "POST",
            self._object_url("sign", self.bucket, quote(path)),
            json={"expiresIn": ttl_seconds},
        )
        try:
            body = response.json()
        except ValueError:
            raise UpstreamFailure("Storage returned an invalid response.")
        signed = body.get("signedURL") or body.get("signedUrl")
        if not signed:
            raise UpstreamFailure("Storage returned no signed URL.")
        if signed.startswith("http://") or signed.startswith("https://"):
            return signed
        return f"{self.base_url}/{signed.lstrip('/')}"

    def remove(self, path: str) -> None:
        validate_path(path)
        self._call("DELETE", self._object_url(self.bucket), json={"prefixes": [path]})


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    if settings.blob_backend == "http":
        if not settings.storage_url:
            raise RuntimeError("STORAGE_URL must be set when BLOB_BACKEND=http")
        return HttpBlobStore(
            settings.storage_url,
            settings.storage_bucket,
            api_key=settings.storage_api_key,
            timeout=settings.storage_timeout,
        )
    return LocalBlobStore(settings.blob_root, settings.public_base_url, settings.secret_key, settings.jwt_algorithm)
