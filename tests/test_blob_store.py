"""
Unit tests for the local and HTTP blob store backends.
"""

from urllib.parse import parse_qs, urlparse

import jwt
import pytest
import requests

from medportal.exceptions import InvalidRequest, NotFound, UpstreamFailure
from medportal.services import blob_store as blob_store_module
from medportal.services.blob_store import HttpBlobStore, validate_path


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    """Mimic requests.Session.request and record every call."""
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.calls = []
        self._response = response or FakeResponse()
        self._error = error

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self._error:
            raise self._error
        return self._response


def _token(url):
    return parse_qs(urlparse(url).query)["token"][0]


# ── Tests: path validation ───────────────────────────────────────────

@pytest.mark.parametrize("path", ["", "/abs/file", "a/../b", "a//b", "./a", "a\\b"])
def test_validate_path_rejects(path):
    with pytest.raises(InvalidRequest):
        validate_path(path)


def test_validate_path_accepts():
    assert validate_path("patient-1/123-abc.pdf") == "patient-1/123-abc.pdf"


# ── Tests: LocalBlobStore ────────────────────────────────────────────

def test_local_upload_sign_resolve_remove(blob_store):
    blob_store.upload("p1/file.pdf", b"hello")
    url = blob_store.create_signed_url("p1/file.pdf", 60)

    assert blob_store.resolve_signed_token(_token(url)).read_bytes() == b"hello"

    blob_store.remove("p1/file.pdf")
    assert not (blob_store.root / "p1").exists()
    with pytest.raises(NotFound):
        blob_store.resolve_signed_token(_token(url))


def test_local_upload_refuses_overwrite(blob_store):
    blob_store.upload("p1/file.pdf", b"one")
    with pytest.raises(UpstreamFailure):
        blob_store.upload("p1/file.pdf", b"two")


def test_local_sign_missing_file(blob_store):
    with pytest.raises(NotFound):
        blob_store.create_signed_url("p1/missing.pdf", 60)


def test_local_remove_missing_is_noop(blob_store):
    blob_store.remove("p1/missing.pdf")


def test_local_remove_tolerates_folder_race(blob_store, monkeypatch):
    blob_store.upload("p1/file.pdf", b"hello")

    def rmdir(path):
        raise OSError(39, "Directory not empty")

    monkeypatch.setattr(blob_store_module.os, "rmdir", rmdir)
    blob_store.remove("p1/file.pdf")

    assert not (blob_store.root / "p1" / "file.pdf").exists()


def test_local_expired_token(blob_store):
    blob_store.upload("p1/file.pdf", b"hello")
    url = blob_store.create_signed_url("p1/file.pdf", -1)
    with pytest.raises(InvalidRequest, match="expired"):
        blob_store.resolve_signed_token(_token(url))


def test_local_rejects_foreign_tokens(blob_store):
    blob_store.upload("p1/file.pdf", b"hello")
    forged = jwt.encode({"path": "p1/file.pdf", "typ": "blob"}, "another-secret-key-of-decent-length!!", algorithm="HS256")
    with pytest.raises(InvalidRequest):
        blob_store.resolve_signed_token(forged)

    wrong_type = jwt.encode({"path": "p1/file.pdf", "typ": "access"}, blob_store._secret_key, algorithm="HS256")
    with pytest.raises(InvalidRequest):
        blob_store.resolve_signed_token(wrong_type)


# ── Tests: HttpBlobStore ─────────────────────────────────────────────

def test_http_upload():
    session = FakeSession()
    store = HttpBlobStore("https://storage.example.com/v1/", "records", api_key="k", session=session)

    store.upload("p1/a b.pdf", b"data", "application/pdf")

    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == "https://storage.example.com/v1/object/records/p1/a%20b.pdf"
    assert kwargs["data"] == b"data"
    assert kwargs["headers"]["Content-Type"] == "application/pdf"
    assert session.headers["Authorization"] == "Bearer k"


def test_http_signed_url_relative():
    session = FakeSession(FakeResponse(200, {"signedURL": "/object/sign/records/p1/a.pdf?token=t"}))
    store = HttpBlobStore("https://storage.example.com/v1", "records", session=session)

    url = store.create_signed_url("p1/a.pdf", 3600)

    assert url == "https://storage.example.com/v1/object/sign/records/p1/a.pdf?token=t"
    assert session.calls[0][2]["json"] == {"expiresIn": 3600}


def test_http_signed_url_absolute():
    session = FakeSession(FakeResponse(200, {"signedUrl": "https://cdn.example.com/x?token=t"}))
    store = HttpBlobStore("https://storage.example.com/v1", "records", session=session)
    assert store.create_signed_url("p1/a.pdf", 60) == "https://cdn.example.com/x?token=t"


def test_http_signed_url_missing_in_response():
    store = HttpBlobStore("https://s", "records", session=FakeSession(FakeResponse(200, {})))
    with pytest.raises(UpstreamFailure):
        store.create_signed_url("p1/a.pdf", 60)


def test_http_remove():
    session = FakeSession()
    store = HttpBlobStore("https://s", "records", session=session)
    store.remove("p1/a.pdf")
    assert session.calls[0][:2] == ("DELETE", "https://s/object/records")
    assert session.calls[0][2]["json"] == {"prefixes": ["p1/a.pdf"]}


def test_http_errors_become_upstream_failures():
    store = HttpBlobStore("https://s", "records", session=FakeSession(FakeResponse(500)))
    with pytest.raises(UpstreamFailure, match="500"):
        store.upload("p1/a.pdf", b"x")

    store = HttpBlobStore("https://s", "records", session=FakeSession(error=requests.ConnectionError("down")))
    with pytest.raises(UpstreamFailure, match="down"):
        store.remove("p1/a.pdf")
