"""HTTP adapters for the media CDN and the hosted auth provider."""

import pytest
import requests

from conftest import PNG
from drawing_contest import auth, media
from drawing_contest.auth import HostedAuthProvider
from drawing_contest.errors import ServiceUnavailable
from drawing_contest.media import CloudinaryUploader, ImageUpload


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.payload = payload or {}
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self.payload


def image():
    return ImageUpload(filename="cat.png", content_type="image/png", data=PNG)


def test_cloudinary_upload(monkeypatch):
    calls = []

    def fake_post(url, data, files, timeout):
        calls.append((url, data, files))
        return FakeResponse(payload={"secure_url": "https://res.cloudinary.com/demo/cat.png"})

    monkeypatch.setattr(media.requests, "post", fake_post)
    uploader = CloudinaryUploader("demo", "unsigned")
    assert uploader.upload(image()) == "https://res.cloudinary.com/demo/cat.png"

    url, data, files = calls[0]
    assert url == "https://api.cloudinary.com/v1_1/demo/image/upload"
    assert data == {"upload_preset": "unsigned"}
    assert files["file"] == ("cat.png", PNG, "image/png")


@pytest.mark.parametrize(
    "outcome",
    [
        FakeResponse(status_code=500, text="boom"),
        FakeResponse(payload={}),
        requests.ConnectionError("offline"),
    ],
)
def test_cloudinary_failures_are_retryable(monkeypatch, outcome):
    def fake_post(*args, **kwargs):
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(media.requests, "post", fake_post)
    with pytest.raises(ServiceUnavailable):
        CloudinaryUploader("demo", "unsigned").upload(image())


def test_cloudinary_needs_configuration():
    with pytest.raises(ServiceUnavailable):
        CloudinaryUploader("", "").upload(image())


def test_auth_provider_identifies_token(monkeypatch):
    seen = {}

    def fake_get(url, headers, timeout):
        seen.update(url=url, headers=headers)
        return FakeResponse(payload={
            "id": "u-1", "email": "alice@example.com", "user_metadata": {"name": "Alice"},
        })

    monkeypatch.setattr(auth.requests, "get", fake_get)
    identity = HostedAuthProvider("https://auth.example.com/", "anon-key").identify("tok")

    assert (identity.id, identity.email, identity.name) == ("u-1", "alice@example.com", "Alice")
    assert seen["url"] == "https://auth.example.com/auth/v1/user"
    assert seen["headers"] == {"apikey": "anon-key", "Authorization": "Bearer tok"}


def test_auth_provider_rejects_expired_token(monkeypatch):
    monkeypatch.setattr(auth.requests, "get", lambda *a, **kw: FakeResponse(status_code=401))
    assert HostedAuthProvider("https://auth.example.com", "k").identify("old") is None


def test_auth_provider_outage(monkeypatch):
    monkeypatch.setattr(auth.requests, "get", lambda *a, **kw: FakeResponse(status_code=502))
    with pytest.raises(ServiceUnavailable):
        HostedAuthProvider("https://auth.example.com", "k").identify("tok")
