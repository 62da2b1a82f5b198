from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from drawing_contest import models
from drawing_contest.auth import Identity
from drawing_contest.config import Settings
from drawing_contest.errors import ServiceUnavailable
from drawing_contest.main import create_app

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def utc(iso: str) -> datetime:
    return datetime.fromisoformat(iso.replace("Z", "+00:00")).astimezone(timezone.utc)


class FakeClock:
    def __init__(self, now: str = "2024-06-02T10:00:00Z"):
        self.now = utc(now)

    def __call__(self) -> datetime:
        return self.now

    def set(self, iso: str) -> None:
        self.now = utc(iso)


class FakeAuth:
    def __init__(self):
        self.tokens: dict[str, Identity] = {}

    def add(self, token: str, user_id: str, email: str, name: str | None = None) -> dict:
        self.tokens[token] = Identity(id=user_id, email=email, name=name)
        return {"Authorization": f"Bearer {token}"}

    def identify(self, token: str):
        return self.tokens.get(token)


class FakeUploader:
    def __init__(self):
        self.uploads = []
        self.fail = False
        self.before_return = None

    def upload(self, image) -> str:
        if self.fail:
            raise ServiceUnavailable("Image upload failed, please try again")
        self.uploads.append(image)
        if self.before_return is not None:
            self.before_return()
        return f"https://cdn.example.com/{len(self.uploads)}/{image.filename}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_auth():
    return FakeAuth()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def app(clock, fake_auth, uploader):
    settings = Settings(
        database_url="sqlite://",
        reference_timezone="Europe/Paris",
        quiet_start_hour=0,
        quiet_end_hour=6,
        log_level="WARNING",
    )
    return create_app(settings, auth=fake_auth, uploader=uploader, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def seed(app, client):
    """Insert rows directly, bypassing the API."""

    class Seeder:
        def _add(self, row):
            with app.state.session_factory() as session:
                session.add(row)
                session.commit()
                return row

        def user(self, user_id: str, email: str | None = None, name: str | None = None, is_admin=False):
            return self._add(models.User(
                id=user_id, email=email or f"{user_id}@example.com", name=name, is_admin=is_admin
            ))

        def theme(self, title: str, day: str, is_active=True, theme_id: str | None = None):
            return self._add(models.Theme(
                id=theme_id or models.new_id(),
                title=title,
                date=date.fromisoformat(day),
                is_active=is_active,
            ))

        def drawing(self, user_id: str, theme_id: str | None, created_at: str, title="Drawing"):
            return self._add(models.Drawing(
                user_id=user_id,
                theme_id=theme_id,
                image_url=f"https://cdn.example.com/{title}.png",
                title=title,
                created_at=utc(created_at),
            ))

    return Seeder()
