"""
Contest submission rules.

One drawing per user per theme. The gate is consulted before the image goes to
the CDN and again right before the row is written; the store's unique
constraint settles whatever race remains between the two.
"""

import logging
from typing import Optional

from .errors import AlreadySubmitted, NoActiveTheme, SubmissionClosed, ValidationFailed
from .media import ImageUpload, MediaUploader
from .schemas import DrawingOut, ThemeOut, UserSummary
from .store import DataStore
from .themes import ThemeResolver

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled"
DEFAULT_LATE_TITLE = "Untitled (late)"


class SubmissionGate:
    def __init__(self, store: DataStore, resolver: ThemeResolver):
        self.store = store
        self.resolver = resolver

    def can_submit(self, user_id: str, theme_id: str) -> bool:
        return self.store.find_drawing(user_id, theme_id) is None

    def check(self, user_id: str, theme_id: str) -> None:
        if not self.can_submit(user_id, theme_id):
            raise AlreadySubmitted()

    def ensure_open(self, theme: ThemeOut) -> None:
        if self.resolver.deadline_passed(theme):
            raise SubmissionClosed()


def active_theme(store: DataStore, resolver: ThemeResolver) -> ThemeOut:
    resolution = resolver.resolve(store.themes_on(resolver.today(), active_only=True))
    if not resolution.is_active:
        raise NoActiveTheme()
    return resolution.theme


def _write(
    store: DataStore,
    gate: SubmissionGate,
    uploader: MediaUploader,
    user: UserSummary,
    theme: ThemeOut,
    image: ImageUpload,
    title: str,
    description: Optional[str],
    enforce_deadline: bool,
) -> DrawingOut:
    image_url = uploader.upload(image)
    # the upload may have run past midnight
    if enforce_deadline:
        gate.ensure_open(theme)
    gate.check(user.id, theme.id)
    drawing = store.create_drawing(
        user_id=user.id,
        theme_id=theme.id,
        image_url=image_url,
        title=title,
        description=description,
        created_at=gate.resolver.clock(),
    )
    logger.info("Drawing %s submitted by %s for theme %s", drawing.id, user.id, theme.id)
    return drawing


def submit_drawing(
    store: DataStore,
    resolver: ThemeResolver,
    uploader: MediaUploader,
    user: UserSummary,
    image: ImageUpload,
    title: str = "",
    description: Optional[str] = None,
) -> DrawingOut:
    """Upload today's drawing."""
    image.validate()
    theme = active_theme(store, resolver)
    gate = SubmissionGate(store, resolver)
    gate.ensure_open(theme)
    gate.check(user.id, theme.id)
    return _write(
        store, gate, uploader, user, theme, image,
        (title or "").strip() or DEFAULT_TITLE,
        (description or "").strip() or None,
        enforce_deadline=True,
    )


def late_themes(store: DataStore, resolver: ThemeResolver, user_id: str) -> list[ThemeOut]:
    themes = store.list_themes(active_only=True, until=resolver.today())
    submitted = store.submitted_theme_ids(user_id)
    return resolver.late_eligible(themes, submitted)


def submit_late_drawing(
    store: DataStore,
    resolver: ThemeResolver,
    uploader: MediaUploader,
    user: UserSummary,
    theme_id: str,
    image: ImageUpload,
    title: str = "",
    description: Optional[str] = None,
) -> DrawingOut:
    """Post a drawing for an earlier theme; it will show up flagged as late."""
    image.validate()
    if not theme_id:
        raise ValidationFailed("Choose a theme")
    theme = store.get_theme(theme_id)
    if not theme.is_active or theme.date > resolver.today():
        raise ValidationFailed("This theme is not open for late posts")
    gate = SubmissionGate(store, resolver)
    gate.check(user.id, theme.id)
    return _write(
        store, gate, uploader, user, theme, image,
        (title or "").strip() or DEFAULT_LATE_TITLE,
        (description or "").strip() or None,
        enforce_deadline=False,
    )
