"""
Data-store adapter.

Wraps a SQLAlchemy session over the contest tables. Every query returns typed
Pydantic results (never ORM rows), and every committed write is published on
the change feed so live views can merge it.
"""

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from fastapi import Depends, Request
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .db import get_db
from .dates import as_utc
from .errors import AlreadySubmitted, NotFound
from .realtime import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed
from .schemas import (
    CommentLikeOut,
    CommentOut,
    DrawingOut,
    DrawingWithRelations,
    LikeState,
    ReactionOut,
    ThemeCreate,
    ThemeOut,
    ThemeSummary,
    TopDrawing,
    UserOut,
    UserSummary,
)

logger = logging.getLogger(__name__)


def _user(u: models.User) -> UserOut:
    return UserOut(
        id=u.id, email=u.email, name=u.name, is_admin=bool(u.is_admin),
        created_at=as_utc(u.created_at),
    )


def _summary(u: Optional[models.User]) -> Optional[UserSummary]:
    if u is None:
        return None
    return UserSummary(id=u.id, email=u.email, name=u.name)


def _theme(t: models.Theme) -> ThemeOut:
    return ThemeOut(
        id=t.id,
        title=t.title,
        description=t.description,
        date=t.date,
        is_active=bool(t.is_active),
        created_at=as_utc(t.created_at),
        reference_images=list(t.reference_images or []),
    )


def _drawing_fields(d: models.Drawing) -> dict:
    return dict(
        id=d.id,
        user_id=d.user_id,
        theme_id=d.theme_id,
        image_url=d.image_url,
        title=d.title,
        description=d.description,
        created_at=as_utc(d.created_at),
    )


def _drawing(d: models.Drawing, u: Optional[models.User], t: Optional[models.Theme]) -> DrawingWithRelations:
    return DrawingWithRelations(
        **_drawing_fields(d),
        user=_summary(u),
        theme=ThemeSummary(id=t.id, title=t.title, date=t.date) if t is not None else None,
    )


def _comment(c: models.Comment, u: Optional[models.User], likes: int = 0) -> CommentOut:
    return CommentOut(
        id=c.id,
        drawing_id=c.drawing_id,
        user_id=c.user_id,
        content=c.content,
        created_at=as_utc(c.created_at),
        updated_at=as_utc(c.updated_at) if c.updated_at else None,
        user=_summary(u),
        likes=likes,
    )


def _reaction(r: models.Reaction, u: Optional[models.User]) -> ReactionOut:
    return ReactionOut(
        id=r.id, drawing_id=r.drawing_id, user_id=r.user_id, emoji=r.emoji,
        created_at=as_utc(r.created_at), user=_summary(u),
    )


class DataStore:
    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed

    def _publish(self, table: str, type: str, new=None, old=None) -> None:
        if self.feed is None:
            return
        self.feed.publish(ChangeEvent(
            table=table,
            type=type,
            new=new.model_dump(mode="json") if new is not None else None,
            old=old.model_dump(mode="json") if old is not None else None,
        ))

    def _insert_statement(self, table):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"upsert is not supported on {dialect}")
        return insert(table)

    # =========================================================================
    # Users
    # =========================================================================

    def find_user(self, user_id: str) -> Optional[UserOut]:
        u = self.db.get(models.User, user_id)
        return _user(u) if u else None

    def get_user(self, user_id: str) -> UserOut:
        user = self.find_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def ensure_user(self, user_id: str, email: str, name: Optional[str] = None) -> UserOut:
        """Return the profile row for an authenticated identity, creating it on first sight."""
        u = self.db.get(models.User, user_id)
        if u is None:
            u = models.User(id=user_id, email=email, name=name)
            self.db.add(u)
            try:
                self.db.commit()
            except IntegrityError:
                # another request provisioned the same identity first
                self.db.rollback()
                u = self.db.get(models.User, user_id)
                if u is None:
                    raise
            else:
                logger.info("Provisioned user %s", user_id)
        return _user(u)

    # =========================================================================
    # Themes
    # =========================================================================

    def get_theme(self, theme_id: str) -> ThemeOut:
        t = self.db.get(models.Theme, theme_id)
        if t is None:
            raise NotFound("Theme not found")
        return _theme(t)

    def themes_on(self, day: date, active_only: bool = True) -> list[ThemeOut]:
        query = select(models.Theme).where(models.Theme.date == day)
        if active_only:
            query = query.where(models.Theme.is_active.is_(True))
        return [_theme(t) for t in self.db.execute(query.order_by(models.Theme.created_at)).scalars()]

    def list_themes(
        self,
        active_only: bool = False,
        until: Optional[date] = None,
        newest_first: bool = False,
    ) -> list[ThemeOut]:
        query = select(models.Theme)
        if active_only:
            query = query.where(models.Theme.is_active.is_(True))
        if until is not None:
            query = query.where(models.Theme.date <= until)
        order = models.Theme.date.desc() if newest_first else models.Theme.date.asc()
        return [_theme(t) for t in self.db.execute(query.order_by(order)).scalars()]

    def create_theme(self, payload: ThemeCreate, reference_images: Iterable[str] = ()) -> ThemeOut:
        t = models.Theme(
            title=payload.title,
            description=payload.description or None,
            date=payload.date,
            is_active=payload.is_active,
            reference_images=list(reference_images),
        )
        self.db.add(t)
        self.db.commit()
        theme = _theme(t)
        self._publish("themes", INSERT, new=theme)
        return theme

    def _update_theme(self, theme_id: str, **values) -> ThemeOut:
        t = self.db.get(models.Theme, theme_id)
        if t is None:
            raise NotFound("Theme not found")
        old = _theme(t)
        for key, value in values.items():
            setattr(t, key, value)
        self.db.commit()
        theme = _theme(t)
        self._publish("themes", UPDATE, new=theme, old=old)
        return theme

    def toggle_theme(self, theme_id: str) -> ThemeOut:
        return self._update_theme(theme_id, is_active=not self.get_theme(theme_id).is_active)

    def add_reference_image(self, theme_id: str, url: str) -> ThemeOut:
        images = self.get_theme(theme_id).reference_images
        return self._update_theme(theme_id, reference_images=images + [url])

    def remove_reference_image(self, theme_id: str, url: str) -> ThemeOut:
        images = self.get_theme(theme_id).reference_images
        return self._update_theme(theme_id, reference_images=[u for u in images if u != url])

    def delete_theme(self, theme_id: str) -> None:
        old = self.get_theme(theme_id)
        self.db.execute(delete(models.Theme).where(models.Theme.id == theme_id))
        self.db.commit()
        self._publish("themes", DELETE, old=old)

    # =========================================================================
    # Drawings
    # =========================================================================

    def _drawings_query(self):
        return (
            select(models.Drawing, models.User, models.Theme)
            .outerjoin(models.User, models.Drawing.user_id == models.User.id)
            .outerjoin(models.Theme, models.Drawing.theme_id == models.Theme.id)
        )

    def find_drawing(self, user_id: str, theme_id: str) -> Optional[DrawingOut]:
        d = self.db.execute(
            select(models.Drawing)
            .where(models.Drawing.user_id == user_id, models.Drawing.theme_id == theme_id)
            .limit(1)
        ).scalar_one_or_none()
        return DrawingOut(**_drawing_fields(d)) if d else None

    def submitted_theme_ids(self, user_id: str) -> set[str]:
        rows = self.db.execute(
            select(models.Drawing.theme_id).where(models.Drawing.user_id == user_id)
        ).scalars()
        return {theme_id for theme_id in rows if theme_id}

    def create_drawing(
        self,
        user_id: str,
        theme_id: str,
        image_url: str,
        title: str,
        description: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> DrawingOut:
        d = models.Drawing(
            user_id=user_id,
            theme_id=theme_id,
            image_url=image_url,
            title=title,
            description=description,
        )
        if created_at is not None:
            d.created_at = as_utc(created_at)
        self.db.add(d)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info("Duplicate drawing for user %s theme %s: %s", user_id, theme_id, e.orig)
            raise AlreadySubmitted() from e
        drawing = DrawingOut(**_drawing_fields(d))
        self._publish("drawings", INSERT, new=drawing)
        return drawing

    def get_drawing(self, drawing_id: str) -> DrawingWithRelations:
        row = self.db.execute(
            self._drawings_query().where(models.Drawing.id == drawing_id)
        ).first()
        if row is None:
            raise NotFound("Drawing not found")
        return _drawing(*row)

    def list_drawings(
        self,
        before: Optional[datetime] = None,
        since: Optional[datetime] = None,
        user_id: Optional[str] = None,
        theme_id: Optional[str] = None,
        newest_first: bool = True,
    ) -> list[DrawingWithRelations]:
        query = self._drawings_query()
        if before is not None:
            query = query.where(models.Drawing.created_at < as_utc(before))
        if since is not None:
            query = query.where(models.Drawing.created_at >= as_utc(since))
        if user_id is not None:
            query = query.where(models.Drawing.user_id == user_id)
        if theme_id is not None:
            query = query.where(models.Drawing.theme_id == theme_id)
        order = models.Drawing.created_at.desc() if newest_first else models.Drawing.created_at.asc()
        return [_drawing(*row) for row in self.db.execute(query.order_by(order))]

    def count_drawings(self, user_id: Optional[str] = None) -> int:
        query = select(func.count(models.Drawing.id))
        if user_id is not None:
            query = query.where(models.Drawing.user_id == user_id)
        return self.db.execute(query).scalar_one()

    def delete_drawing(self, drawing_id: str) -> None:
        d = self.db.get(models.Drawing, drawing_id)
        if d is None:
            raise NotFound("Drawing not found")
        old = DrawingOut(**_drawing_fields(d))
        likes = [
            CommentLikeOut(id=row.id, comment_id=row.comment_id, drawing_id=row.drawing_id, user_id=row.user_id)
            for row in self.db.execute(
                select(models.CommentLike).where(models.CommentLike.drawing_id == drawing_id)
            ).scalars()
        ]
        comments = self.list_comments(drawing_id)
        reactions = self.list_reactions(drawing_id)
        for table in (models.CommentLike, models.Comment, models.Reaction):
            self.db.execute(delete(table).where(table.drawing_id == drawing_id))
        self.db.delete(d)
        self.db.commit()
        # open live views of the drawing drop the removed rows
        for like in likes:
            self._publish("comment_likes", DELETE, old=like)
        for comment in comments:
            self._publish("comments", DELETE, old=comment)
        for reaction in reactions:
            self._publish("reactions", DELETE, old=reaction)
        self._publish("drawings", DELETE, old=old)

    # =========================================================================
    # Reactions
    # =========================================================================

    def list_reactions(self, drawing_id: str) -> list[ReactionOut]:
        rows = self.db.execute(
            select(models.Reaction, models.User)
            .outerjoin(models.User, models.Reaction.user_id == models.User.id)
            .where(models.Reaction.drawing_id == drawing_id)
            .order_by(models.Reaction.created_at.asc())
        )
        return [_reaction(*row) for row in rows]

    def _get_reaction(self, drawing_id: str, user_id: str) -> Optional[ReactionOut]:
        row = self.db.execute(
            select(models.Reaction, models.User)
            .outerjoin(models.User, models.Reaction.user_id == models.User.id)
            .where(models.Reaction.drawing_id == drawing_id, models.Reaction.user_id == user_id)
        ).first()
        return _reaction(*row) if row else None

    def upsert_reaction(self, drawing_id: str, user_id: str, emoji: str, now: datetime) -> ReactionOut:
        """Insert the user's reaction, or replace its emoji on (drawing_id, user_id) conflict."""
        old = self._get_reaction(drawing_id, user_id)
        stmt = self._insert_statement(models.Reaction).values(
            id=models.new_id(),
            drawing_id=drawing_id,
            user_id=user_id,
            emoji=emoji,
            created_at=as_utc(now),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["drawing_id", "user_id"],
            set_={"emoji": stmt.excluded.emoji},
        )
        self.db.execute(stmt)
        self.db.commit()
        self.db.expire_all()
        reaction = self._get_reaction(drawing_id, user_id)
        if old is None:
            self._publish("reactions", INSERT, new=reaction)
        else:
            self._publish("reactions", UPDATE, new=reaction, old=old)
        return reaction

    def delete_reaction(self, drawing_id: str, user_id: str) -> bool:
        old = self._get_reaction(drawing_id, user_id)
        if old is None:
            return False
        self.db.execute(
            delete(models.Reaction)
            .where(models.Reaction.drawing_id == drawing_id, models.Reaction.user_id == user_id)
        )
        self.db.commit()
        self._publish("reactions", DELETE, old=old)
        return True

    def count_reactions(self, drawing_owner_id: Optional[str] = None) -> int:
        query = select(func.count(models.Reaction.id))
        if drawing_owner_id is not None:
            query = query.join(models.Drawing, models.Reaction.drawing_id == models.Drawing.id).where(
                models.Drawing.user_id == drawing_owner_id
            )
        return self.db.execute(query).scalar_one()

    def top_drawings(self, limit: int = 3) -> list[TopDrawing]:
        n = func.count(models.Reaction.id).label("n")
        rows = self.db.execute(
            select(models.Drawing.id, models.Drawing.title, models.Drawing.image_url, n)
            .outerjoin(models.Reaction, models.Reaction.drawing_id == models.Drawing.id)
            .group_by(models.Drawing.id, models.Drawing.title, models.Drawing.image_url, models.Drawing.created_at)
            .order_by(n.desc(), models.Drawing.created_at.asc())
            .limit(limit)
        )
        return [
            TopDrawing(id=id, title=title, image_url=image_url, reactions_count=count)
            for id, title, image_url, count in rows
        ]

    # =========================================================================
    # Comments
    # =========================================================================

    def _like_counts(self, drawing_id: str) -> dict[str, int]:
        rows = self.db.execute(
            select(models.CommentLike.comment_id, func.count(models.CommentLike.id))
            .where(models.CommentLike.drawing_id == drawing_id)
            .group_by(models.CommentLike.comment_id)
        )
        return {comment_id: count for comment_id, count in rows}

    def list_comments(self, drawing_id: str) -> list[CommentOut]:
        likes = self._like_counts(drawing_id)
        rows = self.db.execute(
            select(models.Comment, models.User)
            .outerjoin(models.User, models.Comment.user_id == models.User.id)
            .where(models.Comment.drawing_id == drawing_id)
            .order_by(models.Comment.created_at.asc())
        )
        return [_comment(c, u, likes.get(c.id, 0)) for c, u in rows]

    def count_comments(self, drawing_id: str) -> int:
        return self.db.execute(
            select(func.count(models.Comment.id)).where(models.Comment.drawing_id == drawing_id)
        ).scalar_one()

    def get_comment(self, comment_id: str) -> CommentOut:
        row = self.db.execute(
            select(models.Comment, models.User)
            .outerjoin(models.User, models.Comment.user_id == models.User.id)
            .where(models.Comment.id == comment_id)
        ).first()
        if row is None:
            raise NotFound("Comment not found")
        c, u = row
        likes = self.db.execute(
            select(func.count(models.CommentLike.id)).where(models.CommentLike.comment_id == comment_id)
        ).scalar_one()
        return _comment(c, u, likes)

    def create_comment(self, drawing_id: str, user_id: str, content: str, now: datetime) -> CommentOut:
        c = models.Comment(drawing_id=drawing_id, user_id=user_id, content=content, created_at=as_utc(now))
        self.db.add(c)
        self.db.commit()
        comment = self.get_comment(c.id)
        self._publish("comments", INSERT, new=comment)
        return comment

    def update_comment(self, comment_id: str, content: str, now: datetime) -> CommentOut:
        c = self.db.get(models.Comment, comment_id)
        if c is None:
            raise NotFound("Comment not found")
        old = self.get_comment(comment_id)
        c.content = content
        c.updated_at = as_utc(now)
        self.db.commit()
        comment = self.get_comment(comment_id)
        self._publish("comments", UPDATE, new=comment, old=old)
        return comment

    def delete_comment(self, comment_id: str) -> None:
        old = self.get_comment(comment_id)
        self.db.execute(delete(models.CommentLike).where(models.CommentLike.comment_id == comment_id))
        self.db.execute(delete(models.Comment).where(models.Comment.id == comment_id))
        self.db.commit()
        self._publish("comments", DELETE, old=old)

    def toggle_like(self, comment_id: str, user_id: str) -> LikeState:
        before = self.get_comment(comment_id)
        like = self.db.execute(
            select(models.CommentLike)
            .where(models.CommentLike.comment_id == comment_id, models.CommentLike.user_id == user_id)
        ).scalar_one_or_none()
        if like is None:
            like = models.CommentLike(comment_id=comment_id, drawing_id=before.drawing_id, user_id=user_id)
            self.db.add(like)
            change, liked = INSERT, True
        else:
            self.db.delete(like)
            change, liked = DELETE, False
        self.db.commit()
        marker = CommentLikeOut(
            id=like.id, comment_id=comment_id, drawing_id=before.drawing_id, user_id=user_id
        )
        after = self.get_comment(comment_id)
        if liked:
            self._publish("comment_likes", change, new=marker)
        else:
            self._publish("comment_likes", change, old=marker)
        self._publish("comments", UPDATE, new=after, old=before)
        return LikeState(liked=liked, likes=after.likes)


def get_store(request: Request, db: Session = Depends(get_db)) -> DataStore:
    return DataStore(db, request.app.state.feed)
