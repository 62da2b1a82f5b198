import datetime as dt
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class UserSummary(BaseModel):
    id: str
    email: str
    name: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id


class UserOut(UserSummary):
    is_admin: bool = False
    created_at: dt.datetime


class ThemeSummary(BaseModel):
    id: str
    title: Optional[str] = None
    date: Optional[dt.date] = None

    class Config:
        from_attributes = True


class ThemeOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    date: dt.date
    is_active: bool
    created_at: dt.datetime
    reference_images: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ThemeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    date: dt.date
    is_active: bool = False


class TodayThemeOut(BaseModel):
    status: Literal["active", "quiet", "none"]
    message: str
    theme: Optional[ThemeOut] = None
    seconds_left: int
    participants: List[UserSummary] = Field(default_factory=list)


class DrawingOut(BaseModel):
    id: str
    user_id: str
    theme_id: Optional[str] = None
    image_url: str
    title: str
    description: Optional[str] = None
    created_at: dt.datetime

    class Config:
        from_attributes = True


class DrawingWithRelations(DrawingOut):
    user: Optional[UserSummary] = None
    theme: Optional[ThemeSummary] = None


class DrawingDetail(DrawingWithRelations):
    is_late: bool = False
    comments_count: int = 0
    download_filename: str


class HistoryGroup(BaseModel):
    key: str
    date: dt.date
    theme_title: Optional[str] = None
    drawings: List[DrawingWithRelations] = Field(default_factory=list)


class HistoryOut(BaseModel):
    total: int
    groups: List[HistoryGroup]


class ReactionOut(BaseModel):
    id: str
    drawing_id: str
    user_id: str
    emoji: str
    created_at: dt.datetime
    user: Optional[UserSummary] = None

    class Config:
        from_attributes = True


class ReactionIn(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class ReactionCount(BaseModel):
    emoji: str
    count: int
    users: List[str] = Field(default_factory=list)


class ReactionSummary(BaseModel):
    reactions: List[ReactionCount]
    my_reaction: Optional[str] = None


class CommentOut(BaseModel):
    id: str
    drawing_id: str
    user_id: Optional[str] = None
    content: str
    created_at: dt.datetime
    updated_at: Optional[dt.datetime] = None
    user: Optional[UserSummary] = None
    likes: int = 0

    class Config:
        from_attributes = True


class CommentIn(BaseModel):
    content: str = Field(..., max_length=2000)


class CommentLikeOut(BaseModel):
    id: str
    comment_id: str
    drawing_id: str
    user_id: str

    class Config:
        from_attributes = True


class LikeState(BaseModel):
    liked: bool
    likes: int


class ProfileOut(BaseModel):
    user: UserSummary
    drawings_count: int
    drawings: List[DrawingWithRelations]


class TopDrawing(BaseModel):
    id: str
    title: str
    image_url: str
    reactions_count: int


class PublicStats(BaseModel):
    total_drawings: int
    total_reactions: int
    top_drawings: List[TopDrawing]


class UserStats(BaseModel):
    drawings: int
    reactions_received: int
