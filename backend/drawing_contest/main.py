import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, Response, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from . import dates
from .auth import AuthProvider, HostedAuthProvider, get_current_user, get_optional_user, require_admin
from .config import Settings, configure_logging
from .db import Base, make_engine, make_session_factory
from .errors import ContestError, Forbidden, NotFound, ServiceUnavailable, ValidationFailed
from .history import download_filename, group_drawings
from .lateness import is_late
from .media import CloudinaryUploader, ImageUpload, MediaUploader
from .realtime import ChangeFeed, ChangeEvent, LiveView
from .reactions import is_toggle_off, summarize
from .schemas import (
    CommentIn,
    CommentOut,
    DrawingDetail,
    DrawingOut,
    DrawingWithRelations,
    HistoryOut,
    LikeState,
    ProfileOut,
    PublicStats,
    ReactionIn,
    ReactionOut,
    ReactionSummary,
    ThemeCreate,
    ThemeOut,
    TodayThemeOut,
    UserOut,
    UserStats,
    UserSummary,
)
from .store import DataStore, get_store
from .submissions import late_themes, submit_drawing, submit_late_drawing
from .themes import ThemeResolver, participants, status_message

logger = logging.getLogger(__name__)

router = APIRouter()


def _image(file: Optional[UploadFile]) -> ImageUpload:
    if file is None:
        raise ValidationFailed("No file selected")
    return ImageUpload(
        filename=file.filename or "",
        content_type=file.content_type or "",
        data=file.file.read(),
    )


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/me", response_model=UserOut)
def me(user: UserOut = Depends(get_current_user)):
    return user


# =============================================================================
# Themes
# =============================================================================

@router.get("/themes/today", response_model=TodayThemeOut)
def today_theme(request: Request, store: DataStore = Depends(get_store)):
    resolver: ThemeResolver = request.app.state.resolver
    resolution = resolver.resolve(store.themes_on(resolver.today(), active_only=True))
    users = []
    if resolution.is_active:
        users = participants(store.list_drawings(theme_id=resolution.theme.id, newest_first=False))
    return TodayThemeOut(
        status=resolution.status,
        message=status_message(resolution, resolver.quiet_end_hour),
        theme=resolution.theme,
        seconds_left=resolver.seconds_left(),
        participants=users,
    )


@router.get("/themes/late", response_model=list[ThemeOut])
def late_post_themes(
    request: Request,
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return late_themes(store, request.app.state.resolver, user.id)


# =============================================================================
# Drawings
# =============================================================================

@router.post("/drawings", response_model=DrawingOut, status_code=201)
def create_drawing(
    request: Request,
    file: Optional[UploadFile] = File(None),
    title: str = Form(""),
    description: str = Form(""),
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return submit_drawing(
        store, request.app.state.resolver, request.app.state.uploader,
        user, _image(file), title, description,
    )


@router.post("/drawings/late", response_model=DrawingOut, status_code=201)
def create_late_drawing(
    request: Request,
    theme_id: str = Form(""),
    file: Optional[UploadFile] = File(None),
    title: str = Form(""),
    description: str = Form(""),
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return submit_late_drawing(
        store, request.app.state.resolver, request.app.state.uploader,
        user, theme_id, _image(file), title, description,
    )


@router.get("/drawings/{drawing_id}", response_model=DrawingDetail)
def get_drawing(drawing_id: str, store: DataStore = Depends(get_store)):
    d = store.get_drawing(drawing_id)
    return DrawingDetail(
        **d.model_dump(),
        is_late=is_late(d.created_at, d.theme.date if d.theme else None),
        comments_count=store.count_comments(drawing_id),
        download_filename=download_filename(d.title, d.image_url),
    )


@router.delete("/drawings/{drawing_id}", status_code=204)
def delete_drawing(
    drawing_id: str,
    admin: UserOut = Depends(require_admin),
    store: DataStore = Depends(get_store),
):
    store.delete_drawing(drawing_id)
    logger.info("Drawing %s deleted by %s", drawing_id, admin.id)
    return Response(status_code=204)


@router.get("/gallery", response_model=list[DrawingWithRelations])
def gallery(request: Request, store: DataStore = Depends(get_store)):
    """Yesterday's drawings (UTC day), newest first."""
    since, before = dates.previous_utc_day(request.app.state.resolver.clock())
    return store.list_drawings(since=since, before=before)


@router.get("/history", response_model=HistoryOut)
def history(request: Request, store: DataStore = Depends(get_store)):
    resolver: ThemeResolver = request.app.state.resolver
    drawings = store.list_drawings(before=dates.start_of_day(resolver.today(), resolver.tz))
    return HistoryOut(total=len(drawings), groups=group_drawings(drawings))


# =============================================================================
# Reactions
# =============================================================================

@router.get("/drawings/{drawing_id}/reactions", response_model=ReactionSummary)
def list_reactions(
    drawing_id: str,
    user: Optional[UserOut] = Depends(get_optional_user),
    store: DataStore = Depends(get_store),
):
    store.get_drawing(drawing_id)
    return summarize(store.list_reactions(drawing_id), user.id if user else None)


@router.put("/drawings/{drawing_id}/reactions", response_model=ReactionSummary)
def set_reaction(
    request: Request,
    drawing_id: str,
    payload: ReactionIn,
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    store.get_drawing(drawing_id)
    if is_toggle_off(store.list_reactions(drawing_id), user.id, payload.emoji):
        store.delete_reaction(drawing_id, user.id)
    else:
        store.upsert_reaction(drawing_id, user.id, payload.emoji, request.app.state.resolver.clock())
    return summarize(store.list_reactions(drawing_id), user.id)


@router.delete("/drawings/{drawing_id}/reactions", response_model=ReactionSummary)
def remove_reaction(
    drawing_id: str,
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    store.get_drawing(drawing_id)
    store.delete_reaction(drawing_id, user.id)
    return summarize(store.list_reactions(drawing_id), user.id)


# =============================================================================
# Comments
# =============================================================================

def _comment_text(payload: CommentIn) -> str:
    content = payload.content.strip()
    if not content:
        raise ValidationFailed("Comment cannot be empty")
    return content


def _own_comment(store: DataStore, comment_id: str, user: UserOut) -> CommentOut:
    comment = store.get_comment(comment_id)
    if comment.user_id != user.id:
        raise Forbidden("You can only change your own comments")
    return comment


@router.get("/drawings/{drawing_id}/comments", response_model=list[CommentOut])
def list_comments(drawing_id: str, store: DataStore = Depends(get_store)):
    store.get_drawing(drawing_id)
    return store.list_comments(drawing_id)


@router.post("/drawings/{drawing_id}/comments", response_model=CommentOut, status_code=201)
def create_comment(
    request: Request,
    drawing_id: str,
    payload: CommentIn,
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    store.get_drawing(drawing_id)
    return store.create_comment(drawing_id, user.id, _comment_text(payload), request.app.state.resolver.clock())


@router.patch("/comments/{comment_id}", response_model=CommentOut)
def edit_comment(
    request: Request,
    comment_id: str,
    payload: CommentIn,
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    _own_comment(store, comment_id, user)
    return store.update_comment(comment_id, _comment_text(payload), request.app.state.resolver.clock())


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: str,
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    _own_comment(store, comment_id, user)
    store.delete_comment(comment_id)
    return Response(status_code=204)


@router.post("/comments/{comment_id}/like", response_model=LikeState)
def toggle_comment_like(
    comment_id: str,
    user: UserOut = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return store.toggle_like(comment_id, user.id)


# =============================================================================
# Profiles & stats
# =============================================================================

@router.get("/users/{user_id}", response_model=ProfileOut)
def profile(user_id: str, store: DataStore = Depends(get_store)):
    user = store.get_user(user_id)
    drawings = store.list_drawings(user_id=user_id)
    return ProfileOut(
        user=UserSummary(id=user.id, email=user.email, name=user.name),
        drawings_count=len(drawings),
        drawings=drawings,
    )


@router.get("/stats", response_model=PublicStats)
def public_stats(store: DataStore = Depends(get_store)):
    return PublicStats(
        total_drawings=store.count_drawings(),
        total_reactions=store.count_reactions(),
        top_drawings=store.top_drawings(3),
    )


@router.get("/stats/me", response_model=UserStats)
def my_stats(user: UserOut = Depends(get_current_user), store: DataStore = Depends(get_store)):
    return UserStats(
        drawings=store.count_drawings(user_id=user.id),
        reactions_received=store.count_reactions(drawing_owner_id=user.id),
    )


# =============================================================================
# Administration
# =============================================================================

@router.get("/admin/themes", response_model=list[ThemeOut])
def admin_list_themes(admin: UserOut = Depends(require_admin), store: DataStore = Depends(get_store)):
    return store.list_themes()


@router.post("/admin/themes", response_model=ThemeOut, status_code=201)
def admin_create_theme(
    payload: ThemeCreate,
    admin: UserOut = Depends(require_admin),
    store: DataStore = Depends(get_store),
):
    theme = store.create_theme(payload)
    logger.info("Theme %s (%s) created by %s", theme.id, theme.date, admin.id)
    return theme


@router.post("/admin/themes/{theme_id}/toggle", response_model=ThemeOut)
def admin_toggle_theme(
    theme_id: str,
    admin: UserOut = Depends(require_admin),
    store: DataStore = Depends(get_store),
):
    return store.toggle_theme(theme_id)


@router.delete("/admin/themes/{theme_id}", status_code=204)
def admin_delete_theme(
    theme_id: str,
    admin: UserOut = Depends(require_admin),
    store: DataStore = Depends(get_store),
):
    store.delete_theme(theme_id)
    return Response(status_code=204)


@router.post("/admin/themes/{theme_id}/reference-images", response_model=ThemeOut)
def admin_add_reference_image(
    request: Request,
    theme_id: str,
    file: Optional[UploadFile] = File(None),
    admin: UserOut = Depends(require_admin),
    store: DataStore = Depends(get_store),
):
    store.get_theme(theme_id)
    image = _image(file)
    image.validate()
    url = request.app.state.uploader.upload(image)
    return store.add_reference_image(theme_id, url)


@router.delete("/admin/themes/{theme_id}/reference-images", response_model=ThemeOut)
def admin_remove_reference_image(
    theme_id: str,
    url: str,
    admin: UserOut = Depends(require_admin),
    store: DataStore = Depends(get_store),
):
    return store.remove_reference_image(theme_id, url)


# =============================================================================
# Realtime
# =============================================================================

async def _close_on_disconnect(websocket: WebSocket, subscription) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except (RuntimeError, WebSocketDisconnect) as e:
        logger.warning("Stopped reading %s feed socket: %s", subscription.table, e)
    finally:
        subscription.close()


async def _stream(websocket: WebSocket, table: str, drawing_id: str, fetch, render) -> None:
    """Send a drawing's rows, then the merged view after every change."""
    await websocket.accept()
    # subscribe before the snapshot so no change falls between the two
    subscription = websocket.app.state.feed.subscribe(table, drawing_id=drawing_id)
    watcher = None

    def snapshot() -> list[dict]:
        with websocket.app.state.session_factory() as db:
            store = DataStore(db)
            store.get_drawing(drawing_id)
            return fetch(store)

    try:
        view = LiveView(await run_in_threadpool(snapshot))
        await websocket.send_json(render(view, None))
        watcher = asyncio.create_task(_close_on_disconnect(websocket, subscription))
        async for event in subscription:
            if view.apply(event):
                await websocket.send_json(render(view, event))
    except NotFound as e:
        await websocket.close(code=4404, reason=e.message)
    except WebSocketDisconnect:
        logger.debug("Client left the %s feed of %s", table, drawing_id)
    finally:
        subscription.close()
        if watcher is not None:
            watcher.cancel()


@router.websocket("/ws/drawings/{drawing_id}/comments")
async def comments_feed(websocket: WebSocket, drawing_id: str):
    def fetch(store: DataStore) -> list[dict]:
        return [c.model_dump(mode="json") for c in store.list_comments(drawing_id)]

    def render(view: LiveView, event: Optional[ChangeEvent]) -> dict:
        return {"event": event.type if event else "snapshot", "comments": view.rows}

    await _stream(websocket, "comments", drawing_id, fetch, render)


@router.websocket("/ws/drawings/{drawing_id}/reactions")
async def reactions_feed(websocket: WebSocket, drawing_id: str):
    def fetch(store: DataStore) -> list[dict]:
        return [r.model_dump(mode="json") for r in store.list_reactions(drawing_id)]

    def render(view: LiveView, event: Optional[ChangeEvent]) -> dict:
        summary = summarize([ReactionOut.model_validate(row) for row in view.rows])
        return {"event": event.type if event else "snapshot", **summary.model_dump(mode="json")}

    await _stream(websocket, "reactions", drawing_id, fetch, render)


# =============================================================================
# Application
# =============================================================================

async def contest_error_handler(request: Request, exc: ContestError):
    if isinstance(exc, ServiceUnavailable):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(
    settings: Optional[Settings] = None,
    auth: Optional[AuthProvider] = None,
    uploader: Optional[MediaUploader] = None,
    clock: Optional[dates.Clock] = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Drawing Contest API")

    # Browsers call the API cross-origin from the web front end.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine = make_engine(settings.database_url)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.feed = ChangeFeed()
    app.state.auth = auth or HostedAuthProvider(
        settings.auth_url, settings.auth_api_key, settings.http_timeout_seconds
    )
    app.state.uploader = uploader or CloudinaryUploader(
        settings.cloudinary_cloud_name,
        settings.cloudinary_upload_preset,
        settings.http_timeout_seconds,
    )
    app.state.resolver = ThemeResolver(
        settings.reference_timezone,
        settings.quiet_start_hour,
        settings.quiet_end_hour,
        clock=clock or dates.system_clock,
    )

    @app.on_event("startup")
    def on_startup():
        Base.metadata.create_all(bind=engine)

    app.add_exception_handler(ContestError, contest_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
