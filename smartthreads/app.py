from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from . import threads
from .analyzer import DraftAnalyzer
from .auth import create_access_token, current_user, get_db, login_user, user_for_token
from .config import Settings
from .db import ALL_INTENTS, Category, User, init_db, make_engine, make_sessionmaker
from .errors import InvalidInput, SmartThreadsError
from .llm import LLMGateway
from .logger import get_logger
from .realtime import ConnectionManager, Publisher, thread_id_from_channel
from .summarizer import Summarizer
from .summary_cache import SummaryCache

logger = get_logger(__name__)

router = APIRouter()


# --------- Schemas ---------
class LoginPayload(BaseModel):
    email: str
    name: Optional[str] = None


class ThreadPayload(BaseModel):
    title: Optional[str] = None
    participant_emails: List[str] = []


class MessagePayload(BaseModel):
    content: str
    category: str = Category.fyi.value


class ReplyPayload(BaseModel):
    content: str


class DraftPayload(BaseModel):
    draft: str


class MemberPayload(BaseModel):
    email: str


# --------- Routes ---------
@router.post("/api/login")
async def login(payload: LoginPayload, request: Request, session: AsyncSession = Depends(get_db)):
    if not payload.email.strip():
        raise InvalidInput("Email is required")
    user = await login_user(session, payload.email, payload.name)
    token = create_access_token(user.id, request.app.state.settings)
    return {"ok": True, "token": token, "user": threads.user_dict(user)}


@router.get("/api/threads")
async def get_threads(user: User = Depends(current_user), session: AsyncSession = Depends(get_db)):
    return await threads.list_threads(session, user)


@router.post("/api/threads")
async def create_thread(payload: ThreadPayload, user: User = Depends(current_user), session: AsyncSession = Depends(get_db)):
    return await threads.create_thread(session, user, payload.title, payload.participant_emails)


@router.get("/api/threads/{thread_id}/messages")
async def get_messages(thread_id: int, user: User = Depends(current_user), session: AsyncSession = Depends(get_db)):
    return await threads.get_thread_messages(session, user, thread_id)


@router.post("/api/threads/{thread_id}/messages")
async def post_message(thread_id: int, payload: MessagePayload, request: Request,
                       user: User = Depends(current_user), session: AsyncSession = Depends(get_db)):
    return await threads.send_message(session, request.app.state.publisher, user, thread_id,
                                      payload.content, payload.category)


@router.get("/api/threads/{thread_id}/messages/{message_id}/replies")
async def get_replies(thread_id: int, message_id: int, user: User = Depends(current_user),
                      session: AsyncSession = Depends(get_db)):
    return await threads.get_reply_thread(session, user, thread_id, message_id)


@router.post("/api/threads/{thread_id}/messages/{message_id}/replies")
async def post_reply(thread_id: int, message_id: int, payload: ReplyPayload, request: Request,
                     user: User = Depends(current_user), session: AsyncSession = Depends(get_db)):
    return await threads.send_reply(session, request.app.state.publisher, user, thread_id, message_id, payload.content)


@router.post("/api/threads/{thread_id}/analyze")
async def analyze(thread_id: int, payload: DraftPayload, request: Request,
                  user: User = Depends(current_user), session: AsyncSession = Depends(get_db)):
    result = await threads.analyze_draft(session, request.app.state.analyzer, user, thread_id, payload.draft)
    return result.to_dict()


@router.get("/api/threads/{thread_id}/summary")
async def summary(thread_id: int, request: Request, intent: str = ALL_INTENTS, refresh: bool = False,
                  user: User = Depends(current_user), session: AsyncSession = Depends(get_db)):
    state = request.app.state
    return await threads.get_thread_summary(session, state.summarizer, state.summary_cache, user,
                                            thread_id, intent, refresh)


@router.get("/api/threads/{thread_id}/members")
async def get_members(thread_id: int, user: User = Depends(current_user), session: AsyncSession = Depends(get_db)):
    return {"members": await threads.get_thread_members(session, user, thread_id)}


@router.post("/api/threads/{thread_id}/members")
async def add_member(thread_id: int, payload: MemberPayload, user: User = Depends(current_user),
                     session: AsyncSession = Depends(get_db)):
    return await threads.add_member_by_email(session, user, thread_id, payload.email)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    state = websocket.app.state
    async with state.sessionmaker() as session:
        user = await user_for_token(session, token, state.settings)
    if user is None:
        await websocket.close(code=4401)
        return

    manager: Optional[ConnectionManager] = state.manager
    if manager is None:
        await websocket.close(code=1013)
        return

    await manager.connect(websocket)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "detail": "Invalid frame"})
                continue
            action = frame.get("action") if isinstance(frame, dict) else None
            channel = frame.get("channel") if isinstance(frame, dict) else None

            if action == "unsubscribe" and channel:
                manager.unsubscribe(channel, websocket)
                await websocket.send_json({"event": "unsubscribed", "channel": channel})
                continue

            if action != "subscribe":
                await websocket.send_json({"event": "error", "detail": "Unknown action"})
                continue

            thread_id = thread_id_from_channel(channel)
            async with state.sessionmaker() as session:
                allowed = thread_id is not None and await threads.verify_membership(session, thread_id, user.id)
            if not allowed:
                await websocket.send_json({"event": "error", "channel": channel, "detail": "Access denied"})
                continue
            manager.subscribe(channel, websocket)
            await websocket.send_json({"event": "subscribed", "channel": channel})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)


# --------- App ---------
async def handle_error(request: Request, exc: SmartThreadsError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app(settings: Optional[Settings] = None, llm_transport=None) -> FastAPI:
    """Build the app and every long-lived component it needs, once."""
    settings = settings or Settings.from_env()

    app = FastAPI(title="SmartThreads")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine = make_engine(settings.database_url)
    gateway = LLMGateway(settings, transport=llm_transport)
    manager = ConnectionManager() if settings.realtime_enabled else None

    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = make_sessionmaker(engine)
    app.state.gateway = gateway
    app.state.analyzer = DraftAnalyzer(gateway)
    app.state.summarizer = Summarizer(gateway)
    app.state.summary_cache = SummaryCache(ttl=settings.summary_cache_ttl)
    app.state.manager = manager
    app.state.publisher = Publisher(manager)

    if not gateway.configured:
        logger.warning("OPENAI_API_KEY not set; categorization and summaries run in degraded mode")
    if manager is None:
        logger.warning("Realtime disabled; messages will not be pushed")

    app.add_exception_handler(SmartThreadsError, handle_error)
    app.include_router(router)

    @app.on_event("startup")
    async def on_startup():
        await init_db(engine)

    @app.on_event("shutdown")
    async def on_shutdown():
        await engine.dispose()

    return app


def main():
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run("smartthreads.app:create_app", factory=True, host=settings.app_host, port=settings.app_port)
