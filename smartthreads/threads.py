"""Thread, membership and message operations, scoped to the calling member."""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .analyzer import HISTORY_LIMIT, AnalysisResult, DraftAnalyzer, HistoryMessage
from .auth import find_user_by_email
from .db import ALL_INTENTS, Category, Message, Thread, ThreadMember, User, utcnow
from .errors import AccessDenied, InvalidInput, NotFound
from .logger import get_logger
from .realtime import Publisher, message_payload
from .summarizer import FAILURE_BULLET, SUMMARY_LIMIT, Summarizer, SummaryMessage, parse_intent_filter
from .summary_cache import SummaryCache

logger = get_logger(__name__)


def user_dict(user: User) -> Dict[str, Any]:
    return {"id": user.id, "email": user.email, "name": user.name}


def message_dict(msg: Message, reply_count: Optional[int] = None) -> Dict[str, Any]:
    out = message_payload(msg, msg.author)
    if reply_count is not None:
        out["replyCount"] = reply_count
    return out


async def get_membership(session: AsyncSession, thread_id: int, user_id: int) -> Optional[ThreadMember]:
    res = await session.execute(
        select(ThreadMember).where(ThreadMember.thread_id == thread_id, ThreadMember.user_id == user_id)
    )
    return res.scalar_one_or_none()


async def verify_membership(session: AsyncSession, thread_id: int, user_id: int) -> bool:
    return await get_membership(session, thread_id, user_id) is not None


async def require_member(session: AsyncSession, thread_id: int, user: User) -> ThreadMember:
    membership = await get_membership(session, thread_id, user.id)
    if membership is None:
        raise AccessDenied()
    return membership


async def get_top_level_message(session: AsyncSession, thread_id: int, message_id: int) -> Message:
    res = await session.execute(
        select(Message).options(selectinload(Message.author)).where(
            Message.id == message_id,
            Message.thread_id == thread_id,
            Message.parent_message_id.is_(None),
        )
    )
    msg = res.scalar_one_or_none()
    if msg is None:
        raise NotFound("Parent message not found or is not a top-level message")
    return msg


def clean_content(content: Optional[str]) -> str:
    content = (content or "").strip()
    if not content:
        raise InvalidInput("Content is required")
    return content


# --------- Threads ---------
async def list_threads(session: AsyncSession, user: User) -> Dict[str, Any]:
    res = await session.execute(
        select(Thread, ThreadMember.last_seen_at)
        .join(ThreadMember, ThreadMember.thread_id == Thread.id)
        .where(ThreadMember.user_id == user.id)
        .order_by(desc(Thread.created_at), desc(Thread.id))
    )
    threads = []
    for thread, last_seen_at in res.all():
        latest_res = await session.execute(
            select(Message).options(selectinload(Message.author))
            .where(Message.thread_id == thread.id)
            .order_by(desc(Message.created_at), desc(Message.id))
            .limit(1)
        )
        latest = latest_res.scalar_one_or_none()

        unread_query = select(func.count(Message.id)).where(
            Message.thread_id == thread.id,
            Message.author_id != user.id,
        )
        if last_seen_at is not None:
            unread_query = unread_query.where(Message.created_at > last_seen_at)
        unread_count = (await session.execute(unread_query)).scalar_one()

        threads.append({
            "id": thread.id,
            "title": thread.title,
            "latestMessage": message_dict(latest) if latest else None,
            "unreadCount": unread_count,
        })
    return {"threads": threads, "currentUserId": user.id}


async def create_thread(session: AsyncSession, user: User, title: Optional[str],
                        participant_emails: Optional[List[str]] = None) -> Dict[str, Any]:
    own_email = user.email.lower()
    normalized = []
    for email in participant_emails or []:
        email = email.strip().lower()
        if email and email != own_email and email not in normalized:
            normalized.append(email)

    thread = Thread(title=(title or "").strip() or None, created_by=user.id)
    session.add(thread)
    await session.flush()
    session.add(ThreadMember(thread_id=thread.id, user_id=user.id))

    added_emails, missing_emails = [], []
    for email in normalized:
        target = await find_user_by_email(session, email)
        if target is None:
            missing_emails.append(email)
            continue
        session.add(ThreadMember(thread_id=thread.id, user_id=target.id))
        added_emails.append(target.email)

    await session.commit()
    if missing_emails:
        logger.info("Thread %s created without unknown participants: %s", thread.id, ", ".join(missing_emails))
    return {"threadId": thread.id, "addedEmails": added_emails, "missingEmails": missing_emails}


async def get_thread_messages(session: AsyncSession, user: User, thread_id: int) -> Dict[str, Any]:
    membership = await require_member(session, thread_id, user)
    membership.last_seen_at = utcnow()
    await session.commit()

    thread = await session.get(Thread, thread_id)
    if thread is None:
        raise NotFound("Thread not found")

    members = await get_thread_members(session, user, thread_id)

    counts_res = await session.execute(
        select(Message.parent_message_id, func.count(Message.id))
        .where(Message.thread_id == thread_id, Message.parent_message_id.is_not(None))
        .group_by(Message.parent_message_id)
    )
    reply_counts = dict(counts_res.all())

    msgs_res = await session.execute(
        select(Message).options(selectinload(Message.author))
        .where(Message.thread_id == thread_id, Message.parent_message_id.is_(None))
        .order_by(Message.created_at, Message.id)
    )
    return {
        "id": thread.id,
        "title": thread.title,
        "members": members,
        "messages": [message_dict(m, reply_counts.get(m.id, 0)) for m in msgs_res.scalars().all()],
    }


async def get_reply_thread(session: AsyncSession, user: User, thread_id: int, parent_message_id: int) -> Dict[str, Any]:
    await require_member(session, thread_id, user)
    parent = await get_top_level_message(session, thread_id, parent_message_id)
    res = await session.execute(
        select(Message).options(selectinload(Message.author))
        .where(Message.parent_message_id == parent.id)
        .order_by(Message.created_at, Message.id)
    )
    return {
        "parentMessage": message_dict(parent),
        "replies": [message_dict(m) for m in res.scalars().all()],
    }


# --------- Messages ---------
async def _persist(session: AsyncSession, publisher: Publisher, msg: Message, author: User) -> Dict[str, Any]:
    session.add(msg)
    await session.commit()
    await session.refresh(msg)
    # Push only after the row is durable; failures never reach the sender
    await publisher.publish_message(msg, author)
    return message_payload(msg, author)


async def send_message(session: AsyncSession, publisher: Publisher, user: User, thread_id: int,
                       content: Optional[str], category: str = Category.fyi.value) -> Dict[str, Any]:
    content = clean_content(content)
    parsed = Category.parse(category)
    if parsed is None:
        raise InvalidInput(f"Unknown category: {category}")
    await require_member(session, thread_id, user)

    msg = Message(thread_id=thread_id, author_id=user.id, content=content, category=parsed)
    return await _persist(session, publisher, msg, user)


async def send_reply(session: AsyncSession, publisher: Publisher, user: User, thread_id: int,
                     parent_message_id: int, content: Optional[str]) -> Dict[str, Any]:
    content = clean_content(content)
    await require_member(session, thread_id, user)
    parent = await get_top_level_message(session, thread_id, parent_message_id)

    # Replies inherit the parent's category and thread
    msg = Message(
        thread_id=parent.thread_id,
        author_id=user.id,
        parent_message_id=parent.id,
        content=content,
        category=parent.category,
    )
    return await _persist(session, publisher, msg, user)


# --------- Members ---------
async def add_member_by_email(session: AsyncSession, user: User, thread_id: int, email: Optional[str]) -> Dict[str, str]:
    if not email or not email.strip():
        return {"error": "Email is required"}

    if not await verify_membership(session, thread_id, user.id):
        return {"error": "Access denied"}

    target = await find_user_by_email(session, email)
    if target is None:
        return {"error": "User must log in once before being added"}

    if await verify_membership(session, thread_id, target.id):
        return {"error": "User is already a member of this chat"}

    session.add(ThreadMember(thread_id=thread_id, user_id=target.id))
    try:
        await session.commit()
    except IntegrityError:
        # Lost a race with a concurrent add of the same user
        await session.rollback()
        return {"error": "User is already a member of this chat"}
    logger.info("User %s added %s to thread %s", user.id, target.email, thread_id)
    return {"success": f"Added {target.email} to the chat"}


async def get_thread_members(session: AsyncSession, user: User, thread_id: int) -> List[Dict[str, Any]]:
    await require_member(session, thread_id, user)
    res = await session.execute(
        select(ThreadMember).options(selectinload(ThreadMember.user))
        .where(ThreadMember.thread_id == thread_id)
        .order_by(ThreadMember.created_at, ThreadMember.id)
    )
    return [user_dict(m.user) for m in res.scalars().all()]


# --------- Analysis & summaries ---------
async def analyze_draft(session: AsyncSession, analyzer: DraftAnalyzer, user: User, thread_id: int,
                        draft: Optional[str]) -> AnalysisResult:
    await require_member(session, thread_id, user)
    if not draft or not draft.strip():
        raise InvalidInput("Draft is required")

    res = await session.execute(
        select(Message).where(Message.thread_id == thread_id)
        .order_by(desc(Message.created_at), desc(Message.id))
        .limit(HISTORY_LIMIT)
    )
    history = [
        HistoryMessage(id=str(m.id), content=m.content, category=m.category.value, timestamp=m.created_at.isoformat())
        for m in reversed(res.scalars().all())
    ]
    return await analyzer.analyze(draft, history)


async def get_thread_summary(session: AsyncSession, summarizer: Summarizer, cache: SummaryCache, user: User,
                             thread_id: int, intent_filter: str, refresh: bool = False) -> Dict[str, Any]:
    category = parse_intent_filter(intent_filter)
    # "decision" and "Decision" share one cache entry
    intent_filter = category.value if category is not None else ALL_INTENTS
    await require_member(session, thread_id, user)

    if refresh:
        cache.invalidate(thread_id, intent_filter)
    else:
        cached = cache.get(thread_id, intent_filter)
        if cached is not None:
            return {"intent": intent_filter, "bullets": cached}

    query = select(Message).options(selectinload(Message.author)).where(Message.thread_id == thread_id)
    if category is not None:
        query = query.where(Message.category == category)
    res = await session.execute(query.order_by(desc(Message.created_at), desc(Message.id)).limit(SUMMARY_LIMIT))

    messages = [
        SummaryMessage(
            id=str(m.id),
            content=m.content,
            category=m.category.value,
            created_at=m.created_at.isoformat(),
            author_name=m.author.name,
            author_email=m.author.email,
            parent_message_id=str(m.parent_message_id) if m.parent_message_id else None,
        )
        for m in reversed(res.scalars().all())
    ]
    result = await summarizer.summarize(messages, intent_filter)
    # A transient failure should not stick for a whole TTL
    if result.bullets != [FAILURE_BULLET]:
        cache.put(thread_id, intent_filter, result.bullets)
    return {"intent": intent_filter, "bullets": result.bullets}
