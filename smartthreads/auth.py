from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .db import User

ALGORITHM = "HS256"

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, settings: Settings) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.token_ttl_minutes)
    return jwt.encode({"sub": str(user_id), "exp": expires}, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> Optional[int]:
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
        return int(claims["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        return None


async def find_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    """Case-insensitive lookup in a single query."""
    res = await session.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return res.scalars().first()


async def login_user(session: AsyncSession, email: str, name: Optional[str] = None) -> User:
    """First login creates the user; later logins refresh the display name."""
    user = await find_user_by_email(session, email)
    if user is None:
        user = User(email=email.strip().lower(), name=name or None)
        session.add(user)
    elif name:
        user.name = name
    await session.commit()
    await session.refresh(user)
    return user


async def user_for_token(session: AsyncSession, token: Optional[str], settings: Settings) -> Optional[User]:
    if not token:
        return None
    user_id = decode_access_token(token, settings)
    if user_id is None:
        return None
    return await session.get(User, user_id)


async def get_db(request: Request) -> AsyncSession:
    async with request.app.state.sessionmaker() as session:
        yield session


async def current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_db),
) -> User:
    token = credentials.credentials if credentials else None
    user = await user_for_token(session, token, request.app.state.settings)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user
