from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import async_session
from .domain.context import GUEST, Actor, SchedulingContext
from .domain.events import EventBus
from .infrastructure.captcha import MathCaptcha
from .models import User
from .utils.auth import decode_access_token, extract_bearer_token
from .utils.time import local_now, site_zone

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers=_UNAUTHORIZED_HEADERS,
    )


async def get_actor(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    """Resolve the optional bearer token; no header means a guest."""
    try:
        token = extract_bearer_token(authorization)
    except ValueError as exc:
        raise _unauthorized("Invalid authorization header") from exc
    if token is None:
        return GUEST

    settings = get_settings()
    try:
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("Invalid or expired token") from exc

    try:
        roles = await session.scalar(select(User.roles).where(User.id == user_id))
    except ProgrammingError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="User store unavailable") from exc
    finally:
        # Close the read so handlers can open their own transaction.
        await session.rollback()
    if roles is None:
        raise _unauthorized("User not found")

    role_set = frozenset(str(role).strip().lower() for role in roles if role)
    return Actor(user_id=user_id, roles=role_set, is_admin=settings.admin_role in role_set)


async def get_current_actor(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_authenticated:
        raise _unauthorized("Authentication required")
    return actor


async def get_context(
    request: Request,
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> SchedulingContext:
    return SchedulingContext(
        now=local_now(site_zone(settings.site_timezone)),
        actor=actor,
        global_holidays=settings.holidays(),
        disable_all_emails=settings.disable_all_emails,
        require_consent=settings.require_consent,
        require_identity_document=settings.require_identity_document,
        client_ip=request.client.host if request.client else None,
        user_agent=(request.headers.get("user-agent") or "")[:255] or None,
    )


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_security(settings: Settings = Depends(get_settings)) -> MathCaptcha:
    return MathCaptcha(settings.captcha_secret)
