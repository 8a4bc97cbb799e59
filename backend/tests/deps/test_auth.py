from datetime import timedelta
from typing import Any, Iterator

import pytest
from booking_engine.config import Settings, get_settings
from booking_engine.deps import get_actor, get_context, get_current_actor
from booking_engine.domain.context import GUEST, Actor
from booking_engine.utils.auth import create_access_token
from fastapi import HTTPException
from sqlalchemy.exc import ProgrammingError
from starlette.requests import Request


class DummySession:
    def __init__(self, roles: list[str] | None | Exception) -> None:
        self.roles = roles
        self.rolled_back = False

    async def __aenter__(self) -> "DummySession":  # pragma: no cover
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:  # pragma: no cover
        return False

    async def scalar(self, *args: Any, **kwargs: Any) -> list[str] | None:
        if isinstance(self.roles, Exception):
            raise self.roles
        return self.roles

    async def rollback(self) -> None:
        self.rolled_back = True


@pytest.fixture(autouse=True)
def _set_auth_secret(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _token(user_id: int = 123, *, expired: bool = False) -> str:
    delta = timedelta(seconds=-1) if expired else timedelta(minutes=30)
    return create_access_token(user_id=user_id, secret="testsecret", expires_delta=delta)


@pytest.mark.asyncio
async def test_missing_header_is_a_guest() -> None:
    session = DummySession(roles=["member"])
    actor = await get_actor(authorization=None, session=session)  # type: ignore[arg-type]
    assert actor == GUEST
    assert not actor.is_authenticated


@pytest.mark.asyncio
async def test_valid_token_resolves_roles() -> None:
    session = DummySession(roles=[" Admin ", "Staff"])
    actor = await get_actor(authorization=f"Bearer {_token()}", session=session)  # type: ignore[arg-type]
    assert actor.user_id == 123
    assert actor.roles == {"admin", "staff"}
    assert actor.is_admin
    assert session.rolled_back


@pytest.mark.asyncio
async def test_member_is_not_admin() -> None:
    session = DummySession(roles=["member"])
    actor = await get_actor(authorization=f"Bearer {_token()}", session=session)  # type: ignore[arg-type]
    assert not actor.is_admin


@pytest.mark.parametrize("header", ["Basic abc", "Bearer ", "Bearer invalid"])
@pytest.mark.asyncio
async def test_bad_header_or_token_is_rejected(header: str) -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_actor(authorization=header, session=DummySession(roles=[]))  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401
    assert excinfo.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.asyncio
async def test_expired_token_is_rejected() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_actor(authorization=f"Bearer {_token(expired=True)}", session=DummySession(roles=[]))  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_unknown_user_is_rejected() -> None:
    session = DummySession(roles=None)
    with pytest.raises(HTTPException) as excinfo:
        await get_actor(authorization=f"Bearer {_token(99)}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401
    assert session.rolled_back


@pytest.mark.asyncio
async def test_missing_users_table_returns_500() -> None:
    session = DummySession(roles=ProgrammingError("missing", None, Exception("cause")))
    with pytest.raises(HTTPException) as excinfo:
        await get_actor(authorization=f"Bearer {_token()}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 500
    assert session.rolled_back


@pytest.mark.asyncio
async def test_current_actor_requires_sign_in() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_current_actor(actor=GUEST)
    assert excinfo.value.status_code == 401

    member = Actor(user_id=5)
    assert await get_current_actor(actor=member) is member


@pytest.mark.asyncio
async def test_context_carries_settings_and_client() -> None:
    request = Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/appointments",
            "headers": [(b"user-agent", b"x" * 300)],
            "client": ("203.0.113.9", 5000),
        }
    )
    settings = Settings(
        site_timezone="UTC",
        global_holidays=[{"date": "2025-12-25", "description": "Christmas"}],
        disable_all_emails=True,
        require_identity_document=False,
    )

    ctx = await get_context(request, actor=GUEST, settings=settings)

    assert ctx.now.tzinfo is None
    assert ctx.client_ip == "203.0.113.9"
    assert ctx.user_agent == "x" * 255
    assert ctx.disable_all_emails
    assert not ctx.require_identity_document
    assert ctx.require_consent
    assert [h.description for h in ctx.global_holidays] == ["Christmas"]
