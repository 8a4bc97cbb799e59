from datetime import date, time
from typing import Any

import pytest
from booking_engine.domain.errors import ConcurrencyConflict
from booking_engine.infrastructure.repositories import SqlAlchemyAppointmentRepository, bucket_lock_key
from sqlalchemy.exc import IntegrityError, OperationalError

DAY = date(2025, 3, 5)


class _Nested:
    def __init__(self, session: "LockSession") -> None:
        self.session = session

    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        if exc is None and self.session.insert_error is not None:
            raise self.session.insert_error
        return False


class LockSession:
    """Records the lock statements issued by the repository."""

    def __init__(
        self,
        *,
        existing: bool = True,
        insert_error: Exception | None = None,
        lock_error: Exception | None = None,
    ) -> None:
        self.existing = existing
        self.insert_error = insert_error
        self.lock_error = lock_error
        self.statements: list[str] = []
        self.added: list[Any] = []

    async def scalar(self, stmt: Any) -> Any:
        sql = str(stmt)
        self.statements.append(sql)
        if "FOR UPDATE" in sql and self.lock_error is not None:
            raise self.lock_error
        return "key" if self.existing else None

    def begin_nested(self) -> _Nested:
        return _Nested(self)

    def add(self, row: Any) -> None:
        self.added.append(row)


def _operational(code: int) -> OperationalError:
    return OperationalError("SELECT ... FOR UPDATE", {}, Exception(code, "lock"))


def test_lock_keys() -> None:
    assert bucket_lock_key(3, DAY, time(9, 30), whole_day=False) == "3:2025-03-05:09:30:00"
    assert bucket_lock_key(3, DAY, time(9, 30), whole_day=True) == "3:2025-03-05"


@pytest.mark.asyncio
async def test_existing_lock_row_is_selected_for_update() -> None:
    session = LockSession()
    repo = SqlAlchemyAppointmentRepository(session)  # type: ignore[arg-type]

    async with repo.bucket_lock(1, DAY, time(10, 0)):
        pass

    assert session.added == []
    assert "FOR UPDATE" in session.statements[-1]


@pytest.mark.asyncio
async def test_missing_lock_row_is_created_first() -> None:
    session = LockSession(existing=False)
    repo = SqlAlchemyAppointmentRepository(session)  # type: ignore[arg-type]

    async with repo.bucket_lock(1, DAY, time(10, 0), whole_day=True):
        pass

    assert [row.lock_key for row in session.added] == ["1:2025-03-05"]


@pytest.mark.asyncio
async def test_concurrently_created_lock_row_is_tolerated() -> None:
    session = LockSession(existing=False, insert_error=IntegrityError("INSERT", {}, Exception(1062, "dup")))
    repo = SqlAlchemyAppointmentRepository(session)  # type: ignore[arg-type]

    async with repo.bucket_lock(1, DAY, time(10, 0)):
        pass

    assert "FOR UPDATE" in session.statements[-1]


@pytest.mark.parametrize("code", [1205, 1213])
@pytest.mark.asyncio
async def test_lock_wait_timeout_and_deadlock_become_conflicts(code: int) -> None:
    repo = SqlAlchemyAppointmentRepository(LockSession(lock_error=_operational(code)))  # type: ignore[arg-type]

    with pytest.raises(ConcurrencyConflict):
        async with repo.bucket_lock(1, DAY, time(10, 0)):
            pass


@pytest.mark.asyncio
async def test_other_operational_errors_propagate() -> None:
    repo = SqlAlchemyAppointmentRepository(LockSession(lock_error=_operational(2006)))  # type: ignore[arg-type]

    with pytest.raises(OperationalError):
        async with repo.bucket_lock(1, DAY, time(10, 0)):
            pass
