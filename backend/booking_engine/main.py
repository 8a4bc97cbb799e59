from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, Response

from .database import engine
from .domain.events import EventBus, LoggingNotificationDispatcher
from .routers import appointments, audience, calendars, slots
from .utils.request_id import REQUEST_ID_HEADER, resolve_request_id, set_request_id


def build_event_bus() -> EventBus:
    bus = EventBus()
    bus.subscribe(LoggingNotificationDispatcher())
    return bus


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.event_bus = build_event_bus()
    yield
    await engine.dispose()


async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app = FastAPI(title="Booking Engine API", lifespan=lifespan)
app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(calendars.router)
app.include_router(slots.router)
app.include_router(appointments.router)
app.include_router(audience.router)
