"""Routes inbound socket frames to event handlers.

Each frame is handled in its own task on the event loop, so a handler
suspended on storage or the assistant does not block other frames. Failures
are converted to ``error`` events at this boundary; none close the
connection. Disconnecting does not cancel in-flight handlers. Handlers that
need the connection's identity wait for an ``authenticate`` already in
flight on that connection, so a client need not wait between the two.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from chatterbox.core.errors import ChatError
from chatterbox.realtime.connection import Connection
from chatterbox.schemas.events import EventFrame

logger = logging.getLogger(__name__)

ERROR_EVENT = "error"

Handler = Callable[[Connection, Any], Awaitable[None]]
PayloadT = TypeVar("PayloadT", bound=BaseModel)


class EventDispatcher:
    """Registry of event handlers plus the tasks currently running them."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def on(self, event: str, handler: Handler) -> None:
        """Register the handler for an event name."""
        self._handlers[event] = handler

    @property
    def events(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, connection: Connection, raw: Any) -> asyncio.Task[None] | None:
        """Schedule handling of one inbound frame.

        Returns:
            The task running the handler, or None if the frame was rejected.
        """
        try:
            frame = EventFrame.model_validate(raw)
        except ValidationError:
            connection.emit(ERROR_EVENT, {"message": "Malformed frame"})
            return None

        handler = self._handlers.get(frame.event)
        if handler is None:
            connection.emit(ERROR_EVENT, {"message": f"Unknown event: {frame.event}"})
            return None

        task = asyncio.create_task(self._run(handler, connection, frame))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, handler: Handler, connection: Connection, frame: EventFrame) -> None:
        try:
            await handler(connection, frame.data)
        except ChatError as exc:
            logger.info(
                "Event %s failed on connection %s: %s", frame.event, connection.id, exc.message
            )
            connection.emit(ERROR_EVENT, {"message": exc.message})
        except ValidationError as exc:
            logger.info("Invalid %s payload on connection %s: %s", frame.event, connection.id, exc)
            connection.emit(ERROR_EVENT, {"message": f"Invalid payload for {frame.event}"})
        except Exception:
            logger.error(
                "Unhandled error while processing %s on connection %s",
                frame.event,
                connection.id,
                exc_info=True,
            )
            connection.emit(ERROR_EVENT, {"message": "Internal server error"})

    async def drain(self) -> None:
        """Wait for every in-flight handler to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def parse_payload(model: type[PayloadT], data: Any) -> PayloadT:
    """Validate an event payload against its schema."""
    return model.model_validate(data)
