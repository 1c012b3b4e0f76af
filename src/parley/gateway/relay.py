"""
gateway/relay.py — Stream relay

Forks the engine's streaming turn into its own task and relays the
channel's events to the caller. If the caller stops iterating (client
disconnect, generator closed, task cancelled) the turn task is cancelled,
which cancels the in-flight backend call; the engine still closes its
channel on the way out.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from parley.agent.binder import ConversationBinder
from parley.agent.engine import Engine
from parley.agent.events import EventChannel, StreamEvent
from parley.exceptions import ParleyError
from parley.observability.logger import get_logger

log = get_logger(__name__)


async def relay_turn(
    engine: Engine,
    binder: ConversationBinder,
    message: str,
    handle: Optional[str] = None,
    buffer_size: int = 100,
) -> AsyncIterator[StreamEvent]:
    """Yield every event of one streamed turn, ending with DONE."""
    handle, session_id = await binder.resolve(handle)
    channel = EventChannel(maxsize=buffer_size)
    task = asyncio.create_task(
        engine.process_stream(message, channel, session_id=session_id, external_id=handle),
        name=f"turn:{handle}",
    )
    try:
        async for event in channel:
            yield event
    finally:
        if not task.done():
            log.info("relay.consumer_gone", handle=handle)
            task.cancel()
        # Failures were already delivered as an error event
        (outcome,) = await asyncio.gather(task, return_exceptions=True)
        if isinstance(outcome, BaseException) and not isinstance(
            outcome, (asyncio.CancelledError, ParleyError)
        ):
            log.error(
                "relay.turn_crashed",
                handle=handle,
                error=str(outcome),
                error_type=type(outcome).__name__,
            )
