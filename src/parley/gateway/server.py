"""
gateway/server.py — FastAPI HTTP gateway

Endpoints:
    POST /api/chat                      one turn, JSON reply
    GET  /api/chat/stream               one turn, text/event-stream
    POST /api/feedback                  record feedback on a conversation
    GET  /api/conversations             most recent transcripts
    GET  /api/conversations/{handle}    transcript behind a handle
    GET  /health

Run:
    parley serve --port 8080
or:
    uvicorn --factory parley.gateway.server:app
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from parley import __version__
from parley.bootstrap import AgentStack, bootstrap_agent_stack
from parley.brain.types import Message
from parley.config.settings import Settings, get_settings
from parley.exceptions import (
    BackendError,
    NotFoundError,
    ParleyError,
    ValidationError,
)
from parley.gateway.protocol import SSE_HEADERS, encode_event
from parley.gateway.relay import relay_turn
from parley.gateway.schemas import (
    ChatRequest,
    ChatResponse,
    ConversationOut,
    FeedbackRequest,
    MessageOut,
    TranscriptOut,
)
from parley.observability.logger import get_logger

log = get_logger(__name__)


def _status_for(exc: ParleyError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, BackendError):
        return 502
    return 500


def _message_out(m: Message) -> MessageOut:
    return MessageOut(role=m.role.value, content=m.content, timestamp=m.timestamp)


def get_stack(request: Request) -> AgentStack:
    stack: Optional[AgentStack] = getattr(request.app.state, "stack", None)
    if stack is None:
        raise RuntimeError("Agent stack not initialized.")
    return stack


def create_app(
    settings: Optional[Settings] = None,
    stack: Optional[AgentStack] = None,
) -> FastAPI:
    """
    Build the app. With `stack` given the app serves it as-is (and does not
    close it); otherwise the lifespan bootstraps one from settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if stack is not None:
            app.state.stack = stack
            yield
            return
        owned = await bootstrap_agent_stack(settings or get_settings())
        app.state.stack = owned
        try:
            yield
        finally:
            await owned.aclose()

    app = FastAPI(
        title="Parley",
        version=__version__,
        description="Agent orchestration engine with streamed thinking events.",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ParleyError)
    async def _parley_error(request: Request, exc: ParleyError) -> JSONResponse:
        status = _status_for(exc)
        log.warning(
            "gateway.request_failed",
            path=request.url.path,
            status=status,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    # ── Chat ──────────────────────────────────────────────────────────────────

    @app.post("/api/chat", response_model=ChatResponse, tags=["chat"])
    async def chat(body: ChatRequest, request: Request) -> ChatResponse:
        s = get_stack(request)
        handle, session_id = await s.binder.resolve(body.conversation_id)
        reply = await s.engine.process(body.message, session_id=session_id)
        return ChatResponse(
            conversation_id=handle,
            agent_conversation_id=session_id,
            message=MessageOut(role="assistant", content=reply),
        )

    @app.get("/api/chat/stream", tags=["chat"])
    async def chat_stream(
        request: Request,
        message: str = Query(..., min_length=1),
        conversation_id: Optional[str] = None,
    ) -> StreamingResponse:
        s = get_stack(request)

        async def frames() -> AsyncIterator[str]:
            async for event in relay_turn(
                s.engine,
                s.binder,
                message,
                handle=conversation_id,
                buffer_size=s.settings.agent.stream_buffer_size,
            ):
                yield encode_event(event)

        return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/api/feedback", status_code=204, tags=["chat"])
    async def feedback(body: FeedbackRequest, request: Request) -> None:
        s = get_stack(request)
        session_id: Optional[str] = None
        if body.conversation_id:
            session_id = await s.binder.lookup(body.conversation_id)
            if session_id is None:
                raise HTTPException(status_code=404, detail="Unknown conversation.")
        await s.engine.learn(body.feedback, session_id=session_id)

    # ── Conversations ─────────────────────────────────────────────────────────

    @app.get("/api/conversations", response_model=list[ConversationOut], tags=["conversations"])
    async def list_conversations(
        request: Request,
        limit: int = Query(20, ge=1, le=200),
    ) -> list[ConversationOut]:
        s = get_stack(request)
        conversations = await s.memory.list_conversations(limit)
        return [ConversationOut(**c.summary()) for c in conversations]

    @app.get("/api/conversations/{handle}", response_model=TranscriptOut, tags=["conversations"])
    async def get_transcript(handle: str, request: Request) -> TranscriptOut:
        s = get_stack(request)
        session_id = await s.binder.lookup(handle)
        if session_id is None:
            raise HTTPException(status_code=404, detail="Unknown conversation.")
        conv = await s.memory.get_conversation(session_id)
        return TranscriptOut(
            conversation_id=handle,
            agent_conversation_id=session_id,
            messages=[_message_out(m) for m in conv.messages],
        )

    @app.get("/health", tags=["health"])
    async def health(request: Request) -> dict:
        s = get_stack(request)
        return {
            "status": "ok",
            "version": __version__,
            "backend": s.backend.name,
            "backend_reachable": await s.backend.health_check(),
        }

    return app


def app() -> FastAPI:
    """uvicorn factory: `uvicorn --factory parley.gateway.server:app`."""
    return create_app()
