"""
FastAPI server for Polyphony.

Serves the playground WebSocket protocol, a Server-Sent Events view of the
same session topics, synchronous comparisons and chat history.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from sse_starlette.sse import EventSourceResponse

from polyphony import __version__
from polyphony.core.config import get_settings
from polyphony.core.models import ComparisonRecord, ModelProvider
from polyphony.core.orchestrator import ComparisonOrchestrator, InvalidSubmissionError
from polyphony.history.service import (
    ChatHistoryService,
    HistoryAccessDeniedError,
    HistoryItemNotFoundError,
)
from polyphony.providers.factory import UnknownModelError
from polyphony.realtime.channel import ChannelEvent, ChannelEventName
from polyphony.storage.base import PersistenceError
from polyphony.utils.logging import setup_logging

logger = structlog.get_logger()


class CamelModel(BaseModel):
    """Request body accepting camelCase keys from clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionMessage(CamelModel):
    name: str | None = None


class SessionMessage(CamelModel):
    session_id: str = Field(min_length=1)


class SubmitPromptMessage(CamelModel):
    session_id: str = Field(min_length=1)
    prompt: str
    models: list[str] | None = None
    user_id: str | None = None
    user_email: str | None = None


class CompareRequest(CamelModel):
    prompt: str
    models: list[str] | None = None
    session_id: str | None = None
    user_id: str | None = None
    user_email: str | None = None


class ModelInfo(BaseModel):
    id: str
    provider: str
    name: str
    display_name: str
    description: str
    context_window: int
    cost_per_1k_tokens: float
    available: bool


class WebSocketSubscriber:
    """Forwards channel events to one WebSocket client."""

    def __init__(self, websocket: WebSocket, client_id: str):
        self.websocket = websocket
        self.subscriber_id = client_id

    async def send(self, event: ChannelEvent) -> None:
        await self.websocket.send_json(event.to_dict())

    async def reply(self, name: ChannelEventName, data: dict[str, Any]) -> None:
        """Send an event to this client only."""
        await self.send(ChannelEvent(name=name, session_id=None, data=data))


class QueueSubscriber:
    """Buffers channel events for a Server-Sent Events response."""

    def __init__(self) -> None:
        self.subscriber_id = f"sse-{uuid.uuid4().hex[:12]}"
        self.queue: asyncio.Queue[ChannelEvent] = asyncio.Queue()

    async def send(self, event: ChannelEvent) -> None:
        await self.queue.put(event)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    setup_logging()
    logger.info("Starting Polyphony API server")

    if app.state.orchestrator is None:
        _bind(app, ComparisonOrchestrator.from_settings(get_settings()))

    yield

    logger.info("Shutting down Polyphony API server")
    pending = list(app.state.background_tasks)
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    await app.state.orchestrator.channel.close()


def _bind(app: FastAPI, orchestrator: ComparisonOrchestrator) -> None:
    app.state.orchestrator = orchestrator
    app.state.history = ChatHistoryService(orchestrator.store)


def create_app(orchestrator: ComparisonOrchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Polyphony API",
        description="Multi-model prompt playground with live streaming comparisons",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = None
    app.state.history = None
    app.state.background_tasks = set()
    if orchestrator is not None:
        _bind(app, orchestrator)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def get_orchestrator(request: Request) -> ComparisonOrchestrator:
    """Get the orchestrator instance."""
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return orchestrator


def get_history(request: Request) -> ChatHistoryService:
    history = request.app.state.history
    if history is None:
        raise HTTPException(status_code=503, detail="History service not initialized")
    return history


def require_user(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, supplied by an upstream auth layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    return x_user_id


def _record_json(record: ComparisonRecord) -> dict[str, Any]:
    return record.model_dump(mode="json")


async def _run_submission(
    orchestrator: ComparisonOrchestrator,
    message: SubmitPromptMessage,
    client_id: str,
) -> None:
    """Background submission started from a WebSocket message."""
    log = logger.bind(session_id=message.session_id, client_id=client_id)
    try:
        await orchestrator.submit(
            message.session_id,
            message.prompt,
            message.models,
            owner_user_id=message.user_id,
            owner_user_email=message.user_email,
            submitted_by=client_id,
        )
    except InvalidSubmissionError as e:
        log.warning("Rejected submission", error=str(e))
        orchestrator.channel.publish(
            message.session_id,
            ChannelEventName.PROMPT_ERROR,
            {"sessionId": message.session_id, "error": str(e)},
        )
    except (UnknownModelError, PersistenceError) as e:
        # prompt_error has already been published
        log.warning("Submission failed", error=str(e))
    except Exception as e:
        log.exception("Unexpected submission failure")
        orchestrator.channel.publish(
            message.session_id,
            ChannelEventName.PROMPT_ERROR,
            {"sessionId": message.session_id, "error": str(e)},
        )


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health_check(
        orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Health check endpoint."""
        providers = {
            provider.value: orchestrator.registry.adapter_for(provider).available
            for provider in ModelProvider
        }
        return {
            "status": "healthy" if any(providers.values()) else "degraded",
            "version": __version__,
            "providers": providers,
        }

    @app.get("/models", response_model=list[ModelInfo])
    async def list_models(
        orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
    ) -> list[ModelInfo]:
        """List catalogue models and whether their provider is configured."""
        available = {m.model_id for m in orchestrator.registry.available_models()}
        return [
            ModelInfo(
                id=m.model_id.value,
                provider=m.provider.value,
                name=m.name,
                display_name=m.display_name,
                description=m.description,
                context_window=m.context_window,
                cost_per_1k_tokens=m.cost_per_1k_tokens,
                available=m.model_id in available,
            )
            for m in orchestrator.registry.all_models()
        ]

    @app.get("/metrics")
    async def get_metrics(
        orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        return orchestrator.metrics.get_summary()

    @app.post("/v1/compare")
    async def compare_models(
        request: CompareRequest,
        orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Run a comparison and return the persisted record."""
        session_id = request.session_id or str(uuid.uuid4())
        try:
            record = await orchestrator.submit(
                session_id,
                request.prompt,
                request.models,
                owner_user_id=request.user_id,
                owner_user_email=request.user_email,
                submitted_by="api",
            )
        except (InvalidSubmissionError, UnknownModelError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=f"Failed to save comparison: {e}")

        return _record_json(record)

    @app.get("/v1/sessions/{session_id}/events")
    async def session_events(
        session_id: str,
        orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
    ) -> EventSourceResponse:
        """Stream a session's events as Server-Sent Events."""
        subscriber = QueueSubscriber()
        await orchestrator.channel.join(session_id, subscriber)

        async def generate() -> AsyncIterator[dict[str, Any]]:
            try:
                while True:
                    event = await subscriber.queue.get()
                    wire = event.to_dict()
                    yield {
                        "event": wire["event"],
                        "id": event.event_id,
                        "data": json.dumps(wire["data"], default=str),
                    }
            finally:
                await orchestrator.channel.disconnect(subscriber)

        return EventSourceResponse(generate())

    @app.get("/v1/sessions/{session_id}")
    async def get_session(
        session_id: str,
        orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        session = await orchestrator.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session.model_dump(mode="json")

    @app.get("/v1/sessions/{session_id}/history")
    async def session_history(
        session_id: str,
        limit: int | None = Query(default=None, gt=0),
        orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
    ) -> list[dict[str, Any]]:
        records = await orchestrator.session_history(session_id, limit)
        return [_record_json(r) for r in records]

    @app.get("/v1/history")
    async def all_history(
        limit: int | None = Query(default=None, gt=0),
        orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
    ) -> list[dict[str, Any]]:
        records = await orchestrator.all_history(limit)
        return [_record_json(r) for r in records]

    @app.get("/v1/history/me")
    async def my_history(
        limit: int = Query(default=50, gt=0),
        user_id: str = Depends(require_user),
        history: ChatHistoryService = Depends(get_history),
    ) -> list[dict[str, Any]]:
        items = await history.get_user_history(user_id, limit)
        return [item.model_dump(mode="json") for item in items]

    @app.delete("/v1/history/me")
    async def delete_my_history(
        user_id: str = Depends(require_user),
        history: ChatHistoryService = Depends(get_history),
    ) -> dict[str, Any]:
        deleted = await history.delete_all_user_history(user_id)
        return {"message": "All history deleted successfully", "deletedCount": deleted}

    @app.get("/v1/history/me/{item_id}")
    async def my_history_item(
        item_id: str,
        user_id: str = Depends(require_user),
        history: ChatHistoryService = Depends(get_history),
    ) -> dict[str, Any]:
        try:
            item = await history.get_history_item(item_id, user_id)
        except HistoryItemNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except HistoryAccessDeniedError as e:
            raise HTTPException(status_code=403, detail=str(e))
        return item.model_dump(mode="json")

    @app.delete("/v1/history/me/{item_id}")
    async def delete_my_history_item(
        item_id: str,
        user_id: str = Depends(require_user),
        history: ChatHistoryService = Depends(get_history),
    ) -> dict[str, Any]:
        try:
            await history.delete_history_item(item_id, user_id)
        except HistoryItemNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except HistoryAccessDeniedError as e:
            raise HTTPException(status_code=403, detail=str(e))
        return {"message": "History item deleted successfully"}

    @app.websocket("/ws")
    async def playground_socket(websocket: WebSocket) -> None:
        """Playground protocol: ``{"event": ..., "data": {...}}`` messages."""
        orchestrator: ComparisonOrchestrator | None = websocket.app.state.orchestrator
        await websocket.accept()
        if orchestrator is None:
            await websocket.close(code=1013)
            return

        client = WebSocketSubscriber(websocket, uuid.uuid4().hex)
        channel = orchestrator.channel
        log = logger.bind(client_id=client.subscriber_id)
        log.info("Client connected")
        await client.reply(ChannelEventName.CONNECTED, {"clientId": client.subscriber_id})

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await client.reply(ChannelEventName.ERROR, {"error": "Malformed JSON message"})
                    continue
                if not isinstance(message, dict):
                    await client.reply(ChannelEventName.ERROR, {"error": "Message must be an object"})
                    continue
                name = message.get("event")
                data = message.get("data") or {}

                try:
                    if name == "create_session":
                        body = CreateSessionMessage.model_validate(data)
                        session_id = str(uuid.uuid4())
                        await client.reply(
                            ChannelEventName.SESSION_CREATED,
                            {"sessionId": session_id, "name": body.name or f"Session {session_id[:8]}"},
                        )
                    elif name == "join_session":
                        body = SessionMessage.model_validate(data)
                        await channel.join(body.session_id, client)
                        await client.reply(
                            ChannelEventName.JOINED_SESSION, {"sessionId": body.session_id}
                        )
                    elif name == "leave_session":
                        body = SessionMessage.model_validate(data)
                        await channel.leave(body.session_id, client)
                        await client.reply(
                            ChannelEventName.LEFT_SESSION, {"sessionId": body.session_id}
                        )
                    elif name == "submit_prompt":
                        body = SubmitPromptMessage.model_validate(data)
                        task = asyncio.create_task(
                            _run_submission(orchestrator, body, client.subscriber_id)
                        )
                        tasks: set[asyncio.Task] = websocket.app.state.background_tasks
                        tasks.add(task)
                        task.add_done_callback(tasks.discard)
                    else:
                        await client.reply(
                            ChannelEventName.ERROR, {"error": f"Unknown event: {name}"}
                        )
                except ValidationError as e:
                    await client.reply(
                        ChannelEventName.ERROR,
                        {"error": f"Invalid {name} message", "details": e.errors(include_url=False, include_context=False)},
                    )
        except WebSocketDisconnect:
            log.info("Client disconnected")
        finally:
            await channel.disconnect(client)


app = create_app()
