"""FastAPI gateway for the Nushell agent.

Provides REST API endpoints for:
- Conversations (create, send message, inspect, delete)
- Direct script validation and execution
- Health and metrics

Usage:
    nuagent api --port 3001
"""

from __future__ import annotations

import time
import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from nuagent.config import Settings
from nuagent.conversation import ConversationManager, Orchestrator
from nuagent.errors import ConversationNotFoundError, ModelError
from nuagent.execution import SessionExecutor, create_executor
from nuagent.llm import ChatProvider, get_provider
from nuagent.observability.metrics import MetricsCollector
from nuagent.scripting import try_validate_script

logger = structlog.get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Request/Response Models
# ═══════════════════════════════════════════════════════════════════════════════


class CreateConversationRequest(BaseModel):
    """Create a conversation, optionally running its first turn."""

    message: str | None = Field(None, description="Optional first user message")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Caller metadata")


class MessageRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message to process")


class ScriptRequest(BaseModel):
    script: str = Field(..., description="Nushell script")


class ExecuteRequest(BaseModel):
    """Direct script execution request."""

    script: str = Field(..., description="Nushell script to execute")
    input: Any = Field(None, description="Optional value bound to $input")
    timeout_ms: int | None = Field(None, gt=0, description="Execution timeout in milliseconds")


class ExecuteResponse(BaseModel):
    output: str
    success: bool
    error: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    executor: str
    executor_healthy: bool
    conversations: int


# ═══════════════════════════════════════════════════════════════════════════════
# Application State
# ═══════════════════════════════════════════════════════════════════════════════


class AppState:
    """Application state container.

    Components are built lazily from settings on first use; any of them can
    be supplied up front instead.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        provider: ChatProvider | None = None,
        executor: SessionExecutor | None = None,
        conversations: ConversationManager | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.start_time = datetime.now(UTC)
        self.request_count = 0
        self._settings = settings
        self._provider = provider
        self._executor = executor
        self._orchestrator: Orchestrator | None = None
        self.conversations = conversations or ConversationManager()
        self.metrics = metrics or MetricsCollector()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = Settings.from_env()
        return self._settings

    @property
    def executor(self) -> SessionExecutor:
        if self._executor is None:
            self._executor = create_executor(self.settings.executor)
        return self._executor

    @property
    def orchestrator(self) -> Orchestrator:
        """Get or create the orchestrator (cached)."""
        if self._orchestrator is None:
            provider = self._provider or get_provider()
            self._orchestrator = Orchestrator(
                provider=provider,
                conversations=self.conversations,
                executor=self.executor,
                config=self.settings.agent,
                metrics=self.metrics,
            )
            logger.info("Orchestrator initialized for API", executor=self.executor.name)
        return self._orchestrator


app_state = AppState()


def get_state() -> AppState:
    """Dependency returning the application state (overridable in tests)."""
    return app_state


# ═══════════════════════════════════════════════════════════════════════════════
# FastAPI Application
# ═══════════════════════════════════════════════════════════════════════════════


app = FastAPI(
    title="nuagent API",
    description="REST API for the Nushell scripting agent",
    version="0.1.0",
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to all requests."""
    request_id = str(uuid.uuid4())[:8]
    request.state.request_id = request_id

    start_time = time.time()
    response: Response = await call_next(request)
    duration_ms = int((time.time() - start_time) * 1000)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration_ms}ms"

    logger.info(
        "Request completed",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=duration_ms,
    )

    return response


def _model_failure(e: ModelError) -> HTTPException:
    logger.error("Model provider failed", error=str(e), provider=e.provider)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Model provider error: {e}",
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Health & Metrics Endpoints
# ═══════════════════════════════════════════════════════════════════════════════


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(state: AppState = Depends(get_state)) -> HealthResponse:
    """Basic health check endpoint."""
    state.request_count += 1
    executor = state.executor
    healthy = await executor.health_check()

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(UTC).isoformat(),
        executor=executor.name,
        executor_healthy=healthy,
        conversations=len(state.conversations),
    )


@app.get("/metrics", tags=["Health"])
async def get_metrics(format: str = "json", state: AppState = Depends(get_state)):
    """Agent loop metrics as JSON, or Prometheus text with ``?format=prometheus``."""
    if format == "prometheus":
        return PlainTextResponse(state.metrics.to_prometheus())

    uptime = (datetime.now(UTC) - state.start_time).total_seconds()
    return {
        "uptime_seconds": uptime,
        "request_count": state.request_count,
        "conversations": len(state.conversations),
        **state.metrics.get_stats(),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# Conversation Endpoints
# ═══════════════════════════════════════════════════════════════════════════════


@app.post("/conversations", status_code=status.HTTP_201_CREATED, tags=["Conversations"])
async def create_conversation(
    request: CreateConversationRequest,
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    """Create a conversation; run the first turn when a message is given."""
    state.request_count += 1

    if not request.message:
        conversation = state.conversations.create(request.metadata)
        return {"conversation_id": conversation.id, "result": None}

    try:
        conversation_id, result = await state.orchestrator.start_conversation(
            request.message, request.metadata
        )
    except ModelError as e:
        raise _model_failure(e) from e

    return {"conversation_id": conversation_id, "result": result.to_dict()}


@app.post("/conversations/{conversation_id}/messages", tags=["Conversations"])
async def send_message(
    conversation_id: str,
    request: MessageRequest,
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    """Run one agent turn in an existing conversation."""
    state.request_count += 1
    try:
        result = await state.orchestrator.process_message(conversation_id, request.message)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ModelError as e:
        raise _model_failure(e) from e

    return {"conversation_id": conversation_id, **result.to_dict()}


@app.get("/conversations/{conversation_id}", tags=["Conversations"])
async def get_conversation(
    conversation_id: str,
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    conversation = state.conversations.get(conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(ConversationNotFoundError(conversation_id)),
        )
    return conversation.to_dict()


@app.delete("/conversations/{conversation_id}", tags=["Conversations"])
async def delete_conversation(
    conversation_id: str,
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    """Delete a conversation and release its executor session."""
    if not state.conversations.delete(conversation_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(ConversationNotFoundError(conversation_id)),
        )
    await state.executor.terminate_session(conversation_id)
    return {"conversation_id": conversation_id, "deleted": True}


# ═══════════════════════════════════════════════════════════════════════════════
# Script Endpoints
# ═══════════════════════════════════════════════════════════════════════════════


@app.post("/validate", tags=["Scripts"])
async def validate(request: ScriptRequest) -> dict[str, Any]:
    """Validate a script without running it."""
    return try_validate_script(request.script).to_dict()


@app.post("/execute", response_model=ExecuteResponse, tags=["Scripts"])
async def execute(
    request: ExecuteRequest,
    state: AppState = Depends(get_state),
) -> ExecuteResponse:
    """Execute a script directly, bypassing the model."""
    state.request_count += 1
    result = await state.orchestrator.execute_script(
        request.script, input=request.input, timeout_ms=request.timeout_ms
    )
    return ExecuteResponse(output=result.output, success=result.success, error=result.error)
