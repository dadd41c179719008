"""FastAPI backend for SpecRoom: REST endpoints plus the real-time chat socket."""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .config import FRONTEND_URL, configure_logging
from .errors import ConversationNotFoundError, GenerationError, ProviderError, RateLimitError, SpecRoomError
from .generator import ResponseGenerator
from .models import COMPLEXITY_LEVELS, ConversationPhase, OrchestratedResponse, PersonaRole
from .orchestrator import RESOLUTION_APPROACHES, ConversationOrchestrator, build_context, later_phase, phase_index, phase_progress
from .personas import all_personas, get_persona
from .session import SessionEngine
from .storage import ConversationStore

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="SpecRoom API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STARTED_AT = time.monotonic()

store = ConversationStore()

try:
    generator: Optional[ResponseGenerator] = ResponseGenerator()
except ProviderError as e:
    logger.warning("AI service unavailable: %s", e)
    generator = None

orchestrator = ConversationOrchestrator(generator) if generator else None
engine = SessionEngine(store, orchestrator)

# In-flight AI turns; kept referenced until done so they are not collected.
_background_turns = set()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateConversationRequest(_CamelModel):
    app_idea: str = Field(min_length=1)
    target_users: List[str] = []
    title: Optional[str] = None
    description: Optional[str] = None
    complexity: str = "moderate"


class AddMessageRequest(_CamelModel):
    content: str = Field(min_length=1)


class OrchestrateRequest(_CamelModel):
    conversation_id: str
    message: str = Field(min_length=1)
    current_phase: Optional[ConversationPhase] = None


class GenerateResponseRequest(_CamelModel):
    conversation_id: str
    persona: PersonaRole
    message: str = Field(min_length=1)


class TransitionPhaseRequest(_CamelModel):
    conversation_id: str
    next_phase: ConversationPhase


class ConflictingMessage(_CamelModel):
    persona: PersonaRole
    content: str
    tokens: int = 0
    processing_time_ms: int = 0


class ResolveConflictRequest(_CamelModel):
    conversation_id: str
    conflicting_messages: List[ConflictingMessage] = Field(min_length=2)
    resolution_approach: str = "compromise"
    custom_guidance: Optional[str] = None


# Inbound socket payloads


class ConversationPayload(_CamelModel):
    conversation_id: str = Field(min_length=1)


class SendMessagePayload(ConversationPayload):
    message: str = Field(min_length=1)


class RequestedContext(_CamelModel):
    current_phase: Optional[ConversationPhase] = None
    active_personas: Optional[List[PersonaRole]] = None


class RequestAiPayload(ConversationPayload):
    context: Optional[RequestedContext] = None


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


def _require_ai_service():
    if generator is None or orchestrator is None:
        raise HTTPException(status_code=503, detail="AI service not available - API keys not configured")


def _http_error(e: SpecRoomError) -> HTTPException:
    if isinstance(e, ConversationNotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, RateLimitError):
        return HTTPException(status_code=429, detail=e.message)
    if isinstance(e, GenerationError):
        return HTTPException(status_code=502, detail=e.message)
    return HTTPException(status_code=500, detail=e.message)


async def _load_conversation(conversation_id: str) -> Dict[str, Any]:
    conversation = await store.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@app.get("/")
async def root():
    return {"status": "ok", "service": "SpecRoom API"}


@app.get("/health")
async def health():
    store_ok = await store.health_check()
    return {
        "status": "OK" if store_ok else "DEGRADED",
        "storage": "writable" if store_ok else "unavailable",
        "ai_service": "available" if generator else "unavailable",
        "uptime": round(time.monotonic() - STARTED_AT, 3),
    }


@app.get("/api/personas")
async def list_personas():
    return {"personas": [_dump(p) for p in all_personas()]}


@app.get("/api/conversations")
async def list_conversations():
    return await store.list_conversations()


@app.post("/api/conversations")
async def create_conversation(request: CreateConversationRequest):
    if request.complexity.lower() not in COMPLEXITY_LEVELS:
        raise HTTPException(status_code=400, detail="Invalid complexity")
    return await store.create_conversation(
        app_idea=request.app_idea,
        target_users=request.target_users,
        title=request.title,
        description=request.description,
        complexity=request.complexity.lower(),
    )


@app.get("/api/conversations/{conversation_id}")
async def get_conversation(conversation_id: str):
    return await _load_conversation(conversation_id)


@app.delete("/api/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str):
    try:
        await store.delete_conversation(conversation_id)
        return {"status": "deleted"}
    except SpecRoomError as e:
        raise _http_error(e)


@app.post("/api/conversations/{conversation_id}/messages", status_code=201)
async def add_message(conversation_id: str, request: AddMessageRequest):
    try:
        return await engine.post_user_message(conversation_id, request.content)
    except SpecRoomError as e:
        raise _http_error(e)


@app.get("/api/conversations/{conversation_id}/progress")
async def conversation_progress(conversation_id: str):
    conversation = await _load_conversation(conversation_id)
    return _dump(phase_progress(build_context(conversation)))


@app.post("/api/ai/generate-response")
async def generate_response(request: GenerateResponseRequest):
    """Ask one persona directly; the reply is persisted but not broadcast."""
    _require_ai_service()
    conversation = await _load_conversation(request.conversation_id)
    context = build_context(conversation, active_personas=[request.persona])

    try:
        async with engine.turn_lock(request.conversation_id):
            response = await generator.generate(request.persona, context, request.message)
            persona = get_persona(response.persona)
            message = await store.add_message(
                request.conversation_id,
                response.content,
                "ai",
                persona=persona.role,
                persona_name=persona.name,
                tokens=response.tokens,
                processing_time_ms=response.processing_time_ms,
            )
    except SpecRoomError as e:
        raise _http_error(e)

    return {"id": message["id"], **_dump(response)}


@app.post("/api/ai/orchestrate")
async def orchestrate_conversation(request: OrchestrateRequest):
    """Run one orchestration turn over HTTP (no pacing, no socket events)."""
    _require_ai_service()
    await _load_conversation(request.conversation_id)

    try:
        async with engine.turn_lock(request.conversation_id):
            await store.add_message(request.conversation_id, request.message, "user")
            conversation = await _load_conversation(request.conversation_id)
            stored_phase = ConversationPhase(conversation.get("phase") or ConversationPhase.INITIAL_DISCOVERY)
            context = build_context(conversation, later_phase(stored_phase, request.current_phase))
            result = await orchestrator.orchestrate(context, request.message)

            for response in result.responses:
                await store.add_message(
                    request.conversation_id,
                    response.content,
                    "ai",
                    persona=response.persona,
                    persona_name=get_persona(response.persona).name,
                    tokens=response.tokens,
                    processing_time_ms=response.processing_time_ms,
                )
            if result.next_phase:
                await store.advance_phase(request.conversation_id, result.next_phase)
            if result.is_complete:
                await store.update_status(request.conversation_id, "completed")
    except SpecRoomError as e:
        raise _http_error(e)

    return _dump(result)


@app.post("/api/ai/transition-phase")
async def transition_phase(request: TransitionPhaseRequest):
    conversation = await _load_conversation(request.conversation_id)
    current = ConversationPhase(conversation.get("phase") or ConversationPhase.INITIAL_DISCOVERY)
    if phase_index(request.next_phase) <= phase_index(current):
        raise HTTPException(status_code=400, detail="Phase can only move forward")

    phase = await store.advance_phase(request.conversation_id, request.next_phase)
    await store.add_message(
        request.conversation_id,
        f"Moving to {phase.value.replace('-', ' ')} phase. Let's focus on the next set of requirements.",
        "system",
        persona_name="System",
    )
    await engine.broadcast(request.conversation_id, "conversation-updated", {
        "conversationId": request.conversation_id,
        "phase": phase.value,
        "activePersonas": [],
    })
    return {"message": "Phase transition successful", "nextPhase": phase.value}


@app.post("/api/ai/resolve-conflict")
async def resolve_conflict(request: ResolveConflictRequest):
    if request.resolution_approach not in RESOLUTION_APPROACHES:
        raise HTTPException(status_code=400, detail="Invalid resolution approach")
    _require_ai_service()
    conversation = await _load_conversation(request.conversation_id)
    context = build_context(conversation)

    conflicting = [
        OrchestratedResponse(
            persona=msg.persona,
            content=msg.content,
            tokens=msg.tokens,
            processing_time_ms=msg.processing_time_ms,
        )
        for msg in request.conflicting_messages
    ]

    try:
        resolution = await orchestrator.resolve_conflict(
            context,
            conflicting,
            approach=request.resolution_approach,
            guidance=request.custom_guidance,
        )
        persona = get_persona(resolution.persona)
        message = await store.add_message(
            request.conversation_id,
            resolution.content,
            "ai",
            persona=persona.role,
            persona_name=persona.name,
            tokens=resolution.tokens,
            processing_time_ms=resolution.processing_time_ms,
        )
    except SpecRoomError as e:
        raise _http_error(e)

    return {
        "id": message["id"],
        "conversationId": request.conversation_id,
        "persona": {
            "id": persona.role.value,
            "name": persona.name,
            "avatar": persona.avatar,
            "color": persona.color,
            "expertise": persona.expertise,
        },
        "content": resolution.content,
        "timestamp": message["created_at"],
        "type": "ai",
    }


@app.get("/api/ai/validate-keys")
async def validate_keys():
    _require_ai_service()
    return await generator.validate_api_keys()


@app.get("/api/websocket/status")
async def websocket_status():
    stats = engine.stats()
    return {
        "status": "active",
        "connections": stats["totalConnections"],
        "activeConversations": stats["activeConversations"],
        "typingUsers": stats["typingConnections"],
        "uptime": round(time.monotonic() - STARTED_AT, 3),
    }


async def dispatch_event(connection_id: str, event: str, data: Any):
    """Validate one inbound socket event and hand it to the session engine."""
    try:
        if event == "join-conversation":
            payload = ConversationPayload.model_validate(data)
            await engine.join(connection_id, payload.conversation_id)
        elif event == "leave-conversation":
            payload = ConversationPayload.model_validate(data)
            await engine.leave(connection_id, payload.conversation_id)
        elif event == "send-message":
            payload = SendMessagePayload.model_validate(data)
            await engine.submit_user_message(connection_id, payload.conversation_id, payload.message)
        elif event == "request-ai-response":
            payload = RequestAiPayload.model_validate(data)
            if orchestrator is None:
                await engine.emit_error(
                    connection_id, "AI service not available - API keys not configured", "AI_RESPONSE_ERROR"
                )
                return
            requested = payload.context or RequestedContext()
            task = asyncio.create_task(engine.request_ai_turn(
                connection_id,
                payload.conversation_id,
                requested.current_phase,
                requested.active_personas,
            ))
            _background_turns.add(task)
            task.add_done_callback(_background_turns.discard)
        elif event == "typing-start":
            payload = ConversationPayload.model_validate(data)
            await engine.typing_start(connection_id, payload.conversation_id)
        elif event == "typing-stop":
            payload = ConversationPayload.model_validate(data)
            await engine.typing_stop(connection_id, payload.conversation_id)
        else:
            await engine.emit_error(connection_id, f"Unknown event: {event}", "UNKNOWN_EVENT")
    except ValidationError as e:
        await engine.emit_error(connection_id, f"Invalid payload for {event}: {e.errors()}", "INVALID_PAYLOAD")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    connection_id = str(uuid.uuid4())
    await engine.connect(connection_id, websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await engine.emit_error(connection_id, "Frames must be JSON", "INVALID_PAYLOAD")
                continue
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await engine.emit_error(connection_id, "Frames need an 'event' name", "INVALID_PAYLOAD")
                continue
            await dispatch_event(connection_id, frame["event"], frame.get("data") or {})
    except WebSocketDisconnect as e:
        logger.info("Socket %s closed (code %s)", connection_id, e.code)
    finally:
        await engine.disconnect(connection_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("specroom.main:app", host="0.0.0.0", port=8001, reload=True)
