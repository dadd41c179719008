"""
Real-time session engine.

Owns the live connections, the per-conversation rooms and typing sets,
and turns orchestration results into the paced event stream clients see.
All state lives on one SessionEngine instance and is only touched through
its methods; the event loop is single-threaded, so no locking is needed
except the per-conversation turn lock that keeps AI turns from
interleaving their persisted messages.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Set

from .config import TYPING_MAX_MS, TYPING_MIN_MS, TYPING_MS_PER_CHAR
from .errors import ConversationNotFoundError, NoMessagesError
from .models import ConversationPhase, OrchestrationResult, PersonaRole
from .orchestrator import base_personas, build_context, later_phase
from .personas import get_persona

logger = logging.getLogger(__name__)


def typing_delay_ms(content_length: int) -> int:
    """Simulated typing time for a reply of ``content_length`` characters."""
    return min(max(content_length * TYPING_MS_PER_CHAR, TYPING_MIN_MS), TYPING_MAX_MS)


class SessionEngine:
    def __init__(self, store, orchestrator):
        self.store = store
        self.orchestrator = orchestrator
        # connection id -> object with an async send_json(dict)
        self._connections: Dict[str, Any] = {}
        # conversation id -> connection ids in the room
        self._rooms: Dict[str, Set[str]] = {}
        # conversation id -> connection ids currently typing
        self._typing: Dict[str, Set[str]] = {}
        self._turn_locks: Dict[str, asyncio.Lock] = {}
        # conversation id -> turns holding or waiting on the lock
        self._turn_waiters: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _send(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        try:
            await connection.send_json({"event": event, "data": payload})
            return True
        except Exception as e:
            logger.warning("Dropping connection %s after failed send of %s: %s", connection_id, event, e)
            return False

    async def emit(self, connection_id: str, event: str, payload: Dict[str, Any]):
        """Send one event to a single connection."""
        if not await self._send(connection_id, event, payload):
            await self._drop_dead(connection_id)

    async def emit_error(self, connection_id: Optional[str], message: str, code: str):
        if connection_id is None:
            return
        await self.emit(connection_id, "error", {"message": message, "code": code})

    async def broadcast(
        self,
        conversation_id: str,
        event: str,
        payload: Dict[str, Any],
        exclude: Optional[str] = None,
    ):
        """Send an event to every connection in the conversation's room."""
        dead = []
        for connection_id in list(self._rooms.get(conversation_id, ())):
            if connection_id == exclude:
                continue
            if not await self._send(connection_id, event, payload):
                dead.append(connection_id)
        for connection_id in dead:
            await self._drop_dead(connection_id)

    async def broadcast_specifications_ready(self, conversation_id: str):
        await self.broadcast(conversation_id, "specifications-ready", {"conversationId": conversation_id})

    async def _drop_dead(self, connection_id: str):
        if connection_id in self._connections:
            await self.disconnect(connection_id)

    # ------------------------------------------------------------------
    # Connections and rooms
    # ------------------------------------------------------------------

    async def connect(self, connection_id: str, connection):
        """Register a live connection and confirm it."""
        self._connections[connection_id] = connection
        logger.info("Client connected: %s", connection_id)
        await self.emit(connection_id, "connection-status", {"status": "connected"})

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    async def join(self, connection_id: str, conversation_id: str) -> bool:
        """
        Add a connection to a conversation room.

        The joiner alone receives a conversation-updated snapshot. Returns
        False (after emitting an error to the joiner) when the conversation
        does not exist or cannot be loaded.
        """
        if connection_id not in self._connections:
            logger.warning("Ignoring join from unknown connection %s", connection_id)
            return False

        try:
            conversation = await self.store.get_conversation(conversation_id)
        except Exception as e:
            logger.error("Error joining conversation %s: %s", conversation_id, e)
            await self.emit_error(connection_id, "Failed to join conversation", "JOIN_CONVERSATION_ERROR")
            return False

        if conversation is None:
            await self.emit_error(
                connection_id, "Conversation not found", ConversationNotFoundError.code
            )
            return False

        self._rooms.setdefault(conversation_id, set()).add(connection_id)
        logger.info("Connection %s joined conversation %s", connection_id, conversation_id)

        phase = ConversationPhase(conversation.get("phase") or ConversationPhase.INITIAL_DISCOVERY)
        if conversation.get("status") == "completed":
            phase = ConversationPhase.SPECIFICATION_GENERATION

        await self.emit(connection_id, "conversation-updated", {
            "conversationId": conversation_id,
            "phase": phase.value,
            "activePersonas": [p.value for p in base_personas(phase)],
        })
        return True

    async def leave(self, connection_id: str, conversation_id: str):
        """Remove a connection from one room, clearing its typing state there."""
        await self._remove_from_conversation(connection_id, conversation_id)

    async def disconnect(self, connection_id: str):
        """Forget a connection and clean it out of every room and typing set."""
        self._connections.pop(connection_id, None)
        conversation_ids = [
            cid for cid in set(self._rooms) | set(self._typing)
            if connection_id in self._rooms.get(cid, ()) or connection_id in self._typing.get(cid, ())
        ]
        for conversation_id in conversation_ids:
            await self._remove_from_conversation(connection_id, conversation_id)
        logger.info("Client disconnected: %s", connection_id)

    async def _remove_from_conversation(self, connection_id: str, conversation_id: str):
        members = self._rooms.get(conversation_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[conversation_id]

        typers = self._typing.get(conversation_id)
        if typers is not None and connection_id in typers:
            typers.discard(connection_id)
            if not typers:
                del self._typing[conversation_id]
                await self.broadcast(
                    conversation_id,
                    "user-typing",
                    {"conversationId": conversation_id, "isTyping": False},
                    exclude=connection_id,
                )

    # ------------------------------------------------------------------
    # Typing presence
    # ------------------------------------------------------------------

    async def typing_start(self, connection_id: str, conversation_id: str):
        if connection_id not in self._connections:
            return
        typers = self._typing.setdefault(conversation_id, set())
        was_idle = not typers
        typers.add(connection_id)
        if was_idle:
            await self.broadcast(
                conversation_id,
                "user-typing",
                {"conversationId": conversation_id, "isTyping": True},
                exclude=connection_id,
            )

    async def typing_stop(self, connection_id: str, conversation_id: str):
        typers = self._typing.get(conversation_id)
        if not typers or connection_id not in typers:
            return
        typers.discard(connection_id)
        if not typers:
            del self._typing[conversation_id]
            await self.broadcast(
                conversation_id,
                "user-typing",
                {"conversationId": conversation_id, "isTyping": False},
                exclude=connection_id,
            )

    # ------------------------------------------------------------------
    # Messages and AI turns
    # ------------------------------------------------------------------

    async def post_user_message(self, conversation_id: str, text: str) -> Dict[str, Any]:
        """Persist a user message and echo it to the whole room."""
        message = await self.store.add_message(conversation_id, text, "user")
        await self.broadcast(conversation_id, "message-received", {
            "id": message["id"],
            "conversationId": conversation_id,
            "content": text,
            "messageType": "user",
            "timestamp": message["created_at"],
        })
        logger.info("User message in conversation %s: %s", conversation_id, text[:50])
        return message

    async def submit_user_message(
        self, connection_id: str, conversation_id: str, text: str
    ) -> Optional[Dict[str, Any]]:
        try:
            return await self.post_user_message(conversation_id, text)
        except ConversationNotFoundError as e:
            await self.emit_error(connection_id, e.message, e.code)
        except Exception as e:
            logger.error("Error handling user message for %s: %s", conversation_id, e)
            await self.emit_error(connection_id, "Failed to send message", "SEND_MESSAGE_ERROR")
        return None

    async def request_ai_turn(
        self,
        connection_id: Optional[str],
        conversation_id: str,
        requested_phase: Optional[ConversationPhase] = None,
        requested_personas: Optional[List[PersonaRole]] = None,
    ) -> Optional[OrchestrationResult]:
        """
        Run one AI turn for a conversation, serialized per conversation.

        Failures are reported to ``connection_id`` only. Messages persisted
        before the failure stay persisted.
        """
        try:
            async with self.turn_lock(conversation_id):
                return await self.run_ai_turn(conversation_id, requested_phase, requested_personas)
        except (ConversationNotFoundError, NoMessagesError) as e:
            await self.emit_error(connection_id, e.message, e.code)
        except Exception:
            logger.exception("Error handling AI response request for %s", conversation_id)
            await self.emit_error(connection_id, "Failed to generate AI response", "AI_RESPONSE_ERROR")
        return None

    @asynccontextmanager
    async def turn_lock(self, conversation_id: str):
        """
        Hold the conversation's turn lock.

        Every writer of a turn (socket or HTTP) goes through here so their
        persisted messages never interleave. The lock is forgotten once no
        holder or waiter is left.
        """
        lock = self._turn_locks.setdefault(conversation_id, asyncio.Lock())
        self._turn_waiters[conversation_id] = self._turn_waiters.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._turn_waiters[conversation_id] -= 1
            if not self._turn_waiters[conversation_id]:
                del self._turn_waiters[conversation_id]
                del self._turn_locks[conversation_id]

    async def run_ai_turn(
        self,
        conversation_id: str,
        requested_phase: Optional[ConversationPhase] = None,
        requested_personas: Optional[List[PersonaRole]] = None,
    ) -> Optional[OrchestrationResult]:
        """Unguarded turn body; raises on failure. Returns None for a no-op turn."""
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        messages = conversation.get("messages") or []
        if not messages:
            raise NoMessagesError(conversation_id)

        latest = messages[-1]
        if latest.get("type") != "user":
            # never answer an AI message
            return None

        stored_phase = ConversationPhase(conversation.get("phase") or ConversationPhase.INITIAL_DISCOVERY)
        phase = later_phase(stored_phase, requested_phase)
        context = build_context(conversation, phase, requested_personas)

        result = await self.orchestrator.orchestrate(context, latest["content"])

        for response in result.responses:
            persona = get_persona(response.persona)
            typing_payload = {"persona": persona.role.value, "personaName": persona.name}

            await self.broadcast(conversation_id, "ai-typing-start", typing_payload)
            await self._simulate_typing(response.content)

            message = await self.store.add_message(
                conversation_id,
                response.content,
                "ai",
                persona=persona.role,
                persona_name=persona.name,
                tokens=response.tokens,
                processing_time_ms=response.processing_time_ms,
            )

            await self.broadcast(conversation_id, "ai-typing-end", typing_payload)
            await self.broadcast(conversation_id, "ai-response", {
                "id": message["id"],
                "conversationId": conversation_id,
                "content": response.content,
                "persona": persona.role.value,
                "personaName": persona.name,
                "tokens": response.tokens or 0,
                "processingTimeMs": response.processing_time_ms or 0,
                "timestamp": message["created_at"],
            })
            logger.info("AI response from %s in conversation %s", persona.name, conversation_id)

        if result.next_phase:
            await self.store.advance_phase(conversation_id, result.next_phase)
            await self.broadcast(conversation_id, "conversation-updated", {
                "conversationId": conversation_id,
                "phase": result.next_phase.value,
                "activePersonas": [r.persona.value for r in result.responses],
            })

        if result.is_complete:
            await self.store.update_status(conversation_id, "completed")
            await self.broadcast_specifications_ready(conversation_id)

        return result

    async def _simulate_typing(self, content: str):
        await asyncio.sleep(typing_delay_ms(len(content)) / 1000)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def is_active(self, conversation_id: str) -> bool:
        return bool(self._rooms.get(conversation_id))

    def member_count(self, conversation_id: str) -> int:
        return len(self._rooms.get(conversation_id, ()))

    def stats(self) -> Dict[str, int]:
        return {
            "totalConnections": len(self._connections),
            "activeConversations": len(self._rooms),
            "typingConnections": sum(len(s) for s in self._typing.values()),
        }
