"""JSON-based storage for conversations and their messages."""

import json
import os
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from pathlib import Path

from .config import DATA_DIR
from .errors import ConversationNotFoundError, StoreError
from .models import PHASE_ORDER, ConversationPhase, PersonaRole


def _now() -> str:
    return datetime.utcnow().isoformat()


class ConversationStore:
    """
    Stores each conversation as one JSON file under ``data_dir``.

    Methods are coroutines so callers await them like any other store;
    the file IO itself is small and synchronous.
    """

    def __init__(self, data_dir: str = DATA_DIR):
        self.data_dir = data_dir

    def ensure_data_dir(self):
        """Ensure the data directory exists."""
        Path(self.data_dir).mkdir(parents=True, exist_ok=True)

    def get_conversation_path(self, conversation_id: str) -> str:
        """Get the file path for a conversation."""
        return os.path.join(self.data_dir, f"{conversation_id}.json")

    def _read(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        path = self.get_conversation_path(conversation_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read conversation {conversation_id}: {e}")

    def _write(self, conversation: Dict[str, Any]):
        try:
            self.ensure_data_dir()
            path = self.get_conversation_path(conversation['id'])
            with open(path, 'w') as f:
                json.dump(conversation, f, indent=2)
        except OSError as e:
            raise StoreError(f"Failed to save conversation {conversation['id']}: {e}")

    def _require(self, conversation_id: str) -> Dict[str, Any]:
        conversation = self._read(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def create_conversation(
        self,
        app_idea: str,
        target_users: Optional[List[str]] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        complexity: str = "moderate",
        conversation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a new conversation.

        Args:
            app_idea: Free-text product idea
            target_users: Intended user groups
            title: Display title (defaults to the start of the idea)
            complexity: simple, moderate or complex

        Returns:
            New conversation dict
        """
        conversation = {
            "id": conversation_id or str(uuid.uuid4()),
            "created_at": _now(),
            "updated_at": _now(),
            "title": title or (app_idea[:60] if app_idea else "New Conversation"),
            "description": description or "",
            "app_idea": app_idea,
            "target_users": list(target_users or []),
            "complexity": complexity,
            "status": "active",
            "phase": ConversationPhase.INITIAL_DISCOVERY.value,
            "messages": [],
        }
        self._write(conversation)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a conversation from storage.

        Returns:
            Conversation dict or None if not found
        """
        return self._read(conversation_id)

    async def list_conversations(self) -> List[Dict[str, Any]]:
        """
        List all conversations (metadata only), newest first.
        """
        self.ensure_data_dir()

        conversations = []
        for filename in os.listdir(self.data_dir):
            if not filename.endswith('.json'):
                continue
            data = self._read(filename[:-len('.json')])
            if data is None:
                continue
            conversations.append({
                "id": data["id"],
                "created_at": data["created_at"],
                "title": data.get("title", "New Conversation"),
                "status": data.get("status", "active"),
                "phase": data.get("phase", ConversationPhase.INITIAL_DISCOVERY.value),
                "message_count": len(data["messages"]),
            })

        conversations.sort(key=lambda x: x["created_at"], reverse=True)
        return conversations

    async def add_message(
        self,
        conversation_id: str,
        content: str,
        message_type: str,
        persona: Optional[PersonaRole] = None,
        persona_name: Optional[str] = None,
        tokens: Optional[int] = None,
        processing_time_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Append a user or AI message to a conversation.

        Returns:
            The stored message dict (with its generated id and timestamp)
        """
        conversation = self._require(conversation_id)

        message = {
            "id": str(uuid.uuid4()),
            "conversation_id": conversation_id,
            "type": message_type,
            "content": content,
            "persona": PersonaRole(persona).value if persona else None,
            "persona_name": persona_name,
            "tokens": tokens,
            "processing_time_ms": processing_time_ms,
            "created_at": _now(),
        }
        conversation["messages"].append(message)
        conversation["updated_at"] = message["created_at"]
        self._write(conversation)
        return message

    async def advance_phase(self, conversation_id: str, phase: ConversationPhase) -> ConversationPhase:
        """
        Move the stored phase forward to ``phase``.

        Earlier phases are ignored so the stored value never regresses.
        Returns the phase now stored.
        """
        conversation = self._require(conversation_id)
        current = ConversationPhase(conversation.get("phase", ConversationPhase.INITIAL_DISCOVERY.value))
        target = ConversationPhase(phase)
        if PHASE_ORDER.index(target) > PHASE_ORDER.index(current):
            conversation["phase"] = target.value
            conversation["updated_at"] = _now()
            self._write(conversation)
            return target
        return current

    async def update_status(self, conversation_id: str, status: str):
        conversation = self._require(conversation_id)
        conversation["status"] = status
        conversation["updated_at"] = _now()
        self._write(conversation)

    async def update_conversation_title(self, conversation_id: str, title: str):
        conversation = self._require(conversation_id)
        conversation["title"] = title
        self._write(conversation)

    async def delete_conversation(self, conversation_id: str):
        """
        Delete a conversation from storage.
        """
        path = self.get_conversation_path(conversation_id)
        if not os.path.exists(path):
            raise ConversationNotFoundError(conversation_id)
        try:
            os.remove(path)
        except OSError as e:
            raise StoreError(f"Failed to delete conversation {conversation_id}: {e}")

    async def health_check(self) -> bool:
        try:
            self.ensure_data_dir()
            return os.access(self.data_dir, os.W_OK)
        except OSError:
            return False
