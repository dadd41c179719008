import os
import sys
import tempfile
import unittest

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '.')))

from specroom.errors import ConversationNotFoundError
from specroom.models import ConversationPhase, PersonaRole
from specroom.storage import ConversationStore


class TestConversationStore(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.store = ConversationStore(self.tmp.name)

    async def test_create_and_load(self):
        created = await self.store.create_conversation("Pet sitting marketplace", ["pet owners"], complexity="complex")

        loaded = await self.store.get_conversation(created["id"])

        self.assertEqual(loaded["app_idea"], "Pet sitting marketplace")
        self.assertEqual(loaded["phase"], "initial-discovery")
        self.assertEqual(loaded["status"], "active")
        self.assertEqual(loaded["messages"], [])
        self.assertIsNone(await self.store.get_conversation("nope"))

    async def test_messages_keep_order_and_persona(self):
        conversation = await self.store.create_conversation("Budget app")
        await self.store.add_message(conversation["id"], "hi", "user")
        await self.store.add_message(
            conversation["id"], "hello", "ai",
            persona=PersonaRole.TECH_LEAD, persona_name="Marcus Rodriguez", tokens=9,
        )

        loaded = await self.store.get_conversation(conversation["id"])

        self.assertEqual([m["content"] for m in loaded["messages"]], ["hi", "hello"])
        self.assertEqual(loaded["messages"][1]["persona"], "tech-lead")
        self.assertIsNone(loaded["messages"][0]["persona"])

    async def test_add_message_to_missing_conversation(self):
        with self.assertRaises(ConversationNotFoundError):
            await self.store.add_message("missing", "hi", "user")

    async def test_phase_never_regresses(self):
        conversation = await self.store.create_conversation("Fitness coach")
        cid = conversation["id"]

        self.assertEqual(
            await self.store.advance_phase(cid, ConversationPhase.INFRASTRUCTURE),
            ConversationPhase.INFRASTRUCTURE,
        )
        self.assertEqual(
            await self.store.advance_phase(cid, ConversationPhase.BUSINESS_REQUIREMENTS),
            ConversationPhase.INFRASTRUCTURE,
        )
        self.assertEqual((await self.store.get_conversation(cid))["phase"], "infrastructure")

    async def test_list_and_delete(self):
        first = await self.store.create_conversation("One")
        second = await self.store.create_conversation("Two")
        await self.store.add_message(second["id"], "hi", "user")

        listed = {c["id"]: c for c in await self.store.list_conversations()}
        self.assertEqual(set(listed), {first["id"], second["id"]})
        self.assertEqual(listed[second["id"]]["message_count"], 1)

        await self.store.delete_conversation(first["id"])
        self.assertIsNone(await self.store.get_conversation(first["id"]))
        with self.assertRaises(ConversationNotFoundError):
            await self.store.delete_conversation(first["id"])


if __name__ == "__main__":
    unittest.main()
