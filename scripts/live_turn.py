import asyncio
import json
import os
import sys
import tempfile

sys.path.insert(0, ".")

from specroom.config import configure_logging
from specroom.generator import ResponseGenerator
from specroom.orchestrator import ConversationOrchestrator
from specroom.session import SessionEngine
from specroom.storage import ConversationStore


class PrintConnection:
    async def send_json(self, frame):
        data = dict(frame["data"])
        if "content" in data:
            data["content"] = data["content"][:200]
        print(frame["event"], json.dumps(data, indent=2))


async def main():
    configure_logging()

    app_idea = os.getenv("LIVE_TURN_IDEA", "A shared grocery list for families")
    message = os.getenv(
        "LIVE_TURN_MESSAGE",
        "I want a grocery app where the whole family can add items and see what is already in the cart.",
    )

    with tempfile.TemporaryDirectory() as data_dir:
        store = ConversationStore(data_dir)
        engine = SessionEngine(store, ConversationOrchestrator(ResponseGenerator()))

        conversation = await store.create_conversation(app_idea, ["families"])
        await engine.connect("live", PrintConnection())
        await engine.join("live", conversation["id"])

        await engine.submit_user_message("live", conversation["id"], message)
        result = await engine.request_ai_turn("live", conversation["id"])

        print("\nSUGGESTED ACTIONS:")
        print(json.dumps(result.suggested_actions if result else [], indent=2))


if __name__ == "__main__":
    asyncio.run(main())
