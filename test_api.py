import os
import sys
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '.')))

from specroom import main
from specroom.models import OrchestratedResponse
from specroom.orchestrator import ConversationOrchestrator
from specroom.session import SessionEngine
from specroom.storage import ConversationStore


class EchoGenerator:
    async def generate(self, persona, context, user_message):
        return OrchestratedResponse(persona=persona, content=f"Noted: {user_message}", tokens=5)


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.store = ConversationStore(self.tmp.name)
        self.engine = SessionEngine(self.store, None)

        for name, value in [("store", self.store), ("engine", self.engine)]:
            patcher = patch.object(main, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.client = TestClient(main.app)

    def use_ai(self):
        generator = EchoGenerator()
        orchestrator = ConversationOrchestrator(generator)
        self.engine.orchestrator = orchestrator
        for name, value in [("generator", generator), ("orchestrator", orchestrator)]:
            patcher = patch.object(main, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)

    def store_phase(self, cid, phase):
        self.client.post("/api/ai/transition-phase", json={"conversationId": cid, "nextPhase": phase})

    def create(self, idea="Shared grocery list"):
        response = self.client.post("/api/conversations", json={"appIdea": idea, "targetUsers": ["families"]})
        self.assertEqual(response.status_code, 200)
        return response.json()


class TestRestApi(ApiTestCase):

    def test_health(self):
        data = self.client.get("/health").json()
        self.assertEqual(data["status"], "OK")
        self.assertEqual(data["storage"], "writable")

    def test_personas_use_camel_case(self):
        personas = self.client.get("/api/personas").json()["personas"]
        self.assertEqual(len(personas), 5)
        self.assertIn("systemPrompt", personas[0])
        self.assertEqual(personas[0]["role"], "product-manager")

    def test_conversation_lifecycle(self):
        conversation = self.create()
        cid = conversation["id"]

        self.assertEqual(self.client.get(f"/api/conversations/{cid}").json()["app_idea"], "Shared grocery list")
        self.assertEqual(len(self.client.get("/api/conversations").json()), 1)

        progress = self.client.get(f"/api/conversations/{cid}/progress").json()
        self.assertEqual(progress["currentPhase"], "initial-discovery")
        self.assertEqual(progress["overallProgress"], 0)

        message = self.client.post(f"/api/conversations/{cid}/messages", json={"content": "Hello"})
        self.assertEqual(message.status_code, 201)
        self.assertEqual(message.json()["type"], "user")

        self.assertEqual(self.client.delete(f"/api/conversations/{cid}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/conversations/{cid}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/conversations/{cid}").status_code, 404)

    def test_create_validation(self):
        self.assertEqual(self.client.post("/api/conversations", json={"appIdea": ""}).status_code, 422)
        response = self.client.post("/api/conversations", json={"appIdea": "x", "complexity": "huge"})
        self.assertEqual(response.status_code, 400)

    def test_message_to_missing_conversation(self):
        response = self.client.post("/api/conversations/missing/messages", json={"content": "Hello"})
        self.assertEqual(response.status_code, 404)

    def test_transition_only_moves_forward(self):
        cid = self.create()["id"]

        ok = self.client.post("/api/ai/transition-phase", json={
            "conversationId": cid, "nextPhase": "user-experience",
        })
        self.assertEqual(ok.json()["nextPhase"], "user-experience")

        back = self.client.post("/api/ai/transition-phase", json={
            "conversationId": cid, "nextPhase": "business-requirements",
        })
        self.assertEqual(back.status_code, 400)

        stored = self.client.get(f"/api/conversations/{cid}").json()
        self.assertEqual(stored["phase"], "user-experience")
        note = stored["messages"][-1]
        self.assertEqual(note["type"], "system")
        self.assertEqual(note["persona_name"], "System")
        self.assertIsNone(note["persona"])

    def test_orchestrate_without_ai_service(self):
        with patch.object(main, "generator", None), patch.object(main, "orchestrator", None):
            cid = self.create()["id"]
            response = self.client.post("/api/ai/orchestrate", json={"conversationId": cid, "message": "Hi"})
        self.assertEqual(response.status_code, 503)

    def test_orchestrate_persists_turn(self):
        self.use_ai()
        cid = self.create()["id"]

        with patch.object(self.engine, "turn_lock", wraps=self.engine.turn_lock) as turn_lock:
            response = self.client.post("/api/ai/orchestrate", json={"conversationId": cid, "message": "Hi there"})
        turn_lock.assert_called_once_with(cid)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(len(data["responses"]), 1)
        self.assertEqual(data["responses"][0]["content"], "Noted: Hi there")
        self.assertIsNone(data["nextPhase"])

        stored = self.client.get(f"/api/conversations/{cid}").json()
        self.assertEqual([m["type"] for m in stored["messages"]], ["user", "ai"])

    def test_generate_response_for_one_persona(self):
        self.use_ai()
        cid = self.create()["id"]

        with patch.object(main.generator, "generate", wraps=main.generator.generate) as generate:
            response = self.client.post("/api/ai/generate-response", json={
                "conversationId": cid, "persona": "ux-designer", "message": "How should sign-up feel?",
            })

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["persona"], "ux-designer")
        self.assertEqual(data["content"], "Noted: How should sign-up feel?")

        persona, context, _ = generate.call_args[0]
        self.assertEqual(persona.value, "ux-designer")
        self.assertEqual([p.value for p in context.active_personas], ["ux-designer"])

        stored = self.client.get(f"/api/conversations/{cid}").json()
        self.assertEqual(stored["messages"][-1]["id"], data["id"])
        self.assertEqual(stored["messages"][-1]["persona_name"], "Emma Thompson")

    def test_generate_response_validation(self):
        self.use_ai()
        cid = self.create()["id"]

        unknown = self.client.post("/api/ai/generate-response", json={
            "conversationId": cid, "persona": "ceo", "message": "Hi",
        })
        self.assertEqual(unknown.status_code, 422)

        missing = self.client.post("/api/ai/generate-response", json={
            "conversationId": "missing", "persona": "devops", "message": "Hi",
        })
        self.assertEqual(missing.status_code, 404)

    def test_resolve_conflict_needs_two_messages(self):
        self.use_ai()
        cid = self.create()["id"]

        one = self.client.post("/api/ai/resolve-conflict", json={
            "conversationId": cid,
            "conflictingMessages": [{"persona": "tech-lead", "content": "Use Postgres"}],
        })
        self.assertEqual(one.status_code, 422)

        two = self.client.post("/api/ai/resolve-conflict", json={
            "conversationId": cid,
            "conflictingMessages": [
                {"persona": "tech-lead", "content": "Use Postgres"},
                {"persona": "devops", "content": "Use a managed document store"},
            ],
            "resolutionApproach": "technical-feasibility",
        })
        self.assertEqual(two.status_code, 200)
        self.assertEqual(two.json()["persona"]["id"], "scrum-master")


class TestSocket(ApiTestCase):

    def test_join_and_errors(self):
        cid = self.create()["id"]

        with self.client.websocket_connect("/ws") as ws:
            self.assertEqual(ws.receive_json()["data"], {"status": "connected"})

            ws.send_json({"event": "join-conversation", "data": {"conversationId": cid}})
            snapshot = ws.receive_json()
            self.assertEqual(snapshot["event"], "conversation-updated")
            self.assertEqual(snapshot["data"]["activePersonas"], ["product-manager"])

            status = self.client.get("/api/websocket/status").json()
            self.assertEqual(status["connections"], 1)
            self.assertEqual(status["activeConversations"], 1)

            ws.send_json({"event": "dance", "data": {}})
            self.assertEqual(ws.receive_json()["data"]["code"], "UNKNOWN_EVENT")

            ws.send_text("not json")
            self.assertEqual(ws.receive_json()["data"]["code"], "INVALID_PAYLOAD")

            ws.send_json({"event": "send-message", "data": {"conversationId": cid}})
            self.assertEqual(ws.receive_json()["data"]["code"], "INVALID_PAYLOAD")

            ws.send_json({"event": "send-message", "data": {"conversationId": cid, "message": "Hi"}})
            echoed = ws.receive_json()
            self.assertEqual(echoed["event"], "message-received")
            self.assertEqual(echoed["data"]["content"], "Hi")

    def test_ai_turn_over_socket(self):
        self.use_ai()
        conversation = self.create()
        cid = conversation["id"]
        self.store_phase(cid, "technical-architecture")

        with patch.object(SessionEngine, "_simulate_typing", new=AsyncMock()), \
                self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"event": "join-conversation", "data": {"conversationId": cid}})
            ws.receive_json()

            ws.send_json({"event": "send-message", "data": {"conversationId": cid, "message": "Which stack?"}})
            self.assertEqual(ws.receive_json()["event"], "message-received")

            ws.send_json({"event": "request-ai-response", "data": {
                "conversationId": cid,
                "context": {"currentPhase": "initial-discovery"},
            }})
            frames = [ws.receive_json() for _ in range(6)]

        self.assertEqual([f["event"] for f in frames], [
            "ai-typing-start", "ai-typing-end", "ai-response",
            "ai-typing-start", "ai-typing-end", "ai-response",
        ])
        self.assertEqual([frames[2]["data"]["persona"], frames[5]["data"]["persona"]], ["tech-lead", "product-manager"])
        self.assertEqual(frames[2]["data"]["content"], "Noted: Which stack?")


if __name__ == "__main__":
    unittest.main()
