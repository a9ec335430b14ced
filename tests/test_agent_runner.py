"""
Tests for the Ollama-backed agent runner.

HTTP traffic is served by httpx.MockTransport; no Ollama server is needed.
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path

import httpx

from continuum.agents import AgentRunner, strip_code_fences
from continuum.database import DatabaseManager
from continuum.errors import GeneratorError, SummarizerError


def make_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestAgentRunner(unittest.IsolatedAsyncioTestCase):
    """Test requests, responses and error mapping."""

    def setUp(self):
        self.requests = []

    def respond_with(self, payload, status_code=200):
        def handler(request):
            self.requests.append(json.loads(request.content))
            return httpx.Response(status_code, json=payload)
        return handler

    async def test_generate_sends_context_and_directive(self):
        async with AgentRunner(ollama_host="http://ollama:11434", model="test-model",
                               client=make_client(self.respond_with({"response": "```html\n<h1>Report</h1>\n```"}))) as runner:
            text = await runner.generate("<h1>Old</h1>", "Add risks")

        self.assertEqual(text, "<h1>Report</h1>")
        payload = self.requests[0]
        self.assertEqual(payload["model"], "test-model")
        self.assertFalse(payload["stream"])
        self.assertTrue(payload["prompt"].startswith("CURRENT REPORT:\n<h1>Old</h1>"))
        self.assertTrue(payload["prompt"].endswith("Add risks"))
        self.assertIn("financial research analyst", payload["system"])

    async def test_generate_without_context(self):
        async with AgentRunner(client=make_client(self.respond_with({"response": "fresh"}))) as runner:
            await runner.generate(None, "Write a report")

        self.assertEqual(self.requests[0]["prompt"], "Write a report")

    async def test_summarize(self):
        async with AgentRunner(client=make_client(self.respond_with({"response": "short"}))) as runner:
            text = await runner.summarize("long text")

        self.assertEqual(text, "short")
        self.assertIn("expert editor", self.requests[0]["system"])

    async def test_http_error_maps_to_engine_error(self):
        async with AgentRunner(client=make_client(self.respond_with({"error": "boom"}, 500))) as runner:
            with self.assertRaises(GeneratorError):
                await runner.generate(None, "Write a report")
            with self.assertRaises(SummarizerError):
                await runner.summarize("long text")

    async def test_connection_error_maps_to_engine_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with AgentRunner(client=make_client(handler)) as runner:
            with self.assertRaises(GeneratorError):
                await runner.generate(None, "Write a report")

    async def test_timeout_maps_to_engine_error(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        async with AgentRunner(client=make_client(handler)) as runner:
            with self.assertRaises(SummarizerError):
                await runner.summarize("long text")

    async def test_non_text_response(self):
        async with AgentRunner(client=make_client(self.respond_with({"response": None}))) as runner:
            with self.assertRaises(GeneratorError):
                await runner.generate(None, "Write a report")

    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"not json")

        async with AgentRunner(client=make_client(handler)) as runner:
            with self.assertRaises(GeneratorError):
                await runner.generate(None, "Write a report")

    async def test_persona_generator(self):
        async with AgentRunner(client=make_client(self.respond_with({"response": "[]"}))) as runner:
            extractor = runner.generator_for("entity_extractor")
            await extractor.generate(None, "Extract entities")

        self.assertIn("information clerk", self.requests[0]["system"])


class TestAgentCallLogging(unittest.IsolatedAsyncioTestCase):
    """Test that every call is logged for reproducibility."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db = DatabaseManager(str(Path(self.temp_dir) / "test.db"))
        self.db.connect()
        self.db.initialize_database()

    def tearDown(self):
        self.db.disconnect()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    async def test_success_and_failure_are_logged(self):
        responses = [httpx.Response(200, json={"response": "ok"}), httpx.Response(503)]

        def handler(request):
            return responses.pop(0)

        async with AgentRunner(model="test-model", database_manager=self.db, client=make_client(handler)) as runner:
            await runner.summarize("first")
            with self.assertRaises(SummarizerError):
                await runner.summarize("second")

        calls = self.db.get_ai_agent_calls(agent_name="summarizer")
        self.assertEqual(len(calls), 2)
        self.assertFalse(calls[0]["success"])
        self.assertIn("503", calls[0]["error_message"])
        self.assertTrue(calls[1]["success"])
        self.assertEqual(calls[1]["raw_response"], "ok")
        self.assertEqual(calls[1]["model_name"], "test-model")


class TestStripCodeFences(unittest.TestCase):

    def test_strip(self):
        self.assertEqual(strip_code_fences("```json\n[1]\n```"), "[1]")
        self.assertEqual(strip_code_fences("  plain  "), "plain")
        self.assertEqual(strip_code_fences("```\nbody```"), "body")


if __name__ == '__main__':
    unittest.main(verbosity=2)
