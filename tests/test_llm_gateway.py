import json
import tempfile
import unittest
from pathlib import Path

import requests

from llm_gateway import (
    ANTHROPIC_SYSTEM_SUFFIX,
    EXERCISE_HINT,
    GOOGLE_EXERCISE_HINT,
    AnthropicAdapter,
    GoogleAdapter,
    ModelRegistry,
    OpenAIAdapter,
    Provider,
    ProviderError,
    ProviderGateway,
    ProviderKeys,
    ProviderRequest,
)

SYSTEM = {"role": "system", "content": "You are a tutor."}
HISTORY = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello!"}]


class _FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _FakeSession:
    def __init__(self, *responses, exc=None):
        self.responses = list(responses)
        self.exc = exc
        self.calls = []

    def post(self, url, headers=None, params=None, json=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "params": params, "json": json, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.responses.pop(0)


def _chat_ok(text="ok"):
    return _FakeResponse(200, {"choices": [{"message": {"role": "assistant", "content": text}}]})


class TestModelRegistry(unittest.TestCase):
    def setUp(self):
        self.registry_path = Path(__file__).resolve().parents[1] / "config" / "model_registry.yaml"
        self.registry = ModelRegistry(self.registry_path)

    def test_registry_covers_every_provider(self):
        self.assertEqual(set(self.registry.providers), set(Provider))
        self.assertEqual(self.registry.default_max_tokens, 800)

    def test_strict_and_lenient_lookup(self):
        self.assertEqual(self.registry.resolve_model_config("gpt4o").provider, Provider.OPENAI)
        self.assertEqual(self.registry.resolve_model_config("claude-3").provider, Provider.ANTHROPIC)
        self.assertIsNone(self.registry.resolve_model_config("not-a-real-model"))
        fallback = self.registry.get_model_config("not-a-real-model")
        self.assertEqual(fallback.model, "gpt-3.5-turbo")
        self.assertEqual(fallback.provider, Provider.OPENAI)

    def test_supported_ids_include_client_models(self):
        ids = self.registry.supported_model_ids()
        for model_id in ("gpt4o", "gpt-4o", "gemini-pro", "mistral-large", "deepseek-chat", "grok-2"):
            self.assertIn(model_id, ids)

    def test_registry_rejects_missing_provider(self):
        with tempfile.TemporaryDirectory() as d:
            path = Path(d) / "registry.yaml"
            path.write_text("providers:\n  OpenAI:\n    api_key_env: OPENAI_API_KEY\nmodels: {}\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                ModelRegistry(path)


class TestProviderKeys(unittest.TestCase):
    def test_reads_configured_keys_only(self):
        registry = ModelRegistry()
        keys = ProviderKeys.from_env(registry, {"OPENAI_API_KEY": "sk-1", "GOOGLE_API_KEY": "  "})
        self.assertEqual(keys.get(Provider.OPENAI), "sk-1")
        self.assertIsNone(keys.get(Provider.GOOGLE))
        self.assertEqual(keys.configured(), [Provider.OPENAI])
        self.assertEqual(keys.env_name(Provider.XAI), "XAI_API_KEY")


class TestAdapters(unittest.TestCase):
    def setUp(self):
        self.registry = ModelRegistry()

    def _adapter(self, provider, session, key="secret"):
        keys = ProviderKeys(keys={provider: key} if key else {})
        return ProviderGateway(self.registry, keys, session=session).adapter_for(provider)

    def _req(self, **overrides):
        values = dict(system_message=SYSTEM, history=HISTORY, user_message="What is 2+2?", model="m")
        values.update(overrides)
        return ProviderRequest(**values)

    def test_missing_key_fails_fast(self):
        session = _FakeSession()
        adapter = self._adapter(Provider.MISTRAL, session, key=None)
        with self.assertRaises(ProviderError) as ctx:
            adapter.call(self._req())
        self.assertEqual(str(ctx.exception), "Mistral AI API key not configured")
        self.assertEqual(session.calls, [])

    def test_chat_completions_providers_send_system_message_unchanged(self):
        for provider, url in (
            (Provider.MISTRAL, "https://api.mistral.ai/v1/chat/completions"),
            (Provider.DEEPSEEK, "https://api.deepseek.com/v1/chat/completions"),
            (Provider.XAI, "https://api.x.ai/v1/chat/completions"),
        ):
            session = _FakeSession(_chat_ok("four"))
            adapter = self._adapter(provider, session)
            self.assertEqual(adapter.call(self._req(is_exercise=True)), "four")
            call = session.calls[0]
            self.assertEqual(call["url"], url)
            self.assertEqual(call["headers"]["Authorization"], "Bearer secret")
            body = call["json"]
            self.assertEqual(body["messages"][0], SYSTEM)
            self.assertEqual(body["messages"][1:3], HISTORY)
            self.assertEqual(body["messages"][-1]["content"], "What is 2+2?" + EXERCISE_HINT)
            self.assertEqual(body["temperature"], 0.7)
            self.assertEqual(body["max_tokens"], 800)

    def test_openai_token_param_by_family_and_no_exercise_hint(self):
        session = _FakeSession(_chat_ok(), _chat_ok())
        adapter = self._adapter(Provider.OPENAI, session)
        adapter.call(self._req(model="gpt-4.1-2025-04-14", is_exercise=True))
        adapter.call(self._req(model="gpt4o"))
        modern, legacy = session.calls[0]["json"], session.calls[1]["json"]
        self.assertEqual(modern["max_completion_tokens"], 800)
        self.assertNotIn("max_tokens", modern)
        self.assertNotIn("temperature", modern)
        self.assertEqual(modern["messages"][-1]["content"], "What is 2+2?")
        self.assertEqual(modern["messages"][0], SYSTEM)
        self.assertEqual(legacy["model"], "gpt-4o")
        self.assertEqual(legacy["max_tokens"], 800)
        self.assertEqual(legacy["temperature"], 0.7)

    def test_openai_grading_failure_returns_incorrect(self):
        session = _FakeSession(_FakeResponse(500, {"error": {"message": "upstream exploded"}}))
        adapter = self._adapter(Provider.OPENAI, session)
        self.assertEqual(adapter.call(self._req(user_message="Grade this answer: 5", model="gpt-4o")), "INCORRECT")

    def test_openai_grading_network_failure_returns_incorrect(self):
        session = _FakeSession(exc=requests.ConnectionError("reset"))
        adapter = self._adapter(Provider.OPENAI, session)
        self.assertEqual(adapter.call(self._req(user_message="Grade this answer: 5")), "INCORRECT")

    def test_openai_non_grading_failure_propagates_upstream_message(self):
        session = _FakeSession(_FakeResponse(400, {"error": {"message": "The model `x` does not exist"}}))
        adapter = self._adapter(Provider.OPENAI, session)
        with self.assertRaises(ProviderError) as ctx:
            adapter.call(self._req())
        self.assertIn("The model `x` does not exist", str(ctx.exception))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_openai_structured_explanation_returns_tool_arguments(self):
        arguments = {
            "isMath": True,
            "exercise": "2x = 4",
            "sections": {k: k for k in ("concept", "example", "strategy", "pitfall", "check", "practice")},
        }
        payload = {
            "choices": [
                {
                    "message": {
                        "content": None,
                        "tool_calls": [{"function": {"name": "build_explanation", "arguments": json.dumps(arguments)}}],
                    }
                }
            ]
        }
        session = _FakeSession(_FakeResponse(200, payload))
        adapter = self._adapter(Provider.OPENAI, session)
        content = adapter.call(self._req(model="gpt-4o", structured_explanation=True))
        self.assertEqual(json.loads(content), arguments)
        body = session.calls[0]["json"]
        self.assertEqual(body["tools"][0]["function"]["name"], "build_explanation")
        self.assertEqual(body["tool_choice"]["function"]["name"], "build_explanation")

    def test_anthropic_prepends_system_content_into_messages(self):
        session = _FakeSession(_FakeResponse(200, {"content": [{"type": "text", "text": "bonjour"}]}))
        adapter = self._adapter(Provider.ANTHROPIC, session)
        self.assertIsInstance(adapter, AnthropicAdapter)
        self.assertEqual(adapter.call(self._req(model="claude-3-opus-20240229")), "bonjour")
        call = session.calls[0]
        body = call["json"]
        self.assertNotIn("system", body)
        self.assertEqual(body["messages"][0]["content"], "You are a tutor." + ANTHROPIC_SYSTEM_SUFFIX)
        self.assertEqual(body["messages"][0]["role"], "user")
        self.assertEqual(body["max_tokens"], 800)
        self.assertEqual(call["headers"]["x-api-key"], "secret")
        self.assertEqual(call["headers"]["anthropic-version"], "2023-06-01")
        self.assertEqual(call["url"], "https://api.anthropic.com/v1/messages")

    def test_anthropic_formatting_is_idempotent(self):
        adapter = AnthropicAdapter(self.registry.provider_spec(Provider.ANTHROPIC), "k", _FakeSession())
        once = adapter.format_system_message(SYSTEM)
        self.assertEqual(adapter.format_system_message(once), once)
        self.assertEqual(
            adapter.format_history([{"role": "system", "content": "x"}, {"role": "assistant", "content": "y"}]),
            [{"role": "user", "content": "x"}, {"role": "assistant", "content": "y"}],
        )

    def test_google_builds_single_prompt_and_key_param(self):
        reply = {"candidates": [{"content": {"parts": [{"text": "gemini says hi"}]}}]}
        session = _FakeSession(_FakeResponse(200, reply))
        adapter = self._adapter(Provider.GOOGLE, session)
        self.assertIsInstance(adapter, GoogleAdapter)
        self.assertEqual(adapter.call(self._req(model="gemini-pro", is_exercise=True)), "gemini says hi")
        call = session.calls[0]
        self.assertEqual(
            call["url"], "https://generativelanguage.googleapis.com/v1beta/models/gemini-pro:generateContent"
        )
        self.assertEqual(call["params"], {"key": "secret"})
        text = call["json"]["contents"][0]["parts"][0]["text"]
        self.assertEqual(
            text, "You are a tutor.\n\nhi\nhello!\n\nUser: What is 2+2?" + GOOGLE_EXERCISE_HINT + "\nAssistant:"
        )
        self.assertEqual(call["json"]["generationConfig"]["maxOutputTokens"], 800)

    def test_malformed_envelope_raises_invalid_response(self):
        session = _FakeSession(_FakeResponse(200, {"choices": []}))
        adapter = self._adapter(Provider.DEEPSEEK, session)
        with self.assertRaises(ProviderError) as ctx:
            adapter.call(self._req())
        self.assertEqual(str(ctx.exception), "Invalid response received from DeepSeek")

    def test_non_json_error_body_uses_raw_text(self):
        session = _FakeSession(_FakeResponse(502, None, text="Bad Gateway"))
        adapter = self._adapter(Provider.XAI, session)
        with self.assertRaises(ProviderError) as ctx:
            adapter.call(self._req())
        self.assertEqual(str(ctx.exception), "xAI API error: Bad Gateway")

    def test_timeout_and_network_errors_are_labelled(self):
        adapter = self._adapter(Provider.MISTRAL, _FakeSession(exc=requests.Timeout("slow")))
        with self.assertRaises(ProviderError) as ctx:
            adapter.call(self._req())
        self.assertIn("timeout", str(ctx.exception))
        adapter = self._adapter(Provider.MISTRAL, _FakeSession(exc=requests.ConnectionError("down")))
        with self.assertRaises(ProviderError) as ctx:
            adapter.call(self._req())
        self.assertIn("network", str(ctx.exception))

    def test_network_error_detail_omits_url_and_key(self):
        leaked = requests.ConnectionError(
            "HTTPSConnectionPool: Max retries exceeded with url: "
            "/v1beta/models/gemini-pro:generateContent?key=SECRET-GOOGLE-KEY"
        )
        adapter = self._adapter(Provider.GOOGLE, _FakeSession(exc=leaked), key="SECRET-GOOGLE-KEY")
        with self.assertRaises(ProviderError) as ctx:
            adapter.call(self._req(model="gemini-pro"))
        self.assertEqual(str(ctx.exception), "Google API network error: ConnectionError")
        self.assertNotIn("SECRET-GOOGLE-KEY", str(ctx.exception))

    def test_malformed_tool_call_is_invalid_payload(self):
        payload = {"choices": [{"message": {"content": None, "tool_calls": ["not-a-call"]}}]}
        adapter = self._adapter(Provider.OPENAI, _FakeSession(_FakeResponse(200, payload)))
        with self.assertRaises(ProviderError) as ctx:
            adapter.call(self._req(model="gpt-4o", structured_explanation=True))
        self.assertEqual(str(ctx.exception), "Invalid explanation payload received from OpenAI")

    def test_openai_grading_unexpected_failure_returns_incorrect(self):
        payload = {"choices": [{"message": {"content": None, "tool_calls": ["not-a-call"]}}]}
        adapter = self._adapter(Provider.OPENAI, _FakeSession(_FakeResponse(200, payload)))
        verdict = adapter.call(self._req(user_message="Grade this answer: 5", structured_explanation=True))
        self.assertEqual(verdict, "INCORRECT")

    def test_openai_adapter_type(self):
        self.assertIsInstance(self._adapter(Provider.OPENAI, _FakeSession()), OpenAIAdapter)


if __name__ == "__main__":
    unittest.main()
