"""
Tests for provider adapters — payload shape and response normalization.

HTTP adapters are exercised with ``requests.post`` patched; SDK adapters with
their client factory patched. No network calls are made.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from ai_engine.app.errors import ProviderTransientError
from ai_engine.providers.adapters import ProviderRequest, WorkersAIBinding, build_ai_binding
from ai_engine.providers.adapters.base import json_instruction, post_json
from ai_engine.providers.adapters.claude import ClaudeAdapter
from ai_engine.providers.adapters.cloudflare import CloudflareAdapter
from ai_engine.providers.adapters.gemini import GeminiAdapter
from ai_engine.providers.adapters.groq_client import GroqAdapter
from ai_engine.providers.adapters.openai import DeepSeekAdapter, OpenAIAdapter
from ai_engine.providers.availability import CredentialSnapshot
from ai_engine.providers.model_registry import get_model

POST = "ai_engine.providers.adapters.base.requests.post"


def _http_response(body, status_code=200, reason="OK"):
    r = MagicMock()
    r.ok = 200 <= status_code < 300
    r.status_code = status_code
    r.reason = reason
    r.json.return_value = body
    return r


@pytest.fixture
def request_payload():
    return ProviderRequest(system_prompt="You classify.", user_prompt="best running shoes", max_tokens=256)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

class TestPostJson:
    def test_returns_body(self):
        with patch(POST, return_value=_http_response({"x": 1})) as mock_post:
            assert post_json("claude", "https://x", {}, {"a": 1}, timeout_s=5) == {"x": 1}
        assert mock_post.call_args.kwargs["timeout"] == 5

    def test_error_status_carries_provider_message(self):
        body = {"error": {"message": "overloaded"}}
        with patch(POST, return_value=_http_response(body, 529, "Overloaded")):
            with pytest.raises(ProviderTransientError, match=r"API error \(529\): overloaded") as exc:
                post_json("claude", "https://x", {}, {}, timeout_s=5)
        assert exc.value.status_code == 529

    def test_connection_error(self):
        with patch(POST, side_effect=requests.ConnectionError("refused")):
            with pytest.raises(ProviderTransientError, match="request failed"):
                post_json("openai", "https://x", {}, {}, timeout_s=5)

    def test_non_json_body(self):
        r = _http_response(None)
        r.json.side_effect = ValueError("no json")
        with patch(POST, return_value=r):
            with pytest.raises(ProviderTransientError, match="malformed response"):
                post_json("openai", "https://x", {}, {}, timeout_s=5)


class TestJsonInstruction:
    def test_plain_request_has_no_suffix(self):
        assert json_instruction(ProviderRequest(user_prompt="x")) == ""

    def test_json_mode(self):
        assert "valid JSON only" in json_instruction(ProviderRequest(json_mode=True))

    def test_schema_is_embedded(self):
        suffix = json_instruction(ProviderRequest(json_schema={"name": "intent", "schema": {"type": "object"}}))
        assert '"type": "object"' in suffix


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------

class TestClaudeAdapter:
    def test_success(self, request_payload):
        body = {
            "content": [{"type": "text", "text": "informational"}],
            "usage": {"input_tokens": 12, "output_tokens": 3},
            "stop_reason": "end_turn",
        }
        snapshot = CredentialSnapshot(secrets={"ANTHROPIC_API_KEY": "sk-ant"})
        with patch(POST, return_value=_http_response(body)) as mock_post:
            response = ClaudeAdapter().run(request_payload, get_model("claude-haiku-3.5"), snapshot)

        assert response.text == "informational"
        assert response.tokens_used.input == 12
        assert response.stop_reason == "end_turn"
        sent = mock_post.call_args.kwargs
        assert sent["headers"]["x-api-key"] == "sk-ant"
        assert sent["json"]["model"] == "claude-3-5-haiku-20241022"
        assert sent["json"]["max_tokens"] == 256

    def test_json_mode_prefills_brace(self):
        body = {"content": [{"text": '"intent": "buy"}'}], "usage": {}}
        snapshot = CredentialSnapshot(secrets={"ANTHROPIC_API_KEY": "sk-ant"})
        with patch(POST, return_value=_http_response(body)) as mock_post:
            response = ClaudeAdapter().run(
                ProviderRequest(user_prompt="q", json_mode=True), get_model("claude-sonnet-4"), snapshot,
            )
        assert response.text == '{"intent": "buy"}'
        assert mock_post.call_args.kwargs["json"]["messages"][-1] == {"role": "assistant", "content": "{"}

    def test_missing_key(self, request_payload):
        with pytest.raises(ProviderTransientError, match="ANTHROPIC_API_KEY not configured"):
            ClaudeAdapter().run(request_payload, get_model("claude-sonnet-4"), CredentialSnapshot())

    def test_empty_content(self, request_payload):
        snapshot = CredentialSnapshot(secrets={"ANTHROPIC_API_KEY": "sk-ant"})
        with patch(POST, return_value=_http_response({"content": []})):
            with pytest.raises(ProviderTransientError, match="no content block"):
                ClaudeAdapter().run(request_payload, get_model("claude-sonnet-4"), snapshot)


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------

class TestOpenAICompatibleAdapters:
    BODY = {
        "choices": [{"message": {"content": "hello"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 7, "completion_tokens": 2},
    }

    def test_openai_success(self, request_payload):
        snapshot = CredentialSnapshot(secrets={"OPENAI_API_KEY": "sk-openai"})
        with patch(POST, return_value=_http_response(self.BODY)) as mock_post:
            response = OpenAIAdapter().run(request_payload, get_model("gpt-4o"), snapshot)

        assert response.text == "hello"
        assert response.tokens_used.output == 2
        assert response.stop_reason == "stop"
        assert mock_post.call_args.args[0] == "https://api.openai.com/v1/chat/completions"

    def test_openai_json_schema_passed_natively(self):
        schema = {"name": "intent", "schema": {"type": "object"}}
        payload = OpenAIAdapter().build_payload(
            ProviderRequest(user_prompt="q", json_schema=schema), get_model("gpt-4o"),
        )
        assert payload["response_format"] == {"type": "json_schema", "json_schema": schema}

    def test_reasoning_model_merges_prompts(self, request_payload):
        payload = OpenAIAdapter().build_payload(request_payload, get_model("o3-mini"))
        assert "max_tokens" not in payload
        assert payload["max_completion_tokens"] == 256
        assert payload["messages"] == [
            {"role": "user", "content": "You classify.\n\nbest running shoes"},
        ]

    def test_deepseek_uses_own_endpoint_and_json_object(self):
        snapshot = CredentialSnapshot(secrets={"DEEPSEEK_API_KEY": "ds"})
        with patch(POST, return_value=_http_response(self.BODY)) as mock_post:
            DeepSeekAdapter().run(
                ProviderRequest(user_prompt="q", json_schema={"type": "object"}),
                get_model("deepseek-chat"),
                snapshot,
            )
        assert mock_post.call_args.args[0] == "https://api.deepseek.com/chat/completions"
        assert mock_post.call_args.kwargs["json"]["response_format"] == {"type": "json_object"}
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer ds"

    def test_no_choices(self, request_payload):
        snapshot = CredentialSnapshot(secrets={"OPENAI_API_KEY": "sk"})
        with patch(POST, return_value=_http_response({"choices": []})):
            with pytest.raises(ProviderTransientError, match="no choices"):
                OpenAIAdapter().run(request_payload, get_model("gpt-4o"), snapshot)


# ---------------------------------------------------------------------------
# SDK adapters
# ---------------------------------------------------------------------------

class TestGroqAdapter:
    def test_success(self, request_payload):
        completion = MagicMock()
        completion.choices = [MagicMock()]
        completion.choices[0].message.content = "fast answer"
        completion.choices[0].finish_reason = "stop"
        completion.usage.prompt_tokens = 9
        completion.usage.completion_tokens = 4

        client = MagicMock()
        client.chat.completions.create.return_value = completion
        snapshot = CredentialSnapshot(secrets={"GROQ_API_KEY": "gsk"})

        with patch.object(GroqAdapter, "_get_client", return_value=client) as get_client:
            response = GroqAdapter().run(request_payload, get_model("groq-llama-70b"), snapshot)

        get_client.assert_called_once_with("gsk")
        assert response.text == "fast answer"
        assert response.tokens_used.input == 9
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "llama-3.3-70b-versatile"
        assert "response_format" not in kwargs

    def test_missing_key(self, request_payload):
        with pytest.raises(ProviderTransientError):
            GroqAdapter().run(request_payload, get_model("groq-llama-8b"), CredentialSnapshot())


class TestGeminiAdapter:
    def test_success(self, request_payload):
        result = MagicMock()
        result.text = "gemini answer"
        result.usage_metadata.prompt_token_count = 11
        result.usage_metadata.candidates_token_count = 5
        result.candidates = []

        client = MagicMock()
        client.models.generate_content.return_value = result
        snapshot = CredentialSnapshot(secrets={"GOOGLE_AI_API_KEY": "g"})

        with patch.object(GeminiAdapter, "_get_client", return_value=client):
            response = GeminiAdapter().run(request_payload, get_model("gemini-2.0-flash"), snapshot)

        assert response.text == "gemini answer"
        assert response.tokens_used.output == 5
        kwargs = client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.0-flash"
        assert kwargs["contents"] == "best running shoes"

    def test_no_text(self, request_payload):
        result = MagicMock()
        result.text = None
        client = MagicMock()
        client.models.generate_content.return_value = result
        snapshot = CredentialSnapshot(secrets={"GOOGLE_AI_API_KEY": "g"})

        with patch.object(GeminiAdapter, "_get_client", return_value=client):
            with pytest.raises(ProviderTransientError, match="no text candidate"):
                GeminiAdapter().run(request_payload, get_model("gemini-2.0-flash"), snapshot)


# ---------------------------------------------------------------------------
# Cloudflare Workers AI
# ---------------------------------------------------------------------------

class TestCloudflareAdapter:
    def test_text_generation(self, request_payload):
        binding = MagicMock()
        binding.run.return_value = {"response": "free answer"}
        response = CloudflareAdapter().run(
            request_payload, get_model("cf-llama-70b"), CredentialSnapshot(ai_binding=binding),
        )
        assert response.text == "free answer"
        assert response.tokens_used.input == 0
        model_id, inputs = binding.run.call_args.args
        assert model_id == "@cf/meta/llama-3.3-70b-instruct-fp8-fast"
        assert inputs["messages"][1] == {"role": "user", "content": "best running shoes"}

    def test_embeddings(self):
        binding = MagicMock()
        binding.run.return_value = {"data": [[0.1, 0.2], [0.3, 0.4]]}
        response = CloudflareAdapter().run(
            ProviderRequest(texts=["a", "b"]), get_model("cf-bge-embedding"), CredentialSnapshot(ai_binding=binding),
        )
        assert response.embeddings == [[0.1, 0.2], [0.3, 0.4]]
        assert binding.run.call_args.args[1] == {"text": ["a", "b"]}

    def test_embedding_count_mismatch(self):
        binding = MagicMock()
        binding.run.return_value = {"data": [[0.1]]}
        with pytest.raises(ProviderTransientError, match="count mismatch"):
            CloudflareAdapter().run(
                ProviderRequest(texts=["a", "b"]), get_model("cf-bge-embedding"), CredentialSnapshot(ai_binding=binding),
            )

    def test_no_binding(self, request_payload):
        with pytest.raises(ProviderTransientError, match="binding not available"):
            CloudflareAdapter().run(request_payload, get_model("cf-llama-8b"), CredentialSnapshot())


class TestWorkersAIBinding:
    def test_run_posts_to_account_endpoint(self):
        body = {"success": True, "result": {"response": "hi"}}
        with patch(POST, return_value=_http_response(body)) as mock_post:
            result = WorkersAIBinding("acct", "cf-token").run("@cf/meta/llama", {"messages": []})
        assert result == {"response": "hi"}
        assert mock_post.call_args.args[0] == (
            "https://api.cloudflare.com/client/v4/accounts/acct/ai/run/@cf/meta/llama"
        )

    def test_unsuccessful_envelope(self):
        body = {"success": False, "errors": [{"message": "capacity"}]}
        with patch(POST, return_value=_http_response(body)):
            with pytest.raises(ProviderTransientError, match="capacity"):
                WorkersAIBinding("acct", "cf-token").run("@cf/meta/llama", {})

    def test_build_binding_requires_both_credentials(self):
        assert build_ai_binding(None, "tok") is None
        assert build_ai_binding("acct", None) is None
        assert isinstance(build_ai_binding("acct", "tok"), WorkersAIBinding)
