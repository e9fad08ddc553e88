from types import SimpleNamespace

import pytest
import requests

import oracles
from config import Settings
from conftest import FakeResponse, make_image
from costs import CostTracker
from errors import OracleError
from oracles import (
    AnthropicImageEvaluator,
    GeminiImageEvaluator,
    GeminiImageGenerator,
    OpenAIImageEvaluator,
    ReplicateImageGenerator,
    build_oracles,
    extract_json_object,
)


@pytest.mark.parametrize("text, expected", [
    ('{"goal_met": true}', {"goal_met": True}),
    ('Sure! ```json\n{"placement_quality": 8, "issues": "none"}\n``` Hope that helps.',
     {"placement_quality": 8, "issues": "none"}),
    ("no json here", None),
    ("{not: valid}", None),
    ("", None),
    (None, None),
])
def test_extract_json_object(text, expected):
    assert extract_json_object(text) == expected


def _capture_post(monkeypatch, response):
    calls = []

    def fake_post(url, **kwargs):
        calls.append({"url": url, **kwargs})
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(oracles.requests, "post", fake_post)
    return calls


def test_gemini_generator_returns_inline_image(monkeypatch):
    produced = make_image(32, 24)
    calls = _capture_post(monkeypatch, FakeResponse(200, {
        "candidates": [{"content": {"parts": [
            {"text": "Here is your image"},
            {"inlineData": {"mimeType": "image/png", "data": produced.data}},
        ]}}],
    }))
    tracker = CostTracker()
    generator = GeminiImageGenerator("key", "gemini-2.5-flash-image", cost_tracker=tracker)
    first, second = make_image(10, 10), make_image(12, 12)

    image = generator.generate("add an awning", [first, second], stage="Placement 1")

    assert image.size == (32, 24)
    parts = calls[0]["json"]["contents"][0]["parts"]
    assert parts[0]["inlineData"]["data"] == first.data
    assert parts[1] == {"text": "add an awning"}
    assert parts[2]["inlineData"]["data"] == second.data
    assert calls[0]["headers"]["x-goog-api-key"] == "key"
    assert calls[0]["json"]["generationConfig"]["responseModalities"] == ["IMAGE"]
    assert tracker.summary()["image_calls"] == 1


def test_gemini_generator_without_image_part(monkeypatch):
    _capture_post(monkeypatch, FakeResponse(200, {"candidates": [{"content": {"parts": [{"text": "sorry"}]}}]}))
    assert GeminiImageGenerator("key", "m").generate("p", [make_image()], stage="s") is None


def test_gemini_http_error_raises(monkeypatch):
    _capture_post(monkeypatch, FakeResponse(500, {"error": {"message": "internal"}}))
    with pytest.raises(OracleError) as exc_info:
        GeminiImageGenerator("key", "m").generate("p", [make_image()], stage="s")
    assert exc_info.value.status_code == 500
    assert str(exc_info.value) == "Generation API error: 500"


def test_gemini_transport_error_raises(monkeypatch):
    _capture_post(monkeypatch, requests.ConnectionError("refused"))
    with pytest.raises(OracleError):
        GeminiImageEvaluator("key", "m").evaluate("p", make_image(), stage="s")


def test_gemini_evaluator_parses_and_records_tokens(monkeypatch):
    _capture_post(monkeypatch, FakeResponse(200, {
        "candidates": [{"content": {"parts": [{"text": 'Result:\n{"placement_quality": 7}'}]}}],
        "usageMetadata": {"promptTokenCount": 1200, "candidatesTokenCount": 80},
    }))
    tracker = CostTracker()
    rubric = GeminiImageEvaluator("key", "gemini-2.5-flash", cost_tracker=tracker).evaluate(
        "rate it", make_image(), stage="Placement 1")
    assert rubric == {"placement_quality": 7}
    assert tracker.items[0]["input_tokens"] == 1200
    assert tracker.items[0]["output_tokens"] == 80


def test_gemini_evaluator_unparsable_text_is_none(monkeypatch):
    _capture_post(monkeypatch, FakeResponse(200, {"candidates": [{"content": {"parts": [{"text": "looks great"}]}}]}))
    assert GeminiImageEvaluator("key", "m").evaluate("p", make_image(), stage="s") is None


def test_build_oracles_selects_providers():
    settings = Settings(gemini_api_key="g")
    default = build_oracles(settings)
    assert isinstance(default.generator, GeminiImageGenerator)
    assert isinstance(default.evaluator, GeminiImageEvaluator)
    assert default.evaluator.model == "gemini-2.5-flash"

    other = build_oracles(settings.with_overrides(
        image_provider="replicate", eval_provider="openai", replicate_api_token="r", openai_api_key="o"))
    assert isinstance(other.generator, ReplicateImageGenerator)
    assert isinstance(other.evaluator, OpenAIImageEvaluator)
    assert other.evaluator.model == "gpt-4o-mini"

    claude = build_oracles(settings.with_overrides(eval_provider="anthropic", eval_model="claude-haiku-4-5"))
    assert isinstance(claude.evaluator, AnthropicImageEvaluator)
    assert claude.evaluator.model == "claude-haiku-4-5"


@pytest.mark.parametrize("payload", [
    {"candidates": "oops"},
    {"candidates": [{"content": {"parts": "oops"}}]},
    ["not", "an", "object"],
])
def test_gemini_malformed_body_raises_oracle_error(monkeypatch, payload):
    _capture_post(monkeypatch, FakeResponse(200, payload))
    with pytest.raises(OracleError):
        GeminiImageGenerator("key", "m").generate("p", [make_image()], stage="s")


def test_gemini_tolerates_odd_parts_and_usage(monkeypatch):
    _capture_post(monkeypatch, FakeResponse(200, {
        "candidates": [{"content": {"parts": [
            "stray string",
            {"inlineData": "not a dict"},
            {"text": 42},
            {"text": '{"placement_quality": 6}'},
        ]}}],
        "usageMetadata": {"promptTokenCount": "many", "candidatesTokenCount": None},
    }))
    tracker = CostTracker()
    rubric = GeminiImageEvaluator("key", "m", cost_tracker=tracker).evaluate("p", make_image(), stage="s")
    assert rubric == {"placement_quality": 6}
    assert tracker.items[0]["input_tokens"] == 0
    assert tracker.items[0]["output_tokens"] == 0

    _capture_post(monkeypatch, FakeResponse(200, {"candidates": ["oops"]}))
    assert GeminiImageGenerator("key", "m").generate("p", [make_image()], stage="s") is None


# ---------------------------------------------------------------------------
# SDK-backed clients
# ---------------------------------------------------------------------------

class _FakeReplicateClient:
    output = None
    error = None
    runs = []

    def __init__(self, api_token=None):
        self.api_token = api_token

    def run(self, model, input):
        type(self).runs.append({"model": model, "input": input, "token": self.api_token})
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture
def fake_replicate(monkeypatch):
    client = type("FakeReplicateClient", (_FakeReplicateClient,), {"runs": []})
    monkeypatch.setattr("replicate.Client", client)
    return client


def test_replicate_downloads_output_url(monkeypatch, fake_replicate):
    produced = make_image(40, 30)
    fake_replicate.output = [SimpleNamespace(url="https://replicate.delivery/out.png")]
    fetched = []

    def fake_get(url, **kwargs):
        fetched.append(url)
        return FakeResponse(200, content=produced.to_bytes(), headers={"Content-Type": "image/png"})

    monkeypatch.setattr(oracles.requests, "get", fake_get)
    tracker = CostTracker()
    first, second = make_image(10, 10), make_image(12, 12)
    image = ReplicateImageGenerator("tok", "google/nano-banana", cost_tracker=tracker).generate(
        "add an awning", [first, second], stage="Placement 1")

    assert image.size == (40, 30)
    assert fetched == ["https://replicate.delivery/out.png"]
    run = fake_replicate.runs[0]
    assert run["token"] == "tok"
    assert run["model"] == "google/nano-banana"
    assert run["input"]["prompt"] == "add an awning"
    assert run["input"]["image_input"] == [first.to_data_uri(), second.to_data_uri()]
    assert tracker.summary()["image_calls"] == 1


def test_replicate_empty_output_is_none(monkeypatch, fake_replicate):
    fake_replicate.output = []
    monkeypatch.setattr(oracles.requests, "get", lambda url, **kwargs: pytest.fail("nothing to download"))
    assert ReplicateImageGenerator("tok", "m").generate("p", [make_image()], stage="s") is None


def test_replicate_failure_raises_oracle_error(fake_replicate):
    fake_replicate.error = RuntimeError("prediction failed: NSFW")
    with pytest.raises(OracleError, match="NSFW"):
        ReplicateImageGenerator("tok", "m").generate("p", [make_image()], stage="s")


def test_replicate_download_error_raises_oracle_error(monkeypatch, fake_replicate):
    fake_replicate.output = "https://replicate.delivery/gone.png"
    monkeypatch.setattr(oracles.requests, "get", lambda url, **kwargs: FakeResponse(404))
    with pytest.raises(OracleError, match="Could not download"):
        ReplicateImageGenerator("tok", "m").generate("p", [make_image()], stage="s")


def _fake_openai(monkeypatch, content=None, error=None):
    calls = []

    class FakeCompletions:
        def create(self, **kwargs):
            calls.append(kwargs)
            if error is not None:
                raise error
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
                usage=SimpleNamespace(prompt_tokens=900, completion_tokens=60),
            )

    class FakeOpenAI:
        def __init__(self, api_key=None, timeout=None):
            self.chat = SimpleNamespace(completions=FakeCompletions())

    monkeypatch.setattr("openai.OpenAI", FakeOpenAI)
    return calls


def test_openai_evaluator_parses_and_records_tokens(monkeypatch):
    calls = _fake_openai(monkeypatch, content='Verdict: {"placement_quality": 9} done')
    tracker = CostTracker()
    image = make_image()
    rubric = OpenAIImageEvaluator("sk", "gpt-4o-mini", cost_tracker=tracker).evaluate(
        "rate it", image, stage="Placement 1")

    assert rubric == {"placement_quality": 9}
    content = calls[0]["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "rate it"}
    assert content[1]["image_url"]["url"] == image.to_data_uri()
    assert tracker.items[0]["provider"] == "openai"
    assert tracker.items[0]["input_tokens"] == 900
    assert tracker.items[0]["output_tokens"] == 60


def test_openai_evaluator_unparsable_text_is_none(monkeypatch):
    _fake_openai(monkeypatch, content="It looks lovely.")
    assert OpenAIImageEvaluator("sk", "m").evaluate("p", make_image(), stage="s") is None


def test_openai_sdk_error_raises_oracle_error(monkeypatch):
    import openai

    _fake_openai(monkeypatch, error=openai.OpenAIError("rate limited"))
    with pytest.raises(OracleError, match="rate limited"):
        OpenAIImageEvaluator("sk", "m").evaluate("p", make_image(), stage="s")


def test_anthropic_evaluator_parses_and_records_tokens(monkeypatch):
    calls = []

    class FakeMessages:
        def create(self, **kwargs):
            calls.append(kwargs)
            return SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="Here you go: "),
                    SimpleNamespace(type="text", text='{"goal_met": true, "issues": []}'),
                ],
                usage=SimpleNamespace(input_tokens=1500, output_tokens=40),
            )

    class FakeAnthropic:
        def __init__(self, api_key=None, timeout=None):
            self.messages = FakeMessages()

    monkeypatch.setattr("anthropic.Anthropic", FakeAnthropic)
    tracker = CostTracker()
    image = make_image()
    rubric = AnthropicImageEvaluator("ak", "claude-haiku-4-5", cost_tracker=tracker).evaluate(
        "check colour", image, stage="Color 1")

    assert rubric == {"goal_met": True, "issues": []}
    source = calls[0]["messages"][0]["content"][0]["source"]
    assert source == {"type": "base64", "media_type": image.mime_type, "data": image.data}
    assert tracker.items[0]["provider"] == "anthropic"
    assert tracker.items[0]["input_tokens"] == 1500
    assert tracker.items[0]["output_tokens"] == 40
