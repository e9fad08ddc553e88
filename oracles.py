"""Clients for the external image-generation and vision-evaluation models.

Both kinds of oracle are black boxes reached over HTTP:

* an ``ImageGenerator`` takes a prompt plus reference images and returns a
  new ``ImageBuffer`` (or None when the model answered without an image);
* an ``ImageEvaluator`` takes a prompt plus one image and returns the first
  JSON object found in the model's free-text answer (or None).

Transport and HTTP failures raise ``OracleError``. Nothing here retries:
a failed call costs the caller one attempt.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

from config import Settings
from costs import CostTracker
from errors import ImageDecodeError, OracleError
from imaging import ImageBuffer, normalise_mime

log = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

PLACEMENT_SAMPLING = {"temperature": 0.25, "topK": 40, "topP": 0.95}
EDIT_SAMPLING = {"temperature": 0.4, "topK": 32, "topP": 1.0}
EVAL_SAMPLING = {"temperature": 0.1, "topK": 16, "topP": 0.8}

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort: parse the outermost ``{...}`` span of free text.

    Returns None when there is no braces span, it is not valid JSON, or it
    is not an object. Never raises.
    """
    if not isinstance(text, str) or not text:
        return None
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        log.debug("Evaluation JSON parse failed: %s", exc)
        return None
    return parsed if isinstance(parsed, dict) else None


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class ImageGenerator:
    provider = "base"
    model = ""

    def generate(
        self,
        prompt: str,
        images: Sequence[ImageBuffer],
        *,
        stage: str,
        sampling: Optional[Dict[str, float]] = None,
    ) -> Optional[ImageBuffer]:
        raise NotImplementedError


class ImageEvaluator:
    provider = "base"
    model = ""

    def evaluate(self, prompt: str, image: ImageBuffer, *, stage: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Gemini (REST)
# ---------------------------------------------------------------------------

def _inline_part(image: ImageBuffer) -> Dict:
    return {"inlineData": {"mimeType": image.mime_type, "data": image.data}}


def _gemini_post(api_key: str, model: str, body: Dict, timeout: float, what: str) -> Dict:
    url = f"{GEMINI_BASE_URL}/{model}:generateContent"
    try:
        resp = requests.post(
            url,
            json=body,
            headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise OracleError(f"{what} API request failed: {exc}") from exc
    if not resp.ok:
        raise OracleError(f"{what} API error: {resp.status_code}", status_code=resp.status_code)
    try:
        return resp.json()
    except ValueError as exc:
        raise OracleError(f"{what} API returned a non-JSON body") from exc


def _gemini_parts(result: Any, what: str) -> List[Dict]:
    if not isinstance(result, dict):
        raise OracleError(f"{what} API returned an unexpected body")
    candidates = result.get("candidates") or []
    if not isinstance(candidates, list):
        raise OracleError(f"{what} API returned malformed candidates")
    if not candidates:
        return []
    first = candidates[0]
    content = (first.get("content") if isinstance(first, dict) else None) or {}
    parts = (content.get("parts") if isinstance(content, dict) else None) or []
    if not isinstance(parts, list):
        raise OracleError(f"{what} API returned malformed content parts")
    return [part for part in parts if isinstance(part, dict)]


def _token_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return max(int(value), 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def _gemini_usage(result: Any) -> tuple:
    usage = result.get("usageMetadata") if isinstance(result, dict) else None
    if not isinstance(usage, dict):
        return 0, 0
    return _token_count(usage.get("promptTokenCount", 0)), _token_count(usage.get("candidatesTokenCount", 0))


class GeminiImageGenerator(ImageGenerator):
    provider = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 120.0,
        cost_tracker: Optional[CostTracker] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.cost_tracker = cost_tracker

    def generate(self, prompt, images, *, stage, sampling=None):
        # first image, then the instruction, then any further references
        parts: List[Dict] = []
        if images:
            parts.append(_inline_part(images[0]))
        parts.append({"text": prompt})
        parts.extend(_inline_part(img) for img in images[1:])

        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                **(sampling or PLACEMENT_SAMPLING),
                "maxOutputTokens": 4096,
                "responseModalities": ["IMAGE"],
            },
        }
        t0 = time.time()
        result = _gemini_post(self.api_key, self.model, body, self.timeout, "Generation")
        elapsed = time.time() - t0
        if self.cost_tracker:
            self.cost_tracker.record_image(stage, self.provider, self.model, elapsed)

        for part in _gemini_parts(result, "Generation"):
            inline = part.get("inlineData") or part.get("inline_data")
            if isinstance(inline, dict) and isinstance(inline.get("data"), str) and inline["data"]:
                mime = inline.get("mimeType") or inline.get("mime_type")
                mime = normalise_mime(mime if isinstance(mime, str) else None)
                try:
                    image = ImageBuffer.from_base64(inline["data"], mime)
                except ImageDecodeError as exc:
                    raise OracleError(f"Generation API returned an undecodable image: {exc}") from exc
                log.debug("Gemini image [%s]: %dx%d in %.1fs", stage, image.width, image.height, elapsed)
                return image

        log.info("Gemini returned no image part [%s] after %.1fs", stage, elapsed)
        return None


class GeminiImageEvaluator(ImageEvaluator):
    provider = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 120.0,
        cost_tracker: Optional[CostTracker] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.cost_tracker = cost_tracker

    def evaluate(self, prompt, image, *, stage):
        body = {
            "contents": [{"parts": [{"text": prompt}, _inline_part(image)]}],
            "generationConfig": {**EVAL_SAMPLING, "maxOutputTokens": 2048},
        }
        result = _gemini_post(self.api_key, self.model, body, self.timeout, "Evaluation")
        if self.cost_tracker:
            in_tok, out_tok = _gemini_usage(result)
            self.cost_tracker.record_tokens(stage, self.provider, self.model, in_tok, out_tok)

        for part in _gemini_parts(result, "Evaluation"):
            rubric = extract_json_object(part.get("text"))
            if rubric is not None:
                return rubric
        log.info("Evaluation [%s] returned no parsable JSON", stage)
        return None


# ---------------------------------------------------------------------------
# Replicate (image generation)
# ---------------------------------------------------------------------------

class ReplicateImageGenerator(ImageGenerator):
    """Image editing through a Replicate-hosted model (nano-banana by default)."""

    provider = "replicate"

    def __init__(
        self,
        api_token: str,
        model: str,
        timeout: float = 120.0,
        cost_tracker: Optional[CostTracker] = None,
    ) -> None:
        self.api_token = api_token
        self.model = model
        self.timeout = timeout
        self.cost_tracker = cost_tracker

    def generate(self, prompt, images, *, stage, sampling=None):
        import replicate as rep

        payload = {
            "prompt": prompt,
            "image_input": [img.to_data_uri() for img in images],
            "output_format": "png",
        }
        t0 = time.time()
        try:
            client = rep.Client(api_token=self.api_token)
            raw_output = client.run(self.model, input=payload)
        except Exception as exc:
            raise OracleError(f"Replicate prediction failed: {exc}") from exc
        elapsed = time.time() - t0
        if self.cost_tracker:
            self.cost_tracker.record_image(stage, self.provider, self.model, elapsed)

        raw = raw_output[0] if isinstance(raw_output, list) and raw_output else raw_output
        if not raw:
            log.info("Replicate returned no output [%s] after %.1fs", stage, elapsed)
            return None
        url = getattr(raw, "url", None) or str(raw)
        return self._download(url)

    def _download(self, url: str) -> ImageBuffer:
        try:
            resp = requests.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise OracleError(f"Could not download Replicate output: {exc}") from exc
        try:
            return ImageBuffer.from_bytes(resp.content, resp.headers.get("Content-Type"))
        except ImageDecodeError as exc:
            raise OracleError(f"Replicate output is not an image: {exc}") from exc


# ---------------------------------------------------------------------------
# OpenAI / Anthropic (evaluation)
# ---------------------------------------------------------------------------

class OpenAIImageEvaluator(ImageEvaluator):
    provider = "openai"

    def __init__(self, api_key: str, model: str, timeout: float = 120.0,
                 cost_tracker: Optional[CostTracker] = None) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.cost_tracker = cost_tracker

    def evaluate(self, prompt, image, *, stage):
        from openai import OpenAI, OpenAIError

        try:
            client = OpenAI(api_key=self.api_key, timeout=self.timeout)
            resp = client.chat.completions.create(
                model=self.model,
                temperature=EVAL_SAMPLING["temperature"],
                max_tokens=1024,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image.to_data_uri()}},
                    ],
                }],
            )
        except OpenAIError as exc:
            raise OracleError(f"OpenAI evaluation failed: {exc}",
                              status_code=getattr(exc, "status_code", None)) from exc

        if self.cost_tracker and resp.usage:
            self.cost_tracker.record_tokens(
                stage, self.provider, self.model,
                resp.usage.prompt_tokens, resp.usage.completion_tokens,
            )
        return extract_json_object(resp.choices[0].message.content)


class AnthropicImageEvaluator(ImageEvaluator):
    provider = "anthropic"

    def __init__(self, api_key: str, model: str, timeout: float = 120.0,
                 cost_tracker: Optional[CostTracker] = None) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.cost_tracker = cost_tracker

    def evaluate(self, prompt, image, *, stage):
        import anthropic

        try:
            client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout)
            msg = client.messages.create(
                model=self.model,
                max_tokens=1024,
                temperature=EVAL_SAMPLING["temperature"],
                messages=[{
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": image.mime_type, "data": image.data},
                        },
                        {"type": "text", "text": prompt},
                    ],
                }],
            )
        except anthropic.APIError as exc:
            raise OracleError(f"Anthropic evaluation failed: {exc}",
                              status_code=getattr(exc, "status_code", None)) from exc

        if self.cost_tracker:
            self.cost_tracker.record_tokens(
                stage, self.provider, self.model,
                msg.usage.input_tokens, msg.usage.output_tokens,
            )
        text = "".join(block.text for block in msg.content if getattr(block, "type", "") == "text")
        return extract_json_object(text)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

@dataclass
class OracleSet:
    generator: ImageGenerator
    evaluator: ImageEvaluator


def build_oracles(settings: Settings, cost_tracker: Optional[CostTracker] = None) -> OracleSet:
    """Construct the configured generator/evaluator pair for one request."""
    timeout = settings.oracle_timeout
    if settings.image_provider == "replicate":
        generator: ImageGenerator = ReplicateImageGenerator(
            settings.replicate_api_token, settings.replicate_image_model, timeout, cost_tracker)
    else:
        generator = GeminiImageGenerator(
            settings.gemini_api_key, settings.gemini_image_model, timeout, cost_tracker)

    model = settings.resolved_eval_model
    if settings.eval_provider == "openai":
        evaluator: ImageEvaluator = OpenAIImageEvaluator(
            settings.openai_api_key, model, timeout, cost_tracker)
    elif settings.eval_provider == "anthropic":
        evaluator = AnthropicImageEvaluator(
            settings.anthropic_api_key, model, timeout, cost_tracker)
    else:
        evaluator = GeminiImageEvaluator(settings.gemini_api_key, model, timeout, cost_tracker)
    return OracleSet(generator, evaluator)
