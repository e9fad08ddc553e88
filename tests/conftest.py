"""Shared fixtures: Pillow-made images and scripted in-memory oracles."""

from __future__ import annotations

import io
from typing import Any, Dict, List, Optional

import pytest
import requests
from PIL import Image

import costs
from imaging import ImageBuffer
from oracles import ImageEvaluator, ImageGenerator


def make_image(width: int = 64, height: int = 48, color=(200, 120, 40), fmt: str = "PNG") -> ImageBuffer:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, fmt)
    return ImageBuffer.from_bytes(buf.getvalue())


def placement_rubric(score: int) -> Dict[str, Any]:
    """A rubric that scores exactly ``score`` (a multiple of 10) for any awning type."""
    return {"placement_quality": score // 10}


SOLID_PERFECT = {
    "is_uniform_base_color": True,
    "has_decorative_stripes": False,
    "slats_uniform_color": True,
    "matches_swatch_color": True,
    "fabric_only_edited": True,
}  # scores 150, or 250 with goal_met


class ScriptedGenerator(ImageGenerator):
    """Returns (or raises) the scripted outputs in order and records every call."""

    provider = "fake"
    model = "fake-image"

    def __init__(self, outputs: List[Any]) -> None:
        self.outputs = list(outputs)
        self.calls: List[Dict[str, Any]] = []

    def generate(self, prompt, images, *, stage, sampling=None) -> Optional[ImageBuffer]:
        self.calls.append({"prompt": prompt, "images": list(images), "stage": stage, "sampling": sampling})
        out = self.outputs.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


class ScriptedEvaluator(ImageEvaluator):
    provider = "fake"
    model = "fake-eval"

    def __init__(self, rubrics: List[Any]) -> None:
        self.rubrics = list(rubrics)
        self.calls: List[Dict[str, Any]] = []

    def evaluate(self, prompt, image, *, stage) -> Optional[Dict[str, Any]]:
        self.calls.append({"prompt": prompt, "image": image, "stage": stage})
        out = self.rubrics.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        text: str = "",
        content: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = content
        self.headers = headers or {}
        self.reason = "OK" if status_code < 400 else "Error"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} {self.reason}")


@pytest.fixture(autouse=True)
def _isolated_cost_log(tmp_path, monkeypatch):
    monkeypatch.setattr(costs, "COST_LOG", tmp_path / "costs.log")


@pytest.fixture
def original() -> ImageBuffer:
    return make_image(64, 48, (180, 180, 180))


@pytest.fixture
def candidates() -> List[ImageBuffer]:
    """Five same-size, visually distinct images."""
    colors = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0), (0, 255, 255)]
    return [make_image(64, 48, c) for c in colors]
