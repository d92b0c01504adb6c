"""Shared fixtures: synthetic receipt images and a scripted extractor."""

import io
import json

import numpy as np
import pytest
from PIL import Image

from extractors.base_extractor import BaseExtractor
from verification.errors import ModelInvocationError


def receipt_array(height: int = 240, width: int = 160, seed: int = 0) -> np.ndarray:
    """White slip with dark text-like bars and mild sensor noise."""
    rng = np.random.default_rng(seed)
    arr = np.full((height, width), 235, dtype=np.float32)
    for y in range(20, height - 20, 18):
        arr[y:y + 6, 15:width - 15 - (y % 40)] = 40
    arr += rng.normal(0, 6, arr.shape)
    return np.clip(arr, 0, 255).astype(np.uint8)


def encode(arr: np.ndarray, fmt: str = "PNG", **kwargs) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(arr).convert("RGB").save(buf, format=fmt, **kwargs)
    return buf.getvalue()


@pytest.fixture
def receipt_png() -> bytes:
    return encode(receipt_array())


class ScriptedExtractor(BaseExtractor):
    """Returns scripted replies in order; Exception instances are raised."""

    def __init__(self, replies):
        super().__init__(extractor_id="scripted")
        self._replies = list(replies)
        self.calls = []

    def _call_api(self, messages, temperature, max_tokens):
        image_url = messages[1]["content"][0]["image_url"]["url"]
        self.calls.append({"image_url": image_url, "temperature": temperature, "max_tokens": max_tokens})
        reply = self._replies.pop(0) if self._replies else ModelInvocationError("script exhausted")
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)


@pytest.fixture
def scripted():
    return ScriptedExtractor
