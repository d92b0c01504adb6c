"""
HFVisionExtractor: extractor backed by a vision-language model served through
Hugging Face Inference Providers.

Requires:
- HF_TOKEN env var with permissions to call Inference Providers.
"""

from __future__ import annotations

import os
from typing import Any, Dict, List

from huggingface_hub import InferenceClient
from huggingface_hub.errors import HfHubHTTPError, InferenceTimeoutError

from verification.errors import ModelInvocationError

from .base_extractor import BaseExtractor


class HFVisionExtractor(BaseExtractor):
    """
    Extractor backed by Qwen/Qwen2.5-VL-72B-Instruct by default. Any chat
    model with image_url support can be configured through ``model_id``.
    """

    MODEL_ID = "Qwen/Qwen2.5-VL-72B-Instruct"

    def __init__(
        self,
        extractor_id: str = "hf_vision",
        model_id: str | None = None,
        provider: str | None = None,
        timeout_s: float = 120.0,
        year_window: int = 1,
        correct_year: bool = True,
        client: InferenceClient | None = None,
    ):
        super().__init__(extractor_id=extractor_id, year_window=year_window, correct_year=correct_year)
        self.model_id = model_id or self.MODEL_ID

        if client is None:
            hf_token = os.getenv("HF_TOKEN")
            if not hf_token:
                raise RuntimeError("Missing HF_TOKEN environment variable.")
            kwargs: Dict[str, Any] = {"api_key": hf_token, "timeout": timeout_s}
            if provider:
                kwargs["provider"] = provider
            client = InferenceClient(**kwargs)
        self._client = client

    def _call_api(self, messages: List[Dict[str, Any]], temperature: float, max_tokens: int) -> str:
        """Chat-completions call with the image sent as a data URL."""
        try:
            completion = self._client.chat.completions.create(
                model=self.model_id,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except (HfHubHTTPError, InferenceTimeoutError) as exc:
            raise ModelInvocationError(f"{self.model_id}: {exc}") from exc

        content = completion.choices[0].message.content
        if not content:
            raise ModelInvocationError(f"{self.model_id}: empty reply")
        return content if isinstance(content, str) else str(content)
