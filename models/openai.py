"""OpenAI classification provider.

Uses the OpenAI API with vision input for both classification tiers.
"""

import base64
from typing import Any, Dict, List

from openai import AsyncOpenAI

from .base import (
    Classifier, ClassifierError, Tier1Result, Tier2Result,
    TIER1_PROMPT,
    TIER2_PROMPT,
)


class OpenAIClassifier(Classifier):
    """OpenAI implementation of the two-tier classifier.

    Uses:
    - gpt-4o-mini for Tier 1 triage (cheap, runs on every document)
    - gpt-4o for Tier 2 extraction (only when Tier 1 asks for it)
    - Base64 data URLs for PDFs and images
    """

    def __init__(
        self,
        tier1_model: str = "gpt-4o-mini",
        tier2_model: str = "gpt-4o",
    ) -> None:
        """Initialize OpenAI client.

        Uses OPENAI_API_KEY environment variable automatically.
        """
        self.client = AsyncOpenAI()
        self.tier1_model = tier1_model
        self.tier2_model = tier2_model

    @property
    def name(self) -> str:
        return "openai"

    async def classify_tier1(self, data: bytes, mime_type: str) -> Tier1Result:
        response_text = await self._complete(self.tier1_model, TIER1_PROMPT, data, mime_type)
        return self._parse_tier1(response_text)

    async def classify_tier2(self, data: bytes, mime_type: str) -> Tier2Result:
        response_text = await self._complete(self.tier2_model, TIER2_PROMPT, data, mime_type)
        return self._parse_tier2(response_text)

    async def _complete(self, model: str, prompt: str, data: bytes, mime_type: str) -> str:
        self._check_size(data)
        messages = [
            {
                "role": "user",
                "content": [{"type": "text", "text": prompt}] + _document_parts(data, mime_type),
            }
        ]
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise ClassifierError(f"OpenAI API error: {e}")
        return response.choices[0].message.content


def _document_parts(data: bytes, mime_type: str) -> List[Dict[str, Any]]:
    encoded = base64.b64encode(data).decode("utf-8")
    data_url = f"data:{mime_type};base64,{encoded}"
    if mime_type.startswith("image/"):
        return [{"type": "image_url", "image_url": {"url": data_url}}]
    return [{
        "type": "file",
        "file": {"filename": "document.pdf", "file_data": data_url},
    }]
