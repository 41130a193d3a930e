"""Mistral AI classification provider.

Uses the Mistral AI API for both classification tiers. PDFs go through the
file upload API (OCR), images are sent inline.
"""

import base64
import os

from mistralai import Mistral

from .base import (
    Classifier, ClassifierError, Tier1Result, Tier2Result,
    TIER1_PROMPT,
    TIER2_PROMPT,
)


class MistralClassifier(Classifier):
    """Mistral AI implementation of the two-tier classifier.

    Uses:
    - mistral-small-latest for Tier 1 triage
    - mistral-medium-latest for Tier 2 extraction
    - File upload API with signed URLs for PDF documents
    """

    def __init__(
        self,
        tier1_model: str = "mistral-small-latest",
        tier2_model: str = "mistral-medium-latest",
    ) -> None:
        """Initialize Mistral client.

        Raises:
            KeyError: If MISTRAL_API_KEY environment variable is not set
        """
        api_key = os.environ["MISTRAL_API_KEY"]
        self.client = Mistral(api_key=api_key)
        self.tier1_model = tier1_model
        self.tier2_model = tier2_model

    @property
    def name(self) -> str:
        return "mistral"

    async def classify_tier1(self, data: bytes, mime_type: str) -> Tier1Result:
        response_text = await self._complete(self.tier1_model, TIER1_PROMPT, data, mime_type)
        return self._parse_tier1(response_text)

    async def classify_tier2(self, data: bytes, mime_type: str) -> Tier2Result:
        response_text = await self._complete(self.tier2_model, TIER2_PROMPT, data, mime_type)
        return self._parse_tier2(response_text)

    async def _complete(self, model: str, prompt: str, data: bytes, mime_type: str) -> str:
        self._check_size(data)
        document_part = await self._document_part(data, mime_type)
        messages = [
            {
                "role": "user",
                "content": [{"type": "text", "text": prompt}, document_part],
            }
        ]
        try:
            response = await self.client.chat.complete_async(
                model=model,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise ClassifierError(f"Mistral API error: {e}")
        return response.choices[0].message.content

    async def _document_part(self, data: bytes, mime_type: str) -> dict:
        if mime_type.startswith("image/"):
            encoded = base64.b64encode(data).decode("utf-8")
            return {"type": "image_url", "image_url": f"data:{mime_type};base64,{encoded}"}

        # Upload the document to get a signed URL
        try:
            upload_response = await self.client.files.upload_async(
                file={
                    "file_name": "uploaded_file.pdf",
                    "content": data,
                },
                purpose="ocr"
            )
            signed_url = await self.client.files.get_signed_url_async(file_id=upload_response.id)
        except Exception as e:
            raise ClassifierError(f"Failed to upload document to Mistral: {e}")
        return {"type": "document_url", "document_url": signed_url.url}
