"""
Model Clients
Text-generation and vision collaborators backed by OpenAI chat completions.
"""
import base64
from typing import Optional, Protocol

import structlog
from openai import AsyncOpenAI

from app.config import Settings, get_settings
from app.models.schemas import MimeClass

logger = structlog.get_logger()


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class VisionGenerator(Protocol):
    async def generate(self, image: bytes, mime_class: MimeClass, prompt: str) -> str:
        ...


class OpenAITextGenerator:
    """Generates formatting plans with an OpenAI chat model."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so a missing key fails the call, not startup
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                base_url=self.settings.openai_base_url,
            )
        return self._client

    async def generate(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.settings.formatting_model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=0.2,
        )
        return response.choices[0].message.content or ""


class OpenAIVisionGenerator:
    """Describes images with an OpenAI vision-capable model."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.vision_api_key,
                base_url=self.settings.openai_base_url,
            )
        return self._client

    async def generate(self, image: bytes, mime_class: MimeClass, prompt: str) -> str:
        b64_image = base64.b64encode(image).decode("utf-8")
        messages = [{
            "role": "user",
            "content": [
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:{mime_class.content_type};base64,{b64_image}",
                        "detail": "high",
                    },
                },
                {"type": "text", "text": prompt},
            ],
        }]
        response = await self.client.chat.completions.create(
            model=self.settings.vision_model,
            messages=messages,
            max_tokens=600,
            temperature=0.3,
        )
        return response.choices[0].message.content or ""
