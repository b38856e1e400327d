"""
Vision Service
Describes embedded images with a vision model, falling back to fixed captions.
"""
import asyncio
import json
from typing import Awaitable, Callable, Optional

import structlog
from openai import AuthenticationError, PermissionDeniedError
from pydantic import ValidationError

from app.config import Settings, get_settings
from app.models.schemas import FALLBACK_ANALYSIS, ImageAnalysis, MimeClass
from app.services.json_parser import loads_model_json
from app.services.llm_client import OpenAIVisionGenerator, VisionGenerator
from app.services.resilience import call_with_backoff

logger = structlog.get_logger()


def classify_vision_error(exc: BaseException) -> str:
    """Map a vision call failure to a diagnostic category."""
    message = str(exc)
    if "SERVICE_DISABLED" in message:
        return "service_disabled"
    if isinstance(exc, AuthenticationError) or "API_KEY" in message:
        return "invalid_credential"
    if isinstance(exc, PermissionDeniedError) or "403" in message:
        return "forbidden"
    return "failed"


class VisionService:
    """Produces an ImageAnalysis for every image; never raises."""

    ANALYSIS_PROMPT = """Analyze this image from a document and provide detailed information:

1. **Description**: What does this image show? (2-3 sentences)
2. **Type**: Classify as one of: photo, chart, graph, diagram, screenshot, logo, illustration, table, infographic, map, other
3. **Purpose**: Why is this image in the document? What information does it convey?
4. **Visible Text**: Any text, labels, or numbers visible in the image
5. **Key Elements**: Main components or data points shown
6. **Suggested Caption**: A professional caption for this image

Return as JSON:
{
  "description": "detailed description",
  "type": "specific type",
  "purpose": "document purpose",
  "visibleText": "text content",
  "keyElements": ["element1", "element2"],
  "suggestedCaption": "professional caption"
}"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        generator: Optional[VisionGenerator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.generator = generator or OpenAIVisionGenerator(self.settings)
        self._sleep = sleep
        if not self.settings.vision_enabled:
            logger.warning("No vision API key configured, image analysis will use default captions")

    async def analyze_image(self, data: bytes, mime_class: MimeClass) -> ImageAnalysis:
        """
        Describe an image with the vision model.

        Args:
            data: Raw image bytes
            mime_class: Image format

        Returns:
            The model's analysis, or the fixed fallback analysis when vision
            is disabled, the call fails, or the response is unusable.
        """
        if not self.settings.vision_enabled:
            return FALLBACK_ANALYSIS

        try:
            response = await call_with_backoff(
                lambda: self.generator.generate(data, mime_class, self.ANALYSIS_PROMPT),
                max_retries=self.settings.vision_retry_max_attempts,
                initial_delay=self.settings.vision_retry_initial_delay,
                sleep=self._sleep,
            )
        except Exception as e:
            logger.error(
                "Image analysis failed",
                reason=classify_vision_error(e),
                error=str(e)[:200],
            )
            return FALLBACK_ANALYSIS

        try:
            analysis = ImageAnalysis.model_validate(loads_model_json(response))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("Unusable image analysis response", error=str(e)[:200])
            return FALLBACK_ANALYSIS

        logger.info(
            "AI Vision analyzed image",
            classification=analysis.classification,
            caption=analysis.suggested_caption[:80],
        )
        return analysis


# Singleton
_vision_service: Optional[VisionService] = None


def get_vision_service() -> VisionService:
    """Get singleton vision service instance."""
    global _vision_service
    if _vision_service is None:
        _vision_service = VisionService()
    return _vision_service
