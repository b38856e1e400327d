"""
Plan Synthesizer
Asks the formatting model for a document plan, then repairs it for completeness.
"""
import asyncio
import json
from typing import Awaitable, Callable, List, Mapping, Optional

import structlog
from pydantic import ValidationError

from app.config import Settings, get_settings
from app.exceptions import PlanGenerationError
from app.models.schemas import (
    ExtractionResult,
    FormattingPlan,
    ImageElement,
    ImageRecord,
    Section,
    TableRecord,
)
from app.services.json_parser import ERROR_PLAN, safe_parse
from app.services.llm_client import OpenAITextGenerator, TextGenerator
from app.services.resilience import call_with_backoff

logger = structlog.get_logger()

ADDITIONAL_SECTION = "Additional Content"
DEFAULT_CAPTION = "Document image"

PLAN_SCHEMA = """### JSON Schema:
{
  "title": "string",
  "sections": [
    {
      "heading": "string",
      "elements": [
        {
          "type": "text",
          "content": "string",
          "style": "paragraph|heading|subheading|bold"
        },
        {
          "type": "image",
          "id": "{{IMAGE_X}}",
          "caption": "use suggestedCaption from image analysis",
          "alignment": "left|center|right",
          "sizePreference": "maintain-aspect|fit-width"
        },
        {
          "type": "list",
          "items": ["string"]
        },
        {
          "type": "table",
          "tableIndex": 0,
          "title": "descriptive title for this table"
        }
      ]
    }
  ]
}"""

FORMATTING_RULES = """### IMAGE FORMATTING RULES:
1. **MUST include ALL images** listed above exactly once - do not skip any
2. Use the suggestedCaption from the image analysis
3. Set sizePreference to "fit-width" for charts/diagrams, "maintain-aspect" for photos/logos
4. Center-align charts and graphs, left-align screenshots, left-align logos/symbols
5. Place images logically based on their purpose:
   - Logos/symbols: Near the beginning or in relevant sections
   - Charts/graphs: In data-related sections with descriptive context
   - Screenshots: In instructional sections
   - Decorative images: Appropriate contextual placement

### TABLE FORMATTING RULES:
1. Give each table a descriptive title based on its content
2. Reference tables by their tableIndex (0, 1, 2, etc.)
3. Place tables in logical sections near related text
4. Tables will be automatically formatted with proper borders and styling

### CRITICAL RULES:
1. **NEVER modify actual text content** - preserve exactly as-is
2. Use ALL image descriptions to create meaningful captions
3. Include ALL tables found in the document
4. Create proper document hierarchy
5. Return ONLY valid JSON, no markdown or commentary"""


def build_image_context(images: Mapping[str, ImageRecord]) -> str:
    if not images:
        return ""

    lines = ["IMAGE DETAILS:"]
    for image_id, record in images.items():
        analysis = record.analysis
        lines.append(f"{image_id}:")
        lines.append(f"  - Type: {analysis.classification}")
        lines.append(f"  - Original Size: {record.original_width}x{record.original_height}")
        lines.append(f"  - Description: {analysis.description}")
        lines.append(f"  - Purpose: {analysis.purpose}")
        lines.append(f"  - Suggested Caption: {analysis.suggested_caption}")
        if analysis.visible_text:
            lines.append(f'  - Text in image: "{analysis.visible_text}"')
        if analysis.key_elements:
            lines.append(f"  - Key Elements: {', '.join(analysis.key_elements)}")
    return "\n".join(lines)


def build_table_context(tables: List[TableRecord]) -> str:
    if not tables:
        return ""

    lines = ["TABLE DATA:"]
    for index, table in enumerate(tables):
        lines.append(f"Table {index + 1} (tableIndex {index}):")
        lines.append(f"  - Rows: {table.row_count}")
        lines.append(f"  - Columns: {table.column_count}")
        lines.append(f"  - Preview: {json.dumps(table.rows[:2], ensure_ascii=False)}")
    return "\n".join(lines)


def parse_plan(response: str) -> FormattingPlan:
    """Parse a model response into a plan; unusable output becomes the error plan."""
    try:
        return FormattingPlan.model_validate(safe_parse(response))
    except ValidationError as e:
        logger.error("Formatting plan failed validation", error=str(e).splitlines()[0])
        return FormattingPlan.model_validate(ERROR_PLAN)


def repair_plan(plan: FormattingPlan, images: Mapping[str, ImageRecord]) -> FormattingPlan:
    """
    Return a plan that references every known image at least once.

    Images the model left out are appended to the "Additional Content"
    section, which is created at the end of the plan if absent. The input
    plan is not modified.
    """
    referenced = set(plan.image_ids())
    missing = [image_id for image_id in images if image_id not in referenced]
    if not missing:
        return plan

    logger.warning("AI missed images, adding them back", count=len(missing), image_ids=missing)
    additions = [
        ImageElement(
            id=image_id,
            caption=images[image_id].analysis.suggested_caption or DEFAULT_CAPTION,
            alignment="center",
            size_preference="maintain-aspect",
        )
        for image_id in missing
    ]

    sections = list(plan.sections)
    for index, section in enumerate(sections):
        if section.heading == ADDITIONAL_SECTION:
            sections[index] = section.model_copy(update={"elements": [*section.elements, *additions]})
            break
    else:
        sections.append(Section(heading=ADDITIONAL_SECTION, elements=additions))

    return plan.model_copy(update={"sections": sections})


class PlanSynthesizer:
    """Generates a validated, complete FormattingPlan for an extraction result."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        generator: Optional[TextGenerator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.generator = generator or OpenAITextGenerator(self.settings)
        self._sleep = sleep

    def build_prompt(self, extracted: ExtractionResult) -> str:
        metadata = extracted.metadata
        html_excerpt = extracted.html_content[:self.settings.html_prompt_chars]
        text_excerpt = extracted.raw_text[:self.settings.raw_text_prompt_chars]

        parts = [
            "You are a **Professional Document Formatting AI**.",
            "Generate a **pure JSON formatting plan** for a polished, professional document.",
            "",
            "DOCUMENT METADATA:",
            f"- Word count: {metadata.word_count}",
            f"- Paragraphs: {metadata.paragraph_count}",
            f"- Images: {metadata.image_count}",
            f"- Tables: {metadata.table_count}",
            f"- Complexity: {metadata.complexity.value}",
            "",
            build_image_context(extracted.images),
            "",
            build_table_context(extracted.tables),
            "",
            PLAN_SCHEMA,
            "",
            FORMATTING_RULES,
            "",
            "Document content:",
            f'"""{html_excerpt}"""',
            "",
            "Raw text:",
            f'"""{text_excerpt}"""',
        ]
        return "\n".join(parts)

    async def synthesize(self, extracted: ExtractionResult) -> FormattingPlan:
        """
        Produce the formatting plan for a document.

        Args:
            extracted: Result of structure extraction

        Returns:
            A plan that references every extracted image

        Raises:
            PlanGenerationError: If the model call fails after retries
        """
        prompt = self.build_prompt(extracted)
        logger.info("Generating formatting plan...", prompt_chars=len(prompt))

        try:
            response = await call_with_backoff(
                lambda: self.generator.generate(prompt),
                max_retries=self.settings.retry_max_attempts,
                initial_delay=self.settings.retry_initial_delay,
                sleep=self._sleep,
            )
        except Exception as e:
            logger.error("Formatting plan generation failed", error=str(e))
            raise PlanGenerationError(str(e)) from e

        plan = parse_plan(response)
        logger.info("Formatting plan parsed", title=plan.title, section_count=len(plan.sections))
        return repair_plan(plan, extracted.images)


# Singleton instance
_plan_synthesizer: Optional[PlanSynthesizer] = None


def get_plan_synthesizer() -> PlanSynthesizer:
    """Get singleton plan synthesizer instance."""
    global _plan_synthesizer
    if _plan_synthesizer is None:
        _plan_synthesizer = PlanSynthesizer()
    return _plan_synthesizer
