"""
Formatting Pipeline
Document bytes -> extraction -> formatting plan -> rendered document bytes.
"""
from typing import Optional

import structlog

from app.config import Settings, get_settings
from app.exceptions import DocumentTooLargeError, InvalidDocumentError
from app.services.document_builder import DocumentBuilder, get_document_builder
from app.services.document_codec import DocumentCodec, get_document_codec
from app.services.document_parser import DocumentParser
from app.services.plan_synthesizer import PlanSynthesizer, get_plan_synthesizer

logger = structlog.get_logger()


class FormattingPipeline:
    """Single-request, stateless document transformation."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        codec: Optional[DocumentCodec] = None,
        parser: Optional[DocumentParser] = None,
        synthesizer: Optional[PlanSynthesizer] = None,
        builder: Optional[DocumentBuilder] = None,
    ):
        self.settings = settings or get_settings()
        self.codec = codec or get_document_codec()
        self.parser = parser or DocumentParser(self.codec)
        self.synthesizer = synthesizer or get_plan_synthesizer()
        self.builder = builder or get_document_builder()

    def validate(self, buffer: Optional[bytes]) -> None:
        """
        Reject inputs the pipeline must not enter.

        Raises:
            InvalidDocumentError: If the buffer is missing, empty or not a document package
            DocumentTooLargeError: If the buffer exceeds the upload limit
        """
        if not buffer:
            raise InvalidDocumentError()
        if len(buffer) > self.settings.max_upload_bytes:
            raise DocumentTooLargeError(
                f"File is {len(buffer)} bytes; the limit is {self.settings.max_upload_bytes} bytes."
            )
        if not self.codec.is_package(buffer):
            raise InvalidDocumentError("Uploaded file is not a .docx document")

    async def format_document(self, buffer: bytes) -> bytes:
        """
        Turn an unstructured document into a formatted one.

        Args:
            buffer: Source document bytes

        Returns:
            Rendered document bytes
        """
        self.validate(buffer)

        logger.info("Stage: Starting document analysis...", size_bytes=len(buffer))
        extracted = await self.parser.parse(buffer)
        logger.info(
            "Stage: Extraction complete",
            word_count=extracted.metadata.word_count,
            image_count=len(extracted.images),
            table_count=extracted.metadata.table_count,
        )

        logger.info("Stage: Generating formatting plan...")
        plan = await self.synthesizer.synthesize(extracted)

        logger.info("Stage: Building formatted document...")
        document = self.builder.build(plan, extracted.images, extracted.tables)
        output = self.builder.render(document)

        logger.info("Stage: Document formatted successfully", size_bytes=len(output))
        return output


# Singleton instance
_formatting_pipeline: Optional[FormattingPipeline] = None


def get_formatting_pipeline() -> FormattingPipeline:
    """Get singleton formatting pipeline instance."""
    global _formatting_pipeline
    if _formatting_pipeline is None:
        _formatting_pipeline = FormattingPipeline()
    return _formatting_pipeline
