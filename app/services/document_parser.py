"""
Document Parser Service
Extracts text, images, tables and size metadata from a word-processing document.
"""
import itertools
import re
from typing import Dict, List, Optional, Tuple

import structlog

from app.exceptions import DocumentDecodeError
from app.models.schemas import (
    Complexity,
    DocumentMetadata,
    ExtractionResult,
    ImageRecord,
    MimeClass,
    TableRecord,
)
from app.services.document_codec import DocumentCodec, get_document_codec
from app.services.image_sniffer import get_image_dimensions
from app.services.vision_service import VisionService, get_vision_service

logger = structlog.get_logger()

TABLE_RE = re.compile(r"<table[^>]*>([\s\S]*?)</table>", re.IGNORECASE)
ROW_RE = re.compile(r"<tr[^>]*>([\s\S]*?)</tr>", re.IGNORECASE)
CELL_RE = re.compile(r"<t[hd][^>]*>([\s\S]*?)</t[hd]>", re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]+>")
WHITESPACE_RE = re.compile(r"\s+")

COMPLEX_WORD_COUNT = 2000
MODERATE_WORD_COUNT = 500


def image_placeholder(index: int) -> str:
    return f"{{{{IMAGE_{index}}}}}"


def parse_tables(html: str) -> List[TableRecord]:
    """
    Parse tables out of an HTML rendition.

    Cells keep their plain text with inner markup removed and whitespace
    collapsed. Rows without cells are dropped, and so are tables left
    without rows. Rows may have different cell counts.
    """
    tables = []
    for table_match in TABLE_RE.finditer(html or ""):
        rows = []
        for row_match in ROW_RE.finditer(table_match.group(1)):
            cells = [
                WHITESPACE_RE.sub(" ", TAG_RE.sub(" ", cell)).strip()
                for cell in CELL_RE.findall(row_match.group(1))
            ]
            if cells:
                rows.append(cells)
        if rows:
            tables.append(TableRecord(rows=rows))

    logger.info("Extracted tables", count=len(tables))
    return tables


def classify_complexity(word_count: int) -> Complexity:
    if word_count > COMPLEX_WORD_COUNT:
        return Complexity.COMPLEX
    if word_count > MODERATE_WORD_COUNT:
        return Complexity.MODERATE
    return Complexity.SIMPLE


def compute_metadata(raw_text: str, image_count: int, table_count: int) -> DocumentMetadata:
    word_count = len(raw_text.split())
    paragraphs = [p for p in raw_text.split("\n") if p.strip()]
    return DocumentMetadata(
        word_count=word_count,
        paragraph_count=len(paragraphs),
        image_count=image_count,
        table_count=table_count,
        has_tables=table_count > 0,
        complexity=classify_complexity(word_count),
    )


class DocumentParser:
    """Builds an ExtractionResult from document bytes."""

    def __init__(
        self,
        codec: Optional[DocumentCodec] = None,
        vision_service: Optional[VisionService] = None,
    ):
        self.codec = codec or get_document_codec()
        self.vision_service = vision_service or get_vision_service()

    async def parse(self, buffer: bytes) -> ExtractionResult:
        """
        Extract the document's structure.

        Args:
            buffer: Document bytes

        Returns:
            Immutable ExtractionResult

        Raises:
            DocumentDecodeError: If raw text cannot be decoded
        """
        logger.info("Extracting text content...")
        try:
            raw_text = self.codec.decode_raw_text(buffer)
        except Exception as e:
            logger.error("Raw text extraction failed", error=str(e))
            raise DocumentDecodeError(str(e)) from e

        logger.info("Extracting and analyzing images...")
        html, images = await self._extract_images(buffer)

        logger.info("Extracting tables...")
        tables = parse_tables(html)

        try:
            markdown = self.codec.decode_markdown(buffer)
        except Exception as e:
            logger.warning("Markdown extraction failed", error=str(e))
            markdown = ""

        metadata = compute_metadata(raw_text, len(images), len(tables))
        logger.info(
            "Document parsed successfully",
            word_count=metadata.word_count,
            image_count=metadata.image_count,
            table_count=metadata.table_count,
            complexity=metadata.complexity.value,
        )

        return ExtractionResult(
            raw_text=raw_text,
            html_content=html,
            markdown=markdown,
            images=images,
            tables=tables,
            metadata=metadata,
        )

    async def _extract_images(self, buffer: bytes) -> Tuple[str, Dict[str, ImageRecord]]:
        """Try each image strategy in order; the first one that finds images wins."""
        html = None
        for strategy in (self._extract_from_package, self._extract_from_decoder):
            try:
                strategy_html, images = await strategy(buffer)
            except Exception as e:
                logger.warning("Image extraction strategy failed", strategy=strategy.__name__, error=str(e))
                continue
            if images:
                logger.info("Total images extracted", count=len(images), strategy=strategy.__name__)
                return strategy_html, images
            if strategy_html is not None:
                html = strategy_html

        if html is None:
            try:
                html = self._decode_html(buffer)
            except Exception as e:
                logger.warning("HTML extraction failed", error=str(e))
                html = ""
        return html, {}

    async def _extract_from_package(self, buffer: bytes) -> Tuple[Optional[str], Dict[str, ImageRecord]]:
        media = self.codec.list_media(buffer)
        if not media:
            return None, {}

        html, ordered = self._place_media(buffer, media)

        images: Dict[str, ImageRecord] = {}
        for index, (path, data) in enumerate(ordered):
            image_id = image_placeholder(index)
            try:
                logger.info("Processing image", path=path, image_id=image_id)
                images[image_id] = await self._build_record(image_id, data, MimeClass.from_filename(path))
            except Exception as e:
                logger.warning("Failed to process image", path=path, error=str(e))

        for image_id in images:
            if image_id not in html:
                html += f'<p><img src="{image_id}" /></p>'
        return html, images

    def _place_media(
        self, buffer: bytes, media: List[Tuple[str, bytes]]
    ) -> Tuple[str, List[Tuple[str, bytes]]]:
        """
        Decode HTML and put package media into document order.

        Each image the decoder meets is matched to a media entry by its
        bytes, so placeholder n always names the n-th image in the document.
        Images the decoder cannot match (unsupported formats) get an empty
        src. Media the document never references keep archive order after
        the matched ones.

        Returns:
            (html, media in placeholder order); html is "" if decoding fails
        """
        remaining = list(media)
        ordered: List[Tuple[str, bytes]] = []

        def place(data: bytes, content_type: Optional[str]) -> str:
            for index, (_, placed) in enumerate(ordered):
                if placed == data:
                    return image_placeholder(index)
            for position, (_, candidate) in enumerate(remaining):
                if candidate == data:
                    ordered.append(remaining.pop(position))
                    return image_placeholder(len(ordered) - 1)
            return ""

        try:
            html = self.codec.decode_rich_content(buffer, place)
        except Exception as e:
            logger.warning("HTML extraction failed, keeping package images", error=str(e))
            return "", list(media)

        return html, ordered + remaining

    async def _extract_from_decoder(self, buffer: bytes) -> Tuple[Optional[str], Dict[str, ImageRecord]]:
        logger.info("Trying alternative extraction method...")
        pending: List[Tuple[str, bytes, Optional[str]]] = []

        def collect(data: bytes, content_type: Optional[str]) -> str:
            image_id = image_placeholder(len(pending))
            pending.append((image_id, data, content_type))
            return image_id

        html = self.codec.decode_rich_content(buffer, collect)

        images: Dict[str, ImageRecord] = {}
        for image_id, data, content_type in pending:
            try:
                images[image_id] = await self._build_record(
                    image_id, data, MimeClass.from_content_type(content_type)
                )
            except Exception as e:
                logger.warning("Failed to process image", image_id=image_id, error=str(e))
        return html, images

    def _decode_html(self, buffer: bytes) -> str:
        counter = itertools.count()
        return self.codec.decode_rich_content(buffer, lambda data, content_type: image_placeholder(next(counter)))

    async def _build_record(self, image_id: str, data: bytes, mime_class: MimeClass) -> ImageRecord:
        width, height = get_image_dimensions(data, mime_class)
        logger.info("Image size", image_id=image_id, width=width, height=height)
        analysis = await self.vision_service.analyze_image(data, mime_class)
        return ImageRecord(
            id=image_id,
            data=data,
            mime_class=mime_class,
            original_width=width,
            original_height=height,
            analysis=analysis,
        )
