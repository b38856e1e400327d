"""
Document Builder
Renders a FormattingPlan into a styled DOCX document using python-docx.
"""
import io
import math
import re
from typing import List, Mapping, Optional, Tuple

import structlog
from docx import Document
from docx.document import Document as DocxDocument
from docx.enum.table import WD_CELL_VERTICAL_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Emu, Inches, Pt, RGBColor, Twips
from docx.table import Table

from app.models.schemas import (
    FormattingPlan,
    ImageElement,
    ImageRecord,
    ListElement,
    TableElement,
    TableRecord,
    TextElement,
)

logger = structlog.get_logger()

MAX_TEXT_CHARS = 10000
MAX_CELL_CHARS = 500
MAINTAIN_ASPECT_MAX_WIDTH = 500
FIT_WIDTH_MAX_WIDTH = 650
EMU_PER_PIXEL = 9525

DEFAULT_TITLE = "Formatted Document"
BULLET = "• "
CAPTION_COLOR = RGBColor(0x66, 0x66, 0x66)
PLACEHOLDER_COLOR = RGBColor(0x99, 0x99, 0x99)
HEADER_FILL = "E8E8E8"
BORDER_COLOR = "999999"
BORDER_SIZE = "6"  # eighths of a point: one pixel at 96 dpi

_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffd]")

ALIGNMENTS = {
    "left": WD_ALIGN_PARAGRAPH.LEFT,
    "center": WD_ALIGN_PARAGRAPH.CENTER,
    "right": WD_ALIGN_PARAGRAPH.RIGHT,
}

TEXT_HEADING_LEVELS = {"heading": 2, "subheading": 3}


def sanitize_text(text: Optional[str], limit: int = MAX_TEXT_CHARS) -> str:
    """Strip characters that are invalid in document XML and cap the length."""
    if not text:
        return ""
    return _INVALID_XML_CHARS.sub("", str(text))[:limit]


def calculate_image_size(
    original_width: int,
    original_height: int,
    max_width: int = FIT_WIDTH_MAX_WIDTH,
) -> Tuple[int, int]:
    """Clamp width to max_width, scaling height to keep the aspect ratio."""
    if original_width <= max_width:
        return original_width, original_height
    height = math.floor(max_width / original_width * original_height + 0.5)
    return max_width, max(1, height)


def max_width_for(size_preference: str) -> int:
    if size_preference == "maintain-aspect":
        return MAINTAIN_ASPECT_MAX_WIDTH
    return FIT_WIDTH_MAX_WIDTH


def _border_element(tag: str, sides: Tuple[str, ...]):
    borders = OxmlElement(tag)
    for side in sides:
        edge = OxmlElement(f"w:{side}")
        edge.set(qn("w:val"), "single")
        edge.set(qn("w:sz"), BORDER_SIZE)
        edge.set(qn("w:space"), "0")
        edge.set(qn("w:color"), BORDER_COLOR)
        borders.append(edge)
    return borders


def _remove(element) -> None:
    parent = element.getparent()
    if parent is not None:
        parent.remove(element)


class DocumentBuilder:
    """Assembles plan elements into a document; one bad element never aborts the rest."""

    def build(
        self,
        plan: FormattingPlan,
        images: Mapping[str, ImageRecord],
        tables: List[TableRecord],
    ) -> DocxDocument:
        """
        Build the output document.

        Args:
            plan: Repaired formatting plan
            images: Extracted images keyed by placeholder id
            tables: Extracted tables, referenced by index

        Returns:
            python-docx Document ready to render
        """
        doc = Document()
        for section in doc.sections:
            section.top_margin = section.bottom_margin = Inches(1)
            section.left_margin = section.right_margin = Inches(1)

        title = doc.add_heading(sanitize_text(plan.title) or DEFAULT_TITLE, level=0)
        title.alignment = WD_ALIGN_PARAGRAPH.CENTER
        title.paragraph_format.space_after = Pt(20)

        for section in plan.sections:
            if section.heading:
                heading = doc.add_heading(sanitize_text(section.heading), level=1)
                heading.paragraph_format.space_before = Pt(15)
                heading.paragraph_format.space_after = Pt(7.5)

            for element in section.elements:
                if isinstance(element, ImageElement):
                    self._add_image(doc, element, images)
                elif isinstance(element, TableElement):
                    self._add_table(doc, element, tables)
                elif isinstance(element, TextElement):
                    self._add_text(doc, element)
                elif isinstance(element, ListElement):
                    self._add_list(doc, element)

        return doc

    def render(self, doc: DocxDocument) -> bytes:
        """Serialize a document to DOCX bytes."""
        buffer = io.BytesIO()
        doc.save(buffer)
        return buffer.getvalue()

    def _add_text(self, doc: DocxDocument, element: TextElement) -> None:
        text = sanitize_text(element.content)
        level = TEXT_HEADING_LEVELS.get(element.style)
        if level:
            paragraph = doc.add_heading(text, level=level)
        else:
            paragraph = doc.add_paragraph()
            run = paragraph.add_run(text)
            if element.style == "bold":
                run.bold = True
        paragraph.paragraph_format.space_after = Pt(7.5)

    def _add_list(self, doc: DocxDocument, element: ListElement) -> None:
        for item in element.items:
            paragraph = doc.add_paragraph()
            paragraph.add_run(BULLET + sanitize_text(item))
            paragraph.paragraph_format.left_indent = Twips(360)
            paragraph.paragraph_format.space_after = Pt(5)

    def _add_image(
        self,
        doc: DocxDocument,
        element: ImageElement,
        images: Mapping[str, ImageRecord],
    ) -> None:
        record = images.get(element.id)
        if record is None:
            return
        if not record.data:
            logger.error("Skipping image: empty buffer", image_id=element.id)
            return

        paragraph = None
        try:
            width, height = calculate_image_size(
                record.original_width,
                record.original_height,
                max_width_for(element.size_preference),
            )
            logger.info(
                "Adding image",
                image_id=element.id,
                original=f"{record.original_width}x{record.original_height}",
                rendered=f"{width}x{height}",
            )
            paragraph = doc.add_paragraph()
            paragraph.alignment = ALIGNMENTS.get(element.alignment, WD_ALIGN_PARAGRAPH.CENTER)
            paragraph.paragraph_format.space_before = Pt(10)
            paragraph.paragraph_format.space_after = Pt(5)
            paragraph.add_run().add_picture(
                io.BytesIO(record.data),
                width=Emu(width * EMU_PER_PIXEL),
                height=Emu(height * EMU_PER_PIXEL),
            )

            if element.caption:
                caption = doc.add_paragraph()
                caption.alignment = WD_ALIGN_PARAGRAPH.CENTER
                caption.paragraph_format.space_after = Pt(15)
                run = caption.add_run(sanitize_text(element.caption))
                run.italic = True
                run.font.size = Pt(10)
                run.font.color.rgb = CAPTION_COLOR
        except Exception as e:
            logger.error("Failed to add image", image_id=element.id, error=str(e))
            if paragraph is not None:
                _remove(paragraph._element)
            placeholder = doc.add_paragraph()
            run = placeholder.add_run(
                sanitize_text(f"[Image could not be loaded: {element.caption or element.id}]")
            )
            run.italic = True
            run.font.color.rgb = PLACEHOLDER_COLOR

    def _add_table(
        self,
        doc: DocxDocument,
        element: TableElement,
        tables: List[TableRecord],
    ) -> None:
        if not 0 <= element.table_index < len(tables):
            logger.warning("Skipping table: index out of range", table_index=element.table_index)
            return

        if element.title:
            title = doc.add_heading(sanitize_text(element.title), level=2)
            title.paragraph_format.space_before = Pt(10)
            title.paragraph_format.space_after = Pt(7.5)

        table = self.build_table(doc, tables[element.table_index])
        if table is not None:
            spacer = doc.add_paragraph("")
            spacer.paragraph_format.space_after = Pt(15)

    def build_table(self, doc: DocxDocument, table_record: TableRecord) -> Optional[Table]:
        """
        Append a bordered table to the document.

        The first row is a shaded, bold, centered header when the table has
        more than one row. Short rows leave their trailing cells empty.

        Returns:
            The table, or None if it could not be built (nothing is left behind)
        """
        rows = table_record.rows
        if not rows:
            return None

        table = None
        try:
            table = doc.add_table(rows=0, cols=max(len(row) for row in rows))
            self._style_table(table)

            for row_index, row in enumerate(rows):
                is_header = table_record.has_header and row_index == 0
                cells = table.add_row().cells
                for column, cell in enumerate(cells):
                    text = sanitize_text(row[column], MAX_CELL_CHARS) if column < len(row) else ""
                    self._fill_cell(cell, text, column, is_header)
            return table
        except Exception as e:
            logger.error("Failed to create table", error=str(e))
            if table is not None:
                _remove(table._tbl)
            return None

    def _style_table(self, table: Table) -> None:
        tbl_pr = table._tbl.tblPr
        tbl_w = tbl_pr.find(qn("w:tblW"))
        if tbl_w is None:
            tbl_w = OxmlElement("w:tblW")
            tbl_pr.append(tbl_w)
        tbl_w.set(qn("w:type"), "pct")
        tbl_w.set(qn("w:w"), "5000")

        borders = _border_element("w:tblBorders", ("top", "left", "bottom", "right", "insideH", "insideV"))
        tbl_look = tbl_pr.find(qn("w:tblLook"))
        if tbl_look is not None:
            tbl_look.addprevious(borders)
        else:
            tbl_pr.append(borders)

    def _fill_cell(self, cell, text: str, column: int, is_header: bool) -> None:
        tc_pr = cell._tc.get_or_add_tcPr()
        tc_pr.append(_border_element("w:tcBorders", ("top", "left", "bottom", "right")))
        if is_header:
            shading = OxmlElement("w:shd")
            shading.set(qn("w:val"), "clear")
            shading.set(qn("w:color"), "auto")
            shading.set(qn("w:fill"), HEADER_FILL)
            tc_pr.append(shading)
        cell.vertical_alignment = WD_CELL_VERTICAL_ALIGNMENT.CENTER

        paragraph = cell.paragraphs[0]
        run = paragraph.add_run(text)
        if is_header:
            run.bold = True
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
        elif column == 0:
            paragraph.alignment = WD_ALIGN_PARAGRAPH.LEFT
        else:
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER


# Singleton instance
_document_builder: Optional[DocumentBuilder] = None


def get_document_builder() -> DocumentBuilder:
    """Get singleton document builder instance."""
    global _document_builder
    if _document_builder is None:
        _document_builder = DocumentBuilder()
    return _document_builder
