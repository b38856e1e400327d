"""
Data models for the formatting pipeline.
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

logger = structlog.get_logger()

FALLBACK_DIMENSIONS = (600, 400)


class CamelModel(BaseModel):
    """Accepts both camelCase (model output, API) and snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MimeClass(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    GIF = "gif"
    BMP = "bmp"
    OTHER = "other"

    @classmethod
    def from_content_type(cls, content_type: Optional[str]) -> "MimeClass":
        ct = (content_type or "").lower()
        if "png" in ct:
            return cls.PNG
        if "jpeg" in ct or "jpg" in ct:
            return cls.JPEG
        if "gif" in ct:
            return cls.GIF
        if "bmp" in ct:
            return cls.BMP
        return cls.OTHER

    @classmethod
    def from_filename(cls, name: str) -> "MimeClass":
        ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
        return {
            "png": cls.PNG,
            "jpg": cls.JPEG,
            "jpeg": cls.JPEG,
            "gif": cls.GIF,
            "bmp": cls.BMP,
        }.get(ext, cls.OTHER)

    @property
    def content_type(self) -> str:
        if self is MimeClass.OTHER:
            return "image/png"
        return f"image/{self.value}"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


# ─────────────────────────────────────────────────────────────
# Extraction models
# ─────────────────────────────────────────────────────────────

class ImageAnalysis(CamelModel):
    """Semantic description of an embedded image."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    description: str
    classification: str = Field(alias="type")
    purpose: str
    visible_text: str
    key_elements: List[str]
    suggested_caption: str

    @field_validator("visible_text", mode="before")
    @classmethod
    def _join_text(cls, value: Any) -> Any:
        # Models sometimes return visible text as a list of labels
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return value

    @field_validator("key_elements", mode="before")
    @classmethod
    def _wrap_elements(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value] if value else []
        return value


FALLBACK_ANALYSIS = ImageAnalysis(
    description="Image from document",
    classification="image",
    purpose="visual content",
    visible_text="",
    key_elements=[],
    suggested_caption="Document image",
)


class ImageRecord(CamelModel):
    """An embedded image keyed by its placeholder token."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    data: bytes = Field(repr=False)
    mime_class: MimeClass
    original_width: int = Field(default=FALLBACK_DIMENSIONS[0], gt=0)
    original_height: int = Field(default=FALLBACK_DIMENSIONS[1], gt=0)
    analysis: ImageAnalysis = FALLBACK_ANALYSIS


class TableRecord(CamelModel):
    """Plain-text table rows; rows may have different cell counts."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    rows: List[List[str]]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.rows[0]) if self.rows else 0

    @property
    def has_header(self) -> bool:
        return len(self.rows) > 1


class DocumentMetadata(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    word_count: int
    paragraph_count: int
    image_count: int
    table_count: int
    has_tables: bool
    complexity: Complexity


class ExtractionResult(CamelModel):
    """Normalized, AI-independent representation of the source document."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    raw_text: str
    html_content: str
    markdown: str
    images: Dict[str, ImageRecord] = Field(default_factory=dict)
    tables: List[TableRecord] = Field(default_factory=list)
    metadata: DocumentMetadata


# ─────────────────────────────────────────────────────────────
# Formatting plan models
# ─────────────────────────────────────────────────────────────

def _field_default(model: type, value: Any, info: ValidationInfo) -> Any:
    # Models send null or "" for options they leave unspecified
    if value is None or value == "":
        return model.model_fields[info.field_name].default
    return value


class TextElement(CamelModel):
    type: Literal["text"] = "text"
    content: str = ""
    style: str = "paragraph"  # paragraph | heading | subheading | bold

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("style", mode="before")
    @classmethod
    def _default_style(cls, value: Any, info: ValidationInfo) -> Any:
        return _field_default(cls, value, info)


class ImageElement(CamelModel):
    type: Literal["image"] = "image"
    id: str
    caption: Optional[str] = None
    alignment: str = "center"  # left | center | right
    size_preference: str = "fit-width"  # maintain-aspect | fit-width

    @field_validator("alignment", "size_preference", mode="before")
    @classmethod
    def _default_options(cls, value: Any, info: ValidationInfo) -> Any:
        return _field_default(cls, value, info)


class ListElement(CamelModel):
    type: Literal["list"] = "list"
    items: List[str] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(item) for item in value if item is not None]
        return value


class TableElement(CamelModel):
    type: Literal["table"] = "table"
    table_index: int
    title: Optional[str] = None


Element = Annotated[
    Union[TextElement, ImageElement, ListElement, TableElement],
    Field(discriminator="type"),
]

_element_adapter = TypeAdapter(Element)


class Section(CamelModel):
    heading: Optional[str] = None
    elements: List[Element] = Field(default_factory=list)

    @field_validator("elements", mode="before")
    @classmethod
    def _drop_malformed_elements(cls, value: Any) -> Any:
        """Keep every element that validates; drop the rest."""
        if not isinstance(value, list):
            return []
        kept = []
        for raw in value:
            if isinstance(raw, BaseModel):
                kept.append(raw)
                continue
            try:
                kept.append(_element_adapter.validate_python(raw))
            except ValidationError as e:
                logger.warning(
                    "Dropping malformed plan element",
                    element_type=raw.get("type") if isinstance(raw, dict) else type(raw).__name__,
                    error=str(e).splitlines()[0],
                )
        return kept


class FormattingPlan(CamelModel):
    """Target document structure produced by the formatting model."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    title: Optional[str] = None
    sections: List[Section] = Field(default_factory=list)

    @field_validator("sections", mode="before")
    @classmethod
    def _drop_non_sections(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [s for s in value if isinstance(s, (dict, Section))]

    def image_ids(self) -> List[str]:
        """Image ids referenced by the plan, in plan order."""
        return [
            element.id
            for section in self.sections
            for element in section.elements
            if isinstance(element, ImageElement)
        ]


# ─────────────────────────────────────────────────────────────
# API models
# ─────────────────────────────────────────────────────────────

class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None
