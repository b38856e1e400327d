"""
Document Codec
Decodes word-processing packages (text, HTML, markdown, embedded media) via mammoth.
"""
import io
import re
import zipfile
from typing import Callable, List, Optional, Tuple

import mammoth
import structlog

logger = structlog.get_logger()

# Receives (image bytes, content type) and returns the src to emit for the image
ImageCallback = Callable[[bytes, Optional[str]], str]


class DocumentCodec:
    """Thin wrapper over mammoth and the package's zip container."""

    MEDIA_PREFIX = "word/media/"
    IMAGE_PATTERN = re.compile(r"\.(png|jpg|jpeg|gif|bmp)$", re.IGNORECASE)

    def is_package(self, buffer: bytes) -> bool:
        """Check that the buffer is a zip container with a main document part."""
        if not buffer or not zipfile.is_zipfile(io.BytesIO(buffer)):
            return False
        with zipfile.ZipFile(io.BytesIO(buffer)) as zf:
            return "word/document.xml" in zf.namelist()

    def decode_raw_text(self, buffer: bytes) -> str:
        result = mammoth.extract_raw_text(io.BytesIO(buffer))
        self._log_messages(result, "raw_text")
        return result.value

    def decode_rich_content(self, buffer: bytes, image_callback: ImageCallback) -> str:
        """
        Convert the document to HTML, letting the callback choose each image's src.

        Args:
            buffer: Document bytes
            image_callback: Called once per embedded image, in document order

        Returns:
            HTML rendition of the document
        """
        def convert(image):
            with image.open() as stream:
                data = stream.read()
            return {"src": image_callback(data, image.content_type)}

        result = mammoth.convert_to_html(
            io.BytesIO(buffer),
            convert_image=mammoth.images.img_element(convert),
        )
        self._log_messages(result, "html")
        return result.value

    def decode_markdown(self, buffer: bytes) -> str:
        result = mammoth.convert_to_markdown(io.BytesIO(buffer))
        self._log_messages(result, "markdown")
        return result.value

    def list_media(self, buffer: bytes) -> List[Tuple[str, bytes]]:
        """Embedded raster images as (path, bytes), in archive order."""
        media = []
        with zipfile.ZipFile(io.BytesIO(buffer)) as zf:
            for info in zf.infolist():
                if info.is_dir() or not info.filename.startswith(self.MEDIA_PREFIX):
                    continue
                if not self.IMAGE_PATTERN.search(info.filename):
                    continue
                media.append((info.filename, zf.read(info)))
        logger.info("Found images in package", count=len(media))
        return media

    def _log_messages(self, result, rendition: str) -> None:
        for message in result.messages:
            logger.debug("Codec message", rendition=rendition, type=message.type, message=message.message)


# Singleton instance
_document_codec: Optional[DocumentCodec] = None


def get_document_codec() -> DocumentCodec:
    """Get singleton document codec instance."""
    global _document_codec
    if _document_codec is None:
        _document_codec = DocumentCodec()
    return _document_codec
