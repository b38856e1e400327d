"""
Custom exceptions for the formatting pipeline.
"""


class FormattingError(Exception):
    """Base exception for all formatting pipeline errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def default_message(self) -> str:
        return "An unknown formatting error occurred."


class InvalidDocumentError(FormattingError):
    """Raised when the uploaded buffer is missing or is not a word-processing package."""

    @property
    def default_message(self) -> str:
        return "No file uploaded"


class DocumentTooLargeError(FormattingError):
    """Raised when the uploaded buffer exceeds the configured size limit."""

    @property
    def default_message(self) -> str:
        return "File exceeds the maximum upload size."


class DocumentDecodeError(FormattingError):
    """Raised when the codec cannot produce raw text from the document."""

    @property
    def default_message(self) -> str:
        return "Could not decode the document."


class PlanGenerationError(FormattingError):
    """Raised when the formatting model call fails after retries."""

    @property
    def default_message(self) -> str:
        return "Formatting plan generation failed."
