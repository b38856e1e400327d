"""
FastAPI Application
One core API: format an uploaded .docx document.
"""
import logging
from typing import Optional

from fastapi import FastAPI, File, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
import structlog

from app.config import get_settings
from app.exceptions import DocumentTooLargeError, InvalidDocumentError
from app.models.schemas import ErrorResponse
from app.services.formatting_pipeline import get_formatting_pipeline

settings = get_settings()

logging.basicConfig(level=settings.log_level.upper(), format="%(message)s")

# Configure logging for terminal readability
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="%H:%M:%S"),
        structlog.dev.ConsoleRenderer()  # Human-readable format in terminal
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Create FastAPI app
app = FastAPI(
    title="AI Document Formatter",
    description="Turns an unstructured .docx into a polished, consistently styled one",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, details=details).model_dump(exclude_none=True),
    )


# ─────────────────────────────────────────────────────────────
# API: Format Document
# ─────────────────────────────────────────────────────────────

@app.post(
    "/api/format",
    response_class=Response,
    responses={
        200: {"content": {DOCX_MEDIA_TYPE: {}}},
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def format_document(file: Optional[UploadFile] = File(None)):
    """
    Format an uploaded document and return the rendered .docx.
    """
    if file is None:
        return _error(status.HTTP_400_BAD_REQUEST, "No file uploaded")

    content = await file.read()
    if not content:
        return _error(status.HTTP_400_BAD_REQUEST, "No file uploaded")

    pipeline = get_formatting_pipeline()

    try:
        logger.info(f"Starting document analysis for '{file.filename}'...")
        output = await pipeline.format_document(content)
    except InvalidDocumentError as e:
        logger.warning("Rejected upload", filename=file.filename, reason=e.message)
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid document", e.message)
    except DocumentTooLargeError as e:
        logger.warning("Rejected upload", filename=file.filename, reason=e.message)
        return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "File too large", e.message)
    except Exception as e:
        logger.error(f"Formatting failed - {str(e)}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Formatting failed", str(e))

    logger.info("Document formatted successfully", filename=file.filename)
    return Response(
        content=output,
        media_type=DOCX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="formatted.docx"'},
    )


# ─────────────────────────────────────────────────────────────
# Helper Endpoints
# ─────────────────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=5000, reload=True)
