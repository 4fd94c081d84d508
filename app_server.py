import base64
import logging
from typing import Any

# config loads .env on import, so it must come before anything that reads
# FORMFILL_* settings.
import config
config.configure_logging()

from auth import auth_enabled, key_is_valid, presented_key
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from form_filler import FieldValue, fill_form
from pdf_engine import FormStructureError
from pydantic import AliasChoices, BaseModel, Field, model_validator
from text_overlay import register_fonts_from_directory

logger = logging.getLogger(__name__)

app = FastAPI(title="PDF Form Filler API")

# ── CORS ──────────────────────────────────────────────────────────────────────
if config.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── AUTH MIDDLEWARE ────────────────────────────────────────────────────────────
_PUBLIC_API_PATHS: frozenset[str] = frozenset({"/api/health"})

if not auth_enabled():
    logger.warning("FORMFILL_FUNCTION_KEY is not set; /api routes are unauthenticated.")


@app.middleware("http")
async def _auth_middleware(request: Request, call_next):
    """Reject calls to /api/* without a valid function key (except public endpoints)."""
    path = request.url.path
    if (
        not path.startswith("/api/")
        or path in _PUBLIC_API_PATHS
        or request.method == "OPTIONS"
    ):
        return await call_next(request)

    if not key_is_valid(presented_key(request)):
        return JSONResponse(
            status_code=401,
            content={"detail": "Missing or invalid function key."},
        )

    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Failed to parse request body: %s", exc.errors())
    return JSONResponse(
        status_code=400,
        content={
            "message": "Request body is not valid JSON or does not match the expected schema.",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


# ── FONTS ─────────────────────────────────────────────────────────────────────
_registered_fonts = register_fonts_from_directory(config.FONTS_DIR)
if _registered_fonts:
    logger.info("Registered %d custom font(s) for text overlays", len(_registered_fonts))


def _canonical_keys(data: Any, names: tuple[str, ...]) -> Any:
    """Map JSON property names onto ``names`` ignoring case."""
    if not isinstance(data, dict):
        return data
    lookup = {name.lower(): name for name in names}
    return {lookup.get(str(key).lower(), key): value for key, value in data.items()}


class FormFieldValue(BaseModel):
    field_name: str = Field(alias="fieldName", min_length=1)
    value: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive_keys(cls, data: Any) -> Any:
        return _canonical_keys(data, ("fieldName", "value"))


class ProcessPdfRequest(BaseModel):
    pdf_base64: str | None = Field(
        default=None,
        validation_alias=AliasChoices("pdfBase64", "documentBase64"),
    )
    fields: list[FormFieldValue] | None = None
    render_text_overlay: bool = Field(default=False, alias="renderTextOverlay")

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive_keys(cls, data: Any) -> Any:
        return _canonical_keys(data, ("pdfBase64", "documentBase64", "fields", "renderTextOverlay"))


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/process-pdf", response_class=PlainTextResponse)
def process_pdf_usage() -> str:
    return "Send a POST request with a JSON body to fill PDF form fields."


@app.post("/api/process-pdf")
def process_pdf(payload: ProcessPdfRequest) -> dict[str, str]:
    if not payload.pdf_base64 or not payload.pdf_base64.strip():
        raise HTTPException(status_code=400, detail="'pdfBase64' must contain the base64 encoded PDF.")
    if not payload.fields:
        raise HTTPException(status_code=400, detail="At least one field is required.")

    try:
        pdf_bytes = base64.b64decode("".join(payload.pdf_base64.split()), validate=True)
    except ValueError as exc:
        logger.warning("Invalid base64 payload provided: %s", exc)
        raise HTTPException(
            status_code=400,
            detail="'pdfBase64' is not a valid base64 encoded string.",
        ) from exc

    fields = [FieldValue(item.field_name, item.value) for item in payload.fields]
    try:
        result = fill_form(pdf_bytes, fields, text_overlay=payload.render_text_overlay)
    except FormStructureError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Unable to process PDF.")
        raise HTTPException(status_code=500, detail="Unable to process PDF.") from exc

    return {"documentBase64": base64.b64encode(result.pdf_bytes).decode("ascii")}
