"""
Local HTTP proxy in front of the model endpoint.

Browsers cannot call the model endpoint directly, so uploads go through
``POST /api/parse-fapiao`` and the pipeline runs server-side.
"""
import logging
from typing import List, Optional

from fastapi import FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .client import ModelClient
from .config import Settings
from .core.exceptions import FapiaoParserError, InputError
from .core.models import PipelineResult, SourceFile
from .core.spreadsheet import SpreadsheetReader
from .pipeline import FapiaoPipeline

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def parse_flag(value: Optional[str], default: bool = True) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in TRUTHY


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


async def to_source_file(upload: UploadFile, max_size_mb: float) -> SourceFile:
    content = await upload.read()
    source = SourceFile(name=upload.filename or "upload", content=content, mime_type=upload.content_type)
    if source.size_mb > max_size_mb:
        raise InputError(
            f"file size ({source.size_mb:.1f}MB) exceeds maximum allowed size ({max_size_mb}MB)",
            source.name,
        )
    return source


def result_payload(result: PipelineResult) -> dict:
    dumped = result.model_dump(by_alias=True)
    return {
        "parsedFapiao": dumped["records"],
        "summary": dumped["summary"],
        "csv": dumped["csv"],
        "recoveryMisses": dumped["recoveryMisses"],
    }


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[ModelClient] = None,
    spreadsheet_reader: Optional[SpreadsheetReader] = None,
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        settings: Defaults to ``Settings.from_env()``
        client: Model client shared by all requests; a fresh one per request when None
        spreadsheet_reader: Template reader passed to the pipeline
    """
    settings = settings or Settings.from_env()
    app = FastAPI(title="Fapiao Parser Proxy")

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {exc.errors()}"})

    @app.exception_handler(InputError)
    async def input_error(request: Request, exc: InputError):
        logger.warning(f"[SERVER] Rejected request: {exc.message}")
        return JSONResponse(status_code=400, content={"error": exc.message})

    @app.exception_handler(FapiaoParserError)
    async def pipeline_error(request: Request, exc: FapiaoParserError):
        logger.error(f"[SERVER] Request failed: {exc.message}")
        return JSONResponse(status_code=500, content={"error": exc.message})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/api/parse-fapiao")
    async def parse_fapiao(
        token: Optional[str] = Form(None),
        summary: Optional[str] = Form(None),
        template: Optional[UploadFile] = File(None),
        fapiao: Optional[List[UploadFile]] = File(None),
        image: Optional[List[UploadFile]] = File(None),
        file: Optional[List[UploadFile]] = File(None),
        authorization: Optional[str] = Header(None),
    ):
        uploads = [*(fapiao or []), *(image or []), *(file or [])]
        if not uploads:
            raise InputError("no fapiao file uploaded (use the 'fapiao', 'image' or 'file' field)")

        api_token = (token or "").strip() or bearer_token(authorization) or settings.api_token
        if not api_token:
            raise InputError("missing API token")

        sources = [await to_source_file(upload, settings.max_file_size_mb) for upload in uploads]
        template_source = None
        if template is not None and template.filename:
            template_source = await to_source_file(template, settings.max_file_size_mb)

        want_summary = parse_flag(summary)
        logger.info(f"[SERVER] Parsing {len(sources)} file(s), summary={want_summary}")

        if client is not None:
            pipeline = FapiaoPipeline(client, settings, spreadsheet_reader)
            result = await pipeline.run(sources, template_source, want_summary=want_summary, token=api_token)
        else:
            async with ModelClient(settings) as request_client:
                pipeline = FapiaoPipeline(request_client, settings, spreadsheet_reader)
                result = await pipeline.run(sources, template_source, want_summary=want_summary, token=api_token)

        return result_payload(result)

    return app
