"""FastAPI application exposing the ClassReview bulletin pipeline."""

import logging
import os
import traceback
from typing import Any, Dict, List

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from classreview import config
from classreview.appreciation import build_appreciation_request, build_class_appreciation_request
from classreview.classification import Classifier, class_statistics
from classreview.errors import (
    ExtractionError,
    MappingError,
    ReportError,
    TemplateNotFound,
    UnsupportedSourceType,
)
from classreview.mapping import BulletinMapper, suggest_mapping
from classreview.models import (
    AppreciationRequest,
    AppreciationRequestBody,
    ClassAppreciationRequest,
    ClassAppreciationRequestBody,
    ExtractResponse,
    GradeTable,
    MappingTemplate,
    MapResponse,
    ReportResult,
    TemplateDraft,
)
from classreview.parsers import ExtractionOptions, detect_source_type, extract_table
from classreview.reports import html_or_raise, receive_report
from classreview.templates import JsonFileBackend, TemplateStore

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ClassReview Bulletin Pipeline", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s", request.url.path)
    error_detail = str(exc)
    if config.is_debug():
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


# Last usable report delivered by the webhook
report_cache: Dict[str, ReportResult] = {}


def get_template_store() -> TemplateStore:
    return TemplateStore(JsonFileBackend(config.get_template_store_dir()))


def get_classifier() -> Classifier:
    return Classifier()


def get_extraction_options() -> ExtractionOptions:
    return ExtractionOptions(
        structure_threshold=config.get_pdf_structure_threshold(),
        ignore_patterns=config.get_pdf_ignore_patterns(),
    )


async def _read_table(file: UploadFile, options: ExtractionOptions) -> GradeTable:
    """Read an upload, check its size and type, and extract its grade table."""
    file_bytes = await file.read()
    max_size = config.get_max_upload_size()
    if len(file_bytes) > max_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {max_size // (1024 * 1024)}MB"
        )

    try:
        source_type = detect_source_type(file.filename)
    except UnsupportedSourceType as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return await run_in_threadpool(extract_table, file_bytes, source_type, options)
    except ExtractionError as e:
        logger.warning("Extraction failed for %s: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/", response_class=HTMLResponse)
async def root():
    return HTMLResponse(content="<h1>ClassReview</h1><p>Bulletin pipeline API. See /docs.</p>")


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/extract", response_model=ExtractResponse)
async def extract_endpoint(
    file: UploadFile = File(...),
    options: ExtractionOptions = Depends(get_extraction_options)
):
    """Extract the grade table of a bulletin and suggest a column mapping."""
    table = await _read_table(file, options)
    return ExtractResponse(
        success=True,
        message=f"Extracted {len(table.data_rows)} rows and {table.column_count} columns",
        source_type=table.source_type,
        table=table.rows,
        shape_issues=table.shape_issues,
        suggested_mapping=suggest_mapping(table.header),
    )


@app.get("/templates", response_model=List[MappingTemplate])
async def list_templates(store: TemplateStore = Depends(get_template_store)):
    return store.list_all()


@app.get("/templates/{template_id}", response_model=MappingTemplate)
async def get_template(template_id: str, store: TemplateStore = Depends(get_template_store)):
    template = store.get_by_id(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template '{template_id}' not found")
    return template


@app.post("/templates", response_model=MappingTemplate)
async def save_template(draft: TemplateDraft, store: TemplateStore = Depends(get_template_store)):
    """Create a template, or replace the one with the same id."""
    return store.save(draft)


@app.delete("/templates/{template_id}")
async def delete_template(template_id: str, store: TemplateStore = Depends(get_template_store)):
    if not store.delete(template_id):
        raise HTTPException(status_code=404, detail=f"Template '{template_id}' not found")
    return {"success": True, "message": f"Template '{template_id}' deleted"}


@app.post("/map", response_model=MapResponse)
async def map_endpoint(
    file: UploadFile = File(...),
    template_id: str = Form(...),
    store: TemplateStore = Depends(get_template_store),
    classifier: Classifier = Depends(get_classifier),
    options: ExtractionOptions = Depends(get_extraction_options)
):
    """Extract a bulletin, map it with a stored template and classify every student."""
    table = await _read_table(file, options)

    try:
        result = BulletinMapper(store).map(table, template_id)
    except TemplateNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MappingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    classified = classifier.classify_all(result.records)
    statistics = class_statistics(result.records, classifier)

    logger.info(
        "Mapped %d students (%d rejected rows, %d warnings)",
        len(classified), len(result.errors), len(result.warnings)
    )
    return MapResponse(
        success=True,
        message=f"Successfully mapped {len(classified)} records",
        template_id=template_id,
        results=classified,
        errors=result.errors,
        warnings=result.warnings,
        statistics=statistics,
    )


@app.post("/appreciation-request", response_model=AppreciationRequest)
async def appreciation_request_endpoint(body: AppreciationRequestBody):
    """Build the outbound generation request for one student."""
    max_chars = body.max_chars if body.max_chars is not None else config.get_appreciation_max_chars()
    return build_appreciation_request(
        body.record,
        body.tone,
        body.length,
        max_chars,
        model_id=body.model,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
    )


@app.post("/class-appreciation-request", response_model=ClassAppreciationRequest)
async def class_appreciation_request_endpoint(body: ClassAppreciationRequestBody):
    """Build the outbound generation request for a class from its statistics."""
    max_chars = body.max_chars if body.max_chars is not None else config.get_appreciation_max_chars()
    return build_class_appreciation_request(
        body.statistics,
        body.tone,
        body.length,
        max_chars,
        model_id=body.model,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
    )


@app.post("/webhook/report", response_model=ReportResult)
async def report_webhook(payload: Any = Body(None)):
    """Receive the report generated for a submission, whatever the JSON body."""
    result = receive_report(payload)
    if result.success:
        report_cache['latest'] = result
    return result


@app.get("/report/latest", response_class=HTMLResponse)
async def latest_report():
    """Serve the last report delivered by the webhook."""
    try:
        html = html_or_raise(report_cache.get('latest') or ReportResult(success=False))
    except ReportError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return HTMLResponse(content=html)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
