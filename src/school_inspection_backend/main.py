from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .blob_service import BlobUploader
from .configuration import load_settings
from .database import Database, InspectionStore, UserRegistry
from .models import FormMetadata, build_form_metadata
from .submission_handler import SubmissionHandler, TimeoutGuard

logger = logging.getLogger(__name__)

# Missing DATABASE_URL or S3_BUCKET_NAME fails here, before the app can serve.
settings = load_settings()

database = Database(settings.database.url, echo=settings.database.echo)
user_registry = UserRegistry(database)
inspection_store = InspectionStore(database)
blob_uploader = BlobUploader(settings.blob)

submission_handler = SubmissionHandler(
    authorization_store=user_registry,
    document_store=inspection_store,
    uploader=blob_uploader,
    guard=TimeoutGuard(settings.request_timeout_seconds),
    max_form_files=settings.max_form_files,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await database.dispose()


app = FastAPI(title="School Inspection API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_submission_handler() -> SubmissionHandler:
    return submission_handler


def get_inspection_store() -> InspectionStore:
    return inspection_store


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/school/inspection/fields", response_model=FormMetadata)
def get_form_fields() -> FormMetadata:
    return build_form_metadata(settings.blob.max_file_bytes)


@app.post("/api/school/inspection")
async def submit_inspection(
    request: Request,
    handler: SubmissionHandler = Depends(get_submission_handler),
) -> JSONResponse:
    result = await handler.handle(request)
    return JSONResponse(status_code=result.status_code, content=result.to_response())


@app.get("/api/school/inspection/{inspection_id}")
async def get_inspection(
    inspection_id: str,
    store: InspectionStore = Depends(get_inspection_store),
) -> JSONResponse:
    try:
        record = await store.get(inspection_id)
    except Exception:
        logger.exception(f"Failed to load inspection {inspection_id}")
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error. Please try again."})
    if record is None:
        return JSONResponse(status_code=404, content={"success": False, "error": "Inspection not found"})
    return JSONResponse(status_code=200, content={"success": True, "data": record.model_dump(mode="json", by_alias=True)})
