import io
import logging
import re
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Dict, Optional

import boto3
import uvicorn
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse

from dicom_gateway import __version__
from dicom_gateway.config import Settings, get_settings
from dicom_gateway.dicomweb import router as dicomweb_router
from dicom_gateway.errors import MalformedInputError, NotFoundError, SinkUnavailableError
from dicom_gateway.extractor import display_info_from_dataset, extract_from_dataset, read_dataset
from dicom_gateway.imaging import HealthImagingService
from dicom_gateway.logging_config import configure_logging
from dicom_gateway.models import (
    DicomAttributeResponse,
    ImportJobSummary,
    UploadResponse,
    ViewerMetadata,
)
from dicom_gateway.storage import DICOM_CONTENT_TYPE, LocalObjectStore, S3ObjectStore
from dicom_gateway.utils import (
    convert_dicom_to_png,
    generate_upload_name,
    is_valid_dicom_bytes,
    lookup_attribute,
    preview_headers,
)

logger = logging.getLogger(__name__)

_RANGE_PATTERN = re.compile(r"bytes=(\d*)-(\d*)$")


def build_store(settings: Settings):
    if settings.is_production:
        return S3ObjectStore(
            boto3.client("s3", region_name=settings.aws_region), settings.bucket_name
        )
    return LocalObjectStore(settings.upload_dir, base_url=settings.base_url)


def create_app(
    settings: Optional[Settings] = None,
    store=None,
    imaging: Optional[HealthImagingService] = None,
) -> FastAPI:
    settings = settings or get_settings()

    if settings.is_production:
        missing = settings.missing("aws_region", "bucket_name")
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    store = store or build_store(settings)

    @lru_cache
    def imaging_factory() -> HealthImagingService:
        if imaging is not None:
            return imaging
        settings.require("datastore_id")
        return HealthImagingService(
            boto3.client("medical-imaging", region_name=settings.aws_region),
            datastore_id=settings.datastore_id,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        store.verify_access()
        logger.info("Environment: %s", settings.environment)
        yield

    app = FastAPI(
        title="DICOM Gateway API",
        description="Uploads DICOM files, extracts their metadata and proxies study retrieval.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.imaging_factory = imaging_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Length", "Content-Type", "Accept-Ranges", "Content-Range"],
    )

    app.include_router(dicomweb_router)

    def load_object(filename: str) -> bytes:
        try:
            return store.get_bytes(settings.object_key(filename))
        except NotFoundError:
            raise HTTPException(status_code=404, detail=f"File {filename} not found")
        except SinkUnavailableError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.get("/api/health")
    async def health() -> Dict[str, Optional[str]]:
        return {
            "status": "healthy",
            "environment": settings.environment,
            "s3Status": "enabled" if settings.is_production else "disabled",
            "s3Bucket": settings.bucket_name if settings.is_production else None,
        }

    @app.post("/api/upload", response_model=UploadResponse, response_model_by_alias=True)
    async def upload_dicom(file: Optional[UploadFile] = File(None, description="DICOM file to upload")):
        """Stores one DICOM file under a generated name and returns a URL the viewer can load"""
        if file is None:
            raise HTTPException(status_code=400, detail="No file uploaded")

        file_content = await file.read(settings.max_upload_bytes + 1)
        if len(file_content) > settings.max_upload_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"File exceeds the {settings.max_upload_bytes} byte upload limit",
            )

        # Verify that the uploaded file is a valid DICOM file
        if not is_valid_dicom_bytes(file_content):
            raise HTTPException(
                status_code=400, detail="The uploaded file is not a valid DICOM file"
            )

        filename = generate_upload_name(file.filename)
        key = settings.object_key(filename)
        try:
            store.put_bytes(key, file_content, content_type=DICOM_CONTENT_TYPE)
            file_url = store.url_for(key, expires_in=settings.signed_url_expiry)
        except SinkUnavailableError as e:
            logger.error("Upload error: %s", e)
            raise HTTPException(status_code=502, detail="Failed to upload file")

        logger.info("File uploaded: %s (storage mode %s)", filename, store.storage_mode)
        return UploadResponse(file_key=filename, file_url=file_url, storage_mode=store.storage_mode)

    @app.get("/uploads/{filename}")
    async def serve_upload(filename: str, request: Request):
        """Serves a locally stored upload, honouring single byte-range requests"""
        if settings.is_production:
            raise HTTPException(
                status_code=404, detail="Not found in production - use S3 signed URLs"
            )

        data = load_object(filename)
        file_size = len(data)
        headers = {"Accept-Ranges": "bytes"}

        range_header = request.headers.get("range")
        if not range_header:
            return Response(content=data, media_type=DICOM_CONTENT_TYPE, headers=headers)

        match = _RANGE_PATTERN.match(range_header.strip())
        if not match or not (match.group(1) or match.group(2)):
            raise HTTPException(status_code=416, detail="Invalid range")

        if match.group(1):
            start = int(match.group(1))
            end = int(match.group(2)) if match.group(2) else file_size - 1
        else:
            # Suffix range: the last N bytes
            start = max(file_size - int(match.group(2)), 0)
            end = file_size - 1
        end = min(end, file_size - 1)

        if start > end:
            raise HTTPException(
                status_code=416,
                detail="Requested range not satisfiable",
                headers={"Content-Range": f"bytes */{file_size}"},
            )

        headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"
        return Response(
            content=data[start:end + 1],
            status_code=206,
            media_type=DICOM_CONTENT_TYPE,
            headers=headers,
        )

    @app.get(
        "/api/files/{filename}/metadata",
        response_model=ViewerMetadata,
        response_model_by_alias=True,
    )
    async def file_metadata(filename: str):
        """Extracts the metadata record and viewer display values of a stored file"""
        data = load_object(filename)
        try:
            dicom_dataset = read_dataset(data, filename)
        except MalformedInputError as e:
            raise HTTPException(status_code=422, detail=str(e))

        return ViewerMetadata(
            metadata=extract_from_dataset(dicom_dataset, filename),
            display=display_info_from_dataset(dicom_dataset),
        )

    @app.get("/api/files/{filename}/tags/{tag}", response_model=DicomAttributeResponse)
    async def file_tag(filename: str, tag: str):
        """Looks up a single tag given in format 'XXXX,XXXX' (e.g., '0010,0010' for Patient Name)"""
        data = load_object(filename)
        try:
            dicom_dataset = read_dataset(data, filename)
            attribute = lookup_attribute(dicom_dataset, tag)
        except MalformedInputError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid tag format: {str(e)}")

        if attribute is None:
            raise HTTPException(status_code=404, detail=f"Tag {tag} not found in DICOM file")
        return attribute

    @app.get("/api/files/{filename}/preview")
    async def file_preview(filename: str):
        """Renders the first frame of a stored file as PNG using its window/level"""
        data = load_object(filename)
        try:
            dicom_dataset = read_dataset(data, filename, stop_before_pixels=False)
        except MalformedInputError as e:
            raise HTTPException(status_code=422, detail=f"Not a readable DICOM file: {str(e)}")

        if "PixelData" not in dicom_dataset:
            raise HTTPException(status_code=422, detail="DICOM file does not contain image data")

        display = display_info_from_dataset(dicom_dataset)
        try:
            png_data = convert_dicom_to_png(
                dicom_dataset, display.window_center, display.window_width
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=f"Error converting to PNG: {str(e)}")

        return StreamingResponse(
            io.BytesIO(png_data),
            media_type="image/png",
            headers=preview_headers(filename, dicom_dataset),
        )

    @app.get(
        "/api/imports/{job_id}",
        response_model=ImportJobSummary,
        response_model_by_alias=True,
    )
    def import_status(job_id: str):
        """Reports the status of a managed import job"""
        try:
            service = imaging_factory()
        except ValueError as e:
            raise HTTPException(status_code=503, detail=str(e))
        try:
            return service.get_import_job(job_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail=f"Import job {job_id} not found")
        except SinkUnavailableError as e:
            raise HTTPException(status_code=502, detail=str(e))

    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
