"""
Storage-event trigger adapters.

Three Lambda entrypoints share the same extractor:

* ``database_handler`` writes one row per uploaded object to the relational store,
* ``queue_handler`` publishes the record for asynchronous consumers,
* ``import_handler`` hands the raw object to the managed imaging import service.

Extraction and import are independent consumers of the same object; neither
waits for the other. Every failure is logged and re-raised so the host
platform's retry and dead-letter policy applies.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Sequence

import boto3

from dicom_gateway.config import Settings, get_settings
from dicom_gateway.errors import DicomGatewayError
from dicom_gateway.events import parse_storage_events
from dicom_gateway.extractor import RECORD_FIELDS, extract
from dicom_gateway.imaging import HealthImagingService
from dicom_gateway.logging_config import configure_logging
from dicom_gateway.models import ImportJobSummary, StorageEvent
from dicom_gateway.sinks import IngestedObject, MetadataQueue, MetadataTable
from dicom_gateway.storage import S3ObjectStore
from dicom_gateway.utils import calculate_file_hash

logger = logging.getLogger(__name__)


def _response(body: Dict[str, Any]) -> Dict[str, Any]:
    return {"statusCode": 200, "body": json.dumps(body)}


class IngestionHandler:
    """Fetch each notified object, extract its record once and emit it to every sink."""

    def __init__(self, store, sinks: Sequence[Any], fields: Optional[Iterable[str]] = None):
        self.store = store
        self.sinks = list(sinks)
        if fields is None:
            wanted = set()
            for sink in self.sinks:
                wanted |= set(getattr(sink, "fields", RECORD_FIELDS))
            fields = wanted
        self.fields = frozenset(fields)

    def process(self, event: StorageEvent) -> IngestedObject:
        raw_bytes = self.store.get_bytes(event.key, bucket=event.bucket)
        record = extract(raw_bytes, event.key, fields=self.fields)
        item = IngestedObject(
            event=event, record=record, content_sha256=calculate_file_hash(raw_bytes)
        )
        for sink in self.sinks:
            sink.emit(item)
        return item

    def __call__(self, event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
        processed: List[Dict[str, Any]] = []
        for storage_event in parse_storage_events(event):
            try:
                item = self.process(storage_event)
            except DicomGatewayError:
                logger.exception("Error processing DICOM file %s", storage_event.uri)
                raise
            processed.append(item.record.to_message())

        return _response(
            {"message": "DICOM metadata processed successfully", "metadata": processed}
        )


class ImportHandler:
    """Submit every notified object under *prefix* to the managed import service."""

    def __init__(self, imaging: HealthImagingService, prefix: str = "uploads/"):
        self.imaging = imaging
        self.prefix = prefix

    def process(self, event: StorageEvent) -> Optional[ImportJobSummary]:
        if self.prefix and not event.key.startswith(self.prefix):
            logger.info("Skipping file not in %s directory: %s", self.prefix, event.key)
            return None
        return self.imaging.start_import(event)

    def __call__(self, event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
        jobs = []
        for storage_event in parse_storage_events(event):
            try:
                summary = self.process(storage_event)
            except DicomGatewayError:
                logger.exception("Error importing DICOM file %s", storage_event.uri)
                raise
            if summary is not None:
                jobs.append(summary.model_dump(by_alias=True))

        return _response({"message": "Successfully processed S3 events", "jobs": jobs})


def _client(service: str, settings: Settings):
    return boto3.client(service, region_name=settings.aws_region)


def build_database_handler(settings: Settings) -> IngestionHandler:
    settings.require("aurora_cluster_arn", "aurora_secret_arn")
    table = MetadataTable(
        _client("rds-data", settings),
        resource_arn=settings.aurora_cluster_arn,
        secret_arn=settings.aurora_secret_arn,
        database=settings.aurora_database,
        table=settings.metadata_table,
    )
    table.ensure_schema()
    return IngestionHandler(S3ObjectStore(_client("s3", settings)), [table])


def build_queue_handler(settings: Settings) -> IngestionHandler:
    settings.require("queue_url")
    queue = MetadataQueue(_client("sqs", settings), settings.queue_url)
    return IngestionHandler(S3ObjectStore(_client("s3", settings)), [queue])


def build_import_handler(settings: Settings) -> ImportHandler:
    settings.require("datastore_id", "import_role_arn")
    imaging = HealthImagingService(
        _client("medical-imaging", settings),
        datastore_id=settings.datastore_id,
        role_arn=settings.import_role_arn,
        output_uri=settings.output_uri(),
    )
    return ImportHandler(imaging, prefix=settings.upload_prefix)


# Built once per execution environment and reused across invocations
@lru_cache
def _database_handler() -> IngestionHandler:
    configure_logging()
    return build_database_handler(get_settings())


@lru_cache
def _queue_handler() -> IngestionHandler:
    configure_logging()
    return build_queue_handler(get_settings())


@lru_cache
def _import_handler() -> ImportHandler:
    configure_logging()
    return build_import_handler(get_settings())


def database_handler(event, context):
    return _database_handler()(event, context)


def queue_handler(event, context):
    return _queue_handler()(event, context)


def import_handler(event, context):
    return _import_handler()(event, context)
