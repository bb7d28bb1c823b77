"""
Destinations for extracted metadata records.

Each sink receives an :class:`IngestedObject` and either stores it completely
or raises :class:`SinkUnavailableError`; the host platform owns retries.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List

from botocore.exceptions import BotoCoreError, ClientError

from dicom_gateway.errors import SinkUnavailableError
from dicom_gateway.extractor import RECORD_FIELDS
from dicom_gateway.models import DicomMetadataRecord, QueueMessage, StorageEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestedObject:
    """An extracted record together with where it came from."""

    event: StorageEvent
    record: DicomMetadataRecord
    content_sha256: str


# Column order of the relational row
TABLE_COLUMNS = [
    ("content_sha256", None),
    ("patient_id", "patient_id"),
    ("patient_name", "patient_name"),
    ("study_instance_uid", "study_instance_uid"),
    ("series_instance_uid", "series_instance_uid"),
    ("sop_instance_uid", "sop_instance_uid"),
    ("modality", "modality"),
    ("study_date", "study_date"),
    ("study_description", "study_description"),
    ("image_type", "image_type"),
    ("file_name", "file_name"),
]


class MetadataTable:
    """Writes one row per record through the RDS Data API."""

    name = "relational store"
    fields: FrozenSet[str] = RECORD_FIELDS

    def __init__(self, client, resource_arn: str, secret_arn: str,
                 database: str = None, table: str = "dicom_metadata"):
        self.client = client
        self.resource_arn = resource_arn
        self.secret_arn = secret_arn
        self.database = database
        self.table = table

    @property
    def schema_sql(self) -> str:
        columns = ",\n    ".join(
            f"{column} TEXT NOT NULL" if column in ("content_sha256", "file_name")
            else f"{column} TEXT"
            for column, _ in TABLE_COLUMNS
        )
        return (
            f"CREATE TABLE IF NOT EXISTS {self.table} (\n"
            f"    {columns},\n"
            f"    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,\n"
            f"    PRIMARY KEY (content_sha256)\n"
            f")"
        )

    @property
    def insert_sql(self) -> str:
        names = [column for column, _ in TABLE_COLUMNS]
        return (
            f"INSERT INTO {self.table} ({', '.join(names)}) "
            f"VALUES ({', '.join(':' + name for name in names)}) "
            f"ON CONFLICT (content_sha256) DO NOTHING"
        )

    def parameters(self, item: IngestedObject) -> List[Dict[str, Any]]:
        params = []
        for column, attribute in TABLE_COLUMNS:
            if attribute is None:
                value = item.content_sha256
            else:
                value = getattr(item.record, attribute)
            params.append(
                {"name": column, "value": {"stringValue": value} if value else {"isNull": True}}
            )
        return params

    def _execute(self, sql: str, parameters=None) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "resourceArn": self.resource_arn,
            "secretArn": self.secret_arn,
            "sql": sql,
        }
        if self.database:
            request["database"] = self.database
        if parameters:
            request["parameters"] = parameters
        try:
            return self.client.execute_statement(**request)
        except (ClientError, BotoCoreError) as exc:
            raise SinkUnavailableError(self.name, str(exc)) from exc

    def ensure_schema(self) -> None:
        self._execute(self.schema_sql)

    def emit(self, item: IngestedObject) -> None:
        response = self._execute(self.insert_sql, self.parameters(item))
        if response.get("numberOfRecordsUpdated", 1) == 0:
            logger.info("Metadata for %s already stored (sha256 %s)",
                        item.record.source_key, item.content_sha256)
        else:
            logger.info("Stored metadata for %s", item.record.source_key)


class MetadataQueue:
    """Publishes ``{bucket, key, metadata}`` messages to an SQS queue."""

    name = "queue"
    fields: FrozenSet[str] = RECORD_FIELDS

    def __init__(self, client, queue_url: str):
        self.client = client
        self.queue_url = queue_url

    def emit(self, item: IngestedObject) -> None:
        message = QueueMessage(
            bucket=item.event.bucket, key=item.event.key, metadata=item.record
        )
        try:
            response = self.client.send_message(
                QueueUrl=self.queue_url, MessageBody=message.to_json()
            )
        except (ClientError, BotoCoreError) as exc:
            raise SinkUnavailableError(self.name, str(exc)) from exc
        logger.info("Queued metadata for %s (message %s)",
                    item.record.source_key, response.get("MessageId"))
