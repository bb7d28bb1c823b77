"""Tests for dicom_gateway/sinks.py and dicom_gateway/storage.py."""

import json

import pytest

from dicom_gateway.errors import NotFoundError, SinkUnavailableError
from dicom_gateway.models import DicomMetadataRecord, StorageEvent
from dicom_gateway.sinks import IngestedObject, MetadataQueue, MetadataTable
from dicom_gateway.storage import LocalObjectStore, S3ObjectStore
from tests.helpers import (
    FakeRdsDataClient,
    FakeS3Client,
    FakeSqsClient,
    client_error,
    connection_error,
)


def _item(sha="abc123", **fields):
    record = DicomMetadataRecord(source_key="uploads/scan.dcm", **fields)
    event = StorageEvent(bucket="dicom-bucket", key="uploads/scan.dcm")
    return IngestedObject(event=event, record=record, content_sha256=sha)


class TestMetadataTable:
    def _table(self, client):
        return MetadataTable(
            client,
            resource_arn="arn:aws:rds:us-east-1:123:cluster:dicom",
            secret_arn="arn:aws:secretsmanager:us-east-1:123:secret:dicom",
            database="imaging",
        )

    def test_insert_parameters(self):
        client = FakeRdsDataClient()
        self._table(client).emit(_item(patient_id="ABC123", modality="CT"))

        request = client.statements[0]
        assert request["database"] == "imaging"
        assert "ON CONFLICT (content_sha256) DO NOTHING" in request["sql"]

        values = {p["name"]: p["value"] for p in request["parameters"]}
        assert values["patient_id"] == {"stringValue": "ABC123"}
        assert values["modality"] == {"stringValue": "CT"}
        assert values["series_instance_uid"] == {"isNull": True}
        assert values["file_name"] == {"stringValue": "uploads/scan.dcm"}
        assert values["content_sha256"] == {"stringValue": "abc123"}

    def test_redelivery_does_not_duplicate(self):
        client = FakeRdsDataClient()
        table = self._table(client)

        table.emit(_item(patient_id="ABC123"))
        table.emit(_item(patient_id="ABC123"))

        assert len(client.statements) == 2
        assert len(client.rows) == 1

    def test_schema_is_keyed_on_content_hash(self):
        client = FakeRdsDataClient()
        table = self._table(client)
        table.ensure_schema()

        sql = client.statements[0]["sql"]
        assert sql.startswith("CREATE TABLE IF NOT EXISTS dicom_metadata")
        assert "PRIMARY KEY (content_sha256)" in sql
        assert "file_name TEXT NOT NULL" in sql

    def test_unreachable_store(self):
        client = FakeRdsDataClient()
        client.fail_with = client_error("ServiceUnavailableError", "ExecuteStatement")

        with pytest.raises(SinkUnavailableError):
            self._table(client).emit(_item())


class TestMetadataQueue:
    def test_message_shape(self):
        client = FakeSqsClient()
        MetadataQueue(client, "https://sqs.example/queue").emit(_item(modality="CT"))

        message = client.messages[0]
        assert message["QueueUrl"] == "https://sqs.example/queue"
        body = json.loads(message["MessageBody"])
        assert body["bucket"] == "dicom-bucket"
        assert body["key"] == "uploads/scan.dcm"
        assert body["metadata"]["modality"] == "CT"
        assert body["metadata"]["sourceKey"] == "uploads/scan.dcm"

    def test_unreachable_queue(self):
        client = FakeSqsClient()
        client.fail_with = connection_error()

        with pytest.raises(SinkUnavailableError):
            MetadataQueue(client, "https://sqs.example/queue").emit(_item())


class TestS3ObjectStore:
    def test_get_bytes(self):
        client = FakeS3Client({("dicom-bucket", "uploads/a.dcm"): b"data"})
        store = S3ObjectStore(client, "dicom-bucket")

        assert store.get_bytes("uploads/a.dcm") == b"data"

    def test_missing_object(self):
        store = S3ObjectStore(FakeS3Client(), "dicom-bucket")

        with pytest.raises(NotFoundError):
            store.get_bytes("uploads/missing.dcm")

    def test_access_denied_is_unavailable(self):
        client = FakeS3Client()
        client.fail_with = client_error("AccessDenied", "GetObject")

        with pytest.raises(SinkUnavailableError):
            S3ObjectStore(client, "dicom-bucket").get_bytes("uploads/a.dcm")

    def test_put_and_presign(self):
        client = FakeS3Client()
        store = S3ObjectStore(client, "dicom-bucket")

        store.put_bytes("uploads/a.dcm", b"data")
        url = store.url_for("uploads/a.dcm", expires_in=3600)

        assert client.put_calls[0]["ContentType"] == "application/dicom"
        assert url.endswith("uploads/a.dcm?X-Amz-Expires=3600")

    def test_verify_access_configures_cors(self):
        client = FakeS3Client()
        S3ObjectStore(client, "dicom-bucket").verify_access()

        rule = client.cors["CORSRules"][0]
        assert "GET" in rule["AllowedMethods"]


class TestLocalObjectStore:
    def test_round_trip(self, tmp_path):
        store = LocalObjectStore(tmp_path, base_url="http://localhost:3001")
        store.put_bytes("1-scan.dcm", b"data")

        assert store.get_bytes("1-scan.dcm") == b"data"
        assert store.url_for("1-scan.dcm") == "http://localhost:3001/uploads/1-scan.dcm"

    def test_missing_and_escaping_keys(self, tmp_path):
        store = LocalObjectStore(tmp_path)

        with pytest.raises(NotFoundError):
            store.get_bytes("nope.dcm")
        with pytest.raises(NotFoundError):
            store.get_bytes("../outside.dcm")
