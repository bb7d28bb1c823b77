"""
Access to the managed imaging datastore (AWS HealthImaging).

Imports are fire-and-forget: :meth:`HealthImagingService.start_import` returns
as soon as the job is accepted and :meth:`get_import_job` is the only way to
learn how it ended.
"""

import hashlib
import logging
import time
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from dicom_gateway.errors import NotFoundError, SinkUnavailableError
from dicom_gateway.models import ImportJobRequest, ImportJobSummary, StorageEvent

logger = logging.getLogger(__name__)

SINK_NAME = "imaging service"


def _is_missing(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ResourceNotFoundException"


def client_token(event: StorageEvent) -> str:
    """Idempotency token so a redelivered notification does not start a second import."""
    seed = f"{event.bucket}/{event.key}/{event.etag or ''}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def build_import_request(
    event: StorageEvent, datastore_id: str, role_arn: str
) -> ImportJobRequest:
    return ImportJobRequest(
        datastore_id=datastore_id,
        source_uri=event.uri,
        job_name=f"import-{int(time.time() * 1000)}",
        access_role_arn=role_arn,
    )


class HealthImagingService:
    """Thin wrapper over an injected boto3 ``medical-imaging`` client."""

    def __init__(self, client, datastore_id: str, role_arn: Optional[str] = None,
                 output_uri: Optional[str] = None):
        self.client = client
        self.datastore_id = datastore_id
        self.role_arn = role_arn
        self.output_uri = output_uri

    def _call(self, operation: str, **params) -> Dict[str, Any]:
        try:
            response = getattr(self.client, operation)(**params)
        except ClientError as exc:
            if _is_missing(exc):
                raise NotFoundError(params.get("imageSetId") or params.get("jobId") or "",
                                    self.datastore_id) from exc
            raise SinkUnavailableError(SINK_NAME, str(exc)) from exc
        except BotoCoreError as exc:
            raise SinkUnavailableError(SINK_NAME, str(exc)) from exc
        response.pop("ResponseMetadata", None)
        return response

    def start_import(self, event: StorageEvent) -> ImportJobSummary:
        if not self.role_arn or not self.output_uri:
            raise ValueError("Imports need an access role ARN and an output URI")

        request = build_import_request(event, self.datastore_id, self.role_arn)
        response = self._call(
            "start_dicom_import_job",
            jobName=request.job_name,
            datastoreId=request.datastore_id,
            dataAccessRoleArn=request.access_role_arn,
            clientToken=client_token(event),
            inputS3Uri=request.source_uri,
            outputS3Uri=self.output_uri,
        )
        summary = ImportJobSummary(
            job_id=response["jobId"],
            job_status=response.get("jobStatus", "SUBMITTED"),
            datastore_id=response.get("datastoreId", self.datastore_id),
        )
        logger.info(
            "Submitted HealthImaging import %s for %s (status %s)",
            summary.job_id, request.source_uri, summary.job_status,
        )
        return summary

    def get_import_job(self, job_id: str) -> ImportJobSummary:
        response = self._call(
            "get_dicom_import_job", datastoreId=self.datastore_id, jobId=job_id
        )
        properties = response.get("jobProperties", {})
        summary = ImportJobSummary(
            job_id=properties.get("jobId", job_id),
            job_status=properties.get("jobStatus", "UNKNOWN"),
            datastore_id=properties.get("datastoreId", self.datastore_id),
            message=properties.get("message"),
        )
        if summary.job_status == "FAILED":
            logger.error("HealthImaging import %s failed: %s", job_id, summary.message)
        return summary

    def search_image_sets(self, filters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Collect every image set summary matching *filters*, following pagination."""
        params: Dict[str, Any] = {"datastoreId": self.datastore_id}
        if filters:
            params["searchCriteria"] = {"filters": filters}

        summaries: List[Dict[str, Any]] = []
        while True:
            response = self._call("search_image_sets", **params)
            summaries.extend(response.get("imageSetsMetadataSummaries", []))
            next_token = response.get("nextToken")
            if not next_token:
                return summaries
            params["nextToken"] = next_token

    def get_image_set(self, image_set_id: str) -> Dict[str, Any]:
        return self._call(
            "get_image_set", datastoreId=self.datastore_id, imageSetId=image_set_id
        )

    def get_image_frame(self, image_set_id: str, image_frame_id: str) -> bytes:
        response = self._call(
            "get_image_frame",
            datastoreId=self.datastore_id,
            imageSetId=image_set_id,
            imageFrameInformation={"imageFrameId": image_frame_id},
        )
        return response["imageFrameBlob"].read()
