"""
Data models for the DICOM gateway.

This module defines Pydantic models for the metadata record produced by the
extractor, the messages handed to downstream sinks and the request/response
bodies of the HTTP API. Records serialize with camelCase aliases so queue
consumers and the viewer see the same field names.
"""

# Third-party imports
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional


class DicomMetadataRecord(BaseModel):
    """
    Canonical administrative metadata of a single uploaded DICOM object.

    Every optional field holds the trimmed string value of its source tag, or
    an empty string when the tag is absent from the file.

    Attributes:
        source_key (str): Storage key of the originating object.
        patient_id (str): Patient ID (0010,0020).
        patient_name (str): Patient's Name (0010,0010).
        study_instance_uid (str): Study Instance UID (0020,000D).
        series_instance_uid (str): Series Instance UID (0020,000E).
        sop_instance_uid (str): SOP Instance UID (0008,0018).
        modality (str): Modality (0008,0060).
        study_date (str): Study Date (0008,0020), raw YYYYMMDD string.
        study_description (str): Study Description (0008,1030).
        image_type (str): Image Type (0008,0008), values joined with a backslash.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source_key: str = Field(
        ..., alias="sourceKey", description="Storage key of the originating object"
    )
    patient_id: str = Field("", alias="patientId", description="Patient ID")
    patient_name: str = Field("", alias="patientName", description="Patient's name")
    study_instance_uid: str = Field(
        "", alias="studyInstanceUID", description="Study Instance UID"
    )
    series_instance_uid: str = Field(
        "", alias="seriesInstanceUID", description="Series Instance UID"
    )
    sop_instance_uid: str = Field(
        "", alias="sopInstanceUID", description="SOP Instance UID"
    )
    modality: str = Field("", alias="modality", description="Imaging modality code")
    study_date: str = Field("", alias="studyDate", description="Raw 8-digit study date")
    study_description: str = Field(
        "", alias="studyDescription", description="Study description"
    )
    image_type: str = Field("", alias="imageType", description="Image type values")

    @property
    def file_name(self) -> str:
        return self.source_key

    def to_message(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


class DicomDisplayInfo(BaseModel):
    """Values the viewer needs before it decodes pixel data."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    series_description: str = Field("", alias="seriesDescription")
    window_center: Optional[float] = Field(None, alias="windowCenter")
    window_width: Optional[float] = Field(None, alias="windowWidth")
    rows: Optional[int] = Field(None, alias="rows")
    columns: Optional[int] = Field(None, alias="columns")
    bits_allocated: Optional[int] = Field(None, alias="bitsAllocated")
    bits_stored: Optional[int] = Field(None, alias="bitsStored")


class ViewerMetadata(BaseModel):
    """Response model for the viewer's metadata lookup."""

    model_config = ConfigDict(populate_by_name=True)

    metadata: DicomMetadataRecord
    display: DicomDisplayInfo


class StorageEvent(BaseModel):
    """A single object-created notification, with the key already decoded."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    key: str
    etag: Optional[str] = None

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class QueueMessage(BaseModel):
    """Body of the message published for asynchronous downstream consumers."""

    bucket: str
    key: str
    metadata: DicomMetadataRecord

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ImportJobRequest(BaseModel):
    """Request handed to the managed imaging import service."""

    model_config = ConfigDict(populate_by_name=True)

    datastore_id: str = Field(..., alias="datastoreId")
    source_uri: str = Field(..., alias="sourceUri")
    job_name: str = Field(..., alias="jobName")
    access_role_arn: str = Field(..., alias="accessRoleArn")


class ImportJobSummary(BaseModel):
    """Identifier and last known status of an import job."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    job_status: str = Field(..., alias="jobStatus")
    datastore_id: str = Field(..., alias="datastoreId")
    message: Optional[str] = Field(None, alias="message")


class UploadResponse(BaseModel):
    """
    Response model for a successful DICOM file upload.

    Attributes:
        message (str): Human readable outcome.
        file_key (str): Generated name the file was stored under.
        file_url (str): Direct URL (development) or presigned URL (production).
        storage_mode (str): "Local" or "S3".
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field("File uploaded successfully")
    file_key: str = Field(..., alias="fileKey", description="Generated storage name")
    file_url: str = Field(..., alias="fileUrl", description="URL the viewer loads")
    storage_mode: str = Field(..., alias="storageMode", description="Local or S3")


class DicomAttributeResponse(BaseModel):
    """
    Response model for a DICOM attribute query.

    Attributes:
        tag (str): The DICOM tag that was queried (e.g., "(0010,0010)").
        keyword (str): The DICOM keyword of the attribute, when known.
        vr (str): Value Representation - the DICOM data type of the attribute.
        value (Any): The value of the requested DICOM attribute.
    """

    tag: str = Field(
        ..., description="DICOM tag in format 'group,element' (e.g., '0010,0010')"
    )
    keyword: str = Field("", description="DICOM keyword of the attribute")
    vr: str = Field(..., description="Value Representation (DICOM data type)")
    value: Any = Field(None, description="Value of the requested DICOM attribute")
