"""DICOM fixtures and fake AWS clients shared by the test modules."""

import io

import numpy as np
import pydicom
from botocore.exceptions import ClientError, EndpointConnectionError
from pydicom.dataset import FileDataset, FileMetaDataset
from pydicom.encaps import encapsulate
from pydicom.uid import CTImageStorage, ExplicitVRLittleEndian, JPEG2000Lossless


def make_dicom_bytes(with_pixels: bool = False, **attributes) -> bytes:
    """Serialize a minimal DICOM file carrying *attributes*."""
    file_meta = FileMetaDataset()
    file_meta.MediaStorageSOPClassUID = CTImageStorage
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset("in-memory.dcm", {}, file_meta=file_meta, preamble=b"\0" * 128)
    for key, value in attributes.items():
        setattr(ds, key, value)

    if with_pixels:
        ds.Rows = 4
        ds.Columns = 4
        ds.SamplesPerPixel = 1
        ds.PhotometricInterpretation = "MONOCHROME2"
        ds.PixelRepresentation = 0
        ds.BitsAllocated = 16
        ds.BitsStored = 16
        ds.HighBit = 15
        ds.PixelData = np.arange(16, dtype=np.uint16).reshape(4, 4).tobytes()

    buffer = io.BytesIO()
    ds.save_as(buffer, enforce_file_format=True)
    return buffer.getvalue()


def make_jpeg2000_dicom_bytes() -> bytes:
    """A JPEG 2000 Lossless file whose single encapsulated frame is not decodable."""
    file_meta = FileMetaDataset()
    file_meta.MediaStorageSOPClassUID = CTImageStorage
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = JPEG2000Lossless

    ds = FileDataset("in-memory.dcm", {}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.Modality = "CT"
    ds.Rows = 4
    ds.Columns = 4
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.NumberOfFrames = 1
    ds.PixelData = encapsulate([b"\xff\x4f\xff\x51" + b"\x00" * 28])
    ds["PixelData"].VR = "OB"
    ds["PixelData"].is_undefined_length = True

    buffer = io.BytesIO()
    ds.save_as(buffer, enforce_file_format=True)
    return buffer.getvalue()


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def connection_error() -> EndpointConnectionError:
    return EndpointConnectionError(endpoint_url="https://example.invalid")


class FakeS3Client:
    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.put_calls = []
        self.cors = None
        self.fail_with = None

    def get_object(self, Bucket, Key):
        if self.fail_with is not None:
            raise self.fail_with
        if (Bucket, Key) not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def put_object(self, Bucket, Key, Body, ContentType, Metadata=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.put_calls.append({"Bucket": Bucket, "Key": Key, "ContentType": ContentType})
        self.objects[(Bucket, Key)] = Body
        return {"ETag": '"etag"'}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        return (
            f"https://{Params['Bucket']}.s3.amazonaws.com/{Params['Key']}"
            f"?X-Amz-Expires={ExpiresIn}"
        )

    def head_bucket(self, Bucket):
        if self.fail_with is not None:
            raise self.fail_with
        return {}

    def put_bucket_cors(self, Bucket, CORSConfiguration):
        self.cors = CORSConfiguration
        return {}


class FakeRdsDataClient:
    """Emulates ON CONFLICT DO NOTHING on the first parameter (the content hash)."""

    def __init__(self):
        self.statements = []
        self.rows = {}
        self.fail_with = None

    def execute_statement(self, **request):
        if self.fail_with is not None:
            raise self.fail_with
        self.statements.append(request)
        parameters = request.get("parameters")
        if not parameters:
            return {"numberOfRecordsUpdated": 0}

        row = {
            p["name"]: p["value"].get("stringValue") for p in parameters
        }
        if row["content_sha256"] in self.rows:
            return {"numberOfRecordsUpdated": 0}
        self.rows[row["content_sha256"]] = row
        return {"numberOfRecordsUpdated": 1}


class FakeSqsClient:
    def __init__(self):
        self.messages = []
        self.fail_with = None

    def send_message(self, QueueUrl, MessageBody):
        if self.fail_with is not None:
            raise self.fail_with
        self.messages.append({"QueueUrl": QueueUrl, "MessageBody": MessageBody})
        return {"MessageId": f"msg-{len(self.messages)}"}


class FakeMedicalImagingClient:
    def __init__(self, summaries=None, page_size=2):
        self.summaries = list(summaries or [])
        self.page_size = page_size
        self.import_calls = []
        self.search_calls = []
        self.jobs = {}
        self.image_sets = {}
        self.frames = {}
        self.fail_with = None

    def start_dicom_import_job(self, **params):
        if self.fail_with is not None:
            raise self.fail_with
        self.import_calls.append(params)
        job_id = f"job-{len(self.import_calls)}"
        self.jobs[job_id] = {
            "jobId": job_id,
            "jobStatus": "SUBMITTED",
            "datastoreId": params["datastoreId"],
        }
        return {
            "datastoreId": params["datastoreId"],
            "jobId": job_id,
            "jobStatus": "SUBMITTED",
            "submittedAt": "2024-01-01T00:00:00Z",
            "ResponseMetadata": {"HTTPStatusCode": 200},
        }

    def get_dicom_import_job(self, datastoreId, jobId):
        if jobId not in self.jobs:
            raise client_error("ResourceNotFoundException", "GetDICOMImportJob")
        return {"jobProperties": dict(self.jobs[jobId])}

    def search_image_sets(self, datastoreId, searchCriteria=None, nextToken=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.search_calls.append({"datastoreId": datastoreId, "searchCriteria": searchCriteria})
        start = int(nextToken or 0)
        page = self.summaries[start:start + self.page_size]
        response = {"imageSetsMetadataSummaries": page}
        if start + self.page_size < len(self.summaries):
            response["nextToken"] = str(start + self.page_size)
        return response

    def get_image_set(self, datastoreId, imageSetId):
        if imageSetId not in self.image_sets:
            raise client_error("ResourceNotFoundException", "GetImageSet")
        return dict(self.image_sets[imageSetId], ResponseMetadata={"HTTPStatusCode": 200})

    def get_image_frame(self, datastoreId, imageSetId, imageFrameInformation):
        key = (imageSetId, imageFrameInformation["imageFrameId"])
        if key not in self.frames:
            raise client_error("ResourceNotFoundException", "GetImageFrame")
        return {"imageFrameBlob": io.BytesIO(self.frames[key]), "contentType": "application/octet-stream"}


def s3_notification(*keys, bucket="dicom-bucket"):
    """Build an object-created notification for *keys* (already URL-encoded)."""
    return {
        "Records": [
            {
                "eventSource": "aws:s3",
                "eventName": "ObjectCreated:Put",
                "s3": {
                    "bucket": {"name": bucket},
                    "object": {"key": key, "eTag": f"etag-{index}"},
                },
            }
            for index, key in enumerate(keys)
        ]
    }
