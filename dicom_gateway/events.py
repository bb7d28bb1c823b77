"""Parsing of object-created notifications delivered to the trigger adapters."""

from typing import Any, Dict, List
from urllib.parse import unquote

from dicom_gateway.models import StorageEvent


def decode_object_key(raw_key: str) -> str:
    """
    Decode a key as it appears in a storage notification.

    Spaces arrive as ``+``; everything else is percent-encoded, so a literal
    plus sign in the key arrives as ``%2B``.
    """
    return unquote(raw_key.replace("+", " "))


def parse_storage_events(event: Dict[str, Any]) -> List[StorageEvent]:
    """Return one :class:`StorageEvent` per record of an S3 notification."""
    events = []
    for record in event.get("Records") or []:
        s3 = record.get("s3")
        if not s3:
            raise ValueError("Notification record has no 's3' section")

        bucket = s3["bucket"]["name"]
        s3_object = s3["object"]
        events.append(
            StorageEvent(
                bucket=bucket,
                key=decode_object_key(s3_object["key"]),
                etag=s3_object.get("eTag"),
            )
        )
    return events
