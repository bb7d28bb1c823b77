"""
Administrative metadata extraction.

Every trigger adapter and the HTTP API go through :func:`extract`, so the
tag-to-field mapping below is the only one in the project.
"""

import io
import logging
import struct
from typing import Any, Dict, Iterable, Optional

import pydicom
from pydicom.dataset import Dataset
from pydicom.errors import BytesLengthException, InvalidDicomError
from pydicom.multival import MultiValue
from pydicom.tag import BaseTag, Tag

from dicom_gateway.errors import MalformedInputError
from dicom_gateway.models import DicomDisplayInfo, DicomMetadataRecord

logger = logging.getLogger(__name__)

RECORD_TAGS: Dict[str, BaseTag] = {
    "patient_id": Tag(0x0010, 0x0020),
    "patient_name": Tag(0x0010, 0x0010),
    "study_instance_uid": Tag(0x0020, 0x000D),
    "series_instance_uid": Tag(0x0020, 0x000E),
    "sop_instance_uid": Tag(0x0008, 0x0018),
    "modality": Tag(0x0008, 0x0060),
    "study_date": Tag(0x0008, 0x0020),
    "study_description": Tag(0x0008, 0x1030),
    "image_type": Tag(0x0008, 0x0008),
}

RECORD_FIELDS = frozenset(RECORD_TAGS)

SERIES_DESCRIPTION = Tag(0x0008, 0x103E)
WINDOW_CENTER = Tag(0x0028, 0x1050)
WINDOW_WIDTH = Tag(0x0028, 0x1051)
ROWS = Tag(0x0028, 0x0010)
COLUMNS = Tag(0x0028, 0x0011)
BITS_ALLOCATED = Tag(0x0028, 0x0100)
BITS_STORED = Tag(0x0028, 0x0101)

# Anything pydicom raises while reading the preamble and file meta header
_PARSE_ERRORS = (
    InvalidDicomError,
    EOFError,
    OSError,
    ValueError,
    KeyError,
    NotImplementedError,
    struct.error,
    BytesLengthException,
)

# Anything pydicom raises while converting a single raw element
_ELEMENT_ERRORS = (
    ValueError,
    TypeError,
    KeyError,
    NotImplementedError,
    struct.error,
    BytesLengthException,
)


def read_dataset(
    raw_bytes: bytes, source_key: Optional[str] = None, stop_before_pixels: bool = True
) -> Dataset:
    """
    Parse the header and element stream of *raw_bytes*, by default stopping
    before pixel data.

    Raises :class:`MalformedInputError` when the stream has no DICOM preamble
    or its header cannot be read. A stream truncated after the header yields
    a partial dataset.
    """
    if not raw_bytes:
        raise MalformedInputError(source_key, "Empty byte stream")

    try:
        return pydicom.dcmread(io.BytesIO(raw_bytes), stop_before_pixels=stop_before_pixels)
    except _PARSE_ERRORS as exc:
        raise MalformedInputError(source_key, f"Unreadable DICOM header ({exc})") from exc


def _element_value(dataset: Dataset, tag: BaseTag) -> Any:
    try:
        element = dataset.get(tag)
    except _ELEMENT_ERRORS as exc:
        logger.debug("Skipping unreadable element %s: %s", tag, exc)
        return None

    if element is None or element.VR == "SQ":
        return None
    return element.value


def read_string(dataset: Dataset, tag: BaseTag) -> str:
    """String value of *tag*, or "" when the element is missing or empty."""
    value = _element_value(dataset, tag)
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="replace")
    if isinstance(value, (MultiValue, list, tuple)):
        value = "\\".join(str(x) for x in value)
    return str(value).strip(" \x00")


def read_float(dataset: Dataset, tag: BaseTag) -> Optional[float]:
    """First numeric value of a decimal-string element, or None."""
    value = _element_value(dataset, tag)
    if isinstance(value, (MultiValue, list, tuple)):
        value = value[0] if len(value) else None
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def read_int(dataset: Dataset, tag: BaseTag) -> Optional[int]:
    value = _element_value(dataset, tag)
    if isinstance(value, (MultiValue, list, tuple)):
        value = value[0] if len(value) else None
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def extract_from_dataset(
    dataset: Dataset, source_key: str, fields: Optional[Iterable[str]] = None
) -> DicomMetadataRecord:
    wanted = RECORD_FIELDS if fields is None else frozenset(fields)
    unknown = wanted - RECORD_FIELDS
    if unknown:
        raise ValueError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")

    values = {
        name: read_string(dataset, tag)
        for name, tag in RECORD_TAGS.items()
        if name in wanted
    }
    return DicomMetadataRecord(source_key=source_key, **values)


def extract(
    raw_bytes: bytes, source_key: str, fields: Optional[Iterable[str]] = None
) -> DicomMetadataRecord:
    """
    Build the metadata record for one uploaded object.

    Args:
        raw_bytes: The complete DICOM file as stored.
        source_key: Storage key of the object; copied into the record as is.
        fields: Record fields to populate. Defaults to every field; the
            others are left empty.

    Returns:
        DicomMetadataRecord: populated from whichever tags the file carries.

    Raises:
        MalformedInputError: If the bytes are not a readable DICOM stream.
    """
    dataset = read_dataset(raw_bytes, source_key)
    return extract_from_dataset(dataset, source_key, fields)


def extract_display_info(raw_bytes: bytes) -> DicomDisplayInfo:
    """Read the viewer-facing values (window/level and image geometry)."""
    dataset = read_dataset(raw_bytes)
    return display_info_from_dataset(dataset)


def display_info_from_dataset(dataset: Dataset) -> DicomDisplayInfo:
    return DicomDisplayInfo(
        series_description=read_string(dataset, SERIES_DESCRIPTION),
        window_center=read_float(dataset, WINDOW_CENTER),
        window_width=read_float(dataset, WINDOW_WIDTH),
        rows=read_int(dataset, ROWS),
        columns=read_int(dataset, COLUMNS),
        bits_allocated=read_int(dataset, BITS_ALLOCATED),
        bits_stored=read_int(dataset, BITS_STORED),
    )
