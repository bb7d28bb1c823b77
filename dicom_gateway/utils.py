import io
import hashlib
import time
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
from pydicom import Dataset
from pydicom.errors import BytesLengthException
from pydicom.pixels import apply_modality_lut
from pydicom.tag import Tag
from PIL import Image

from dicom_gateway.errors import MalformedInputError
from dicom_gateway.extractor import read_dataset
from dicom_gateway.models import DicomAttributeResponse


def parse_dicom_tag(tag_string: str) -> Tuple[int, int]:
    tag_string_cleaned = tag_string.strip().strip("()")
    parts = tag_string_cleaned.split(",")

    if len(parts) != 2:
        raise ValueError("Tag string must contain exactly one comma, e.g. '0010,0020'.")

    group_str = parts[0].strip()
    element_str = parts[1].strip()

    try:
        group_int = int(group_str, 16)
        element_int = int(element_str, 16)
    except ValueError:
        raise ValueError(f"Invalid hex values in tag: '{group_str}', '{element_str}'.")

    if not (0 <= group_int <= 0xFFFF and 0 <= element_int <= 0xFFFF):
        raise ValueError(f"Tag out of range: '{group_str}', '{element_str}'.")

    return (group_int, element_int)


def calculate_file_hash(file_content: bytes) -> str:
    hash_obj = hashlib.sha256()
    hash_obj.update(file_content)
    return hash_obj.hexdigest()


def is_valid_dicom_bytes(file_content: bytes) -> bool:
    try:
        read_dataset(file_content)
        return True
    except MalformedInputError:
        return False


def generate_upload_name(original_filename: Optional[str]) -> str:
    """Storage name for an upload: epoch milliseconds plus the client's file name."""
    name = Path(original_filename or "upload.dcm").name or "upload.dcm"
    return f"{int(time.time() * 1000)}-{name}"


def lookup_attribute(dicom_dataset: Dataset, tag: str) -> Optional[DicomAttributeResponse]:
    """Find a single attribute, falling back to the file meta header for group 0002."""
    group_int, element_int = parse_dicom_tag(tag)
    dicom_tag = Tag(group_int, element_int)

    element = dicom_dataset.get(dicom_tag)
    if element is None:
        file_meta = getattr(dicom_dataset, "file_meta", None)
        if dicom_tag.group == 0x0002 and file_meta:
            element = file_meta.get(dicom_tag)

    if element is None:
        return None

    return DicomAttributeResponse(
        tag=str(element.tag),
        keyword=element.keyword or "",
        vr=element.VR,
        value=dicom_value_to_header(element),
    )


def dicom_value_to_header(elem) -> Optional[str]:
    # Skip sequence elements and empty elements
    if elem.VR in ["SQ"] or elem.value is None:
        return None

    try:
        if isinstance(elem.value, bytes):
            return None
        if hasattr(elem.value, "__iter__") and not isinstance(elem.value, str):
            value = ", ".join(str(x) for x in elem.value)
        else:
            value = str(elem.value)
    except (TypeError, ValueError):
        return None

    value = value.replace("\n", " ").replace("\r", "")

    return value.strip() if value and value.strip() else None


def apply_window(
    pixel_array: np.ndarray,
    window_center: Optional[float] = None,
    window_width: Optional[float] = None,
) -> np.ndarray:
    """
    Map pixel values to 0-255.

    Uses the stored window/level when both values are present and the width is
    positive; otherwise falls back to min/max normalization.
    """
    pixel_array = pixel_array.astype(np.float64)

    if window_center is not None and window_width is not None and window_width > 0:
        lower = window_center - window_width / 2.0
        upper = window_center + window_width / 2.0
        windowed = np.clip(pixel_array, lower, upper)
        return ((windowed - lower) / (upper - lower)) * 255.0

    # Find min and max values, using nanmin/nanmax to handle any NaN values safely
    min_val = np.nanmin(pixel_array)
    max_val = np.nanmax(pixel_array)

    # Apply normalization only if we have valid finite values and a non-zero range
    if np.isfinite(min_val) and np.isfinite(max_val) and max_val > min_val:
        return ((pixel_array - min_val) / (max_val - min_val)) * 255.0
    return np.zeros_like(pixel_array)


def convert_dicom_to_png(
    dicom_dataset: Dataset,
    window_center: Optional[float] = None,
    window_width: Optional[float] = None,
) -> bytes:
    """
    Converts a DICOM dataset to a PNG image of its first frame.
    """
    try:
        pixel_array = dicom_dataset.pixel_array
    except AttributeError:
        raise ValueError("DICOM dataset doesn't contain pixel data")
    except (
        ValueError, TypeError, RuntimeError, NotImplementedError, OSError, BytesLengthException
    ) as e:
        # Compressed transfer syntax without a usable decoder, or corrupt frames
        raise ValueError(f"Unable to decode pixel data: {str(e)}")

    try:
        pixel_array = apply_modality_lut(pixel_array, dicom_dataset)
        if pixel_array.ndim == 3 and getattr(dicom_dataset, "SamplesPerPixel", 1) == 1:
            pixel_array = pixel_array[0]

        png_image = np.clip(
            apply_window(pixel_array, window_center, window_width), 0, 255
        ).astype(np.uint8)

        # Create a PIL (Pillow) Image object from the NumPy array
        image = Image.fromarray(png_image)

        byte_io = io.BytesIO()
        image.save(byte_io, format="PNG", optimize=True)
        return byte_io.getvalue()
    except (ValueError, TypeError, RuntimeError) as e:
        raise ValueError(f"Error processing DICOM pixel data: {str(e)}")


def preview_headers(file_key: str, dicom_dataset: Dataset) -> Dict[str, str]:
    """Response headers describing the rendered image."""
    image_headers = {
        "Content-Disposition": f"inline; filename={Path(file_key).stem}.png",
        "X-DICOM-Key": file_key,
    }

    # Group 0x0028 contains image-specific attributes (Image Pixel module)
    # Group 0x0018 contains acquisition-related attributes (often image-related)
    # Group 0x0008 contains study/series information (patient, study descriptions)
    # Reference: https://dicom.innolitics.com/ciods
    image_related_groups = [0x0008, 0x0018, 0x0028]

    for elem in dicom_dataset:
        if elem.tag.group in image_related_groups:
            value = dicom_value_to_header(elem)
            if value and value.isascii():
                header_name = (
                    f"X-DICOM-{elem.keyword}"
                    if elem.keyword
                    else f"X-DICOM-{elem.tag.group:04X}-{elem.tag.element:04X}"
                )
                image_headers[header_name] = value
    return image_headers
