"""
tags.py - DICOM tag dictionary and typed tag extraction.

The engine consumes a small, fixed subset of the DICOM data dictionary.
TAGS maps a readable field name to its (group, element) tag and is built
once at import time as a read-only mapping.

The extraction helpers never raise for a missing or unreadable element:
absence is always reported as ``None`` so that every metadata field can be
filled in independently of the others.

References
----------
- DICOM PS3.6 Data Dictionary: https://dicom.nema.org/medical/dicom/current/output/html/part06.html
"""

import logging
import math
from types import MappingProxyType
from typing import Optional, Union

from pydicom.dataset import Dataset
from pydicom.multival import MultiValue
from pydicom.tag import BaseTag, Tag

logger = logging.getLogger(__name__)

Number = Union[int, float]

# ---------------------------------------------------------------------------
# Tag dictionary: the only tags the engine reads
# ---------------------------------------------------------------------------
TAGS: "MappingProxyType[str, BaseTag]" = MappingProxyType({
    # Patient
    "PatientID": Tag(0x0010, 0x0020),
    "PatientName": Tag(0x0010, 0x0010),
    "PatientBirthDate": Tag(0x0010, 0x0030),
    "PatientSex": Tag(0x0010, 0x0040),
    # Study
    "StudyInstanceUID": Tag(0x0020, 0x000D),
    "StudyDate": Tag(0x0008, 0x0020),
    "StudyTime": Tag(0x0008, 0x0030),
    "StudyDescription": Tag(0x0008, 0x1030),
    "AccessionNumber": Tag(0x0008, 0x0050),
    # Series
    "SeriesInstanceUID": Tag(0x0020, 0x000E),
    "SeriesNumber": Tag(0x0020, 0x0011),
    "SeriesDescription": Tag(0x0008, 0x103E),
    "Modality": Tag(0x0008, 0x0060),
    "BodyPartExamined": Tag(0x0018, 0x0015),
    # Image
    "SOPInstanceUID": Tag(0x0008, 0x0018),
    "InstanceNumber": Tag(0x0020, 0x0013),
    "Rows": Tag(0x0028, 0x0010),
    "Columns": Tag(0x0028, 0x0011),
    "BitsAllocated": Tag(0x0028, 0x0100),
    "PixelRepresentation": Tag(0x0028, 0x0103),
    "PhotometricInterpretation": Tag(0x0028, 0x0004),
    "PixelSpacing": Tag(0x0028, 0x0030),
    "WindowCenter": Tag(0x0028, 0x1050),
    "WindowWidth": Tag(0x0028, 0x1051),
    "SliceLocation": Tag(0x0020, 0x1041),
    "SliceThickness": Tag(0x0018, 0x0050),
    "PixelData": Tag(0x7FE0, 0x0010),
    # Institution
    "InstitutionName": Tag(0x0008, 0x0080),
    "ReferringPhysicianName": Tag(0x0008, 0x0090),
})


def _raw_value(ds: Dataset, tag: BaseTag):
    """Return the element value for *tag*, or None if it is missing or unreadable."""
    try:
        elem = ds.get(tag)
    except Exception as exc:
        logger.debug("Could not read tag %s: %s", tag, exc)
        return None
    if elem is None:
        return None
    return elem.value


def _as_text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("latin-1")
    return str(value)


def get_string(ds: Dataset, tag: BaseTag) -> Optional[str]:
    """
    Read *tag* as a trimmed string.

    Multi-valued elements are joined with the DICOM value delimiter ``\\``
    and person names keep their caret-separated form.  Empty values are
    reported as absent.
    """
    value = _raw_value(ds, tag)
    if value is None:
        return None
    if isinstance(value, (MultiValue, list, tuple)):
        text = "\\".join(_as_text(v) for v in value)
    else:
        text = _as_text(value)
    text = text.strip().strip("\x00").strip()
    return text or None


def _parse_number(text: str) -> Optional[Number]:
    text = text.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def get_number(ds: Dataset, tag: BaseTag) -> Optional[Number]:
    """
    Read *tag* as a number.

    A native integer is returned as-is; anything else is parsed from its
    string form, first as an integer and then as a float.  For multi-valued
    elements (e.g. several WindowCenter values) only the first is used.
    """
    value = _raw_value(ds, tag)
    if value is None:
        return None
    if isinstance(value, (MultiValue, list, tuple)):
        if len(value) == 0:
            return None
        value = value[0]
    if isinstance(value, int) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, float):
        return float(value) if math.isfinite(value) else None
    # Fallback for values that arrive as text, e.g. "40\400"
    return _parse_number(_as_text(value).split("\\")[0])


def get_number_array(ds: Dataset, tag: BaseTag) -> Optional[list[float]]:
    """
    Read a backslash-delimited numeric tag such as PixelSpacing.

    Components that fail to parse are dropped rather than failing the
    whole array.
    """
    text = get_string(ds, tag)
    if text is None:
        return None
    numbers: list[float] = []
    for part in text.split("\\"):
        parsed = _parse_number(part)
        if parsed is not None:
            numbers.append(float(parsed))
    return numbers


def get_bytes(ds: Dataset, tag: BaseTag) -> Optional[bytes]:
    """Read *tag* as raw bytes (used for the pixel sample block)."""
    value = _raw_value(ds, tag)
    if isinstance(value, (bytes, bytearray)) and len(value) > 0:
        return bytes(value)
    return None
