"""
normalizer.py - Turn raw DICOM tag text into domain values.

DICOM stores dates as fixed-width ``YYYYMMDD`` strings (VR "DA") and person
names as caret-separated components ``Family^Given^Middle`` (VR "PN").
Modality is a short code; the engine only accepts a closed set of codes
and maps everything else to "OT" (other).
"""

import datetime
import logging
from typing import Optional

logger = logging.getLogger(__name__)

VALID_MODALITIES: tuple[str, ...] = (
    "CR", "CT", "MR", "US", "XA", "NM", "PT", "DX", "MG", "OT",
)
OTHER_MODALITY = "OT"


def parse_dicom_date(text: Optional[str]) -> Optional[datetime.date]:
    """
    Parse a DICOM ``YYYYMMDD`` date.

    Characters after the first eight are ignored.  Short strings,
    non-numeric fields and impossible calendar dates return None.
    """
    if not text or len(text) < 8:
        return None
    head = text[:8]
    if not head.isdigit():
        return None
    try:
        return datetime.date(int(head[0:4]), int(head[4:6]), int(head[6:8]))
    except ValueError:
        logger.debug("Rejected invalid DICOM date %r", text)
        return None


def format_person_name(text: Optional[str]) -> Optional[str]:
    """
    Format a DICOM person name as ``First [Middle] Last``.

    >>> format_person_name("Doe^John^Q")
    'John Q Doe'
    >>> format_person_name("Doe")
    'Doe'
    """
    if not text:
        return None
    parts = [p.strip() for p in text.split("^")]
    parts = [p for p in parts if p]

    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]

    last, first = parts[0], parts[1]
    if len(parts) >= 3:
        return f"{first} {parts[2]} {last}"
    return f"{first} {last}"


def normalize_modality(text: Optional[str]) -> str:
    """Return *text* if it is a recognised modality code, otherwise "OT"."""
    if text in VALID_MODALITIES:
        return text
    if text:
        logger.debug("Unrecognised modality %r mapped to %s", text, OTHER_MODALITY)
    return OTHER_MODALITY
