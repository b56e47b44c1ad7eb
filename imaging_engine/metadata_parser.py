"""
metadata_parser.py - Structured metadata from a single DICOM file.

Reads the raw bytes with pydicom and maps the tag subset in
imaging_engine.tags onto the five-part ParsedImageMetadata record
(patient, study, series, image, institution).

Only a structurally undecodable container is a failure.  A file that is
missing any number of individual tags still parses; the affected fields
are simply None.
"""

import logging
from io import BytesIO
from typing import Optional

import pydicom
from pydicom.dataset import Dataset

from imaging_engine.errors import StructuralParseError
from imaging_engine.models import (
    ImageInfo,
    InstitutionInfo,
    ParsedImageMetadata,
    ParseResult,
    PatientInfo,
    SeriesInfo,
    StudyInfo,
    ValidationResult,
)
from imaging_engine.normalizer import (
    format_person_name,
    normalize_modality,
    parse_dicom_date,
)
from imaging_engine.tags import TAGS, get_number, get_number_array, get_string

logger = logging.getLogger(__name__)

# Part 10 files start with a 128-byte preamble followed by "DICM".
PREAMBLE_LENGTH = 128
MAGIC = b"DICM"
MIN_FILE_SIZE = PREAMBLE_LENGTH + len(MAGIC)

DICOM_EXTENSIONS: tuple[str, ...] = ("dcm", "dicom", "dic")


def has_dicom_marker(data: bytes) -> bool:
    return data[PREAMBLE_LENGTH:MIN_FILE_SIZE] == MAGIC


def read_dataset(data: bytes) -> Dataset:
    """
    Decode *data* into a pydicom Dataset.

    Files without the preamble/marker are read with ``force=True``; some
    producers omit the optional preamble.

    Raises
    ------
    StructuralParseError
        If the bytes cannot be decoded as a DICOM dataset at all.
    """
    try:
        ds = pydicom.dcmread(BytesIO(data), force=not has_dicom_marker(data))
    except Exception as exc:
        raise StructuralParseError(f"Not a valid DICOM file: {exc}") from exc
    if len(ds) == 0:
        raise StructuralParseError("Not a valid DICOM file: dataset contains no elements")
    if not _has_known_element(ds):
        raise StructuralParseError("Not a valid DICOM file: no recognised DICOM elements")
    return ds


def _has_known_element(ds: Dataset) -> bool:
    """
    True if at least one tag the engine reads is present and decodes.

    A forced read of arbitrary bytes still yields a dataset, but its
    elements are noise with tags outside this set.
    """
    for tag in TAGS.values():
        if tag not in ds:
            continue
        try:
            ds[tag]
        except Exception as exc:
            logger.debug("Element %s does not decode: %s", tag, exc)
            continue
        return True
    return False


def validate_dicom_file(data: bytes) -> ValidationResult:
    """
    Cheap validity pre-check used before accepting an upload.

    A file carrying the "DICM" marker at offset 128 is accepted
    provisionally.  Without the marker a full structural read is attempted
    before rejecting the file.
    """
    if len(data) < MIN_FILE_SIZE:
        return ValidationResult(False, "File too small to be a valid DICOM file")
    if has_dicom_marker(data):
        return ValidationResult(True)
    try:
        read_dataset(data)
    except StructuralParseError:
        return ValidationResult(False, "Not a valid DICOM file")
    return ValidationResult(True)


def is_valid_dicom_extension(filename: Optional[str]) -> bool:
    """True for .dcm/.dicom/.dic files and for names without an extension."""
    if not filename:
        return False
    if "." not in filename:
        return True
    return filename.lower().rsplit(".", 1)[-1] in DICOM_EXTENSIONS


def _int_or_none(value):
    return int(value) if value is not None else None


def extract_metadata(ds: Dataset) -> ParsedImageMetadata:
    """Build the five-part metadata record from a decoded dataset."""
    patient = PatientInfo(
        patient_id=get_string(ds, TAGS["PatientID"]),
        patient_name=format_person_name(get_string(ds, TAGS["PatientName"])),
        birth_date=parse_dicom_date(get_string(ds, TAGS["PatientBirthDate"])),
        sex=get_string(ds, TAGS["PatientSex"]),
    )
    study = StudyInfo(
        study_instance_uid=get_string(ds, TAGS["StudyInstanceUID"]),
        study_date=parse_dicom_date(get_string(ds, TAGS["StudyDate"])),
        study_time=get_string(ds, TAGS["StudyTime"]),
        study_description=get_string(ds, TAGS["StudyDescription"]),
        accession_number=get_string(ds, TAGS["AccessionNumber"]),
    )
    series = SeriesInfo(
        series_instance_uid=get_string(ds, TAGS["SeriesInstanceUID"]),
        series_number=get_number(ds, TAGS["SeriesNumber"]),
        series_description=get_string(ds, TAGS["SeriesDescription"]),
        modality=normalize_modality(get_string(ds, TAGS["Modality"])),
        body_part_examined=get_string(ds, TAGS["BodyPartExamined"]),
    )

    spacing = get_number_array(ds, TAGS["PixelSpacing"])
    image = ImageInfo(
        sop_instance_uid=get_string(ds, TAGS["SOPInstanceUID"]),
        instance_number=get_number(ds, TAGS["InstanceNumber"]),
        rows=_int_or_none(get_number(ds, TAGS["Rows"])),
        columns=_int_or_none(get_number(ds, TAGS["Columns"])),
        bits_allocated=_int_or_none(get_number(ds, TAGS["BitsAllocated"])),
        pixel_spacing=tuple(spacing) if spacing is not None else None,
        window_center=get_number(ds, TAGS["WindowCenter"]),
        window_width=get_number(ds, TAGS["WindowWidth"]),
        slice_location=get_number(ds, TAGS["SliceLocation"]),
        slice_thickness=get_number(ds, TAGS["SliceThickness"]),
    )
    institution = InstitutionInfo(
        institution_name=get_string(ds, TAGS["InstitutionName"]),
        referring_physician=format_person_name(get_string(ds, TAGS["ReferringPhysicianName"])),
    )
    return ParsedImageMetadata(
        patient=patient,
        study=study,
        series=series,
        image=image,
        institution=institution,
    )


def parse_dicom_file(data: bytes, filename: Optional[str] = None) -> ParseResult:
    """
    Parse one uploaded file.  Never raises; failures come back as a
    ParseResult with ``success=False`` and an error message.

    The decoded dataset is kept on the result so the caller can render
    the pixel data without decoding the file a second time.
    """
    if len(data) < MIN_FILE_SIZE:
        return ParseResult(False, error="File too small to be a valid DICOM file", filename=filename)
    try:
        ds = read_dataset(data)
        metadata = extract_metadata(ds)
    except StructuralParseError as exc:
        logger.warning("Could not parse %s: %s", filename or "<upload>", exc)
        return ParseResult(False, error=str(exc), filename=filename)

    logger.debug(
        "Parsed %s: series=%s instance=%s modality=%s",
        filename or "<upload>",
        metadata.series.series_instance_uid,
        metadata.image.instance_number,
        metadata.series.modality,
    )
    return ParseResult(True, metadata=metadata, filename=filename, dataset=ds)
