"""
models.py - Domain records shared by the parser, aggregator and pipeline.

Parsed metadata and study aggregates are frozen dataclasses: a file is
parsed once and a study is built once per upload batch, then handed to
the metadata store unchanged.
"""

import dataclasses
import datetime
from dataclasses import dataclass, field
from typing import Any, Optional, Union

Number = Union[int, float]


# ---------------------------------------------------------------------------
# Parsed metadata (one per file)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PatientInfo:
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    birth_date: Optional[datetime.date] = None
    sex: Optional[str] = None


@dataclass(frozen=True)
class StudyInfo:
    study_instance_uid: Optional[str] = None
    study_date: Optional[datetime.date] = None
    study_time: Optional[str] = None
    study_description: Optional[str] = None
    accession_number: Optional[str] = None


@dataclass(frozen=True)
class SeriesInfo:
    series_instance_uid: Optional[str] = None
    series_number: Optional[Number] = None
    series_description: Optional[str] = None
    modality: str = "OT"
    body_part_examined: Optional[str] = None


@dataclass(frozen=True)
class ImageInfo:
    sop_instance_uid: Optional[str] = None
    instance_number: Optional[Number] = None
    rows: Optional[int] = None
    columns: Optional[int] = None
    bits_allocated: Optional[int] = None
    pixel_spacing: Optional[tuple[float, ...]] = None
    window_center: Optional[Number] = None
    window_width: Optional[Number] = None
    slice_location: Optional[Number] = None
    slice_thickness: Optional[Number] = None


@dataclass(frozen=True)
class InstitutionInfo:
    institution_name: Optional[str] = None
    referring_physician: Optional[str] = None


@dataclass(frozen=True)
class ParsedImageMetadata:
    """Everything the engine extracts from one DICOM file."""
    patient: PatientInfo = field(default_factory=PatientInfo)
    study: StudyInfo = field(default_factory=StudyInfo)
    series: SeriesInfo = field(default_factory=SeriesInfo)
    image: ImageInfo = field(default_factory=ImageInfo)
    institution: InstitutionInfo = field(default_factory=InstitutionInfo)


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    error: Optional[str] = None


@dataclass
class ParseResult:
    """Outcome of parsing a single file."""
    success: bool
    metadata: Optional[ParsedImageMetadata] = None
    error: Optional[str] = None
    filename: Optional[str] = None
    dataset: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class UploadedFile:
    filename: Optional[str]
    data: bytes


@dataclass(frozen=True)
class FileError:
    """A per-file failure collected during a batch."""
    index: int
    filename: Optional[str]
    error: str


# ---------------------------------------------------------------------------
# Storage and aggregation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoredObject:
    url: str
    size_bytes: int


@dataclass(frozen=True)
class StoredImage:
    """A parsed file together with where its bytes were stored."""
    metadata: ParsedImageMetadata
    url: str
    size_bytes: int
    preview_url: Optional[str] = None


@dataclass(frozen=True)
class ImageRef:
    sop_instance_uid: Optional[str]
    instance_number: Optional[Number]
    image_url: str
    size_bytes: int = 0
    preview_url: Optional[str] = None
    rows: Optional[int] = None
    columns: Optional[int] = None
    bits_allocated: Optional[int] = None
    pixel_spacing: Optional[tuple[float, ...]] = None
    window_center: Optional[Number] = None
    window_width: Optional[Number] = None
    slice_location: Optional[Number] = None
    slice_thickness: Optional[Number] = None


@dataclass(frozen=True)
class SeriesAggregate:
    series_instance_uid: Optional[str]
    series_number: Optional[Number] = None
    series_description: Optional[str] = None
    modality: str = "OT"
    images: tuple[ImageRef, ...] = ()

    @property
    def number_of_images(self) -> int:
        return len(self.images)


@dataclass(frozen=True)
class StudyAggregate:
    """
    One upload batch: the study header plus its ordered series.

    Totals are derived from the series collection so they can never drift
    from what was actually stored.
    """
    study_instance_uid: Optional[str]
    study_date: Optional[datetime.date] = None
    study_time: Optional[str] = None
    study_description: Optional[str] = None
    accession_number: Optional[str] = None
    modality: str = "OT"
    body_part_examined: Optional[str] = None
    patient: PatientInfo = field(default_factory=PatientInfo)
    institution: InstitutionInfo = field(default_factory=InstitutionInfo)
    patient_id: Optional[str] = None
    clinic_id: Optional[str] = None
    visit_id: Optional[str] = None
    patient_id_validated: bool = False
    mismatch_acknowledged: bool = False
    series: tuple[SeriesAggregate, ...] = ()

    @property
    def total_images(self) -> int:
        return sum(s.number_of_images for s in self.series)

    @property
    def total_series(self) -> int:
        return len(self.series)

    @property
    def storage_size(self) -> int:
        return sum(img.size_bytes for s in self.series for img in s.images)

    def find_image(self, series_uid: Optional[str] = None, index: int = 0) -> ImageRef:
        """
        Look up one image for viewing.

        Uses the first series when *series_uid* is not given.  Raises
        LookupError if the series or the image index does not exist.
        """
        if series_uid is None:
            series = self.series[0] if self.series else None
        else:
            series = next(
                (s for s in self.series if s.series_instance_uid == series_uid), None
            )
        if series is None:
            raise LookupError(f"Series not found: {series_uid}")
        if index < 0 or index >= len(series.images):
            raise LookupError(f"Image not found: index {index} in series {series.series_instance_uid}")
        return series.images[index]

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form handed to the metadata store."""
        data = _jsonable(dataclasses.asdict(self))
        for s_dict, s in zip(data["series"], self.series):
            s_dict["number_of_images"] = s.number_of_images
        data["total_images"] = self.total_images
        data["total_series"] = self.total_series
        data["storage_size"] = self.storage_size
        return data


def _jsonable(value):
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Identity reconciliation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldMatch:
    matched: bool
    dicom_value: Any = None
    record_value: Any = None


@dataclass(frozen=True)
class MatchDetails:
    patient_id: FieldMatch = field(default_factory=lambda: FieldMatch(False))
    name: FieldMatch = field(default_factory=lambda: FieldMatch(False))
    birth_date: FieldMatch = field(default_factory=lambda: FieldMatch(False))
    sex: FieldMatch = field(default_factory=lambda: FieldMatch(False))


@dataclass(frozen=True)
class IdentityMatchResult:
    is_match: bool
    confidence: float
    match_details: MatchDetails = field(default_factory=MatchDetails)
    warnings: tuple[str, ...] = ()
    requires_confirmation: bool = True


# ---------------------------------------------------------------------------
# Batch outcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StudyPreview:
    """What the user sees when asked to confirm a questionable upload."""
    study_date: Optional[datetime.date]
    modality: str
    description: Optional[str]
    total_images: int


@dataclass
class IngestionResult:
    success: bool
    requires_confirmation: bool = False
    study_id: Optional[str] = None
    study: Optional[StudyAggregate] = None
    identity: Optional[IdentityMatchResult] = None
    preview: Optional[StudyPreview] = None
    errors: list[FileError] = field(default_factory=list)
    total_files: int = 0

    @property
    def succeeded(self) -> int:
        return self.study.total_images if self.study is not None else 0

    @property
    def failed(self) -> int:
        return len(self.errors)

    def summary(self) -> str:
        lines = [
            "=" * 50,
            "INGESTION SUMMARY",
            "=" * 50,
            f"Total files       : {self.total_files}",
            f"Stored            : {self.succeeded}",
            f"Failed            : {self.failed}",
        ]
        if self.requires_confirmation:
            lines.append("Status            : awaiting identity confirmation")
        elif self.study_id is not None:
            lines.append(f"Study id          : {self.study_id}")
        if self.identity is not None:
            lines.append(f"Identity match    : {self.identity.confidence:.2f}")
            for warning in self.identity.warnings:
                lines.append(f"  ! {warning}")
        if self.errors:
            lines.append("\nFailed files:")
            for err in self.errors:
                lines.append(f"  - [{err.index}] {err.filename or '<unnamed>'}: {err.error}")
        return "\n".join(lines)
