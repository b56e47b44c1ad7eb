"""
identity.py - Patient identity reconciliation.

Before an uploaded study is attached to a clinic patient, the identity
embedded in the DICOM header is compared with the patient record.  Each
field contributes a weighted score:

    confidence = (40 * id_match + 30 * name_similarity
                  + 20 * birth_date_match + 10 * sex_match) / 100

The patient ID dominates, the name contributes continuously through an
edit-distance similarity, and birth date and sex count all-or-nothing.

    confidence >= 0.9        match, no confirmation needed
    0.6 <= confidence < 0.9  partial match, user must confirm
    confidence < 0.6         no match, user must confirm

The weights and thresholds are clinic business rules, not derived from
any clinical study.  They are read from the "identity" section of the
configuration so they can be tuned per deployment.
"""

import datetime
import logging
import re
from typing import Any, Mapping, Optional, Union

from imaging_engine.config import CONFIG
from imaging_engine.models import (
    FieldMatch,
    IdentityMatchResult,
    MatchDetails,
    PatientInfo,
)
from imaging_engine.normalizer import parse_dicom_date

logger = logging.getLogger(__name__)

_WEIGHTS = CONFIG["identity"]["weights"]
_THRESHOLDS = CONFIG["identity"]["thresholds"]

PATIENT_ID_WEIGHT: float = _WEIGHTS["patient_id"]
NAME_WEIGHT: float = _WEIGHTS["name"]
BIRTH_DATE_WEIGHT: float = _WEIGHTS["birth_date"]
SEX_WEIGHT: float = _WEIGHTS["sex"]

MATCH_THRESHOLD: float = _THRESHOLDS["match"]
PARTIAL_THRESHOLD: float = _THRESHOLDS["partial"]
NAME_MATCH_THRESHOLD: float = _THRESHOLDS["name_match"]
NAME_WARNING_THRESHOLD: float = _THRESHOLDS["name_warning"]

# Candidate record keys, in lookup order; snake_case and camelCase stores
RECORD_ID_KEYS = ("id", "_id", "patient_id", "patientId")
ALTERNATE_ID_KEYS = (
    "record_number", "medical_record_number", "mrn",
    "recordNumber", "medicalRecordNumber",
)
RECORD_NAME_KEYS = ("name", "full_name", "fullName")
RECORD_DOB_KEYS = ("date_of_birth", "dob", "birth_date", "dateOfBirth", "birthDate")
RECORD_SEX_KEYS = ("gender", "sex")

_SEX_ALIASES = {("m", "male"), ("f", "female")}
_NON_ALNUM = re.compile(r"[^a-z0-9]")

DateLike = Union[datetime.date, datetime.datetime, str, None]


def normalize_string(value: Any) -> str:
    """Lower-case *value* and strip everything that is not a-z or 0-9."""
    if value is None:
        return ""
    return _NON_ALNUM.sub("", str(value).lower())


normalize_patient_id = normalize_string


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost insert/delete/substitute edit distance."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def calculate_similarity(a: Any, b: Any) -> float:
    """
    Similarity of two names in [0, 1] after normalisation.

    1.0 for identical normalised strings, 0.0 when exactly one side is
    empty, otherwise ``1 - distance / max(len)``.
    """
    s1, s2 = normalize_string(a), normalize_string(b)
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    return 1.0 - levenshtein_distance(s1, s2) / max(len(s1), len(s2))


def _to_date(value: DateLike) -> Optional[datetime.date]:
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    parsed = parse_dicom_date(text)
    if parsed is not None:
        return parsed
    try:
        return datetime.date.fromisoformat(text[:10])
    except ValueError:
        return None


def dates_match(a: DateLike, b: DateLike) -> bool:
    """True only if both dates are known and fall on the same calendar day."""
    d1, d2 = _to_date(a), _to_date(b)
    if d1 is None or d2 is None:
        return False
    return (d1.year, d1.month, d1.day) == (d2.year, d2.month, d2.day)


def sexes_match(a: Any, b: Any) -> bool:
    s1, s2 = normalize_string(a), normalize_string(b)
    if not s1 or not s2:
        return False
    return s1 == s2 or (s1, s2) in _SEX_ALIASES or (s2, s1) in _SEX_ALIASES


def _lookup(record: Any, keys) -> Any:
    for key in keys:
        if isinstance(record, Mapping):
            value = record.get(key)
        else:
            value = getattr(record, key, None)
        if value is not None and value != "":
            return value
    return None


def _patient_fields(patient: Union[PatientInfo, Mapping]) -> tuple:
    if isinstance(patient, PatientInfo):
        return patient.patient_id, patient.patient_name, patient.birth_date, patient.sex
    return (
        _lookup(patient, ("patient_id",)),
        _lookup(patient, ("patient_name",)),
        _lookup(patient, ("birth_date",)),
        _lookup(patient, ("sex",)),
    )


def _missing_result() -> IdentityMatchResult:
    return IdentityMatchResult(
        is_match=False,
        confidence=0.0,
        warnings=("Missing patient information",),
        requires_confirmation=True,
    )


def validate_patient_match(
    dicom_patient: Union[PatientInfo, Mapping, None],
    candidate: Optional[Mapping],
) -> IdentityMatchResult:
    """
    Compare the identity embedded in a DICOM file with a clinic record.

    Parameters
    ----------
    dicom_patient : PatientInfo or mapping
        The ``patient`` block of the parsed metadata.
    candidate : mapping
        Clinic patient record with at least ``id``, ``name``,
        ``date_of_birth`` and ``gender``; ``record_number`` and
        ``medical_record_number`` are checked as alternate identifiers.
        camelCase spellings (``dateOfBirth``, ``medicalRecordNumber``) work too.

    Returns
    -------
    IdentityMatchResult
    """
    if dicom_patient is None or candidate is None:
        return _missing_result()

    dicom_id, dicom_name, dicom_dob, dicom_sex = _patient_fields(dicom_patient)
    record_id = _lookup(candidate, RECORD_ID_KEYS)
    record_name = _lookup(candidate, RECORD_NAME_KEYS)
    record_dob = _lookup(candidate, RECORD_DOB_KEYS)
    record_sex = _lookup(candidate, RECORD_SEX_KEYS)

    # 1. Patient ID against the record id and any alternate identifiers
    normalized_id = normalize_patient_id(dicom_id)
    record_ids = [record_id] + [_lookup(candidate, (key,)) for key in ALTERNATE_ID_KEYS]
    id_match = bool(normalized_id) and any(
        normalize_patient_id(rid) == normalized_id for rid in record_ids if rid is not None
    )

    # 2. Name similarity
    name_similarity = (
        calculate_similarity(dicom_name, record_name)
        if normalize_string(dicom_name) and normalize_string(record_name)
        else 0.0
    )
    name_match = name_similarity >= NAME_MATCH_THRESHOLD

    # 3. Birth date, 4. sex
    dob_match = dates_match(dicom_dob, record_dob)
    sex_match = sexes_match(dicom_sex, record_sex)

    # 5. Weighted confidence
    score = (
        PATIENT_ID_WEIGHT * id_match
        + NAME_WEIGHT * name_similarity
        + BIRTH_DATE_WEIGHT * dob_match
        + SEX_WEIGHT * sex_match
    )
    total_weight = PATIENT_ID_WEIGHT + NAME_WEIGHT + BIRTH_DATE_WEIGHT + SEX_WEIGHT
    confidence = round(min(max(score / total_weight, 0.0), 1.0), 4)

    # 6. Verdict
    warnings: list[str] = []
    is_match = confidence >= MATCH_THRESHOLD
    if not is_match:
        if confidence >= PARTIAL_THRESHOLD:
            warnings.append(
                f"Patient information is only a partial match "
                f"({confidence:.0%} confidence). Please verify before proceeding."
            )
        else:
            warnings.append(
                f"Patient information does not match the selected patient "
                f"({confidence:.0%} confidence)."
            )

    if normalized_id and not id_match:
        warnings.append(f"Patient ID mismatch: DICOM '{dicom_id}' vs record '{record_id}'")
    if name_similarity < NAME_WARNING_THRESHOLD:
        warnings.append(f"Patient name differs: DICOM '{dicom_name}' vs record '{record_name}'")
    if _to_date(dicom_dob) is not None and _to_date(record_dob) is not None and not dob_match:
        warnings.append(f"Birth date mismatch: DICOM {dicom_dob} vs record {record_dob}")

    result = IdentityMatchResult(
        is_match=is_match,
        confidence=confidence,
        match_details=MatchDetails(
            patient_id=FieldMatch(id_match, dicom_id, record_id),
            name=FieldMatch(name_match, dicom_name, record_name),
            birth_date=FieldMatch(dob_match, dicom_dob, record_dob),
            sex=FieldMatch(sex_match, dicom_sex, record_sex),
        ),
        warnings=tuple(warnings),
        requires_confirmation=not is_match or bool(warnings),
    )
    logger.info(
        "Identity check: confidence=%.2f match=%s warnings=%d",
        result.confidence, result.is_match, len(result.warnings),
    )
    return result
