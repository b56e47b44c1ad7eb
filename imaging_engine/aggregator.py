"""
aggregator.py - Fold per-file results into one study/series/image tree.

Grouping and ordering are applied to the final, position-ordered list of
stored images, so the outcome does not depend on the order in which
concurrent storage writes happened to finish.
"""

import logging
from typing import Optional, Sequence

from imaging_engine.errors import BatchExhaustedError
from imaging_engine.models import (
    ImageRef,
    SeriesAggregate,
    StoredImage,
    StudyAggregate,
)

logger = logging.getLogger(__name__)


def _image_ref(stored: StoredImage) -> ImageRef:
    image = stored.metadata.image
    return ImageRef(
        sop_instance_uid=image.sop_instance_uid,
        instance_number=image.instance_number,
        image_url=stored.url,
        size_bytes=stored.size_bytes,
        preview_url=stored.preview_url,
        rows=image.rows,
        columns=image.columns,
        bits_allocated=image.bits_allocated,
        pixel_spacing=image.pixel_spacing,
        window_center=image.window_center,
        window_width=image.window_width,
        slice_location=image.slice_location,
        slice_thickness=image.slice_thickness,
    )


def _instance_key(ref: ImageRef):
    return ref.instance_number or 0


def group_series(stored: Sequence[StoredImage]) -> list[SeriesAggregate]:
    """
    Group images by SeriesInstanceUID, in order of first appearance.

    The first image of a series supplies its number, description and
    modality.  Images inside each series are sorted by InstanceNumber
    (missing = 0); the sort is stable, so ties keep arrival order.
    """
    headers: dict[Optional[str], StoredImage] = {}
    images: dict[Optional[str], list[ImageRef]] = {}

    for item in stored:
        uid = item.metadata.series.series_instance_uid
        if uid not in headers:
            headers[uid] = item
            images[uid] = []
        images[uid].append(_image_ref(item))

    result = []
    for uid, first in headers.items():
        info = first.metadata.series
        result.append(SeriesAggregate(
            series_instance_uid=uid,
            series_number=info.series_number,
            series_description=info.series_description,
            modality=info.modality,
            images=tuple(sorted(images[uid], key=_instance_key)),
        ))
    return result


def aggregate_study(
    stored: Sequence[StoredImage],
    *,
    patient_id: Optional[str] = None,
    clinic_id: Optional[str] = None,
    visit_id: Optional[str] = None,
    patient_id_validated: bool = False,
    mismatch_acknowledged: bool = False,
) -> StudyAggregate:
    """
    Build the StudyAggregate for one upload batch.

    The study header, embedded patient block and institution come from the
    first stored image.  Only successfully stored files are counted.

    Raises
    ------
    BatchExhaustedError
        If *stored* is empty.
    """
    if not stored:
        raise BatchExhaustedError("Failed to upload any DICOM files")

    first = stored[0].metadata
    series = group_series(stored)
    study = StudyAggregate(
        study_instance_uid=first.study.study_instance_uid,
        study_date=first.study.study_date,
        study_time=first.study.study_time,
        study_description=first.study.study_description,
        accession_number=first.study.accession_number,
        modality=first.series.modality,
        body_part_examined=first.series.body_part_examined,
        patient=first.patient,
        institution=first.institution,
        patient_id=patient_id,
        clinic_id=clinic_id,
        visit_id=visit_id,
        patient_id_validated=patient_id_validated,
        mismatch_acknowledged=mismatch_acknowledged,
        series=tuple(series),
    )
    logger.info(
        "Aggregated study %s: %d image(s) in %d series, %d bytes",
        study.study_instance_uid, study.total_images, study.total_series, study.storage_size,
    )
    return study
