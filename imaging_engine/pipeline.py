"""
pipeline.py - Batch DICOM ingestion orchestrator.

Runs one upload batch through the engine:

    parse every file -> (optional) identity check -> store bytes
    (+ optional PNG preview) -> aggregate into a study -> save study

A bad file never aborts the batch; its error is collected and returned
with the result.  The batch only fails outright when no file at all could
be parsed or stored.  A questionable patient identity stops the batch
*before* anything is stored and asks the caller to confirm.
"""

import logging
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence, Union

from imaging_engine.aggregator import aggregate_study
from imaging_engine.config import CONFIG
from imaging_engine.errors import BatchExhaustedError, StorageError, StudyNotFoundError
from imaging_engine.identity import validate_patient_match
from imaging_engine.metadata_parser import is_valid_dicom_extension, parse_dicom_file
from imaging_engine.models import (
    FileError,
    IdentityMatchResult,
    IngestionResult,
    ParsedImageMetadata,
    ParseResult,
    StoredImage,
    StudyAggregate,
    StudyPreview,
    UploadedFile,
)
from imaging_engine.storage import ByteStore, MetadataStore, store_with_retry
from imaging_engine.windowing import encode_png, render_dataset

logger = logging.getLogger(__name__)

FileInput = Union[UploadedFile, bytes]


def _as_upload(item: FileInput, index: int) -> UploadedFile:
    if isinstance(item, UploadedFile):
        return item
    return UploadedFile(filename=f"file_{index}", data=bytes(item))


def load_folder(folder: str, max_files: Optional[int] = None) -> list[UploadedFile]:
    """
    Read every DICOM-looking file in *folder* (sorted by name).

    Hidden files and names with a non-DICOM extension are skipped.
    """
    if not os.path.isdir(folder):
        logger.error("Input folder not found: %s", folder)
        return []

    names = sorted(
        f for f in os.listdir(folder)
        if not f.startswith(".") and is_valid_dicom_extension(f)
        and os.path.isfile(os.path.join(folder, f))
    )
    if max_files is not None:
        names = names[:max_files]

    uploads = []
    for name in names:
        with open(os.path.join(folder, name), "rb") as f:
            uploads.append(UploadedFile(filename=name, data=f.read()))
    return uploads


def parse_batch(
    uploads: Sequence[UploadedFile],
) -> tuple[list[tuple[int, UploadedFile, ParseResult]], list[FileError]]:
    """Parse each file independently, separating successes from failures."""
    parsed = []
    errors = []
    for index, upload in enumerate(uploads):
        result = parse_dicom_file(upload.data, filename=upload.filename)
        if result.success:
            parsed.append((index, upload, result))
        else:
            errors.append(FileError(index, upload.filename, result.error or "Parse failed"))
    return parsed, errors


def _path_hint(
    folder: str,
    clinic_id: Optional[str],
    patient_id: Optional[str],
    metadata: ParsedImageMetadata,
    extension: str,
) -> str:
    name = metadata.image.sop_instance_uid or uuid.uuid4().hex
    return "/".join([
        folder,
        clinic_id or "unassigned",
        patient_id or "unassigned",
        metadata.study.study_instance_uid or "unknown-study",
        f"{name}.{extension}",
    ])


def _store_one(
    upload: UploadedFile,
    parsed: ParseResult,
    byte_store: ByteStore,
    folder: str,
    clinic_id: Optional[str],
    patient_id: Optional[str],
    render_preview: bool,
) -> StoredImage:
    retry_cfg = CONFIG["storage"]["retry"]
    metadata = parsed.metadata
    stored = store_with_retry(
        byte_store,
        upload.data,
        _path_hint(folder, clinic_id, patient_id, metadata, "dcm"),
        max_attempts=retry_cfg["max_attempts"],
        base_delay=retry_cfg["base_delay"],
        max_delay=retry_cfg["max_delay"],
    )

    preview_url = None
    if render_preview:
        rendered = render_dataset(parsed.dataset)
        if rendered.success:
            try:
                preview = store_with_retry(
                    byte_store,
                    encode_png(rendered.image),
                    _path_hint(folder, clinic_id, patient_id, metadata, "png"),
                    max_attempts=retry_cfg["max_attempts"],
                    base_delay=retry_cfg["base_delay"],
                    max_delay=retry_cfg["max_delay"],
                )
                preview_url = preview.url
            except StorageError as exc:
                logger.warning("Preview not stored for %s: %s", upload.filename, exc)
        else:
            logger.warning("No preview for %s: %s", upload.filename, rendered.error)

    return StoredImage(
        metadata=metadata,
        url=stored.url,
        size_bytes=stored.size_bytes,
        preview_url=preview_url,
    )


def _check_identity(
    metadata_store: MetadataStore,
    patient_id: str,
    metadata: ParsedImageMetadata,
) -> IdentityMatchResult:
    candidate = metadata_store.find_patient_by_id(patient_id)
    if candidate is None:
        logger.warning("Patient record %s not found for identity check", patient_id)
    return validate_patient_match(metadata.patient, candidate)


def ingest_study(
    files: Sequence[FileInput],
    byte_store: ByteStore,
    metadata_store: MetadataStore,
    *,
    patient_id: Optional[str] = None,
    clinic_id: Optional[str] = None,
    visit_id: Optional[str] = None,
    validate_patient: Optional[bool] = None,
    acknowledged_mismatch: bool = False,
    render_previews: Optional[bool] = None,
    max_workers: Optional[int] = None,
    folder: Optional[str] = None,
) -> IngestionResult:
    """
    Ingest one upload batch as a study.

    Parameters
    ----------
    files : sequence of UploadedFile or bytes
        The batch, in upload order.
    byte_store : ByteStore
        Where file bytes (and previews) are written.
    metadata_store : MetadataStore
        Patient lookup and study persistence.
    patient_id, clinic_id, visit_id : str, optional
        Clinic linkage for the new study.
    validate_patient : bool, optional
        Reconcile the embedded identity with *patient_id*.  Defaults to
        the ``ingestion.validate_patient`` config value.
    acknowledged_mismatch : bool
        The user already confirmed a questionable identity.
    render_previews : bool, optional
        Also store a PNG preview per image.  Defaults to config.
    max_workers : int, optional
        Parallel storage writes.  Defaults to config.
    folder : str, optional
        Path-hint prefix.  Defaults to config.

    Returns
    -------
    IngestionResult
        Either the saved study, or ``requires_confirmation=True`` with the
        identity verdict and a study preview (nothing stored).

    Raises
    ------
    ValueError
        If *files* is empty.
    BatchExhaustedError
        If no file could be parsed, or none could be stored.
    """
    if not files:
        raise ValueError("No DICOM files provided")

    ingestion_cfg = CONFIG["ingestion"]
    if validate_patient is None:
        validate_patient = ingestion_cfg["validate_patient"]
    if render_previews is None:
        render_previews = ingestion_cfg["render_previews"]
    if max_workers is None:
        max_workers = ingestion_cfg["max_workers"]
    folder = folder or CONFIG["storage"]["folder"]

    uploads = [_as_upload(item, i) for i, item in enumerate(files)]
    logger.info("Starting ingestion: %d file(s).", len(uploads))

    parsed, errors = parse_batch(uploads)
    if not parsed:
        raise BatchExhaustedError("No valid DICOM files found", errors)

    first = parsed[0][2].metadata

    identity = None
    if validate_patient and patient_id:
        identity = _check_identity(metadata_store, patient_id, first)
        if identity.requires_confirmation and not acknowledged_mismatch:
            logger.info(
                "Identity confirmation required (confidence=%.2f); nothing stored.",
                identity.confidence,
            )
            return IngestionResult(
                success=False,
                requires_confirmation=True,
                identity=identity,
                preview=StudyPreview(
                    study_date=first.study.study_date,
                    modality=first.series.modality,
                    description=first.study.study_description,
                    total_images=len(parsed),
                ),
                errors=errors,
                total_files=len(uploads),
            )

    # Results are slotted by position so aggregation never depends on
    # which write finished first.
    slots: list[Optional[StoredImage]] = [None] * len(parsed)
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = [
            pool.submit(
                _store_one, upload, result, byte_store, folder,
                clinic_id, patient_id, render_previews,
            )
            for _, upload, result in parsed
        ]
        for slot, ((index, upload, _), future) in enumerate(zip(parsed, futures)):
            try:
                slots[slot] = future.result()
            except StorageError as exc:
                logger.warning("Could not store %s: %s", upload.filename, exc)
                errors.append(FileError(index, upload.filename, str(exc)))

    errors.sort(key=lambda e: e.index)
    stored = [s for s in slots if s is not None]
    if not stored:
        raise BatchExhaustedError("Failed to upload any DICOM files", errors)

    study = aggregate_study(
        stored,
        patient_id=patient_id,
        clinic_id=clinic_id,
        visit_id=visit_id,
        patient_id_validated=bool(identity and identity.is_match),
        mismatch_acknowledged=acknowledged_mismatch,
    )
    study_id = metadata_store.save_study(study)

    result = IngestionResult(
        success=True,
        study_id=study_id,
        study=study,
        identity=identity,
        errors=errors,
        total_files=len(uploads),
    )
    logger.info(result.summary())
    return result


def get_study_by_uid(metadata_store: MetadataStore, uid: str) -> StudyAggregate:
    """Fetch a stored study by StudyInstanceUID or raise StudyNotFoundError."""
    study = metadata_store.find_study_by_uid(uid)
    if study is None:
        raise StudyNotFoundError(f"Study not found: {uid}")
    return study


def delete_study(study: StudyAggregate, byte_store: ByteStore) -> int:
    """
    Delete every stored object (images and previews) of *study*.

    Failures are logged and skipped.  Returns the number of objects deleted.
    """
    deleted = 0
    for series in study.series:
        for image in series.images:
            for url in (image.image_url, image.preview_url):
                if not url:
                    continue
                try:
                    if byte_store.delete(url):
                        deleted += 1
                except Exception as exc:
                    logger.warning("Failed to delete %s: %s", url, exc)
    logger.info("Deleted %d stored object(s) for study %s", deleted, study.study_instance_uid)
    return deleted
