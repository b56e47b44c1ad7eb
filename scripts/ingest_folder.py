"""
ingest_folder.py - Run the ingestion engine over a folder of DICOM files.

Uses the filesystem byte store under data/store/ and an in-memory
metadata store seeded with one demo patient, so the whole flow (identity
check, storage, aggregation) can be exercised locally.

Usage
-----
    python scripts/ingest_folder.py [--patient-id ID] [--acknowledge] [--previews]
"""

import argparse
import logging
import os
import sys

# Ensure repo root is on sys.path regardless of launch directory
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

from imaging_engine.config import CONFIG  # noqa: E402
from imaging_engine.errors import BatchExhaustedError  # noqa: E402
from imaging_engine.pipeline import ingest_study, load_folder  # noqa: E402
from imaging_engine.storage import InMemoryMetadataStore, LocalByteStore  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)-8s %(message)s",
)
logger = logging.getLogger(__name__)

INPUT_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["input_folder"])
STORAGE_ROOT = os.path.join(_REPO_ROOT, CONFIG["paths"]["storage_root"])

DEMO_PATIENTS = {
    "00042": {
        "id": "00042",
        "name": "Alice M Synthetic",
        "date_of_birth": "1980-01-01",
        "gender": "female",
        "medical_record_number": "MRN-00042",
    },
}


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Ingest a folder of DICOM files as one study.")
    p.add_argument("--input", default=INPUT_FOLDER, help="Folder with DICOM files.")
    p.add_argument("--storage-root", default=STORAGE_ROOT, help="Byte store root folder.")
    p.add_argument("--patient-id", default=None, help="Clinic patient to attach the study to.")
    p.add_argument("--clinic-id", default="demo-clinic")
    p.add_argument("--acknowledge", action="store_true",
                   help="Proceed even if the patient identity does not match.")
    p.add_argument("--previews", action="store_true", help="Also store PNG previews.")
    p.add_argument("--max-files", type=int, default=None)
    return p


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    uploads = load_folder(args.input, max_files=args.max_files)
    if not uploads:
        logger.error("No DICOM files found in %s", args.input)
        return 1

    try:
        result = ingest_study(
            uploads,
            LocalByteStore(args.storage_root),
            InMemoryMetadataStore(DEMO_PATIENTS),
            patient_id=args.patient_id,
            clinic_id=args.clinic_id,
            acknowledged_mismatch=args.acknowledge,
            render_previews=args.previews,
        )
    except BatchExhaustedError as exc:
        logger.error("%s (%d file error(s))", exc, len(exc.errors))
        return 1

    print(result.summary())
    if result.requires_confirmation:
        print("\nRe-run with --acknowledge to store the study anyway.")
        return 2

    study = result.study
    for series in study.series:
        numbers = [img.instance_number for img in series.images]
        print(f"  Series {series.series_number} ({series.series_description}): {numbers}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
