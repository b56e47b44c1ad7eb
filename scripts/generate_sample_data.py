"""
generate_sample_data.py - Create a synthetic DICOM study for local runs.

Writes one CT study (two series, several slices each) to data/raw/ so the
ingestion engine can be tried without real patient data.  Slices are
written in shuffled order to show that the engine orders them by
InstanceNumber, not by file name.

Usage
-----
    python scripts/generate_sample_data.py

Then:
    python scripts/ingest_folder.py --patient-id 00042
"""

import os
import sys

import numpy as np
import pydicom
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian

# Make sure repo root is on the path when run as a script
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

from imaging_engine.config import CONFIG  # noqa: E402  import after path fix

OUTPUT_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["input_folder"])

# (series number, description, slice count, mean value, std dev)
_SERIES_PROFILES = [
    (1, "AXIAL 5mm", 4, 1050, 180),
    (2, "CORONAL MPR", 3, 1020, 175),
]


def _make_dicom(
    path: str,
    study_uid: str,
    series_uid: str,
    series_number: int,
    series_description: str,
    instance_number: int,
    mean_val: float,
    std_val: float,
    size: int = 64,
    seed: int = 42,
) -> None:
    """
    Write a single synthetic CT slice.

    Pixel values are drawn from a Normal distribution, then a bright square
    is added to simulate a bone / high-density region.
    """
    rng = np.random.default_rng(seed)
    pixels = rng.normal(mean_val, std_val, size=(size, size))
    pixels = pixels.clip(0, 4095).astype(np.uint16)
    sq = size // 4
    pixels[sq : sq * 2, sq : sq * 2] = min(int(mean_val * 1.8), 4095)

    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.2")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)

    # --- Identity (reconciled against the clinic record) ---
    ds.PatientName = "Synthetic^Alice^M"
    ds.PatientID = "00042"
    ds.PatientBirthDate = "19800101"
    ds.PatientSex = "F"

    # --- Study / series / instance ---
    ds.StudyInstanceUID = study_uid
    ds.StudyDate = "20230601"
    ds.StudyTime = "120000"
    ds.StudyDescription = "CT HEAD WO CONTRAST"
    ds.AccessionNumber = "ACC00042"
    ds.SeriesInstanceUID = series_uid
    ds.SeriesNumber = series_number
    ds.SeriesDescription = series_description
    ds.Modality = "CT"
    ds.BodyPartExamined = "HEAD"
    ds.SOPClassUID = file_meta.MediaStorageSOPClassUID
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.InstanceNumber = instance_number
    ds.SliceThickness = 5.0
    ds.SliceLocation = 5.0 * instance_number
    ds.InstitutionName = "City General Hospital"
    ds.ReferringPhysicianName = "Smith^Jane"

    # --- Pixel data ---
    ds.WindowCenter = 1100
    ds.WindowWidth = 800
    ds.Rows = size
    ds.Columns = size
    ds.PixelSpacing = [0.7, 0.7]
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.PixelData = pixels.tobytes()

    ds.save_as(path)


def generate(output_folder: str = OUTPUT_FOLDER) -> None:
    """Generate the synthetic study into *output_folder*."""
    os.makedirs(output_folder, exist_ok=True)
    study_uid = pydicom.uid.generate_uid()
    rng = np.random.default_rng(7)

    print(f"Writing synthetic study {study_uid} to: {output_folder}")
    print("-" * 60)

    file_no = 0
    for series_number, description, n_slices, mean_val, std_val in _SERIES_PROFILES:
        series_uid = pydicom.uid.generate_uid()
        for instance_number in rng.permutation(np.arange(1, n_slices + 1)):
            file_no += 1
            filename = f"img_{file_no:03d}.dcm"
            _make_dicom(
                path=os.path.join(output_folder, filename),
                study_uid=study_uid,
                series_uid=series_uid,
                series_number=series_number,
                series_description=description,
                instance_number=int(instance_number),
                mean_val=mean_val,
                std_val=std_val,
                seed=42 + file_no,
            )
            print(f"  {filename}  series {series_number}  instance {int(instance_number)}")

    print("-" * 60)
    print("Done.  Ingest with:")
    print("  python scripts/ingest_folder.py --patient-id 00042")


if __name__ == "__main__":
    generate()
