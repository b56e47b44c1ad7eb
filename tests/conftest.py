"""Shared fixtures: synthetic DICOM files built in memory."""

from io import BytesIO

import numpy as np
import pydicom
import pytest
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian

STUDY_UID = "1.2.826.0.1.3680043.8.498.1"
SERIES_UID = "1.2.826.0.1.3680043.8.498.1.1"


def make_dataset(
    pixels=None,
    instance_number=1,
    series_uid=SERIES_UID,
    **tags,
) -> FileDataset:
    """Build a minimal single-frame CT dataset; *tags* override or add attributes."""
    if pixels is None:
        pixels = np.arange(16, dtype=np.uint16).reshape(4, 4)

    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.2")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(filename_or_obj=None, dataset={}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.PatientName = "Doe^John"
    ds.PatientID = "ABC-123"
    ds.PatientBirthDate = "19800115"
    ds.PatientSex = "M"
    ds.StudyInstanceUID = STUDY_UID
    ds.StudyDate = "20230601"
    ds.StudyTime = "120000"
    ds.StudyDescription = "CT CHEST"
    ds.AccessionNumber = "ACC001"
    ds.SeriesInstanceUID = series_uid
    ds.SeriesNumber = 1
    ds.SeriesDescription = "AXIAL"
    ds.Modality = "CT"
    ds.SOPClassUID = file_meta.MediaStorageSOPClassUID
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    if instance_number is not None:
        ds.InstanceNumber = instance_number
    ds.InstitutionName = "General Hospital"
    ds.ReferringPhysicianName = "Smith^Jane"

    ds.Rows, ds.Columns = pixels.shape
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 1 if pixels.dtype.kind == "i" else 0
    ds.BitsAllocated = pixels.dtype.itemsize * 8
    ds.BitsStored = pixels.dtype.itemsize * 8
    ds.HighBit = pixels.dtype.itemsize * 8 - 1
    ds.PixelData = pixels.tobytes()

    for key, value in tags.items():
        setattr(ds, key, value)
    return ds


def to_bytes(ds: FileDataset) -> bytes:
    buf = BytesIO()
    ds.save_as(buf)
    return buf.getvalue()


@pytest.fixture
def dicom_dataset():
    """Factory fixture returning an in-memory FileDataset."""
    return make_dataset


@pytest.fixture
def encode_dicom():
    """Serialise a dataset built with ``dicom_dataset`` to file bytes."""
    return to_bytes


@pytest.fixture
def dicom_bytes():
    """Factory fixture: ``dicom_bytes(instance_number=2, Modality="MR")``."""
    def _factory(**kwargs) -> bytes:
        return to_bytes(make_dataset(**kwargs))
    return _factory
