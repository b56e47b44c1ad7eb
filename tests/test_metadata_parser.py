"""Tests for imaging_engine/metadata_parser.py."""

import datetime
from io import BytesIO
from unittest.mock import patch

import numpy as np
import pydicom
import pytest
from pydicom.dataset import Dataset
from pydicom.errors import InvalidDicomError

from imaging_engine.errors import StructuralParseError
from imaging_engine.metadata_parser import (
    extract_metadata,
    is_valid_dicom_extension,
    parse_dicom_file,
    read_dataset,
    validate_dicom_file,
)

# Non-DICOM content long enough to pass the size check
JUNK_INPUTS = [
    b"\x00" * 400,
    b"A" * 300,
    b"hello world " * 40,
    np.random.default_rng(7).bytes(500),
]
JUNK_IDS = ["zeros", "repeated-byte", "text", "random"]
MARKER_THEN_TEXT = b"\x00" * 128 + b"DICM" + b"hello world " * 20


class TestParseDicomFile:
    def test_full_record(self, dicom_bytes):
        result = parse_dicom_file(
            dicom_bytes(
                instance_number=3,
                PixelSpacing=[0.5, 0.5],
                WindowCenter=40,
                WindowWidth=400,
                SliceThickness=2.5,
                BodyPartExamined="CHEST",
            ),
            filename="a.dcm",
        )
        assert result.success
        meta = result.metadata

        assert meta.patient.patient_id == "ABC-123"
        assert meta.patient.patient_name == "John Doe"
        assert meta.patient.birth_date == datetime.date(1980, 1, 15)
        assert meta.patient.sex == "M"

        assert meta.study.study_date == datetime.date(2023, 6, 1)
        assert meta.study.study_description == "CT CHEST"
        assert meta.study.accession_number == "ACC001"

        assert meta.series.modality == "CT"
        assert meta.series.series_number == 1
        assert meta.series.body_part_examined == "CHEST"

        assert meta.image.instance_number == 3
        assert (meta.image.rows, meta.image.columns) == (4, 4)
        assert meta.image.bits_allocated == 16
        assert meta.image.pixel_spacing == (0.5, 0.5)
        assert meta.image.window_center == pytest.approx(40)
        assert meta.image.slice_thickness == pytest.approx(2.5)

        assert meta.institution.institution_name == "General Hospital"
        assert meta.institution.referring_physician == "Jane Smith"

    def test_unknown_modality_coerced(self, dicom_bytes):
        result = parse_dicom_file(dicom_bytes(Modality="SR"))
        assert result.metadata.series.modality == "OT"

    def test_missing_optional_tags_are_none(self, dicom_dataset, encode_dicom):
        ds = dicom_dataset(instance_number=None)
        for name in ("PatientBirthDate", "StudyDescription", "Modality", "ReferringPhysicianName"):
            delattr(ds, name)
        result = parse_dicom_file(encode_dicom(ds))

        assert result.success
        assert result.metadata.patient.birth_date is None
        assert result.metadata.study.study_description is None
        assert result.metadata.image.instance_number is None
        assert result.metadata.series.modality == "OT"
        assert result.metadata.institution.referring_physician is None

    def test_too_small_file_fails(self):
        result = parse_dicom_file(b"not a dicom file", filename="junk.dcm")
        assert not result.success
        assert result.filename == "junk.dcm"
        assert "too small" in result.error

    @pytest.mark.parametrize("data", JUNK_INPUTS, ids=JUNK_IDS)
    def test_junk_bytes_fail_structurally(self, data):
        result = parse_dicom_file(data, filename="junk.dcm")
        assert not result.success
        assert result.metadata is None
        assert result.error.startswith("Not a valid DICOM file")

    def test_marker_followed_by_junk_fails(self):
        result = parse_dicom_file(MARKER_THEN_TEXT)
        assert not result.success
        assert result.metadata is None

    def test_decoder_error_is_returned_not_raised(self, dicom_bytes):
        with patch("imaging_engine.metadata_parser.pydicom.dcmread",
                   side_effect=InvalidDicomError("bad header")):
            result = parse_dicom_file(dicom_bytes())
        assert not result.success
        assert "bad header" in result.error

    def test_dataset_kept_for_rendering(self, dicom_bytes):
        result = parse_dicom_file(dicom_bytes())
        assert result.dataset is not None
        assert result.dataset.Rows == 4


class TestReadDataset:
    def test_file_without_preamble(self):
        ds = Dataset()
        ds.PatientID = "NOPREAMBLE"
        ds.Modality = "MR"
        buf = BytesIO()
        pydicom.dcmwrite(buf, ds, implicit_vr=True, little_endian=True)

        decoded = read_dataset(buf.getvalue())
        assert extract_metadata(decoded).patient.patient_id == "NOPREAMBLE"

    def test_decode_error_raises_structural_error(self, dicom_bytes):
        with patch("imaging_engine.metadata_parser.pydicom.dcmread",
                   side_effect=ValueError("boom")):
            with pytest.raises(StructuralParseError):
                read_dataset(dicom_bytes())


class TestValidateDicomFile:
    def test_marker_accepted(self, dicom_bytes):
        assert validate_dicom_file(dicom_bytes()).is_valid

    def test_too_small_rejected(self):
        result = validate_dicom_file(b"\x00" * 64)
        assert not result.is_valid
        assert "too small" in result.error

    @pytest.mark.parametrize("data", JUNK_INPUTS, ids=JUNK_IDS)
    def test_no_marker_and_unreadable_rejected(self, data):
        result = validate_dicom_file(data)
        assert not result.is_valid
        assert result.error == "Not a valid DICOM file"

    def test_no_marker_but_decodable_accepted(self):
        ds = Dataset()
        ds.PatientID = "NOPREAMBLE"
        ds.StudyDescription = "X" * 200
        buf = BytesIO()
        pydicom.dcmwrite(buf, ds, implicit_vr=True, little_endian=True)
        assert validate_dicom_file(buf.getvalue()).is_valid


class TestDicomExtension:
    @pytest.mark.parametrize("name", ["scan.dcm", "SCAN.DCM", "a.dicom", "b.dic", "IM0001"])
    def test_accepted(self, name):
        assert is_valid_dicom_extension(name)

    @pytest.mark.parametrize("name", [None, "", "photo.jpg", "notes.txt"])
    def test_rejected(self, name):
        assert not is_valid_dicom_extension(name)
