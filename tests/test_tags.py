"""Tests for imaging_engine/tags.py."""

import pytest
from pydicom.dataset import Dataset

from imaging_engine.tags import (
    TAGS,
    get_bytes,
    get_number,
    get_number_array,
    get_string,
)


class TestTagDictionary:
    def test_is_read_only(self):
        with pytest.raises(TypeError):
            TAGS["PatientID"] = 0

    def test_known_tag_values(self):
        assert TAGS["PatientID"] == 0x00100020
        assert TAGS["StudyInstanceUID"] == 0x0020000D
        assert TAGS["PixelData"] == 0x7FE00010


class TestGetString:
    def test_trims_whitespace(self):
        ds = Dataset()
        ds.StudyDescription = "  CT HEAD  "
        assert get_string(ds, TAGS["StudyDescription"]) == "CT HEAD"

    def test_missing_tag_is_none(self):
        assert get_string(Dataset(), TAGS["StudyDescription"]) is None

    def test_blank_value_is_none(self):
        ds = Dataset()
        ds.StudyDescription = "   "
        assert get_string(ds, TAGS["StudyDescription"]) is None

    def test_person_name_keeps_caret_form(self):
        ds = Dataset()
        ds.PatientName = "Doe^John"
        assert get_string(ds, TAGS["PatientName"]) == "Doe^John"

    def test_multi_value_joined_with_backslash(self):
        ds = Dataset()
        ds.PixelSpacing = [0.5, 0.75]
        assert get_string(ds, TAGS["PixelSpacing"]) == "0.5\\0.75"


class TestGetNumber:
    def test_native_integer(self):
        ds = Dataset()
        ds.Rows = 512
        assert get_number(ds, TAGS["Rows"]) == 512

    def test_integer_string(self):
        ds = Dataset()
        ds.InstanceNumber = 7
        value = get_number(ds, TAGS["InstanceNumber"])
        assert value == 7
        assert isinstance(value, int)

    def test_decimal_value(self):
        ds = Dataset()
        ds.SliceThickness = 2.5
        assert get_number(ds, TAGS["SliceThickness"]) == pytest.approx(2.5)

    def test_falls_back_to_float_parse_of_text(self):
        ds = Dataset()
        ds.add_new(TAGS["InstanceNumber"], "LO", "7.5")
        assert get_number(ds, TAGS["InstanceNumber"]) == pytest.approx(7.5)

    def test_unparseable_text_is_none(self):
        ds = Dataset()
        ds.add_new(TAGS["InstanceNumber"], "LO", "abc")
        assert get_number(ds, TAGS["InstanceNumber"]) is None

    def test_multi_value_uses_first(self):
        ds = Dataset()
        ds.WindowCenter = [40, 400]
        assert get_number(ds, TAGS["WindowCenter"]) == pytest.approx(40)

    def test_missing_is_none(self):
        assert get_number(Dataset(), TAGS["Rows"]) is None


class TestGetNumberArray:
    def test_parses_components(self):
        ds = Dataset()
        ds.PixelSpacing = [0.5, 0.75]
        assert get_number_array(ds, TAGS["PixelSpacing"]) == [0.5, 0.75]

    def test_drops_bad_components(self):
        ds = Dataset()
        ds.add_new(TAGS["PixelSpacing"], "LO", "0.5\\abc\\0.7")
        assert get_number_array(ds, TAGS["PixelSpacing"]) == [0.5, 0.7]

    def test_missing_is_none(self):
        assert get_number_array(Dataset(), TAGS["PixelSpacing"]) is None


class TestGetBytes:
    def test_reads_pixel_block(self):
        ds = Dataset()
        ds.PixelData = b"\x01\x02\x03\x04"
        assert get_bytes(ds, TAGS["PixelData"]) == b"\x01\x02\x03\x04"

    def test_missing_is_none(self):
        assert get_bytes(Dataset(), TAGS["PixelData"]) is None
