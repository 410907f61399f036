"""Tests for component layout tables."""

import json

import pytest

from cvd2img.config import layouts
from cvd2img.domain.models import BlankRegion, FileSource
from cvd2img.images.exceptions import ImageIOError, LayoutError


class TestBuiltinLayouts:
    def test_system_layout_order(self):
        layout = layouts.system_layout()
        names = [spec.partition_name for spec in layout]
        assert len(layout) == 18
        assert names[0] == "misc"
        assert names[1:3] == ["boot_a", "boot_b"]
        assert names[-3:] == ["super", "userdata", "metadata"]

    def test_system_layout_blank_regions(self):
        layout = layouts.system_layout()
        assert layout[0].source == BlankRegion(1048576)
        assert layout[-1].source == BlankRegion(67108864)
        assert layout[1].source == FileSource("boot.img")

    def test_properties_layout(self):
        layout = layouts.properties_layout()
        assert [(str(spec.source), spec.partition_name) for spec in layout] == [
            ("uboot_env.img", "uboot_env"),
            ("vbmeta.img", "vbmeta"),
            ("blank:1048576", "frp"),
            ("bootconfig", "bootconfig"),
        ]


class TestParseComponent:
    def test_blank_token(self):
        spec = layouts.parse_component("blank:4096", "frp")
        assert spec.source == BlankRegion(4096)
        assert spec.partition_name == "frp"

    def test_file_token(self):
        spec = layouts.parse_component("boot.img", "boot_a")
        assert spec.source == FileSource("boot.img")

    @pytest.mark.parametrize("token", ["blank:", "blank:abc", "blank:0", "blank:-5"])
    def test_invalid_blank_token(self, token):
        with pytest.raises(LayoutError):
            layouts.parse_component(token, "misc")

    def test_empty_partition_name(self):
        with pytest.raises(LayoutError, match="Empty partition name"):
            layouts.parse_component("boot.img", " ")


class TestBuildLayout:
    def test_rejects_duplicates(self):
        with pytest.raises(LayoutError, match="Duplicate partition name: misc"):
            layouts.build_layout([("blank:512", "misc"), ("boot.img", "misc")])

    def test_rejects_empty(self):
        with pytest.raises(LayoutError, match="no components"):
            layouts.build_layout([])

    def test_rejects_bad_entry_shape(self):
        with pytest.raises(LayoutError):
            layouts.build_layout([("boot.img",)])


class TestLoadLayout:
    def test_load_dict_entries(self, tmp_path):
        path = tmp_path / "layout.json"
        path.write_text(
            json.dumps(
                [
                    {"source": "blank:512", "partition": "misc"},
                    {"source": "boot.img", "partition": "boot"},
                ]
            )
        )
        layout = layouts.load_layout(path)
        assert [spec.partition_name for spec in layout] == ["misc", "boot"]
        assert layout[0].is_blank

    def test_load_pair_entries(self, tmp_path):
        path = tmp_path / "layout.json"
        path.write_text(json.dumps([["boot.img", "boot"]]))
        assert layouts.load_layout(path)[0].source == FileSource("boot.img")

    def test_missing_key(self, tmp_path):
        path = tmp_path / "layout.json"
        path.write_text(json.dumps([{"source": "boot.img"}]))
        with pytest.raises(LayoutError, match="partition"):
            layouts.load_layout(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "layout.json"
        path.write_text("{not json")
        with pytest.raises(LayoutError, match="Invalid layout file"):
            layouts.load_layout(path)

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "layout.json"
        path.write_text(json.dumps({"source": "boot.img"}))
        with pytest.raises(LayoutError, match="must contain a list"):
            layouts.load_layout(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ImageIOError):
            layouts.load_layout(tmp_path / "missing.json")
