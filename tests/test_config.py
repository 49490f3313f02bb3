"""Tests for settings and range manifest loading."""

import json
from pathlib import Path

import pytest

from rangeclip.config import (
    VIDEO_EXTENSIONS,
    ExportConfig,
    RangeManifest,
    Settings,
    load_range_manifest,
    load_settings,
    save_range_manifest,
)
from rangeclip.models import CropRect, Range


class TestExportConfig:
    def test_defaults(self):
        cfg = ExportConfig()
        assert cfg.video_codec == "libx264"
        assert cfg.preset == "ultrafast"
        assert cfg.output_fps is None
        assert cfg.max_workers == 1
        assert cfg.even_crop is True
        assert cfg.suffix == ".mp4"

    def test_container_suffix(self):
        assert ExportConfig(container=".mkv").suffix == ".mkv"

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError, match="max_workers"):
            ExportConfig(max_workers=0)

    def test_rejects_negative_fps(self):
        with pytest.raises(ValueError, match="output_fps"):
            ExportConfig(output_fps=-1)


class TestSettings:
    def test_folders_start_unset(self):
        s = Settings()
        assert s.input_folder is None
        assert s.output_folder is None
        assert s.video_extensions == VIDEO_EXTENSIONS

    def test_load(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "input_folder": "/videos",
            "output_folder": "/clips",
            "video_extensions": ["MP4", ".mov"],
            "export": {"output_fps": 16, "max_workers": 2},
        }))
        s = load_settings(path)
        assert s.input_folder == Path("/videos")
        assert s.output_folder == Path("/clips")
        assert s.video_extensions == (".mp4", ".mov")
        assert s.export.output_fps == 16
        assert s.export.max_workers == 2
        assert s.export.video_codec == "libx264"

    def test_load_empty_object(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{}")
        s = load_settings(path)
        assert s.output_folder is None
        assert s.export == ExportConfig()

    def test_load_not_an_object(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError, match="JSON object"):
            load_settings(path)

    def test_unknown_export_key(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"export": {"bitrate": "8M"}}))
        with pytest.raises(ValueError, match="bitrate"):
            load_settings(path)


class TestLoadRangeManifest:
    def test_sample(self, sample_manifest_path):
        m = load_range_manifest(sample_manifest_path)
        assert m.version == "1"
        assert m.video == Path("clips/dog.mp4")
        assert m.output_folder == Path("out")
        assert [r.label for r in m.ranges] == ["walk", "marker", "sit"]
        assert (m.ranges[0].start, m.ranges[0].end) == (2.0, 5.0)
        assert m.ranges[1].is_zero_length
        assert m.ranges[2].crop == CropRect(0.1, 0.2, 0.5, 0.5)

    def test_ids_default_to_position(self, sample_manifest_path):
        m = load_range_manifest(sample_manifest_path)
        assert [r.id for r in m.ranges] == [0, 1, 2]

    def test_missing_fields(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"video": "a.mp4"}))
        with pytest.raises(ValueError, match="must contain"):
            load_range_manifest(path)

    def test_range_without_end(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"video": "a.mp4", "ranges": [{"start": 1.0}]}))
        with pytest.raises(ValueError, match="Range #0"):
            load_range_manifest(path)

    def test_null_time_is_a_value_error(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"video": "a.mp4", "ranges": [{"start": None, "end": 1.0}]}))
        with pytest.raises(ValueError, match="Range #0 is malformed"):
            load_range_manifest(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("not json")
        with pytest.raises(json.JSONDecodeError):
            load_range_manifest(path)

    def test_save_then_load(self, tmp_path):
        manifest = RangeManifest(
            video=Path("dog.mp4"),
            output_folder=Path("out"),
            ranges=[
                Range(id=0, start=2.0, end=5.0, label="marche à pied"),
                Range(id=3, start=7.5, end=9.0, crop=CropRect(0.1, 0.2, 0.5, 0.5)),
            ],
        )
        path = save_range_manifest(manifest, tmp_path / "ranges.json")
        loaded = load_range_manifest(path)
        assert loaded.ranges == manifest.ranges
        assert loaded.output_folder == Path("out")
