"""Tests for the Lore configuration system."""

import json
from pathlib import Path

import pytest

from lore.config import (
    DEFAULT_EMBEDDING_MODEL,
    LoreConfig,
    get_config_path,
    get_lore_home,
    get_project_dir,
    load_config,
    save_config,
)


class TestLoreConfigDefaults:
    """Tests for LoreConfig default values."""

    def test_default_lore_home(self) -> None:
        """Default lore_home is ~/.lore."""
        assert LoreConfig().lore_home == Path.home() / ".lore"

    def test_lore_home_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """$LORE_HOME overrides the default home."""
        monkeypatch.setenv("LORE_HOME", str(tmp_path / "elsewhere"))
        assert LoreConfig().lore_home == tmp_path / "elsewhere"

    def test_default_embedding(self) -> None:
        config = LoreConfig()
        assert config.embedding_model == DEFAULT_EMBEDDING_MODEL
        assert config.embedding_dimension == 384

    def test_default_thresholds(self) -> None:
        """Insights have the lowest bar, tasks the highest."""
        thresholds = LoreConfig().quality_thresholds
        assert thresholds["insight"] < thresholds["decision"] < thresholds["task"]

    def test_default_retention(self) -> None:
        config = LoreConfig()
        assert config.max_sessions_stored == 100
        assert config.merge_policy == "overwrite"

    def test_instances_do_not_share_maps(self) -> None:
        a = LoreConfig()
        a.quality_thresholds["decision"] = 0.9
        assert LoreConfig().quality_thresholds["decision"] == 0.35


class TestLoreConfigSerialization:
    """Tests for LoreConfig.to_dict() and from_dict()."""

    def test_to_dict_converts_path_to_string(self) -> None:
        data = LoreConfig(lore_home=Path("/tmp/lore")).to_dict()
        assert data["lore_home"] == "/tmp/lore"

    def test_round_trip(self) -> None:
        config = LoreConfig(lore_home=Path("/tmp/lore"), max_sessions_stored=7, merge_policy="append")
        restored = LoreConfig.from_dict(config.to_dict())
        assert restored == config

    def test_partial_thresholds_merge_over_defaults(self) -> None:
        """Overriding one type keeps the defaults for the others."""
        config = LoreConfig.from_dict({"quality_thresholds": {"insight": 0.2}})
        assert config.quality_thresholds["insight"] == 0.2
        assert config.quality_thresholds["decision"] == 0.35

    def test_unusable_threshold_entries_dropped(self) -> None:
        config = LoreConfig.from_dict({"quality_thresholds": {"task": "high"}})
        assert config.quality_thresholds["task"] == 0.40

    def test_unknown_merge_policy_falls_back(self) -> None:
        assert LoreConfig.from_dict({"merge_policy": "clobber"}).merge_policy == "overwrite"


class TestPaths:
    """Tests for directory helpers."""

    def test_get_lore_home_creates_directory(self, tmp_path: Path) -> None:
        config = LoreConfig(lore_home=tmp_path / "home")
        assert get_lore_home(config).is_dir()

    def test_get_project_dir(self, sample_config: LoreConfig) -> None:
        project_dir = get_project_dir("abc123", sample_config)
        assert project_dir == sample_config.lore_home / "projects" / "abc123"
        assert project_dir.is_dir()

    def test_get_config_path(self, sample_config: LoreConfig) -> None:
        assert get_config_path(sample_config) == sample_config.lore_home / "config.json"


class TestLoadSave:
    """Tests for config persistence."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)
        assert config.lore_home == tmp_path
        assert config.max_sessions_stored == 100

    def test_save_then_load(self, tmp_path: Path) -> None:
        save_config(LoreConfig(lore_home=tmp_path, max_sessions_stored=5))
        assert load_config(tmp_path).max_sessions_stored == 5

    def test_save_leaves_no_tmp_file(self, tmp_path: Path) -> None:
        save_config(LoreConfig(lore_home=tmp_path))
        assert not (tmp_path / "config.json.tmp").exists()
        assert json.loads((tmp_path / "config.json").read_text())["lore_home"] == str(tmp_path)

    def test_corrupt_file_gives_defaults(self, tmp_path: Path) -> None:
        (tmp_path / "config.json").write_text("{not json")
        config = load_config(tmp_path)
        assert config.merge_policy == "overwrite"

    def test_explicit_home_wins_over_file(self, tmp_path: Path) -> None:
        (tmp_path / "config.json").write_text(json.dumps({"lore_home": "/somewhere/else"}))
        assert load_config(tmp_path).lore_home == tmp_path
