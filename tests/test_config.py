"""Tests for configuration loading and validation."""

import pytest

from restyler.core.config import Config, EditConfig, ReassemblyConfig, SamplingConfig, get_config, reset_config, set_config
from restyler.core.exceptions import ConfigurationError


class TestDefaults:

    def test_defaults(self):
        config = Config()
        assert config.sampling.interval_frames == 30
        assert config.sampling.max_frames == 10
        assert config.edit.prompt_ceiling == 2000
        assert config.analysis.spec_ceiling == 5000
        assert config.reassembly.max_attempts == 2
        assert config.reassembly.retry_delay == 2.0
        assert config.reassembly.prevalidate_sample == 3
        assert config.pipeline.strategy == "broadcast"

    def test_to_dict_has_all_sections(self):
        assert set(Config().to_dict()) == set(Config.SECTIONS)


class TestValidation:

    def test_invalid_sampling(self):
        with pytest.raises(ConfigurationError):
            SamplingConfig(interval_frames=0)

    def test_invalid_edit_format(self):
        with pytest.raises(ConfigurationError):
            EditConfig(output_format="gif")

    def test_invalid_output_format(self):
        with pytest.raises(ConfigurationError):
            ReassemblyConfig(output_format="avi")

    def test_invalid_strategy(self):
        with pytest.raises(ConfigurationError):
            Config.from_dict({"pipeline": {"strategy": "sideways"}})

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError):
            Config.from_dict({"edit": {"colour": "blue"}})


class TestLoad:

    def test_load_yaml_with_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RESTYLER_TEST_TEMP", str(tmp_path))
        path = tmp_path / "config.yaml"
        path.write_text(
            "sampling:\n"
            "  max_frames: 4\n"
            "pipeline:\n"
            "  strategy: chain\n"
            "storage:\n"
            "  temp_root: ${RESTYLER_TEST_TEMP}\n"
            "  output_path: ${RESTYLER_MISSING:-./out}\n"
        )

        config = Config.load(path)

        assert config.sampling.max_frames == 4
        assert config.sampling.interval_frames == 30
        assert config.pipeline.strategy == "chain"
        assert config.storage.temp_root == str(tmp_path)
        assert config.storage.output_path == "./out"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            Config.load(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("sampling: [unclosed\n")
        with pytest.raises(ConfigurationError):
            Config.load(path)

    def test_global_config(self):
        config = Config.from_dict({"sampling": {"max_frames": 3}})
        try:
            set_config(config)
            assert get_config() is config
        finally:
            reset_config()
