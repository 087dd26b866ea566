"""
Tests for configuration loading.
"""
import json

import yaml

from wikifeed.config import DEFAULT_CONFIG, Config


class TestConfig:
    """Defaults, files and environment overrides."""

    def test_defaults_are_copied(self):
        config = Config()
        config.config['buffer']['low_water_mark'] = 99
        assert DEFAULT_CONFIG['buffer']['low_water_mark'] == 10
        assert Config().get('buffer.low_water_mark') == 10

    def test_yaml_file_is_merged(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({'buffer': {'batch_size': 8}, 'language': {'default': 'de'}}))

        config = Config(str(path))
        assert config.get('buffer.batch_size') == 8
        assert config.get('buffer.low_water_mark') == 10
        assert config.get('language.default') == 'de'

    def test_json_file_is_merged(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'feed': {'interval': 4}}))
        assert Config(str(path)).get('feed.interval') == 4

    def test_bad_files_fall_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[buffer]\nbatch_size = 8\n")
        assert Config(str(path)).get('buffer.batch_size') == 5
        assert Config(str(tmp_path / "missing.yaml")).get('buffer.batch_size') == 5

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv('WIKIFEED_BUFFER__LOW_WATER_MARK', '20')
        monkeypatch.setenv('WIKIFEED_STORAGE__PATH', '/tmp/feed.db')
        monkeypatch.setenv('WIKIFEED_IGNORED', 'x')

        config = Config()
        assert config.get('buffer.low_water_mark') == 20
        assert config.get('storage.path') == '/tmp/feed.db'
        assert 'ignored' not in config.config

    def test_missing_keys(self):
        config = Config()
        assert config.get('buffer.nope', 7) == 7
        assert config.get('buffer.batch_size.deeper') is None

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "saved.yml"
        config = Config()
        config.config['recommendations']['max_results'] = 12

        assert config.save(str(path)) is True
        assert Config(str(path)).get('recommendations.max_results') == 12
        assert config.save(str(tmp_path / "saved.ini")) is False
        assert Config().save() is False
