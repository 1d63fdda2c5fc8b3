import pytest

from anvesha.utils.config import Config, ConfigManager, load_config


VALID_CONFIG = """
crawler:
  seed_urls:
    - https://example.com
  max_pages: 50
  request_delay_ms: 250
database:
  type: sqlite
  sqlite:
    path: test.db
redis:
  password: secret
pagerank:
  convergence_threshold: 0.0001
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_CONFIG)
    return path


class TestLoadConfig:
    def test_values_and_defaults(self, config_file):
        config = load_config(str(config_file))

        assert config.crawler.seed_urls == ["https://example.com"]
        assert config.crawler.max_pages == 50
        assert config.crawler.request_delay_ms == 250
        assert config.crawler.max_depth == 3
        assert config.crawler.max_admitted == 500
        assert config.database.sqlite['path'] == "test.db"
        assert config.pagerank.convergence_threshold == pytest.approx(1e-4)
        assert config.pagerank.damping_factor == 0.85
        assert config.logging.level == "INFO"

    def test_command_line_overrides(self, config_file):
        config = load_config(str(config_file), seed_urls=["https://a.com", "https://b.com"],
                             max_pages=7)
        assert config.crawler.seed_urls == ["https://a.com", "https://b.com"]
        assert config.crawler.max_pages == 7

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("crawler: [unclosed")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_missing_seeds(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("crawler:\n  max_pages: 5\n")

        with pytest.raises(ValueError, match="seed URL"):
            load_config(str(path))

        config = ConfigManager(str(path)).load_config(require_seeds=False)
        assert config.crawler.seed_urls == []

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "blank.yaml"
        path.write_text("")
        config = ConfigManager(str(path)).load_config(require_seeds=False)
        assert config.crawler.max_pages == 10000


class TestValidation:
    @pytest.mark.parametrize("data", [
        {'crawlr': {}},
        {'crawler': {'max_pagez': 10}},
    ])
    def test_unknown_names(self, data):
        with pytest.raises(ValueError, match="Unknown"):
            ConfigManager.parse(data)

    @pytest.mark.parametrize("section, key, value", [
        ('crawler', 'max_pages', 0),
        ('crawler', 'concurrent_requests', 0),
        ('crawler', 'request_delay_ms', -1),
        ('crawler', 'poll_interval', 0),
        ('database', 'type', 'mongodb'),
        ('pagerank', 'damping_factor', 1.5),
    ])
    def test_invalid_values(self, section, key, value):
        config = ConfigManager.parse({'crawler': {'seed_urls': ['https://example.com']}})
        setattr(getattr(config, section), key, value)
        with pytest.raises(ValueError):
            ConfigManager.validate(config)

    @pytest.mark.parametrize("data, message", [
        ({'crawler': {'max_pages': 'ten'}}, "crawler.max_pages"),
        ({'crawler': {'max_pages': 2.5}}, "crawler.max_pages"),
        ({'crawler': {'respect_robots_txt': 'no'}}, "crawler.respect_robots_txt"),
        ({'crawler': {'seed_urls': 'https://example.com'}}, "crawler.seed_urls"),
        ({'redis': {'port': True}}, "redis.port"),
        ({'logging': {'level': 10}}, "logging.level"),
        ({'database': 5}, "database"),
    ])
    def test_wrong_types_are_rejected(self, data, message):
        with pytest.raises(ValueError, match=message):
            ConfigManager.parse(data)

    def test_numeric_strings_are_coerced(self):
        config = ConfigManager.parse({
            'crawler': {'max_pages': '10', 'request_timeout': '1.5', 'fetch_deadline': 5},
            'redis': {'password': None},
        })
        assert config.crawler.max_pages == 10
        assert config.crawler.request_timeout == 1.5
        assert isinstance(config.crawler.fetch_deadline, float)
        assert config.redis.password is None

    def test_manager_requires_load(self, config_file):
        manager = ConfigManager(str(config_file))
        with pytest.raises(ValueError):
            manager.config
        manager.load_config()
        assert manager.config.crawler.max_pages == 50


def test_snapshot_masks_credentials(config_file):
    snapshot = load_config(str(config_file)).to_snapshot()
    assert snapshot['redis']['password'] == '***'
    assert snapshot['database']['postgresql']['dsn'] == '***'
    assert snapshot['crawler']['max_pages'] == 50
    assert Config().to_snapshot()['redis']['password'] is None
