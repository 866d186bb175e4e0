from pathlib import Path

import pytest

from modguard.configuration.app_configuration import AppConfig


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "app_config.yml"


def test_app_config_reload_parses_yaml(config_path: Path) -> None:
    config_path.write_text(
        "\n".join([
            "database:",
            "  path: ./data/test.db",
            "thresholds:",
            "  near_threshold_ratio: 0.75",
            "  strict_mode_factor: 0.25",
            "dispatch:",
            "  max_attempts: 5",
            "  backoff_base_seconds: 0.1",
            "  default_timeout_minutes: 15",
            "appeals:",
            "  cooldown_hours: 12",
            "  abandonment_hours: 48",
            "queue:",
            "  max_size: 50",
            "  worker_pool_size: 4",
            "maintenance:",
            "  sweep_interval_seconds: 30",
            "status:",
            "  recent_actions_limit: 3",
        ]),
        encoding="utf-8",
    )

    config = AppConfig(config_path)

    assert config.database_path.name == "test.db"
    assert config.near_threshold_ratio == pytest.approx(0.75)
    assert config.strict_mode_factor == pytest.approx(0.25)
    assert config.dispatch_max_attempts == 5
    assert config.dispatch_backoff_base_seconds == pytest.approx(0.1)
    assert config.default_timeout_minutes == 15
    assert config.appeal_cooldown_hours == 12
    assert config.appeal_abandonment_hours == 48
    assert config.queue_max_size == 50
    assert config.worker_pool_size == 4
    assert config.sweep_interval_seconds == 30
    assert config.recent_actions_limit == 3


def test_app_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = AppConfig(tmp_path / "does_not_exist.yml")

    assert config.data == {}
    assert config.near_threshold_ratio == pytest.approx(0.8)
    assert config.strict_mode_factor == pytest.approx(0.5)
    assert config.dispatch_max_attempts == 3
    assert config.dispatch_backoff_base_seconds == pytest.approx(0.5)
    assert config.appeal_cooldown_hours == 24
    assert config.appeal_abandonment_hours == 72
    assert config.database_path.name == "modguard.db"


def test_app_config_invalid_yaml_falls_back(config_path: Path) -> None:
    config_path.write_text("thresholds: [unclosed", encoding="utf-8")

    config = AppConfig(config_path)

    assert config.data == {}
    assert config.worker_pool_size == 32


def test_app_config_non_mapping_section_uses_default(config_path: Path) -> None:
    config_path.write_text("dispatch: 7\nqueue:\n  max_size: null\n", encoding="utf-8")

    config = AppConfig(config_path)

    assert config.dispatch_max_attempts == 3
    assert config.queue_max_size == 1000
    assert config.get("dispatch") == 7


def test_app_config_reload_picks_up_changes(config_path: Path) -> None:
    config_path.write_text("status:\n  recent_actions_limit: 2\n", encoding="utf-8")
    config = AppConfig(config_path)
    assert config.recent_actions_limit == 2

    config_path.write_text("status:\n  recent_actions_limit: 7\n", encoding="utf-8")
    config.reload()

    assert config.recent_actions_limit == 7
