from datetime import timedelta

import pytest

from reviewproxy.config import Config, ConfigError, load_config, parse_duration


def test_load_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "domain: review.example.com\n"
        "compose_template: docker-compose.template.yml\n"
        "target_service: app\n"
        "target_port: 8080\n"
        "idle_timeout: 5m\n"
    )
    cfg = load_config(path)
    assert cfg.domain == "review.example.com"
    assert cfg.compose_template == "docker-compose.template.yml"
    assert cfg.target_service == "app"
    assert cfg.target_port == 8080
    assert cfg.idle_timeout == timedelta(minutes=5)


def test_load_config_missing_fields_default(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("domain: review.example.com\nunknown_key: 1\n")
    assert load_config(path) == Config(domain="review.example.com")


def test_load_config_empty_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == Config()


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="reading config"):
        load_config(tmp_path / "absent.yaml")


def test_load_config_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("domain: [unclosed\n")
    with pytest.raises(ConfigError, match="parsing config"):
        load_config(path)


def test_load_config_bad_duration(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("idle_timeout: soon\n")
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_integer_duration_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("idle_timeout: 300\n")
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_bad_port(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("target_port: eighty\n")
    with pytest.raises(ConfigError):
        load_config(path)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("5m", timedelta(minutes=5)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5s", timedelta(seconds=1.5)),
        ("300ms", timedelta(milliseconds=300)),
        ("0", timedelta(0)),
        ("-2s", timedelta(seconds=-2)),
        ("250us", timedelta(microseconds=250)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "5", "abc", "5x", "m", "-"])
def test_parse_duration_invalid(text):
    with pytest.raises(ValueError):
        parse_duration(text)