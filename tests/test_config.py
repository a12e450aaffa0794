import pytest

from openbpl.config import (
    Config,
    ConfigError,
    create_sample_config,
    expand_env,
    load_from_file,
)


def test_defaults_applied_to_empty_config():
    cfg = Config.from_dict({})
    cfg.apply_defaults()
    assert cfg.monitoring.sources.certstream.url == "wss://certstream.calidog.io/"
    assert cfg.enrichment.html_content.timeout == "10s"
    assert cfg.enrichment.html_content.user_agent == "OpenBPL/1.0"
    assert cfg.enrichment.favicon.timeout == "5s"
    assert cfg.rules.favicon_similarity.threshold == 0.85
    assert cfg.storage.type == "memory"
    assert cfg.logging.level == "info"
    assert cfg.logging.format == "text"
    assert cfg.enforcement.email_abuse.smtp.port == 587


def test_defaults_keep_given_values():
    cfg = Config.from_dict({"storage": {"type": "sqlite"}, "logging": {"level": "debug"}})
    cfg.apply_defaults()
    assert cfg.storage.type == "sqlite"
    assert cfg.logging.level == "debug"


def test_from_dict_nested_and_from_key():
    cfg = Config.from_dict(
        {
            "enforcement": {"email_abuse": {"enabled": True, "from": "a@example.com"}},
            "monitoring": {"sources": {"certstream": {"keywords": ["paypal"]}}},
            "unknown": 1,
        }
    )
    assert cfg.enforcement.email_abuse.from_ == "a@example.com"
    assert cfg.monitoring.sources.certstream.keywords == ["paypal"]


def test_from_dict_rejects_wrong_shape():
    with pytest.raises(ConfigError):
        Config.from_dict({"storage": "memory"})


@pytest.mark.parametrize(
    "data, message",
    [
        ({"storage": {"type": "redis"}}, "invalid storage type"),
        ({"logging": {"level": "trace"}}, "invalid log level"),
        (
            {"rules": {"favicon_similarity": {"enabled": True, "threshold": 1.5}}},
            "threshold must be between 0 and 1",
        ),
        ({"enforcement": {"email_abuse": {"enabled": True}}}, "SMTP host is required"),
        (
            {"enforcement": {"email_abuse": {"enabled": True, "smtp": {"host": "h"}}}},
            "email from address is required",
        ),
    ],
)
def test_validate_errors(data, message):
    cfg = Config.from_dict(data)
    cfg.apply_defaults()
    with pytest.raises(ConfigError, match=message):
        cfg.validate()


def test_expand_env(monkeypatch):
    monkeypatch.setenv("OBPL_X", "value")
    monkeypatch.delenv("OBPL_MISSING", raising=False)
    assert expand_env("a=${OBPL_X} b=$OBPL_X c=$OBPL_MISSING") == "a=value b=value c="


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="configuration file not found"):
        load_from_file(tmp_path / "none.yaml")


def test_sample_round_trip(tmp_path, monkeypatch):
    password = "password"
    monkeypatch.setenv("SMTP_PASSWORD", password)
    path = tmp_path / "openbpl.yaml"
    create_sample_config(path)
    cfg = load_from_file(path)
    assert cfg.enforcement.email_abuse.smtp.password == password
    assert cfg.monitoring.sources.certstream.keywords == [
        "paypal", "amazon", "microsoft", "apple", "google"
    ]
    assert cfg.rules.favicon_similarity.reference_favicons["paypal"] == (
        "https://www.paypal.com/favicon.ico"
    )
    assert cfg.dry_run is False


def test_sample_refuses_overwrite(tmp_path):
    path = tmp_path / "openbpl.yaml"
    create_sample_config(path)
    with pytest.raises(ConfigError, match="already exists"):
        create_sample_config(path)


def test_load_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("storage: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="failed to parse"):
        load_from_file(path)


def test_load_invalid_values(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("storage:\n  type: redis\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid configuration"):
        load_from_file(path)