"""Tests for the layered configuration system."""

from __future__ import annotations

import pytest

from pydantic import ValidationError

from orgwatch.config import (
    AuthSettings,
    DeploySettings,
    OrgWatchSettings,
    ServerSettings,
    _deep_merge,
    _find_config_files,
    clear_settings,
    get_settings,
    reload_settings,
)


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run in an empty directory with no user-level config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


class TestDefaults:
    """Built-in defaults."""

    def test_auth_timing(self) -> None:
        settings = AuthSettings()
        assert settings.close_poll_interval == 0.3
        assert settings.close_grace_period == 0.5
        assert settings.focus_settle_delay == 0.3
        assert settings.popup_width == 600
        assert settings.popup_height == 700
        assert settings.default_environment == "sandbox"

    def test_server(self) -> None:
        settings = ServerSettings()
        assert settings.cookie_name == "sf_session"
        assert settings.session_max_age == 86400
        assert settings.allowed_origins == []
        assert settings.cron_secret is None

    def test_deploy(self) -> None:
        settings = DeploySettings()
        assert settings.state_backend == "memory"
        assert settings.state_ttl == 600
        assert settings.session_idle_ttl == 14400

    def test_validation(self) -> None:
        with pytest.raises(ValidationError):
            AuthSettings(close_poll_interval=0)
        with pytest.raises(ValidationError):
            DeploySettings(state_backend="sqlite")


class TestSources:
    """TOML files and environment variables."""

    def test_orgwatch_toml(self, workdir) -> None:
        (workdir / "orgwatch.toml").write_text(
            '[deploy]\nstate_backend = "redis"\n\n[auth]\nclose_grace_period = 1.5\n',
            encoding="utf-8",
        )

        settings = OrgWatchSettings()

        assert settings.deploy.state_backend == "redis"
        assert settings.auth.close_grace_period == 1.5

    def test_pyproject_section(self, workdir) -> None:
        (workdir / "pyproject.toml").write_text(
            '[project]\nname = "x"\n\n[tool.orgwatch.server]\nport = 9000\n', encoding="utf-8"
        )
        assert OrgWatchSettings().server.port == 9000

    def test_orgwatch_toml_overrides_pyproject(self, workdir) -> None:
        (workdir / "pyproject.toml").write_text("[tool.orgwatch.server]\nport = 9000\n", encoding="utf-8")
        (workdir / "orgwatch.toml").write_text("[server]\nport = 9100\n", encoding="utf-8")

        assert OrgWatchSettings().server.port == 9100

    def test_config_file_env_var(self, workdir, monkeypatch) -> None:
        custom = workdir / "custom.toml"
        custom.write_text("[server]\nport = 9200\n", encoding="utf-8")
        monkeypatch.setenv("ORGWATCH_CONFIG_FILE", str(custom))

        assert custom in _find_config_files()
        assert OrgWatchSettings().server.port == 9200

    def test_invalid_toml_is_skipped(self, workdir) -> None:
        (workdir / "orgwatch.toml").write_text("[server\nport = ", encoding="utf-8")
        assert OrgWatchSettings().server.port == 8000

    def test_env_sets_section_field(self, workdir, monkeypatch) -> None:
        monkeypatch.setenv("ORGWATCH_SERVER__PORT", "9300")
        assert OrgWatchSettings().server.port == 9300

    def test_comma_separated_origins(self, monkeypatch) -> None:
        monkeypatch.setenv(
            "ORGWATCH_SERVER__ALLOWED_ORIGINS", "https://a.example.com, https://b.example.com"
        )
        assert ServerSettings().allowed_origins == ["https://a.example.com", "https://b.example.com"]

    def test_bare_cron_secret(self, workdir, monkeypatch) -> None:
        monkeypatch.setenv("CRON_SECRET", "from-scheduler")
        assert OrgWatchSettings().server.cron_secret == "from-scheduler"

    def test_prefixed_cron_secret_wins(self, workdir, monkeypatch) -> None:
        monkeypatch.setenv("CRON_SECRET", "bare")
        monkeypatch.setenv("ORGWATCH_SERVER__CRON_SECRET", "prefixed")
        assert OrgWatchSettings().server.cron_secret == "prefixed"


class TestExport:
    """TOML, env and table output redact secrets."""

    @pytest.fixture
    def settings(self, workdir) -> OrgWatchSettings:
        return OrgWatchSettings(
            server=ServerSettings(cron_secret="hunter2"),
            deploy=DeploySettings(redis_url="redis://:pw@cache:6379/0"),
        )

    def test_to_toml(self, settings: OrgWatchSettings) -> None:
        output = settings.to_toml()

        assert "[auth]" in output
        assert "[deploy]" in output
        assert 'state_backend = "memory"' in output
        assert 'cron_secret = "********"' in output
        assert "hunter2" not in output
        assert "pw@cache" not in output

    def test_to_env(self, settings: OrgWatchSettings) -> None:
        output = settings.to_env()

        assert 'export ORGWATCH_AUTH__CLOSE_GRACE_PERIOD="0.5"' in output
        assert 'export ORGWATCH_SERVER__COOKIE_SECURE="false"' in output
        assert 'export ORGWATCH_DEPLOY__REDIS_URL="********"' in output
        assert "hunter2" not in output

    def test_show(self, settings: OrgWatchSettings) -> None:
        output = settings.show()

        assert "Auth (Popup Login)" in output
        assert "Deploy (State Backend)" in output
        assert "hunter2" not in output


class TestCache:
    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_reload(self, monkeypatch) -> None:
        first = get_settings()
        monkeypatch.setenv("ORGWATCH_SERVER__PORT", "9400")

        assert get_settings().server.port == first.server.port
        assert reload_settings().server.port == 9400
        clear_settings()
        assert get_settings() is not first


def test_deep_merge() -> None:
    base = {"server": {"port": 1, "host": "a"}, "log": {"level": "INFO"}}
    override = {"server": {"port": 2}, "deploy": {"state_backend": "redis"}}

    assert _deep_merge(base, override) == {
        "server": {"port": 2, "host": "a"},
        "log": {"level": "INFO"},
        "deploy": {"state_backend": "redis"},
    }
    assert base["server"]["port"] == 1
