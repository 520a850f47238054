from unittest.mock import patch

import pytest
from pydantic import ValidationError

from flyspace import run
from flyspace.config import Settings, model_key_variable

ENV_KEYS = [
    "FLYSPACE_HOST",
    "FLYSPACE_PORT",
    "FLYSPACE_SCRIPTS_DIR",
    "FLYSPACE_SCREENCAST_FORMAT",
    "FLYSPACE_SCREENCAST_QUALITY",
    "FLYSPACE_HEADLESS",
    "FLYSPACE_ENV",
    "FLYSPACE_MODEL",
    "FLYSPACE_DOM_SETTLE_TIMEOUT_MS",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "BROWSERBASE_API_KEY",
    "BROWSERBASE_PROJECT_ID",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    return monkeypatch


def test_defaults(clean_env, tmp_path):
    settings = Settings.from_env()
    assert settings.host == "127.0.0.1"
    assert settings.port == 1919
    assert settings.scripts_dir == str(tmp_path.resolve())
    assert settings.screencast_format == "jpeg"
    assert settings.screencast_quality == 100
    assert settings.headless is True
    assert settings.env == "LOCAL"
    assert settings.model_name == "gpt-4o"
    assert settings.model_api_key == "sk-test"


def test_environment_overrides(clean_env, tmp_path):
    scripts = tmp_path / "scripts"
    scripts.mkdir()
    clean_env.setenv("FLYSPACE_PORT", "4100")
    clean_env.setenv("FLYSPACE_SCRIPTS_DIR", str(scripts))
    clean_env.setenv("FLYSPACE_SCREENCAST_FORMAT", "png")
    clean_env.setenv("FLYSPACE_SCREENCAST_QUALITY", "60")
    clean_env.setenv("FLYSPACE_HEADLESS", "no")
    clean_env.setenv("FLYSPACE_ENV", "browserbase")

    settings = Settings.from_env()
    assert settings.port == 4100
    assert settings.scripts_dir == str(scripts.resolve())
    assert settings.screencast_format == "png"
    assert settings.screencast_quality == 60
    assert settings.headless is False
    assert settings.env == "BROWSERBASE"


def test_command_line_directory_wins(clean_env, tmp_path):
    clean_env.setenv("FLYSPACE_SCRIPTS_DIR", "/somewhere/else")
    assert Settings.from_env(str(tmp_path)).scripts_dir == str(tmp_path.resolve())


@pytest.mark.parametrize(
    "key, value",
    [
        ("FLYSPACE_SCREENCAST_FORMAT", "webp"),
        ("FLYSPACE_SCREENCAST_QUALITY", "101"),
        ("FLYSPACE_PORT", "70000"),
        ("FLYSPACE_MODEL", "gpt-3.5-turbo"),
    ],
)
def test_invalid_values_are_rejected(clean_env, key, value):
    clean_env.setenv(key, value)
    with pytest.raises(ValidationError):
        Settings.from_env()


# ---------------------------------------------------------------------------
# Model and provider key
# ---------------------------------------------------------------------------


def test_key_variable_follows_model_family():
    assert model_key_variable("gpt-4o") == "OPENAI_API_KEY"
    assert model_key_variable("o1-preview") == "OPENAI_API_KEY"
    assert model_key_variable("claude-3-5-sonnet-latest") == "ANTHROPIC_API_KEY"


def test_anthropic_model_reads_anthropic_key(clean_env):
    clean_env.setenv("FLYSPACE_MODEL", "claude-3-5-sonnet-20241022")
    clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant-test")

    settings = Settings.from_env()
    assert settings.model_name == "claude-3-5-sonnet-20241022"
    assert settings.model_api_key == "sk-ant-test"


def test_anthropic_model_ignores_openai_key(clean_env):
    clean_env.setenv("FLYSPACE_MODEL", "claude-3-5-sonnet-latest")
    with pytest.raises(ValidationError, match="ANTHROPIC_API_KEY environment variable is required"):
        Settings.from_env()


def test_openai_model_requires_openai_key(clean_env):
    clean_env.delenv("OPENAI_API_KEY")
    clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    with pytest.raises(ValidationError, match="OPENAI_API_KEY environment variable is required"):
        Settings.from_env()


def test_discouraged_model_warns(clean_env):
    clean_env.setenv("FLYSPACE_MODEL", "gpt-4o-mini")
    with patch("flyspace.config.display.model_not_recommended") as warn:
        settings = Settings.from_env()

    assert settings.model_name == "gpt-4o-mini"
    warn.assert_called_once_with("gpt-4o-mini", ["gpt-4o", "o1-mini"])


def test_recommended_model_does_not_warn(clean_env):
    with patch("flyspace.config.display.model_not_recommended") as warn:
        Settings.from_env()
    warn.assert_not_called()


def test_main_exits_when_key_is_missing(clean_env, tmp_path):
    clean_env.delenv("OPENAI_API_KEY")
    clean_env.setattr("sys.argv", ["flyspace", str(tmp_path)])

    with patch("flyspace.run.display.settings_invalid") as report, patch("flyspace.run.serve") as serve:
        with pytest.raises(SystemExit) as exit_info:
            run.main()

    assert exit_info.value.code == 1
    report.assert_called_once()
    assert "OPENAI_API_KEY" in str(report.call_args.args[0])
    serve.assert_not_called()
