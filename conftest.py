"""
Root conftest — isolate secrets and config so Settings() behaves the same
on every machine: no API keys, no .env file, no PARLEY_CONFIG override.
"""
import pytest

_ENV_VARS = [
    "OPENAI_API_KEY",
    "OLLAMA_BASE_URL",
    "PARLEY_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove env vars for every test and disable .env file loading so
    local developer files don't leak into Settings()."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import parley.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)
