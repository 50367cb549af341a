from __future__ import annotations

import pytest
import yaml

from backend.app.config import AppConfig, ConfigError, load_config


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path) -> None:
    for key in (
        "JURISNORM_ELASTICSEARCH_URL",
        "ES_URL",
        "JURISNORM_ES_USERNAME",
        "JURISNORM_ES_PASSWORD",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("JURISNORM_ENV_FILE", str(tmp_path / "missing.env"))
    load_config.cache_clear()
    yield
    load_config.cache_clear()


def _write_config(tmp_path, **overrides):
    data = yaml.safe_load(AppConfig.default_path().read_text(encoding="utf-8"))
    for section, values in overrides.items():
        if isinstance(values, dict):
            data.setdefault(section, {}).update(values)
        else:
            data[section] = values
    target = tmp_path / "config.yaml"
    target.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
    return target


def test_config_loads_expected_structure() -> None:
    config = load_config()
    assert isinstance(config, AppConfig)
    assert config.version == "1.0.0"
    settings = config.normalization
    assert settings.default_threshold == 0.85
    assert settings.min_threshold == 0.7
    assert settings.max_threshold == 1.0
    assert settings.default_cap == 3000
    assert settings.tie_break == "lexicographic"
    assert settings.fold_diacritics is False
    assert settings.length_bucketing is True
    assert settings.lookup_limit == 10000
    assert settings.rare_value_max_count == 1
    assert [field.key for field in config.fields] == ["Descritores", "Meio Processual", "Decisão"]
    assert config.field_mapping()["Decisão"] == "Decisão.Show"
    assert config.store.backend == "memory"
    assert config.store.index == "jurisprudencia.12.0"
    assert config.api.analysis_worker_count == 2


def test_load_config_is_cached() -> None:
    assert load_config() is load_config()


def test_missing_file_raises_config_error(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


def test_invalid_yaml_raises_config_error(tmp_path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("normalization: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(target)


def test_default_threshold_outside_bounds_is_rejected(tmp_path) -> None:
    target = _write_config(tmp_path, normalization={"default_threshold": 0.5})
    with pytest.raises(ConfigError):
        load_config(target)


def test_duplicate_field_keys_are_rejected(tmp_path) -> None:
    fields = [
        {"key": "Decisão", "label": "Decisão", "store_path": "Decisão.Show"},
        {"key": "Decisão", "label": "Outra", "store_path": "Decisão.Show"},
    ]
    target = _write_config(tmp_path, fields=fields)
    with pytest.raises(ConfigError):
        load_config(target)


def test_elasticsearch_backend_requires_url(tmp_path) -> None:
    target = _write_config(tmp_path, store={"backend": "elasticsearch", "base_url": None})
    with pytest.raises(ConfigError):
        load_config(target)


def test_environment_url_switches_backend(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("JURISNORM_ELASTICSEARCH_URL", "http://search.internal:9200/")
    monkeypatch.setenv("JURISNORM_ES_USERNAME", "reader")
    monkeypatch.setenv("JURISNORM_ES_PASSWORD", "secret")
    config = load_config(_write_config(tmp_path))
    assert config.store.backend == "elasticsearch"
    assert config.store.base_url == "http://search.internal:9200"
    assert config.store.username == "reader"
    assert config.store.password == "secret"


def test_env_file_values_are_loaded(monkeypatch, tmp_path) -> None:
    env_file = tmp_path / "custom.env"
    env_file.write_text(
        "# local cluster\nexport ES_URL='http://localhost:9200'  \n",
        encoding="utf-8",
    )
    monkeypatch.setenv("ES_URL", "")
    monkeypatch.setenv("JURISNORM_ENV_FILE", str(env_file))
    config = load_config(_write_config(tmp_path))
    assert config.store.backend == "elasticsearch"
    assert config.store.base_url == "http://localhost:9200"
