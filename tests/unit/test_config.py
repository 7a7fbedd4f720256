import pytest

from continual_engine.config import DEFAULT_EMBEDDING_DIM, EngineConfig, load_config
from continual_engine.errors import ConfigurationError


def test_defaults_without_file_or_environment():
    config = load_config(environ={})

    assert config.embedding_dim == DEFAULT_EMBEDDING_DIM
    assert config.ewc_lambda == 500.0
    assert config.buffer_capacity == 10000
    assert config.confidence.confidence_cap == 0.92


def test_yaml_file_is_loaded(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        "model_name: StarCoder2-3B\n"
        "embedding_dim: 64\n"
        "model_capacity: 3\n"
        "ewc_lambda: 250\n"
        "confidence:\n"
        "  temperature_noise: 0.0\n",
        encoding="utf-8",
    )

    config = load_config(str(path), environ={})

    assert config.model_name == "StarCoder2-3B"
    assert config.embedding_dim == 64
    assert config.ewc_lambda == 250.0
    assert config.confidence.temperature_noise == 0.0
    assert config.confidence.pattern_boost_weight == 0.15


def test_config_path_from_environment(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("embedding_dim: 32\n", encoding="utf-8")

    config = load_config(environ={"CONTINUAL_CONFIG_PATH": str(path)})

    assert config.embedding_dim == 32


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("embedding_dim: 32\nbuffer_capacity: 50\n", encoding="utf-8")

    config = load_config(
        str(path),
        environ={"CONTINUAL_BUFFER_CAPACITY": "75", "CONTINUAL_SEED": "3", "CONTINUAL_MODEL_NAME": "m"},
    )

    assert config.buffer_capacity == 75
    assert config.seed == 3
    assert config.model_name == "m"
    assert config.embedding_dim == 32


def test_unparsable_environment_value_is_ignored(caplog):
    config = load_config(environ={"CONTINUAL_EWC_LAMBDA": "lots"})

    assert config.ewc_lambda == 500.0
    assert "CONTINUAL_EWC_LAMBDA" in caplog.text


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "missing.yaml"), environ={})


def test_non_mapping_file_raises(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_config(str(path), environ={})


def test_wrongly_typed_field_raises_configuration_error(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("embedding_dim: wide\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_config(str(path), environ={})


@pytest.mark.parametrize(
    "overrides",
    [
        {"embedding_dim": 0},
        {"rank": 0},
        {"rank": 64},
        {"buffer_capacity": 0},
        {"max_patterns": 0},
        {"pattern_threshold": 1.5},
        {"ewc_lambda": -1},
        {"temperature_floor": 2.0},
        {"curriculum_epochs_per_level": 0},
    ],
)
def test_validate_engine_rejects_unusable_values(overrides):
    payload = {"embedding_dim": 32, **overrides}

    with pytest.raises(ConfigurationError):
        EngineConfig(**payload).validate_engine()


def test_validate_engine_reports_every_problem():
    config = EngineConfig(embedding_dim=0, buffer_capacity=0)

    with pytest.raises(ConfigurationError) as excinfo:
        config.validate_engine()

    assert "embedding_dim" in str(excinfo.value)
    assert "buffer_capacity" in str(excinfo.value)
