"""Unit tests for Settings validation and the layered YAML/env loader."""

from __future__ import annotations

from pathlib import Path

import pydantic
import pytest

from course_rag.config.loader import load_config, load_settings
from course_rag.config.settings import Settings
from course_rag.utils.errors import ConfigurationError

_SHIPPED_CONFIG = Path(__file__).resolve().parents[2] / "config" / "config.yaml"


def _write(tmp_path: Path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestSettingsValidation:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.rrf_k == 60
        assert settings.max_chunk_size == 1000
        assert settings.quality_minimum == 50.0
        assert settings.distance_metric == "cosine"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"overlap_size": 1000, "max_chunk_size": 1000},
            {"min_chunk_size": 600, "max_chunk_size": 500},
            {"quality_minimum": 80, "quality_recommended": 70},
            {"distance_metric": "manhattan"},
            {"quality_weights": {"readability": 1.0, "style": 1.0}},
            {"quality_weights": {"readability": 0.0}},
            {"retry_base_delay": 5.0, "retry_max_delay": 1.0},
            {"rrf_k": 0},
        ],
    )
    def test_inconsistent_values_rejected(self, overrides: dict) -> None:
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, **overrides)

    def test_environment_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COURSE_RAG_DEFAULT_TOP_K", "7")
        assert Settings(_env_file=None).default_top_k == 7

    def test_available_embedding_providers(self) -> None:
        assert Settings(_env_file=None, jina_api_key="", openai_api_key="").get_available_embedding_providers() == []
        both = Settings(_env_file=None, jina_api_key="j", openai_api_key="o")
        assert both.get_available_embedding_providers() == ["jina", "openai"]

    def test_reranker_needs_key_and_flag(self) -> None:
        assert Settings(_env_file=None, jina_api_key="j").reranker_configured()
        assert not Settings(_env_file=None, jina_api_key="j", rerank_enabled=False).reranker_configured()
        assert not Settings(_env_file=None, jina_api_key="").reranker_configured()


class TestLoader:
    def test_yaml_sections_flatten_into_settings(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "chunking:\n  max_chunk_size: 500\n  overlap_size: 25\n"
            "retrieval:\n  rrf_k: 30\n"
            "log_level: DEBUG\n",
        )

        settings = load_settings(path)

        assert settings.max_chunk_size == 500
        assert settings.overlap_size == 25
        assert settings.rrf_k == 30
        assert settings.log_level == "DEBUG"

    def test_environment_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COURSE_RAG_RRF_K", "42")
        path = _write(tmp_path, "retrieval:\n  rrf_k: 30\n  default_top_k: 5\n")

        config = load_config(path)
        settings = load_settings(path)

        assert config["retrieval"]["rrf_k"] == 42
        assert settings.rrf_k == 42
        assert settings.default_top_k == 5

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.rrf_k == 60

    def test_unparseable_yaml(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "chunking: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Could not parse"):
            load_settings(path)

    def test_top_level_must_be_mapping(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path)

    def test_invalid_values_become_configuration_error(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "chunking:\n  max_chunk_size: 100\n  overlap_size: 100\n")
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_settings(path)

    def test_unknown_keys_ignored(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "extras:\n  colour: blue\n")
        assert load_settings(path).rrf_k == 60

    def test_shipped_config_loads(self) -> None:
        settings = load_settings(str(_SHIPPED_CONFIG))

        assert settings.vector_dimension == 1024
        assert settings.quality_weights == {
            "readability": 0.3,
            "coherence": 0.3,
            "completeness": 0.2,
            "formatting": 0.2,
        }
