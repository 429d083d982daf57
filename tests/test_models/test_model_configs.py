"""Tests for model configuration management."""

import pytest

from quantchat.models.model_configs import (
    AVAILABLE_MODELS,
    get_available_families,
    get_available_models,
    get_model_config,
    get_models_by_family,
    get_tokenizer_repo,
)
from quantchat.models.model_policies import DEFAULT_GQA, get_default_gqa
from quantchat.models.model_types import ModelConfig


class TestModelConfigRetrieval:
    """Test cases for model configuration retrieval functions."""

    def test_get_model_config_valid(self):
        """Test retrieving configuration for a legacy checkpoint."""
        config = get_model_config("7b")

        assert isinstance(config, ModelConfig)
        assert config.repo_id == "TheBloke/Llama-2-7B-GGML"
        assert config.filename == "llama-2-7b.ggmlv3.q4_0.bin"
        assert config.container_format == "ggml"
        assert config.model_family == "llama"

    def test_get_model_config_invalid(self):
        """Test retrieving configuration for an unknown model."""
        with pytest.raises(ValueError, match="Model 3b not supported"):
            get_model_config("3b")

    def test_get_available_models_returns_copy(self):
        models = get_available_models()
        assert len(models) == 12
        models["test"] = "test"
        assert "test" not in get_available_models()

    def test_gguf_variants(self):
        gguf_models = [name for name, cfg in AVAILABLE_MODELS.items() if cfg.container_format == "gguf"]
        assert sorted(gguf_models) == sorted(
            ["7b-code", "13b-code", "34b-code", "7b-mistral", "7b-mistral-instruct", "7b-zephyr"]
        )
        for name in gguf_models:
            assert AVAILABLE_MODELS[name].filename.endswith(".gguf")

    def test_families(self):
        assert get_available_families() == ["llama", "mistral"]
        assert get_models_by_family("mistral") == ["7b-mistral", "7b-mistral-instruct", "7b-zephyr"]


class TestDefaultGroupingFactor:
    """The legacy default grouping table must match the known releases exactly."""

    @pytest.mark.parametrize(
        "model_name", ["7b", "13b", "7b-chat", "13b-chat", "7b-code", "13b-code", "34b-code"]
    )
    def test_standard_attention(self, model_name):
        assert get_default_gqa(model_name) == 1

    @pytest.mark.parametrize(
        "model_name", ["70b", "70b-chat", "7b-mistral", "7b-mistral-instruct", "7b-zephyr"]
    )
    def test_grouped_query_attention(self, model_name):
        assert get_default_gqa(model_name) == 8

    def test_table_covers_every_model(self):
        assert set(DEFAULT_GQA) == set(AVAILABLE_MODELS)

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="No default grouping factor"):
            get_default_gqa("llama-3")


class TestTokenizerRepo:

    def test_tokenizer_repo(self):
        assert get_tokenizer_repo(get_model_config("7b")) == "hf-internal-testing/llama-tokenizer"
        assert get_tokenizer_repo(get_model_config("7b-zephyr")) == "mistralai/Mistral-7B-v0.1"
