"""Model configurations for the supported quantized checkpoints."""

from typing import Dict, List

from .model_policies import get_family_behavior
from .model_types import ModelConfig


# Supported checkpoints with their default download locations
AVAILABLE_MODELS: Dict[str, ModelConfig] = {
    "7b": ModelConfig(
        repo_id="TheBloke/Llama-2-7B-GGML",
        filename="llama-2-7b.ggmlv3.q4_0.bin",
        model_family="llama",
    ),
    "13b": ModelConfig(
        repo_id="TheBloke/Llama-2-13B-GGML",
        filename="llama-2-13b.ggmlv3.q4_0.bin",
        model_family="llama",
    ),
    "70b": ModelConfig(
        repo_id="TheBloke/Llama-2-70B-GGML",
        filename="llama-2-70b.ggmlv3.q4_0.bin",
        model_family="llama",
    ),
    "7b-chat": ModelConfig(
        repo_id="TheBloke/Llama-2-7B-Chat-GGML",
        filename="llama-2-7b-chat.ggmlv3.q4_0.bin",
        model_family="llama",
        chat_tuned=True,
    ),
    "13b-chat": ModelConfig(
        repo_id="TheBloke/Llama-2-13B-Chat-GGML",
        filename="llama-2-13b-chat.ggmlv3.q4_0.bin",
        model_family="llama",
        chat_tuned=True,
    ),
    "70b-chat": ModelConfig(
        repo_id="TheBloke/Llama-2-70B-Chat-GGML",
        filename="llama-2-70b-chat.ggmlv3.q4_0.bin",
        model_family="llama",
        chat_tuned=True,
    ),
    "7b-code": ModelConfig(
        repo_id="TheBloke/CodeLlama-7B-GGUF",
        filename="codellama-7b.Q8_0.gguf",
        model_family="llama",
        quantization_format="Q8_0",
        container_format="gguf",
    ),
    "13b-code": ModelConfig(
        repo_id="TheBloke/CodeLlama-13B-GGUF",
        filename="codellama-13b.Q8_0.gguf",
        model_family="llama",
        quantization_format="Q8_0",
        container_format="gguf",
    ),
    "34b-code": ModelConfig(
        repo_id="TheBloke/CodeLlama-34B-GGUF",
        filename="codellama-34b.Q8_0.gguf",
        model_family="llama",
        quantization_format="Q8_0",
        container_format="gguf",
    ),
    "7b-mistral": ModelConfig(
        repo_id="TheBloke/Mistral-7B-v0.1-GGUF",
        filename="mistral-7b-v0.1.Q4_K_S.gguf",
        model_family="mistral",
        quantization_format="Q4_K_S",
        container_format="gguf",
    ),
    "7b-mistral-instruct": ModelConfig(
        repo_id="TheBloke/Mistral-7B-Instruct-v0.1-GGUF",
        filename="mistral-7b-instruct-v0.1.Q4_K_S.gguf",
        model_family="mistral",
        quantization_format="Q4_K_S",
        container_format="gguf",
        chat_tuned=True,
    ),
    "7b-zephyr": ModelConfig(
        repo_id="TheBloke/zephyr-7B-alpha-GGUF",
        filename="zephyr-7b-alpha.Q4_K_M.gguf",
        model_family="mistral",
        quantization_format="Q4_K_M",
        container_format="gguf",
        chat_tuned=True,
    ),
}


def get_model_config(model_name: str) -> ModelConfig:
    """
    Get configuration for a specific checkpoint.

    Args:
        model_name: Name of the model (e.g. "7b", "7b-mistral")

    Returns:
        ModelConfig object

    Raises:
        ValueError: If model is not supported
    """
    if model_name not in AVAILABLE_MODELS:
        raise ValueError(
            f"Model {model_name} not supported. "
            f"Available models: {list(AVAILABLE_MODELS.keys())}"
        )

    return AVAILABLE_MODELS[model_name]


def get_available_models() -> Dict[str, ModelConfig]:
    """Get all available model configurations."""
    return AVAILABLE_MODELS.copy()


def get_models_by_family(family: str) -> List[str]:
    """Get all model names belonging to the specified family."""
    return [name for name, config in AVAILABLE_MODELS.items() if config.model_family == family]


def get_available_families() -> List[str]:
    """Get all available model families."""
    return sorted({config.model_family for config in AVAILABLE_MODELS.values()})


def get_tokenizer_repo(model_config: ModelConfig) -> str:
    """Hub repository holding the tokenizer.json for a checkpoint."""
    return get_family_behavior(model_config).tokenizer_repo
