"""Core model configuration datatypes."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ModelConfig:
    """Configuration for a specific quantized checkpoint."""

    repo_id: str
    filename: str
    model_family: str
    quantization_format: str = "Q4_0"  # Q4_0, Q4_K_S, Q4_K_M, Q8_0
    container_format: str = "ggml"  # ggml (legacy .bin) or gguf
    chat_tuned: bool = False


@dataclass
class FamilyBehavior:
    """Behavior shared by all checkpoints in a family."""

    tokenizer_repo: str = "hf-internal-testing/llama-tokenizer"
    instruct_template: Optional[str] = None
    eos_token: str = "</s>"
