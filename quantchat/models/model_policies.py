"""Model family policies and the legacy attention-grouping table."""

from typing import Dict

from .model_types import FamilyBehavior, ModelConfig


FAMILY_BEHAVIORS: Dict[str, FamilyBehavior] = {
    "llama": FamilyBehavior(tokenizer_repo="hf-internal-testing/llama-tokenizer"),
    "mistral": FamilyBehavior(
        tokenizer_repo="mistralai/Mistral-7B-v0.1",
        instruct_template="[INST] {prompt} [/INST]",
    ),
}

# Legacy containers carry no field describing grouped-query attention, so the
# factor comes from the known release of each checkpoint.
DEFAULT_GQA: Dict[str, int] = {
    "7b": 1,
    "13b": 1,
    "7b-chat": 1,
    "13b-chat": 1,
    "7b-code": 1,
    "13b-code": 1,
    "34b-code": 1,
    "70b": 8,
    "70b-chat": 8,
    "7b-mistral": 8,
    "7b-mistral-instruct": 8,
    "7b-zephyr": 8,
}


def get_family_behavior(model_config: ModelConfig) -> FamilyBehavior:
    """Get behavior flags for a model family."""
    return FAMILY_BEHAVIORS.get(model_config.model_family, FamilyBehavior())


def get_default_gqa(model_name: str) -> int:
    """Get the attention-grouping factor used when the CLI gives none."""
    if model_name not in DEFAULT_GQA:
        raise ValueError(
            f"No default grouping factor for {model_name}. "
            f"Known models: {list(DEFAULT_GQA.keys())}"
        )
    return DEFAULT_GQA[model_name]
