"""Shared CLI helpers: logging, model listing and path resolution."""

import argparse
import logging
import sys
from pathlib import Path

from huggingface_hub import hf_hub_download

from ..generation.sampling import SamplingConfig
from ..models.model_configs import (
    get_available_families,
    get_available_models,
    get_model_config,
    get_models_by_family,
    get_tokenizer_repo,
)
from ..models.model_policies import DEFAULT_GQA


def setup_logging(verbose: bool = False) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr), logging.FileHandler("quantchat.log")],
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("transformers").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("huggingface_hub").setLevel(logging.WARNING)


def print_available_models() -> None:
    """Print all available models grouped by family."""
    models = get_available_models()
    print("Available Models:")
    print("-" * 100)
    print(f"{'Model Name':<22} {'Format':<6} {'Quant':<7} {'GQA':<4} {'Chat':<5} {'File'}")

    for family in get_available_families():
        print("-" * 100)
        print(f"[{family}]")
        for name in get_models_by_family(family):
            config = models[name]
            print(
                f"{name:<22} {config.container_format:<6} {config.quantization_format:<7} "
                f"{DEFAULT_GQA[name]:<4} {'yes' if config.chat_tuned else 'no':<5} "
                f"{config.repo_id}/{config.filename}"
            )

    print(f"\nTotal models: {len(models)}")


def resolve_model_path(args: argparse.Namespace) -> Path:
    """Use --model when given, otherwise download the checkpoint for --which."""
    if args.model:
        return Path(args.model)
    config = get_model_config(args.which)
    return Path(hf_hub_download(repo_id=config.repo_id, filename=config.filename))


def resolve_tokenizer_path(args: argparse.Namespace) -> Path:
    """Use --tokenizer when given, otherwise download the family tokenizer."""
    if args.tokenizer:
        return Path(args.tokenizer)
    repo = get_tokenizer_repo(get_model_config(args.which))
    return Path(hf_hub_download(repo_id=repo, filename="tokenizer.json"))


def sampling_config_from_args(args: argparse.Namespace) -> SamplingConfig:
    """Build the sampling policy; a temperature of 0 selects greedy decoding."""
    return SamplingConfig(
        temperature=None if args.temperature == 0 else args.temperature,
        top_p=args.top_p,
        seed=args.seed,
        repeat_penalty=args.repeat_penalty,
        repeat_last_n=args.repeat_last_n,
    )
