"""Argument parser construction for the generation CLI."""

import argparse

from ..generation.sampling import DEFAULT_SEED
from ..models.model_configs import AVAILABLE_MODELS

EPILOG = """
Examples:
  # One-shot completion with the default llama-2 7b checkpoint
  python -m quantchat.cli --prompt "My favorite theorem is "

  # Greedy decoding from a local GGUF file
  python -m quantchat.cli --model codellama-7b.Q8_0.gguf --tokenizer tokenizer.json --temperature 0

  # Multi-turn chat keeping the token history between turns
  python -m quantchat.cli --which 7b-mistral-instruct --prompt chat

  # Legacy 70b GGML file with explicit grouped-query attention
  python -m quantchat.cli --which 70b --gqa 8
"""


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="Text generation from quantized llama-family checkpoints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument(
        "--model",
        help="GGUF or legacy GGML (.bin) file to load (downloaded for --which if omitted)",
    )
    parser.add_argument(
        "--prompt",
        help="The initial prompt; 'interactive' re-prompts every turn, "
        "'chat' also keeps the history of previous turns",
    )
    parser.add_argument("-n", "--sample-len", type=int, default=100, help="Tokens to generate per turn")
    parser.add_argument("--tokenizer", help="tokenizer.json file (downloaded for --which if omitted)")
    parser.add_argument(
        "--temperature",
        type=float,
        default=0.8,
        help="Sampling temperature, use 0 for greedy decoding (default: 0.8)",
    )
    parser.add_argument("--top-p", type=float, help="Nucleus sampling probability cutoff")
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="Seed for random sampling")
    parser.add_argument("--verbose-prompt", action="store_true", help="Display the prompt tokens")
    parser.add_argument(
        "--repeat-penalty",
        type=float,
        default=1.1,
        help="Penalty applied to repeated tokens, 1.0 means no penalty (default: 1.1)",
    )
    parser.add_argument(
        "--repeat-last-n",
        type=int,
        default=64,
        help="Number of generated tokens considered for the repeat penalty (default: 64)",
    )
    parser.add_argument("--which", choices=list(AVAILABLE_MODELS.keys()), default="7b", help="Model variant")
    parser.add_argument(
        "--gqa",
        type=int,
        help="Grouped-query attention factor for legacy files, use 8 for llama-2 70b",
    )
    parser.add_argument("--device", choices=["auto", "cuda", "cpu"], default="auto")
    parser.add_argument("--list-models", action="store_true", help="List all available models and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    return parser
