"""CLI output helpers for run headers and session summaries."""

import argparse
from typing import List

from ..generation.session import TurnResult


def print_run_header(args: argparse.Namespace) -> None:
    """Echo the sampling parameters before any model work starts."""
    print(
        f"temp: {args.temperature:.2f} repeat-penalty: {args.repeat_penalty:.2f} "
        f"repeat-last-n: {args.repeat_last_n}"
    )


def print_session_summary(turns: List[TurnResult]) -> None:
    """Print totals across every completed turn."""
    if len(turns) < 2:
        return
    prompt_tokens = sum(turn.stats.prompt_tokens for turn in turns)
    generated = sum(turn.stats.generated_tokens for turn in turns)
    decode_seconds = sum(turn.stats.decode_seconds for turn in turns)
    print("\n" + "=" * 60)
    print("SESSION SUMMARY")
    print("=" * 60)
    print(f"  Turns: {len(turns)}")
    print(f"  Prompt tokens processed: {prompt_tokens}")
    print(f"  Tokens generated: {generated}")
    if decode_seconds > 0:
        print(f"  Average generation speed: {generated / decode_seconds:.2f} token/s")
    print(f"  Turns ended by end-of-sequence: {sum(1 for turn in turns if turn.hit_eos)}")
