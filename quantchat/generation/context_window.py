"""Fitting a turn's prompt into the model context."""

from typing import List, Sequence

CONTEXT_MARGIN = 10


def fit(
    carry_over: Sequence[int],
    new_prompt_tokens: Sequence[int],
    planned_new_tokens: int,
    max_sequence_length: int,
    margin: int = CONTEXT_MARGIN,
) -> List[int]:
    """
    Concatenate history and prompt, dropping the oldest tokens on overflow.

    Args:
        carry_over: Tokens retained from earlier chat turns
        new_prompt_tokens: Tokens of the current prompt
        planned_new_tokens: Tokens that will be generated after the prompt
        max_sequence_length: Context length supported by the model
        margin: Slack kept free at the end of the context

    Returns:
        A suffix of ``carry_over + new_prompt_tokens`` such that its length
        plus ``planned_new_tokens`` fits in ``max_sequence_length - margin``.
        The most recent token is always kept.
    """
    tokens = list(carry_over) + list(new_prompt_tokens)
    budget = max_sequence_length - margin - planned_new_tokens
    if len(tokens) <= budget:
        return tokens
    keep = max(budget, 1) if tokens else 0
    return tokens[len(tokens) - keep:]
