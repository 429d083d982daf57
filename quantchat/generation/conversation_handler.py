"""Conversation modes: where prompts come from and what survives a turn."""

import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence, TextIO, Union

DEFAULT_PROMPT = "My favorite theorem is "
INPUT_MARKER = "> "


@dataclass(frozen=True)
class SingleShot:
    """Generate once from a fixed prompt, then stop."""

    text: str = DEFAULT_PROMPT
    halts_after_turn = True

    def next_prompt(self, handler: "ConversationHandler", turn_number: int) -> Optional[str]:
        return self.text if turn_number == 1 else None

    def carry_over(self, previous: Sequence[int], prompt_tokens: Sequence[int],
                   generated_tokens: Sequence[int]) -> List[int]:
        return []


@dataclass(frozen=True)
class Interactive:
    """Read a fresh prompt every turn; nothing is remembered between turns."""

    halts_after_turn = False

    def next_prompt(self, handler: "ConversationHandler", turn_number: int) -> Optional[str]:
        return handler.read_instruction()

    def carry_over(self, previous: Sequence[int], prompt_tokens: Sequence[int],
                   generated_tokens: Sequence[int]) -> List[int]:
        return []


@dataclass(frozen=True)
class Chat:
    """Read a prompt every turn and keep the whole token history as context."""

    halts_after_turn = False

    def next_prompt(self, handler: "ConversationHandler", turn_number: int) -> Optional[str]:
        return handler.read_instruction()

    def carry_over(self, previous: Sequence[int], prompt_tokens: Sequence[int],
                   generated_tokens: Sequence[int]) -> List[int]:
        # prompt_tokens already starts with whatever of `previous` fit the context.
        return list(prompt_tokens) + list(generated_tokens)


ConversationMode = Union[SingleShot, Interactive, Chat]


def parse_mode(prompt: Optional[str]) -> ConversationMode:
    """Map the --prompt option onto a conversation mode."""
    if prompt is None:
        return SingleShot(DEFAULT_PROMPT)
    if prompt == "interactive":
        return Interactive()
    if prompt == "chat":
        return Chat()
    return SingleShot(prompt)


class ConversationHandler:
    """
    Handles prompt acquisition for interactive and chat sessions.

    Lines are read from ``input_stream`` after writing an input marker to
    ``output_stream``; an optional instruction template wraps the raw line for
    instruction-tuned families.
    """

    def __init__(
        self,
        mode: ConversationMode,
        input_stream: Optional[TextIO] = None,
        output_stream: Optional[TextIO] = None,
        instruct_template: Optional[str] = None,
    ):
        self.mode = mode
        self.input_stream = input_stream if input_stream is not None else sys.stdin
        self.output_stream = output_stream if output_stream is not None else sys.stdout
        self.instruct_template = instruct_template

    def next_prompt(self, turn_number: int) -> Optional[str]:
        """Prompt text for the given (1-based) turn, or None when input is exhausted."""
        return self.mode.next_prompt(self, turn_number)

    def read_instruction(self) -> Optional[str]:
        self.output_stream.write(INPUT_MARKER)
        self.output_stream.flush()
        line = self.input_stream.readline()
        if not line:
            return None
        if line.endswith("\n"):
            line = line[:-1]
            if line.endswith("\r"):
                line = line[:-1]
        if self.instruct_template is not None:
            return self.instruct_template.format(prompt=line)
        return line
