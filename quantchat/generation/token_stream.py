"""Incremental rendering of generated tokens."""

import re
import sys
from typing import Optional, TextIO

from ..utils.tokenizer import Tokenizer

WORD_BOUNDARY = "▁"
BYTE_TOKEN = re.compile(r"^<0x([0-9A-Fa-f]{1,2})>$")


class TokenStreamEmitter:
    """Writes each token's text as soon as it is produced.

    Byte-fallback tokens (``<0xHH>``) are printed only when they encode a plain
    ASCII character; the individual bytes of a multi-byte UTF-8 sequence are
    dropped rather than buffered.
    """

    def __init__(self, tokenizer: Tokenizer, stream: Optional[TextIO] = None):
        self.tokenizer = tokenizer
        self.stream = stream if stream is not None else sys.stdout

    def render(self, token_id: int) -> str:
        text = self.tokenizer.id_to_token(token_id)
        if text is None:
            return ""
        text = text.replace(WORD_BOUNDARY, " ")
        match = BYTE_TOKEN.match(text)
        if match is None:
            return text
        value = int(match.group(1), 16)
        return chr(value) if value < 0x80 else ""

    def emit(self, token_id: int) -> str:
        text = self.render(token_id)
        if text:
            self.stream.write(text)
        self.stream.flush()
        return text


def describe_prompt_token(token: str) -> str:
    """Human-readable form of a prompt token for the verbose echo."""
    return token.replace(WORD_BOUNDARY, " ").replace("<0x0A>", "\n")
