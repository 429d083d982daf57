"""Thin wrapper over a Hugging Face ``tokenizers.Tokenizer``."""

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from tokenizers import Tokenizer as HFTokenizer

logger = logging.getLogger(__name__)

EOS_TOKEN = "</s>"


class TokenizerError(RuntimeError):
    """Raised when the tokenizer resource is unusable or encoding fails."""


class Tokenizer:
    """Text <-> id mapping used by the generation session."""

    def __init__(self, tokenizer: HFTokenizer, eos_token: str = EOS_TOKEN):
        self._tokenizer = tokenizer
        self.eos_token = eos_token

    @classmethod
    def from_file(cls, path: Union[str, Path], eos_token: str = EOS_TOKEN) -> "Tokenizer":
        """Load a ``tokenizer.json`` file."""
        try:
            tokenizer = HFTokenizer.from_file(str(path))
        except Exception as e:
            raise TokenizerError(f"Unable to load tokenizer from {path}: {e}") from e
        loaded = cls(tokenizer, eos_token=eos_token)
        logger.info("Tokenizer loaded from %s, vocab size: %d", path, loaded.vocab_size)
        return loaded

    def encode(self, text: str) -> List[Tuple[str, int]]:
        """Encode text (with special tokens) into ordered (token text, id) pairs."""
        try:
            encoding = self._tokenizer.encode(text, add_special_tokens=True)
        except Exception as e:
            raise TokenizerError(f"Failed to encode prompt: {e}") from e
        return list(zip(encoding.tokens, encoding.ids))

    def id_to_token(self, token_id: int) -> Optional[str]:
        """
        Look up the raw vocabulary piece for an id.

        Args:
            token_id: Id produced by the sampler

        Returns:
            The piece as stored in the vocabulary (with its "\u2581" space marker),
            or None for ids outside the vocabulary
        """
        return self._tokenizer.id_to_token(token_id)

    def token_id(self, token: str) -> Optional[int]:
        return self._tokenizer.get_vocab(with_added_tokens=True).get(token)

    @property
    def eos_token_id(self) -> int:
        token_id = self.token_id(self.eos_token)
        if token_id is None:
            raise TokenizerError(f"Tokenizer vocabulary has no end-of-sequence token {self.eos_token!r}")
        return token_id

    @property
    def vocab_size(self) -> int:
        return self._tokenizer.get_vocab_size(with_added_tokens=True)
