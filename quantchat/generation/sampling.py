"""Next-token selection: repeat penalty, greedy, temperature and top-p sampling."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import torch

logger = logging.getLogger(__name__)

DEFAULT_SEED = 299792458


@dataclass(frozen=True)
class SamplingConfig:
    """Sampling policy, fixed for the lifetime of a session."""

    temperature: Optional[float] = 0.8  # None (or 0) selects greedy decoding
    top_p: Optional[float] = None
    seed: int = DEFAULT_SEED
    repeat_penalty: float = 1.1  # 1.0 disables the penalty
    repeat_last_n: int = 64

    def __post_init__(self):
        if self.temperature is not None and self.temperature < 0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")
        if self.repeat_penalty <= 0:
            raise ValueError(f"repeat_penalty must be > 0, got {self.repeat_penalty}")
        if self.repeat_last_n < 0:
            raise ValueError(f"repeat_last_n must be >= 0, got {self.repeat_last_n}")

    @property
    def greedy(self) -> bool:
        return not self.temperature


def apply_repeat_penalty(logits: torch.Tensor, penalty: float, context: Sequence[int]) -> torch.Tensor:
    """
    Push the logits of already-generated tokens down.

    Positive logits are divided by ``penalty``, negative ones multiplied, so a
    penalty above 1.0 always makes a repeated token less likely. Each id is
    penalized once however often it occurs in ``context``; ids outside the
    vocabulary are ignored.

    Args:
        logits: 1-D logits over the vocabulary
        penalty: Penalty multiplier
        context: Recently generated token ids

    Returns:
        A new tensor; ``logits`` is left untouched
    """
    logits = logits.clone()
    vocab_size = logits.shape[-1]
    token_ids = sorted({int(t) for t in context if 0 <= int(t) < vocab_size})
    if not token_ids:
        return logits
    index = torch.tensor(token_ids, dtype=torch.long)
    selected = logits[index]
    logits[index] = torch.where(selected >= 0, selected / penalty, selected * penalty)
    return logits


class SamplingEngine:
    """Turns logits plus generation history into one token id.

    The random stream is seeded once here and advances with every draw, so the
    same seed over the same sequence of logits reproduces the same tokens.
    """

    def __init__(self, config: SamplingConfig):
        self.config = config
        self._generator = torch.Generator(device="cpu")
        self._generator.manual_seed(config.seed)

    def select(self, logits: Sequence[float], recent_tokens: Sequence[int] = ()) -> int:
        """
        Penalize recent repeats, then pick the next token.

        Args:
            logits: One row of next-token logits over the vocabulary
            recent_tokens: Tokens generated so far in the current turn; only the
                last ``repeat_last_n`` of them are penalized

        Returns:
            The selected token id
        """
        logits = torch.as_tensor(logits, dtype=torch.float32).detach().flatten().cpu()
        if self.config.repeat_penalty != 1.0 and self.config.repeat_last_n > 0:
            context = list(recent_tokens)[-self.config.repeat_last_n:]
            logits = apply_repeat_penalty(logits, self.config.repeat_penalty, context)
        return self.sample(logits)

    def sample(self, logits: torch.Tensor) -> int:
        """
        Draw a token from already-penalized logits.

        Greedy configs take the argmax and leave the random stream untouched.
        Otherwise the temperature-scaled distribution is sampled, cut to the
        top-p nucleus when one is set. A distribution with no finite mass
        falls back to uniform.

        Args:
            logits: 1-D logits over the vocabulary

        Returns:
            The drawn token id
        """
        if self.config.greedy:
            return int(torch.argmax(logits).item())

        probs = torch.softmax(logits / self.config.temperature, dim=-1)
        if self.config.top_p is not None and 0.0 < self.config.top_p < 1.0:
            probs = self._top_p(probs, self.config.top_p)
        if not torch.isfinite(probs).all() or probs.sum() <= 0:
            logger.debug("Degenerate distribution, sampling uniformly")
            probs = torch.ones_like(probs)
        return int(torch.multinomial(probs, 1, generator=self._generator).item())

    @staticmethod
    def _top_p(probs: torch.Tensor, top_p: float) -> torch.Tensor:
        """Keep the smallest most-probable prefix whose mass reaches ``top_p``."""
        sorted_probs, order = torch.sort(probs, descending=True, stable=True)
        mass_before = torch.cumsum(sorted_probs, dim=-1) - sorted_probs
        sorted_probs = sorted_probs.masked_fill(mass_before >= top_p, 0.0)
        return torch.zeros_like(probs).scatter(-1, order, sorted_probs)
