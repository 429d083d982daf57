"""Turn-by-turn decoding session."""

import logging
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, TextIO

from ..runtime.model_runtime import ModelHandle
from ..utils.tokenizer import Tokenizer
from .context_window import fit
from .conversation_handler import ConversationHandler, ConversationMode, SingleShot
from .sampling import SamplingConfig, SamplingEngine
from .token_stream import TokenStreamEmitter, describe_prompt_token

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Where a turn currently is; every turn ends in TURN_COMPLETE."""
    AWAITING_PROMPT = "awaiting_prompt"
    PREFILLING = "prefilling"
    DECODING = "decoding"
    TURN_COMPLETE = "turn_complete"


@dataclass
class TurnStats:
    """
    Prefill and decode throughput for one turn.

    Attributes:
        prompt_tokens: Tokens sent in the prefill call
        generated_tokens: Decode steps actually run; the token sampled from the
            prefill logits is not counted
        prompt_seconds: Prefill time, including the first sample
        decode_seconds: Time spent in the decode loop
    """
    prompt_tokens: int
    generated_tokens: int
    prompt_seconds: float
    decode_seconds: float

    @property
    def prompt_tokens_per_sec(self) -> float:
        return self.prompt_tokens / self.prompt_seconds if self.prompt_seconds > 0 else 0.0

    @property
    def generated_tokens_per_sec(self) -> float:
        return self.generated_tokens / self.decode_seconds if self.decode_seconds > 0 else 0.0


@dataclass
class TurnResult:
    """Tokens and timings produced by a single turn.

    ``generated_tokens`` includes the end-of-sequence id when the turn hit it.
    """
    prompt_text: str
    prompt_tokens: List[int]
    generated_tokens: List[int]
    stats: TurnStats
    text: str = ""
    hit_eos: bool = False


@dataclass
class GenerationSession:
    """
    Owns the decoding state of one process.

    ``carry_over_tokens`` survives turns (chat mode only); ``current_turn_tokens``
    and ``generated_tokens`` are reset when a turn starts. The sampling engine,
    and with it the random stream, lives as long as the session and is never
    reseeded between turns.
    """

    model: ModelHandle
    tokenizer: Tokenizer
    sampling: SamplingConfig
    mode: ConversationMode = field(default_factory=SingleShot)
    sample_len: int = 100
    verbose_prompt: bool = False
    instruct_template: Optional[str] = None
    input_stream: Optional[TextIO] = None
    output_stream: Optional[TextIO] = None
    clock: Callable[[], float] = time.perf_counter

    def __post_init__(self) -> None:
        if self.sample_len < 1:
            raise ValueError(f"sample_len must be at least 1, got {self.sample_len}")
        self.output_stream = self.output_stream if self.output_stream is not None else sys.stdout
        self.sampler = SamplingEngine(self.sampling)
        self.emitter = TokenStreamEmitter(self.tokenizer, self.output_stream)
        self.conversation = ConversationHandler(
            self.mode,
            input_stream=self.input_stream,
            output_stream=self.output_stream,
            instruct_template=self.instruct_template,
        )
        self.eos_token_id = self.tokenizer.eos_token_id
        self.state = SessionState.AWAITING_PROMPT
        self.carry_over_tokens: List[int] = []
        self.current_turn_tokens: List[int] = []
        self.generated_tokens: List[int] = []
        self.turns: List[TurnResult] = []

    def run(self) -> List[TurnResult]:
        """Run turns until the mode halts or the input is exhausted."""
        turn_number = 0
        while True:
            turn_number += 1
            self.state = SessionState.AWAITING_PROMPT
            prompt_text = self.conversation.next_prompt(turn_number)
            if prompt_text is None:
                logger.info("No more input, ending session after %d turns", len(self.turns))
                break
            self.run_turn(prompt_text)
            if self.mode.halts_after_turn:
                break
        return self.turns

    def run_turn(self, prompt_text: str) -> TurnResult:
        """Tokenize, prefill, decode and report one turn."""
        self.state = SessionState.AWAITING_PROMPT
        self.current_turn_tokens = []
        self.generated_tokens = []

        self._write(prompt_text)
        encoded = self.tokenizer.encode(prompt_text)
        if self.verbose_prompt:
            for token, token_id in encoded:
                self._write(f"{token_id:7} -> '{describe_prompt_token(token)}'\n")

        to_sample = self.sample_len - 1
        self.current_turn_tokens = fit(
            self.carry_over_tokens,
            [token_id for _, token_id in encoded],
            to_sample,
            self.model.max_seq_len,
        )
        prompt_tokens = self.current_turn_tokens
        if not prompt_tokens:
            raise ValueError("Prompt produced no tokens")
        logger.debug("Turn prompt: %d tokens (%d carried over)", len(prompt_tokens), len(self.carry_over_tokens))

        self.state = SessionState.PREFILLING
        start_prompt_processing = self.clock()
        logits = self.model.forward(prompt_tokens, 0)
        next_token = self.sampler.select(logits, self.generated_tokens)
        prompt_dt = self.clock() - start_prompt_processing
        pieces = [self._append(next_token)]
        hit_eos = next_token == self.eos_token_id

        self.state = SessionState.DECODING
        start_post_prompt = self.clock()
        index = 0
        while not hit_eos and index < to_sample:
            logits = self.model.forward([next_token], len(prompt_tokens) + index)
            next_token = self.sampler.select(logits, self.generated_tokens)
            pieces.append(self._append(next_token))
            hit_eos = next_token == self.eos_token_id
            index += 1
        decode_dt = self.clock() - start_post_prompt

        self.state = SessionState.TURN_COMPLETE
        stats = TurnStats(
            prompt_tokens=len(prompt_tokens),
            generated_tokens=index,
            prompt_seconds=prompt_dt,
            decode_seconds=decode_dt,
        )
        self._report(stats)
        self.carry_over_tokens = self.mode.carry_over(
            self.carry_over_tokens, prompt_tokens, self.generated_tokens
        )

        result = TurnResult(
            prompt_text=prompt_text,
            prompt_tokens=list(prompt_tokens),
            generated_tokens=list(self.generated_tokens),
            stats=stats,
            text="".join(pieces),
            hit_eos=hit_eos,
        )
        self.turns.append(result)
        return result

    def _append(self, token_id: int) -> str:
        # The end-of-sequence id is recorded too; it counts for the repeat penalty.
        self.generated_tokens.append(token_id)
        return self.emitter.emit(token_id)

    def _report(self, stats: TurnStats) -> None:
        self._write(
            f"\n\n{stats.prompt_tokens:4} prompt tokens processed: "
            f"{stats.prompt_tokens_per_sec:.2f} token/s\n"
            f"{stats.generated_tokens:4} tokens generated: "
            f"{stats.generated_tokens_per_sec:.2f} token/s\n"
        )

    def _write(self, text: str) -> None:
        self.output_stream.write(text)
        self.output_stream.flush()
