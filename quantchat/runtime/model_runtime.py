"""Model construction from a weight container and the forward-pass handle."""

import logging
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence

import numpy as np
import torch
from transformers import AutoModelForCausalLM, LlamaConfig, LlamaForCausalLM

from ..utils.memory_utils import MemoryMonitor
from .weight_loader import ContainerFormat, FormatError, WeightContainerDescriptor, read_tensor

logger = logging.getLogger(__name__)

MAX_SEQ_LEN = 4096
GGML_RMS_NORM_EPS = 1e-5

# Legacy llama tensor names -> Hugging Face llama parameter names.
GGML_GLOBAL_TENSORS: Dict[str, str] = {
    "tok_embeddings.weight": "model.embed_tokens.weight",
    "norm.weight": "model.norm.weight",
    "output.weight": "lm_head.weight",
}
GGML_LAYER_TENSORS: Dict[str, str] = {
    "attention.wq.weight": "self_attn.q_proj.weight",
    "attention.wk.weight": "self_attn.k_proj.weight",
    "attention.wv.weight": "self_attn.v_proj.weight",
    "attention.wo.weight": "self_attn.o_proj.weight",
    "attention_norm.weight": "input_layernorm.weight",
    "feed_forward.w1.weight": "mlp.gate_proj.weight",
    "feed_forward.w2.weight": "mlp.down_proj.weight",
    "feed_forward.w3.weight": "mlp.up_proj.weight",
    "ffn_norm.weight": "post_attention_layernorm.weight",
}


class ModelEvaluationError(RuntimeError):
    """Raised when a forward pass fails."""


class ModelHandle(Protocol):
    """Opaque next-token capability driven by the generation session."""

    max_seq_len: int

    def forward(self, token_ids: Sequence[int], position_offset: int) -> Any:
        """Return next-token logits (one row of vocabulary size)."""
        ...


class TransformersModelHandle:
    """ModelHandle backed by a transformers causal LM with a KV cache."""

    def __init__(self, model: Any, max_seq_len: int = MAX_SEQ_LEN, device: str = "cpu"):
        self.model = model
        self.max_seq_len = max_seq_len
        self.device = device
        self._cache: Optional[Any] = None
        self._cached_len = 0

    def forward(self, token_ids: Sequence[int], position_offset: int) -> torch.Tensor:
        token_ids = list(token_ids)
        if not token_ids:
            raise ModelEvaluationError("forward called with no tokens")
        if position_offset == 0:
            self._cache = None
            self._cached_len = 0
        elif position_offset != self._cached_len:
            raise ModelEvaluationError(
                f"Position offset {position_offset} does not match cached length {self._cached_len}"
            )

        input_ids = torch.tensor([token_ids], dtype=torch.long, device=self.device)
        position_ids = torch.arange(
            position_offset, position_offset + len(token_ids), device=self.device
        ).unsqueeze(0)
        try:
            with torch.no_grad():
                outputs = self.model(
                    input_ids=input_ids,
                    position_ids=position_ids,
                    past_key_values=self._cache,
                    use_cache=True,
                )
        except Exception as e:
            raise ModelEvaluationError(f"Forward pass failed at offset {position_offset}: {e}") from e

        self._cache = outputs.past_key_values
        self._cached_len = position_offset + len(token_ids)
        return outputs.logits[0, -1].float().cpu()


def reverse_permute(weights: np.ndarray, n_head: int) -> np.ndarray:
    """Undo the rotary interleaving llama.cpp applies to q/k projections."""
    dim = weights.shape[0] // n_head // 2
    permuted = weights.reshape(n_head, dim, 2, *weights.shape[1:])
    return permuted.swapaxes(2, 1).reshape(weights.shape)


class ModelRuntime:
    """Builds a ModelHandle from a parsed weight container."""

    def __init__(self, device: str = "auto"):
        if device == "auto":
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.device = device
        self.dtype = torch.float16 if device == "cuda" else torch.float32
        self.memory_monitor = MemoryMonitor()
        logger.info("ModelRuntime initialized on %s", self.device)

    def build(self, descriptor: WeightContainerDescriptor, path: Path) -> TransformersModelHandle:
        """Construct the model described by ``descriptor`` and wrap it in a handle."""
        path = Path(path)
        with self.memory_monitor.track("model loading", logger), warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=UserWarning)
            if descriptor.format is ContainerFormat.GGUF:
                model = self._load_gguf_model(path)
            else:
                model = self._load_ggml_model(descriptor, path)
            model = model.to(self.device)
            model.eval()
        logger.info("model built")
        max_seq_len = int(descriptor.hparams.get("n_ctx") or MAX_SEQ_LEN)
        return TransformersModelHandle(model, max_seq_len=max_seq_len, device=self.device)

    def _load_gguf_model(self, path: Path) -> Any:
        return AutoModelForCausalLM.from_pretrained(
            str(path.parent),
            gguf_file=path.name,
            torch_dtype=self.dtype,
            low_cpu_mem_usage=True,
        )

    def _load_ggml_model(self, descriptor: WeightContainerDescriptor, path: Path) -> Any:
        config = self.llama_config_from_ggml(descriptor)
        n_head = config.num_attention_heads
        n_kv_head = config.num_key_value_heads

        state_dict: Dict[str, torch.Tensor] = {}
        for entry in descriptor.tensors:
            hf_name = self._hf_tensor_name(entry.name)
            if hf_name is None:
                logger.debug("Skipping unmapped tensor %s", entry.name)
                continue
            weights = read_tensor(path, entry)
            try:
                if entry.name.endswith("attention.wq.weight"):
                    weights = reverse_permute(weights, n_head)
                elif entry.name.endswith("attention.wk.weight"):
                    weights = reverse_permute(weights, n_kv_head)
            except ValueError as e:
                raise FormatError(f"Tensor {entry.name} {entry.shape} does not fit the head layout: {e}") from e
            state_dict[hf_name] = torch.from_numpy(np.ascontiguousarray(weights))

        model = LlamaForCausalLM._from_config(config, torch_dtype=self.dtype)
        try:
            model.load_state_dict(state_dict, strict=True)
        except RuntimeError as e:
            raise FormatError(f"Weight container {path} does not match its hyperparameters: {e}") from e
        return model

    @staticmethod
    def llama_config_from_ggml(descriptor: WeightContainerDescriptor) -> LlamaConfig:
        """Translate legacy hyperparameters into a LlamaConfig."""
        hparams = descriptor.hparams
        gqa = descriptor.gqa or 1
        # w1 is stored (n_embd, n_ff) in ggml order.
        try:
            intermediate_size = descriptor.tensor("layers.0.feed_forward.w1.weight").shape[1]
        except KeyError as e:
            raise FormatError(f"Container has no feed-forward tensor {e}") from e
        return LlamaConfig(
            vocab_size=hparams["n_vocab"],
            hidden_size=hparams["n_embd"],
            intermediate_size=intermediate_size,
            num_hidden_layers=hparams["n_layer"],
            num_attention_heads=hparams["n_head"],
            num_key_value_heads=hparams["n_head"] // gqa,
            max_position_embeddings=MAX_SEQ_LEN,
            rms_norm_eps=GGML_RMS_NORM_EPS,
            tie_word_embeddings=False,
        )

    @staticmethod
    def _hf_tensor_name(name: str) -> Optional[str]:
        if name in GGML_GLOBAL_TENSORS:
            return GGML_GLOBAL_TENSORS[name]
        parts = name.split(".", 2)
        if len(parts) == 3 and parts[0] == "layers" and parts[1].isdigit():
            suffix = GGML_LAYER_TENSORS.get(parts[2])
            if suffix is not None:
                return f"model.layers.{parts[1]}.{suffix}"
        return None
