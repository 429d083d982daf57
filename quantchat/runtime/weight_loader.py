"""Quantized weight container detection and parsing.

Two container layouts are understood:

* GGUF, the self-describing format where every tensor carries its own
  quantization type and the hyperparameters live in typed key/value metadata.
  Parsing is delegated to :class:`gguf.GGUFReader`.
* The legacy llama.cpp formats (unversioned ``ggml``, ``ggmf`` v1 and ``ggjt``
  v1-v3) with a fixed hyperparameter header, an embedded vocabulary and a
  sequence of tensor records. These files say nothing about grouped-query
  attention, so the grouping factor must come from the caller or from the
  per-model default table.

Both paths end in the same immutable :class:`WeightContainerDescriptor`.
"""

import logging
import struct
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
from gguf import GGML_QUANT_SIZES, GGMLQuantizationType, GGUFReader, GGUFValueType
from gguf.quants import dequantize

from ..models.model_policies import get_default_gqa

logger = logging.getLogger(__name__)

GGUF_MAGIC = b"GGUF"
GGML_MAGIC_UNVERSIONED = 0x67676D6C  # "ggml"
GGML_MAGIC_GGMF = 0x67676D66  # "ggmf"
GGML_MAGIC_GGJT = 0x67676A74  # "ggjt"
GGJT_ALIGNMENT = 32
GGML_HPARAM_NAMES = ("n_vocab", "n_embd", "n_mult", "n_head", "n_layer", "n_rot", "ftype")

_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_F32 = struct.Struct("<f")
_HPARAMS = struct.Struct("<7i")
_TENSOR_HEADER = struct.Struct("<iiI")

PathLike = Union[str, Path]


class FormatError(ValueError):
    """Raised when a weight container is malformed or truncated."""


class ContainerFormat(str, Enum):
    """Closed set of supported container layouts."""

    GGUF = "gguf"
    GGML = "ggml"


@dataclass(frozen=True)
class TensorEntry:
    """Index entry for one stored tensor.

    ``shape`` follows ggml ordering: the innermost (contiguous) dimension first.
    """

    name: str
    shape: Tuple[int, ...]
    dtype: GGMLQuantizationType
    offset: int

    @property
    def n_elements(self) -> int:
        count = 1
        for dim in self.shape:
            count *= dim
        return count

    @property
    def n_bytes(self) -> int:
        block_size, type_size = GGML_QUANT_SIZES[self.dtype]
        return self.n_elements * type_size // block_size


@dataclass(frozen=True)
class WeightContainerDescriptor:
    """Everything model construction needs to know about a container."""

    format: ContainerFormat
    version: int
    tensors: Tuple[TensorEntry, ...]
    hparams: Mapping[str, int]
    gqa: Optional[int] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    vocab: Tuple[Tuple[bytes, float], ...] = ()

    @property
    def total_bytes(self) -> int:
        return sum(tensor.n_bytes for tensor in self.tensors)

    def tensor(self, name: str) -> TensorEntry:
        for entry in self.tensors:
            if entry.name == name:
                return entry
        raise KeyError(name)


def format_size(size_in_bytes: int) -> str:
    """Render a byte count with decimal units, e.g. ``3.83GB``."""
    if size_in_bytes < 1_000:
        return f"{size_in_bytes}B"
    if size_in_bytes < 1_000_000:
        return f"{size_in_bytes / 1e3:.2f}KB"
    if size_in_bytes < 1_000_000_000:
        return f"{size_in_bytes / 1e6:.2f}MB"
    return f"{size_in_bytes / 1e9:.2f}GB"


def detect_format(path: PathLike) -> ContainerFormat:
    """
    Pick the parsing strategy for a container file.

    The ``.gguf`` extension or the ``GGUF`` magic select the structured reader;
    anything else (``.bin``, ``.ggml``, no extension) is treated as legacy.
    """
    path = Path(path)
    if not path.is_file():
        raise FormatError(f"Weight container {path} does not exist")
    if path.suffix.lower() == ".gguf":
        return ContainerFormat.GGUF
    with path.open("rb") as fh:
        head = fh.read(len(GGUF_MAGIC))
    if head == GGUF_MAGIC:
        return ContainerFormat.GGUF
    return ContainerFormat.GGML


def _field_value(reader_field: Any) -> Any:
    """Decode a scalar or string GGUF metadata field; arrays are skipped."""
    if not reader_field.types or not reader_field.data:
        return None
    value_type = reader_field.types[0]
    if value_type == GGUFValueType.ARRAY:
        return None
    part = reader_field.parts[reader_field.data[0]]
    if value_type == GGUFValueType.STRING:
        return bytes(part).decode("utf-8", errors="replace")
    return part.tolist()[0]


def read_gguf(path: PathLike) -> WeightContainerDescriptor:
    """Parse a GGUF container's metadata and tensor index."""
    path = Path(path)
    try:
        reader = GGUFReader(path, "r")
    except (ValueError, IndexError, KeyError, struct.error) as e:
        raise FormatError(f"Unable to parse GGUF container {path}: {e}") from e

    metadata: Dict[str, Any] = {}
    for name, reader_field in reader.fields.items():
        if name.startswith("GGUF."):
            continue
        value = _field_value(reader_field)
        if value is not None:
            metadata[name] = value

    file_size = path.stat().st_size
    tensors: List[TensorEntry] = []
    for tensor in reader.tensors:
        entry = TensorEntry(
            name=tensor.name,
            shape=tuple(int(dim) for dim in tensor.shape),
            dtype=GGMLQuantizationType(int(tensor.tensor_type)),
            offset=int(tensor.data_offset),
        )
        if entry.offset + entry.n_bytes > file_size:
            raise FormatError(f"Tensor {entry.name} runs past the end of {path}")
        tensors.append(entry)

    arch = metadata.get("general.architecture", "llama")
    hparams: Dict[str, int] = {}
    for key, hparam in (
        ("context_length", "n_ctx"),
        ("embedding_length", "n_embd"),
        ("block_count", "n_layer"),
        ("feed_forward_length", "n_ff"),
        ("attention.head_count", "n_head"),
        ("attention.head_count_kv", "n_head_kv"),
        ("rope.dimension_count", "n_rot"),
    ):
        value = metadata.get(f"{arch}.{key}")
        if isinstance(value, int):
            hparams[hparam] = value

    gqa = None
    if hparams.get("n_head") and hparams.get("n_head_kv"):
        gqa = hparams["n_head"] // hparams["n_head_kv"]

    version_field = reader.fields.get("GGUF.version")
    version = int(version_field.parts[0][0]) if version_field is not None else 0

    return WeightContainerDescriptor(
        format=ContainerFormat.GGUF,
        version=version,
        tensors=tuple(tensors),
        hparams=hparams,
        gqa=gqa,
        metadata=metadata,
    )


def _read_exact(fh: BinaryIO, size: int, what: str) -> bytes:
    data = fh.read(size)
    if len(data) != size:
        raise FormatError(f"Truncated container while reading {what}")
    return data


def _unpack(fh: BinaryIO, packer: struct.Struct, what: str) -> Tuple[Any, ...]:
    return packer.unpack(_read_exact(fh, packer.size, what))


def _read_ggml_version(fh: BinaryIO) -> Tuple[int, int]:
    (magic,) = _unpack(fh, _U32, "magic")
    if magic == GGML_MAGIC_UNVERSIONED:
        return magic, 0
    if magic not in (GGML_MAGIC_GGMF, GGML_MAGIC_GGJT):
        raise FormatError(f"Unknown container magic 0x{magic:08x}")
    (version,) = _unpack(fh, _U32, "version")
    if magic == GGML_MAGIC_GGMF and version != 1:
        raise FormatError(f"Unsupported ggmf version {version}")
    if magic == GGML_MAGIC_GGJT and version not in (1, 2, 3):
        raise FormatError(f"Unsupported ggjt version {version}")
    return magic, version


def read_ggml(path: PathLike, gqa: int) -> WeightContainerDescriptor:
    """
    Parse a legacy ggml/ggmf/ggjt container.

    Args:
        path: Container file
        gqa: Attention-grouping factor to record on the descriptor

    Returns:
        WeightContainerDescriptor with the embedded vocabulary

    Raises:
        FormatError: On an unknown magic, a bad tensor record or truncation
    """
    path = Path(path)
    if gqa < 1:
        raise ValueError(f"Attention-grouping factor must be positive, got {gqa}")
    file_size = path.stat().st_size

    with path.open("rb") as fh:
        magic, version = _read_ggml_version(fh)
        hparams = dict(zip(GGML_HPARAM_NAMES, _unpack(fh, _HPARAMS, "hyperparameters")))
        if hparams["n_vocab"] < 0 or hparams["n_head"] <= 0:
            raise FormatError(f"Invalid hyperparameters {hparams}")
        if hparams["n_head"] % gqa:
            raise FormatError(f"n_head={hparams['n_head']} is not divisible by gqa={gqa}")

        vocab: List[Tuple[bytes, float]] = []
        for _ in range(hparams["n_vocab"]):
            (length,) = _unpack(fh, _U32, "vocabulary entry")
            piece = _read_exact(fh, length, "vocabulary entry")
            score = 0.0
            if magic != GGML_MAGIC_UNVERSIONED:
                (score,) = _unpack(fh, _F32, "vocabulary score")
            vocab.append((piece, score))

        tensors: List[TensorEntry] = []
        while True:
            header = fh.read(_TENSOR_HEADER.size)
            if not header:
                break
            if len(header) != _TENSOR_HEADER.size:
                raise FormatError("Truncated container while reading tensor header")
            n_dims, name_len, dtype_id = _TENSOR_HEADER.unpack(header)
            if not 1 <= n_dims <= 4 or name_len <= 0:
                raise FormatError(f"Invalid tensor record (n_dims={n_dims}, name_len={name_len})")
            try:
                dtype = GGMLQuantizationType(dtype_id)
            except ValueError as e:
                raise FormatError(f"Unknown tensor type {dtype_id}") from e
            dims = tuple(_unpack(fh, _I32, "tensor dims")[0] for _ in range(n_dims))
            name = _read_exact(fh, name_len, "tensor name").decode("utf-8", errors="replace")
            offset = fh.tell()
            if magic == GGML_MAGIC_GGJT:
                offset += -offset % GGJT_ALIGNMENT
            entry = TensorEntry(name=name, shape=dims, dtype=dtype, offset=offset)
            if offset + entry.n_bytes > file_size:
                raise FormatError(f"Tensor {name} runs past the end of {path}")
            fh.seek(offset + entry.n_bytes)
            tensors.append(entry)

    return WeightContainerDescriptor(
        format=ContainerFormat.GGML,
        version=version,
        tensors=tuple(tensors),
        hparams=hparams,
        gqa=gqa,
        vocab=tuple(vocab),
    )


def load_container(
    path: PathLike,
    gqa: Optional[int] = None,
    model_name: Optional[str] = None,
) -> WeightContainerDescriptor:
    """
    Detect the container format, parse it and log its footprint.

    Args:
        path: Container file
        gqa: Explicit attention-grouping override (legacy containers only)
        model_name: Model variant used to look up the default grouping factor

    Returns:
        WeightContainerDescriptor
    """
    path = Path(path)
    start = time.perf_counter()
    container_format = detect_format(path)

    if container_format is ContainerFormat.GGUF:
        if gqa is not None:
            logger.warning("Ignoring gqa=%s, GGUF containers describe their own attention layout", gqa)
        descriptor = read_gguf(path)
    else:
        if gqa is None:
            if model_name is None:
                raise ValueError("Legacy containers need either gqa or a model name")
            gqa = get_default_gqa(model_name)
        descriptor = read_ggml(path, gqa)

    logger.info(
        "loaded %d tensors (%s) in %.2fs",
        len(descriptor.tensors),
        format_size(descriptor.total_bytes),
        time.perf_counter() - start,
    )
    if descriptor.format is ContainerFormat.GGML:
        logger.info("params: %s", dict(descriptor.hparams))
    return descriptor


def read_tensor(path: PathLike, entry: TensorEntry) -> np.ndarray:
    """Dequantize one tensor to float32, shaped in numpy (outermost first) order."""
    with Path(path).open("rb") as fh:
        fh.seek(entry.offset)
        raw = _read_exact(fh, entry.n_bytes, f"tensor {entry.name}")
    rows = entry.n_elements // entry.shape[0]
    data = np.frombuffer(raw, dtype=np.uint8).reshape(rows, -1)
    values = dequantize(data, entry.dtype)
    return np.asarray(values, dtype=np.float32).reshape(tuple(reversed(entry.shape)))
