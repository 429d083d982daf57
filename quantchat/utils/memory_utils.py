"""GPU and host memory accounting around weight loading."""

import gc
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import psutil
import torch

GIB = 1024**3


@dataclass
class MemoryStats:
    """Point-in-time view of device and host memory, in GiB."""
    gpu_allocated_gb: float
    gpu_total_gb: float
    system_memory_percent: float
    system_memory_available_gb: float
    process_rss_gb: float

    @property
    def gpu_percent(self) -> float:
        if self.gpu_total_gb <= 0:
            return 0.0
        return self.gpu_allocated_gb / self.gpu_total_gb * 100

    @property
    def footprint_gb(self) -> float:
        """Memory attributable to this process: device allocations plus host RSS."""
        return self.gpu_allocated_gb + self.process_rss_gb

    def describe(self) -> str:
        return (
            f"GPU: {self.gpu_allocated_gb:.2f}GB ({self.gpu_percent:.1f}%), "
            f"Process RSS: {self.process_rss_gb:.2f}GB, "
            f"System: {self.system_memory_percent:.1f}%"
        )


class MemoryMonitor:
    """
    Records memory snapshots while checkpoints are dequantized and built.

    Dequantizing a legacy container materializes every tensor as float32 on
    the host before it is copied to the device, so host RSS is tracked
    alongside CUDA allocations.
    """

    def __init__(self):
        self.peak_memory = 0.0
        self.history: List[Tuple[str, MemoryStats]] = []

    def get_gpu_memory_usage(self) -> float:
        """Allocated CUDA memory in GB, 0.0 without CUDA."""
        if not torch.cuda.is_available():
            return 0.0
        return torch.cuda.memory_allocated() / GIB

    def get_total_gpu_memory(self) -> float:
        if not torch.cuda.is_available():
            return 0.0
        return torch.cuda.get_device_properties(0).total_memory / GIB

    def get_system_memory_stats(self) -> dict:
        memory = psutil.virtual_memory()
        return {
            "percent_used": memory.percent,
            "available_gb": memory.available / GIB,
            "total_gb": memory.total / GIB,
        }

    def snapshot(self) -> MemoryStats:
        system_stats = self.get_system_memory_stats()
        return MemoryStats(
            gpu_allocated_gb=self.get_gpu_memory_usage(),
            gpu_total_gb=self.get_total_gpu_memory(),
            system_memory_percent=system_stats["percent_used"],
            system_memory_available_gb=system_stats["available_gb"],
            process_rss_gb=psutil.Process().memory_info().rss / GIB,
        )

    def cleanup_gpu_memory(self) -> None:
        """Drop cached CUDA blocks and run the garbage collector."""
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
            torch.cuda.synchronize()
        gc.collect()

    def log_memory_usage(self, operation: str, logger: Optional[logging.Logger] = None) -> MemoryStats:
        """
        Take a snapshot, remember it and report it.

        Args:
            operation: Label for the snapshot, e.g. "Before model loading"
            logger: Logger to report through, prints to stdout if None

        Returns:
            The recorded snapshot
        """
        stats = self.snapshot()
        self.history.append((operation, stats))
        self.peak_memory = max(self.peak_memory, stats.footprint_gb)

        message = f"[{operation}] {stats.describe()}"
        if logger:
            logger.info(message)
        else:
            print(message)
        return stats

    @contextmanager
    def track(self, operation: str, logger: Optional[logging.Logger] = None) -> Iterator[None]:
        """Snapshot before and after a block; release CUDA caches if it fails."""
        before = self.log_memory_usage(f"Before {operation}", logger)
        try:
            yield
        except BaseException:
            self.cleanup_gpu_memory()
            raise
        after = self.log_memory_usage(f"After {operation}", logger)
        if logger:
            logger.info(
                "%s grew process footprint by %.2fGB (peak %.2fGB)",
                operation, after.footprint_gb - before.footprint_gb, self.peak_memory,
            )
