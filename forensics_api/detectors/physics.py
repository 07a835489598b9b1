"""
Byte-stream statistics ("physics" signals): Shannon entropy and variance of a
stride-sampled view of the raw buffer.
"""
from dataclasses import dataclass

import numpy as np

TARGET_SAMPLE_COUNT = 5000


@dataclass(frozen=True)
class ByteStatistics:
    entropy: float      # bits per sampled byte, 0..8
    variance: float     # population variance of sampled byte values
    sample_count: int


def sample_step(length: int, target_samples: int = TARGET_SAMPLE_COUNT) -> int:
    return max(1, length // max(1, target_samples))


def sample_bytes(data: bytes, target_samples: int = TARGET_SAMPLE_COUNT) -> np.ndarray:
    """Every `step`-th byte starting at offset 0, so the cost stays bounded on large inputs."""
    arr = np.frombuffer(data, dtype=np.uint8)
    return arr[::sample_step(arr.size, target_samples)]


def shannon_entropy(values: np.ndarray) -> float:
    """Shannon entropy of byte values (0..8)."""
    if values.size == 0:
        return 0.0
    hist = np.bincount(values, minlength=256).astype(np.float64)
    p = hist / float(values.size)
    p = p[p > 0]
    # 0.0 rather than -0.0 for single-valued input
    return float(abs(-(p * np.log2(p)).sum()))


def normalize_entropy(bits: float) -> float:
    return bits / 8.0


def compute_byte_statistics(data: bytes, target_samples: int = TARGET_SAMPLE_COUNT) -> ByteStatistics:
    if not data:
        return ByteStatistics(entropy=0.0, variance=0.0, sample_count=0)

    sampled = sample_bytes(data, target_samples)
    variance = float(np.var(sampled.astype(np.float64)))
    return ByteStatistics(
        entropy=shannon_entropy(sampled),
        variance=variance,
        sample_count=int(sampled.size),
    )
