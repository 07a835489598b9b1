"""Tests for the byte-statistics collector and the format sniff."""
import numpy as np
import pytest

from forensics_api.detectors.physics import (
    compute_byte_statistics,
    normalize_entropy,
    sample_bytes,
    sample_step,
)
from forensics_api.detectors.utils import fingerprint, is_png, sniff_format


def test_empty_buffer_is_all_zero():
    stats = compute_byte_statistics(b"")
    assert stats.entropy == 0.0
    assert stats.variance == 0.0
    assert stats.sample_count == 0


def test_single_valued_buffer_has_no_entropy():
    stats = compute_byte_statistics(b"\x7f" * 1000)
    assert stats.entropy == 0.0
    assert stats.variance == 0.0
    assert stats.sample_count == 1000


def test_two_symbols_give_one_bit():
    stats = compute_byte_statistics(b"\x00\xff" * 500)
    assert stats.entropy == pytest.approx(1.0)
    assert stats.variance == pytest.approx(127.5 ** 2)


def test_sample_step_bounds_cost():
    assert sample_step(0) == 1
    assert sample_step(100) == 1
    assert sample_step(10000) == 2
    assert sample_step(10_000_000, 5000) == 2000


def test_stride_sampling_is_deterministic():
    data = bytes(range(256)) * 100  # 25600 bytes -> step 5
    sampled = sample_bytes(data)
    assert sampled.size == 5120
    assert np.array_equal(sampled, sample_bytes(data))
    assert sampled[1] == 5


def test_uniform_bytes_reach_eight_bits():
    stats = compute_byte_statistics(bytes(range(256)) * 100)
    assert stats.entropy == pytest.approx(8.0)
    assert stats.variance == pytest.approx((256 ** 2 - 1) / 12)


def test_statistics_are_finite_for_noise(noise_png):
    stats = compute_byte_statistics(noise_png)
    assert 7.0 < stats.entropy <= 8.0
    assert np.isfinite(stats.variance)
    assert normalize_entropy(stats.entropy) <= 1.0


@pytest.mark.parametrize("head,expected", [
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff\xe0\x00\x10JFIF", "jpeg"),
    (b"GIF89a\x01\x00", "gif"),
    (b"RIFF\x24\x00\x00\x00WEBPVP8 ", "webp"),
    (b"II*\x00\x08\x00\x00\x00", "tiff"),
    (b"\x00\x00\x00\x18ftypheic", "heic"),
    (b"BM\x36\x00", "bmp"),
    (b"hello world", "unknown"),
    (b"", "unknown"),
])
def test_sniff_format(head, expected):
    assert sniff_format(head) == expected


def test_png_signature(noise_png, bare_jpeg):
    assert is_png(noise_png)
    assert not is_png(bare_jpeg)
    assert not is_png(b"\x89")


def test_fingerprint_is_sha256():
    assert fingerprint(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
