"""Tests for format detection and filename metadata."""

import pytest

from core.model_formats import (
    FORMAT_COMPATIBILITY,
    detect_format,
    extract_parameters,
    extract_quantization,
    format_bytes,
    is_weight_file,
    quantization_rank,
)


@pytest.mark.parametrize(
    "filename,expected",
    [
        ("llama-3-8b.Q4_K_M.gguf", "gguf"),
        ("model.GGUF", "gguf"),
        ("model-00001-of-00002.safetensors", "safetensors"),
        ("pytorch_model.bin", "pytorch"),
        ("Qwen2.5-7B-mlx", "mlx"),
        ("README.md", "unknown"),
    ],
)
def test_detect_format(filename, expected):
    assert detect_format(filename) == expected


def test_only_gguf_loads_everywhere():
    assert FORMAT_COMPATIBILITY["gguf"].ollama is True
    assert FORMAT_COMPATIBILITY["gguf"].lmstudio is True
    assert FORMAT_COMPATIBILITY["safetensors"].ollama is False


def test_is_weight_file():
    assert is_weight_file("model.GgUf")
    assert not is_weight_file("model.gguf.part")


@pytest.mark.parametrize(
    "name,quantization,parameters",
    [
        ("Meta-Llama-3-8B-Instruct-Q4_K_M.gguf", "Q4_K_M", "8B"),
        ("qwen2.5:1.5b-instruct-q8_0", "Q8_0", "1.5B"),
        ("Phi-3-mini-4k-instruct-IQ4_XS.gguf", "Q4_XS", None),
        ("model-f16.gguf", None, None),
        ("model-q4km.gguf", "Q4KM", None),
        ("llama3.2", None, None),
    ],
)
def test_extract_metadata(name, quantization, parameters):
    assert extract_quantization(name) == quantization
    assert extract_parameters(name) == parameters


def test_quantization_rank():
    assert quantization_rank("Q8_0") > quantization_rank("q4_k_m") > quantization_rank("Q2_K")
    assert quantization_rank(None) == 0
    assert quantization_rank("Q9_Z") == 0


def test_format_bytes():
    assert format_bytes(0) == "0 B"
    assert format_bytes(512) == "512.0 B"
    assert format_bytes(15 * 1024 * 1024) == "15.0 MB"
