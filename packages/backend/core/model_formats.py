"""Model file formats and the names we infer from model filenames.

Both runtimes run GGUF weights; everything else needs a conversion step
before either runtime can load it.
"""

import math
import re
from dataclasses import dataclass
from typing import Literal

ModelFormat = Literal["gguf", "safetensors", "pytorch", "mlx", "unknown"]

WEIGHT_FILE_EXTENSION = ".gguf"

_QUANTIZATION_PATTERN = re.compile(r"[QI][0-9]+[_A-Z0-9]*", re.IGNORECASE)
_PARAMETERS_PATTERN = re.compile(r"(\d+(?:\.\d+)?)[Bb]")


@dataclass(frozen=True)
class ModelCompatibility:
    """Which runtimes can load a given format."""

    ollama: bool
    lmstudio: bool
    notes: str | None = None


FORMAT_COMPATIBILITY: dict[str, ModelCompatibility] = {
    "gguf": ModelCompatibility(True, True, "Universal format for local inference"),
    "safetensors": ModelCompatibility(False, False, "Needs conversion to GGUF"),
    "pytorch": ModelCompatibility(False, False, "Needs conversion to GGUF"),
    "mlx": ModelCompatibility(False, False, "Apple MLX format only"),
    "unknown": ModelCompatibility(False, False, "Format not detected"),
}

# Higher = better quality, larger file
QUANTIZATION_RANKS: dict[str, int] = {
    "F32": 100,
    "F16": 95,
    "BF16": 94,
    "Q8_0": 90,
    "Q8_1": 89,
    "Q6_K": 80,
    "Q5_K_M": 70,
    "Q5_K_S": 68,
    "Q5_1": 67,
    "Q5_0": 66,
    "Q4_K_M": 60,
    "Q4_K_S": 58,
    "Q4_1": 57,
    "Q4_0": 56,
    "IQ4_XS": 55,
    "Q3_K_M": 50,
    "Q3_K_S": 48,
    "IQ3_XS": 45,
    "Q2_K": 40,
    "IQ2_XS": 35,
}


def is_weight_file(filename: str) -> bool:
    """Check whether a filename carries the weight-file extension."""
    return filename.lower().endswith(WEIGHT_FILE_EXTENSION)


def detect_format(filename: str) -> ModelFormat:
    """Infer the model format from a filename."""
    lower = filename.lower()
    if lower.endswith(".gguf"):
        return "gguf"
    if lower.endswith(".safetensors"):
        return "safetensors"
    if lower.endswith((".bin", ".pt", ".pth")):
        return "pytorch"
    if "mlx" in lower:
        return "mlx"
    return "unknown"


def extract_quantization(name: str) -> str | None:
    """Extract a quantization code such as Q4_K_M or Q8_0."""
    match = _QUANTIZATION_PATTERN.search(name)
    return match.group(0).upper() if match else None


def extract_parameters(name: str) -> str | None:
    """Extract a parameter count such as 7B or 1.5B."""
    match = _PARAMETERS_PATTERN.search(name)
    return f"{match.group(1)}B" if match else None


def quantization_rank(quantization: str | None) -> int:
    """Rank a quantization code; unknown codes rank lowest."""
    if not quantization:
        return 0
    return QUANTIZATION_RANKS.get(quantization.upper(), 0)


def format_bytes(size: int) -> str:
    """Format a byte count for humans."""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = min(int(math.log(size, 1024)), len(units) - 1)
    return f"{size / 1024 ** i:.1f} {units[i]}"
