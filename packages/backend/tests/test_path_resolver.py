"""Tests for runtime storage root candidates."""

import pytest
from pathlib import Path

from core.config import Settings
from services.path_resolver import PathResolver

from conftest import HOME


def _resolver(adapter, platform, **overrides):
    settings = Settings(_env_file=None, **overrides)
    return PathResolver(settings, adapter, platform=platform, home=HOME)


def test_linux_ollama_candidates(memory_adapter):
    resolver = _resolver(memory_adapter, "linux")
    assert resolver.candidate_roots("ollama") == [
        HOME / ".ollama" / "models",
        Path("/usr/share/ollama/.ollama/models"),
        Path("/var/lib/ollama/models"),
    ]


def test_macos_lmstudio_candidates(memory_adapter):
    resolver = _resolver(memory_adapter, "darwin")
    assert resolver.candidate_roots("lmstudio") == [
        HOME / ".lmstudio" / "models",
        HOME / "Library" / "Application Support" / "LM Studio" / "models",
    ]


def test_windows_ollama_candidates(memory_adapter):
    resolver = _resolver(memory_adapter, "win32")
    assert resolver.candidate_roots("ollama")[-1] == HOME / "AppData" / "Local" / "Ollama" / "models"


def test_override_comes_first(memory_adapter):
    """A configured path is preferred and not repeated."""
    resolver = _resolver(memory_adapter, "linux", OLLAMA_MODELS_PATH=Path("/var/lib/ollama/models"))
    candidates = resolver.candidate_roots("ollama")
    assert candidates[0] == Path("/var/lib/ollama/models")
    assert candidates.count(Path("/var/lib/ollama/models")) == 1


def test_unknown_runtime(memory_adapter):
    with pytest.raises(ValueError):
        _resolver(memory_adapter, "linux").candidate_roots("vllm")


@pytest.mark.asyncio
async def test_default_root_prefers_existing(memory_adapter):
    """The first candidate that exists wins."""
    await memory_adapter.ensure_directory(Path("/var/lib/ollama/models"))
    resolver = _resolver(memory_adapter, "linux")

    assert await resolver.default_root("ollama") == Path("/var/lib/ollama/models")


@pytest.mark.asyncio
async def test_default_root_falls_back_to_first(memory_adapter):
    """Nothing is created while resolving."""
    resolver = _resolver(memory_adapter, "linux")

    assert await resolver.default_root("lmstudio") == HOME / ".lmstudio" / "models"
    assert not await memory_adapter.exists(HOME)
