"""Tests for the runtime HTTP clients."""

import httpx
import pytest

from adapters.runtimes import LMStudioClient, OllamaClient, build_modelfile
from storage.exceptions import RuntimeUnavailableError, StorageIOError, StorageNotFoundError


def test_build_modelfile():
    modelfile = build_modelfile(
        "/depot/llama.gguf",
        system_prompt="You are terse.",
        parameters={"temperature": 0.2, "num_ctx": 8192},
    )
    lines = modelfile.splitlines()
    assert "FROM /depot/llama.gguf" in lines
    assert 'SYSTEM """' in lines
    assert "You are terse." in lines
    assert "PARAMETER temperature 0.2" in lines
    assert "PARAMETER num_ctx 8192" in lines


def test_build_modelfile_minimal():
    assert build_modelfile("/depot/a.gguf").splitlines()[1:] == ["FROM /depot/a.gguf"]


@pytest.mark.parametrize(
    "base_url,expected",
    [
        ("http://localhost:11434", True),
        ("http://127.0.0.1:11434/", True),
        ("http://gpu-box:11434", False),
    ],
)
def test_is_local(base_url, expected):
    assert OllamaClient(base_url=base_url).is_local() is expected


@pytest.mark.asyncio
async def test_ollama_status(ollama_client, fake_ollama):
    fake_ollama.models["llama3.2:latest"] = "FROM x"

    status = await ollama_client.get_status()

    assert status.connected is True
    assert [m.id for m in status.models] == ["llama3.2:latest"]
    assert status.models[0].size == 1024


@pytest.mark.asyncio
async def test_ollama_unreachable(ollama_client, fake_ollama):
    """Probes report unreachable; mutations raise."""
    fake_ollama.available = False

    status = await ollama_client.get_status()
    assert status.connected is False
    assert status.error

    with pytest.raises(RuntimeUnavailableError):
        await ollama_client.create_model("m", "FROM /x.gguf")
    with pytest.raises(RuntimeUnavailableError):
        await ollama_client.delete_model("m")


@pytest.mark.asyncio
async def test_ollama_create_and_delete(ollama_client, fake_ollama):
    await ollama_client.create_model("m", "FROM /x.gguf")
    assert fake_ollama.created[0]["stream"] is False

    await ollama_client.delete_model("m")
    assert fake_ollama.deleted == ["m"]

    with pytest.raises(StorageNotFoundError):
        await ollama_client.delete_model("m")


@pytest.mark.asyncio
async def test_ollama_create_error_message():
    """A path Ollama cannot read gets an actionable message."""

    def handler(request):
        return httpx.Response(400, json={"error": "neither 'from' or 'files' was specified"})

    client = OllamaClient(transport=httpx.MockTransport(handler))
    with pytest.raises(StorageIOError, match="must be accessible"):
        await client.create_model("m", "FROM /x.gguf")
    await client.close()


@pytest.mark.asyncio
async def test_lmstudio_status(lmstudio_client):
    status = await lmstudio_client.get_status()

    assert status.connected is True
    assert status.models[0].id == "lmstudio-community/Meta-Llama-3-8B-Instruct-GGUF"
    assert status.models[0].runtime == "lmstudio"


@pytest.mark.asyncio
async def test_lmstudio_unreachable(lmstudio_client, fake_lmstudio):
    fake_lmstudio.available = False

    assert await lmstudio_client.is_available() is False
    assert await lmstudio_client.list_models() == []
