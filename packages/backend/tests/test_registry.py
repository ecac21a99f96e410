"""Tests for the central registry."""

import pytest

from storage.exceptions import StorageConflictError, StorageNotFoundError

from conftest import STORE_ROOT


@pytest.fixture
def registry(factory):
    return factory.registry


async def _store_file(adapter, name: str, data: bytes = b"weights") -> None:
    await adapter.write_file(STORE_ROOT / name, data)


@pytest.mark.asyncio
async def test_ensure_store_is_idempotent(registry, memory_adapter):
    assert await registry.ensure_store() == STORE_ROOT
    assert await registry.ensure_store() == STORE_ROOT
    assert await memory_adapter.is_directory(STORE_ROOT)


@pytest.mark.asyncio
async def test_destination_path(registry):
    assert registry.destination_path("model.gguf") == STORE_ROOT / "model.gguf"
    # Only the final component is kept
    assert registry.destination_path("../../etc/model.gguf") == STORE_ROOT / "model.gguf"


@pytest.mark.asyncio
async def test_register_infers_metadata(registry, memory_adapter):
    """Format, quantization and parameters come from the filename."""
    await _store_file(memory_adapter, "Llama-3-8B-Instruct-Q4_K_M.gguf")

    record = await registry.register("Llama-3-8B-Instruct-Q4_K_M.gguf", size=7, source="huggingface")

    assert record.id.startswith("llama-3-8b-instruct-q4-k-m-")
    assert len(record.id.rsplit("-", 1)[1]) == 8
    assert record.path == str(STORE_ROOT / "Llama-3-8B-Instruct-Q4_K_M.gguf")
    assert record.format == "gguf"
    assert record.quantization == "Q4_K_M"
    assert record.parameters == "8B"
    assert record.linked_runtimes == []

    fetched = await registry.get(record.id)
    assert fetched == record


@pytest.mark.asyncio
async def test_register_refuses_duplicate_filename(registry):
    """Filenames are unique, ignoring case."""
    await registry.register("model.gguf", size=1)
    with pytest.raises(StorageConflictError):
        await registry.register("MODEL.gguf", size=1)
    assert len(await registry.list_all()) == 1


@pytest.mark.asyncio
async def test_get_unknown_returns_none(registry):
    assert await registry.get("missing-00000000") is None


@pytest.mark.asyncio
async def test_get_by_filename(registry):
    record = await registry.register("Phi-3-mini.gguf", size=1)
    found = await registry.get_by_filename("phi-3-mini.GGUF")
    assert found.id == record.id


@pytest.mark.asyncio
async def test_set_runtime_link(registry):
    """Links and aliases change together."""
    record = await registry.register("model.gguf", size=1)

    linked = await registry.set_runtime_link(record.id, "ollama", True, alias="model")
    assert linked.linked_runtimes == ["ollama"]
    assert linked.runtime_aliases == {"ollama": "model"}

    # Linking twice does not duplicate
    linked = await registry.set_runtime_link(record.id, "ollama", True, alias="model")
    assert linked.linked_runtimes == ["ollama"]

    unlinked = await registry.set_runtime_link(record.id, "ollama", False)
    assert unlinked.linked_runtimes == []
    assert unlinked.runtime_aliases == {}
    assert (await registry.get(record.id)).linked_runtimes == []


@pytest.mark.asyncio
async def test_set_runtime_link_unknown_record(registry):
    with pytest.raises(StorageNotFoundError):
        await registry.set_runtime_link("missing-00000000", "ollama", True)


@pytest.mark.asyncio
async def test_delete_refuses_linked_record(registry):
    """A record must be detached from every runtime before deletion."""
    record = await registry.register("model.gguf", size=1)
    await registry.set_runtime_link(record.id, "lmstudio", True)

    with pytest.raises(StorageConflictError):
        await registry.delete(record.id)
    assert await registry.get(record.id) is not None


@pytest.mark.asyncio
async def test_delete_with_file(registry, memory_adapter):
    await _store_file(memory_adapter, "model.gguf")
    record = await registry.register("model.gguf", size=7)

    await registry.delete(record.id, delete_file=True)

    assert await registry.get(record.id) is None
    assert not await memory_adapter.exists(STORE_ROOT / "model.gguf")


@pytest.mark.asyncio
async def test_delete_keeps_file_by_default(registry, memory_adapter):
    await _store_file(memory_adapter, "model.gguf")
    record = await registry.register("model.gguf", size=7)

    await registry.delete(record.id)

    assert await memory_adapter.exists(STORE_ROOT / "model.gguf")


@pytest.mark.asyncio
async def test_delete_with_missing_file(registry):
    """A file that is already gone does not block deletion."""
    record = await registry.register("ghost.gguf", size=7)
    await registry.delete(record.id, delete_file=True)
    assert await registry.get(record.id) is None


@pytest.mark.asyncio
async def test_scan_registers_loose_files(registry, memory_adapter):
    """Weight files dropped into the store get records; others are ignored."""
    await _store_file(memory_adapter, "known.gguf")
    await registry.register("known.gguf", size=7)
    await _store_file(memory_adapter, "new-7B-Q5_K_M.gguf", b"x" * 42)
    await _store_file(memory_adapter, "notes.txt")
    await _store_file(memory_adapter, ".hidden.gguf")

    added = await registry.scan_for_new_models()

    assert [r.filename for r in added] == ["new-7B-Q5_K_M.gguf"]
    assert added[0].size == 42
    assert added[0].source == "manual"
    assert await registry.scan_for_new_models() == []


@pytest.mark.asyncio
async def test_verify_prunes_missing_files(registry, memory_adapter):
    await _store_file(memory_adapter, "present.gguf")
    present = await registry.register("present.gguf", size=7)
    missing = await registry.register("missing.gguf", size=7)

    removed = await registry.verify_models()

    assert [r.id for r in removed] == [missing.id]
    assert [r.id for r in await registry.list_all()] == [present.id]


@pytest.mark.asyncio
async def test_stats(registry, memory_adapter):
    first = await registry.register("a.gguf", size=10)
    await registry.register("b.gguf", size=5)
    await registry.set_runtime_link(first.id, "ollama", True, alias="a")

    stats = await registry.stats()

    assert stats.total_models == 2
    assert stats.total_size == 15
    assert stats.storage_path == str(STORE_ROOT)
    assert stats.storage_exists is True
    assert stats.linked == {"ollama": 1, "lmstudio": 0}
