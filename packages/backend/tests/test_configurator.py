"""Tests for redirecting runtime storage to the central store."""

import pytest
from pathlib import Path

from core.events import STORAGE_CONFIGURED, clear, on
from services.configurator import LinkState
from storage.exceptions import ErrorKind

from conftest import LMSTUDIO_ROOT, OLLAMA_ROOT, STORE_ROOT

BACKUP = OLLAMA_ROOT.with_name("models.backup")


@pytest.fixture(autouse=True)
def _clean_handlers():
    clear()
    yield
    clear()


@pytest.fixture
def configurator(factory):
    return factory.configurator


async def _existing_models(adapter):
    await adapter.write_file(OLLAMA_ROOT / "manifests" / "keep-me", b"original")


@pytest.mark.asyncio
async def test_status_unconfigured(configurator, memory_adapter):
    await _existing_models(memory_adapter)

    status = await configurator.status("ollama")

    assert status.state == LinkState.UNCONFIGURED
    assert status.runtime_path == str(OLLAMA_ROOT)
    assert status.central_path == str(STORE_ROOT)
    assert status.current_path == str(OLLAMA_ROOT)
    assert status.backup_exists is False
    assert any("OLLAMA_MODELS" in line for line in status.instructions)


@pytest.mark.asyncio
async def test_configure_moves_directory_aside(configurator, memory_adapter):
    """The original directory becomes the backup and the path links to the store."""
    await _existing_models(memory_adapter)

    result = await configurator.configure("ollama")

    assert result.success, result.error
    assert result.status.state == LinkState.CONFIGURED
    assert result.status.configured is True
    assert result.status.backup_path == str(BACKUP)
    assert await memory_adapter.is_symlink(OLLAMA_ROOT)
    assert await memory_adapter.read_link(OLLAMA_ROOT) == str(STORE_ROOT)
    assert await memory_adapter.read_file(BACKUP / "manifests" / "keep-me") == b"original"


@pytest.mark.asyncio
async def test_configure_twice_is_a_no_op(configurator, memory_adapter):
    """A second configure keeps the single backup and changes nothing."""
    await _existing_models(memory_adapter)
    assert (await configurator.configure("ollama")).success

    again = await configurator.configure("ollama")

    assert again.success
    assert again.message == "Already configured to use central storage"
    assert not await memory_adapter.lexists(BACKUP.with_name("models.backup.backup"))
    assert await memory_adapter.read_file(BACKUP / "manifests" / "keep-me") == b"original"


@pytest.mark.asyncio
async def test_configure_without_backup_is_refused(configurator, memory_adapter):
    await _existing_models(memory_adapter)

    result = await configurator.configure("ollama", create_backup=False)

    assert result.success is False
    assert result.error_kind == ErrorKind.CONFLICT
    assert not await memory_adapter.is_symlink(OLLAMA_ROOT)
    assert await memory_adapter.read_file(OLLAMA_ROOT / "manifests" / "keep-me") == b"original"


@pytest.mark.asyncio
async def test_configure_refuses_existing_backup(configurator, memory_adapter):
    """An existing backup is never overwritten."""
    await _existing_models(memory_adapter)
    await memory_adapter.write_file(BACKUP / "old", b"older backup")

    result = await configurator.configure("ollama")

    assert result.success is False
    assert result.error_kind == ErrorKind.CONFLICT
    assert result.status.state == LinkState.NEEDS_REPAIR
    assert await memory_adapter.read_file(BACKUP / "old") == b"older backup"
    assert await memory_adapter.is_directory(OLLAMA_ROOT)


@pytest.mark.asyncio
async def test_configure_missing_directory(configurator, memory_adapter):
    """A runtime without a models directory is linked without a backup."""
    result = await configurator.configure("ollama")

    assert result.success
    assert result.status.state == LinkState.CONFIGURED
    assert result.status.backup_exists is False
    assert await memory_adapter.is_directory(STORE_ROOT)


@pytest.mark.asyncio
async def test_restore_brings_back_original(configurator, memory_adapter):
    await _existing_models(memory_adapter)
    assert (await configurator.configure("ollama")).success

    result = await configurator.restore("ollama")

    assert result.success, result.error
    assert result.status.state == LinkState.UNCONFIGURED
    assert not await memory_adapter.is_symlink(OLLAMA_ROOT)
    assert not await memory_adapter.lexists(BACKUP)
    assert await memory_adapter.read_file(OLLAMA_ROOT / "manifests" / "keep-me") == b"original"


@pytest.mark.asyncio
async def test_restore_without_backup_leaves_path_absent(configurator, memory_adapter):
    assert (await configurator.configure("ollama")).success

    result = await configurator.restore("ollama")

    assert result.success
    assert result.message == "Symlink removed. No backup to restore."
    assert not await memory_adapter.lexists(OLLAMA_ROOT)
    # Store contents are untouched
    assert await memory_adapter.is_directory(STORE_ROOT)


@pytest.mark.asyncio
async def test_link_elsewhere_needs_repair(configurator, memory_adapter):
    """A link that does not resolve to the store is repaired by configure."""
    await memory_adapter.ensure_directory(Path("/mnt/other"))
    await memory_adapter.ensure_directory(OLLAMA_ROOT.parent)
    await memory_adapter.symlink(Path("/mnt/other"), OLLAMA_ROOT)

    status = await configurator.status("ollama")
    assert status.state == LinkState.NEEDS_REPAIR
    assert status.is_link is True
    assert status.points_to_central is False
    assert status.current_path == "/mnt/other"

    result = await configurator.configure("ollama")

    assert result.success
    assert result.status.state == LinkState.CONFIGURED
    assert await memory_adapter.is_directory(Path("/mnt/other"))


@pytest.mark.asyncio
async def test_resumes_after_interrupted_configure(configurator, memory_adapter):
    """A directory moved aside without a link is picked up again."""
    await memory_adapter.write_file(BACKUP / "manifests" / "keep-me", b"original")

    status = await configurator.status("ollama")
    assert status.state == LinkState.NEEDS_REPAIR
    assert status.runtime_path == str(OLLAMA_ROOT)

    result = await configurator.configure("ollama")
    assert result.success
    assert result.status.state == LinkState.CONFIGURED

    restored = await configurator.restore("ollama")
    assert restored.success
    assert await memory_adapter.read_file(OLLAMA_ROOT / "manifests" / "keep-me") == b"original"


@pytest.mark.asyncio
async def test_restore_refuses_to_replace_real_directory(configurator, memory_adapter):
    await _existing_models(memory_adapter)
    await memory_adapter.write_file(BACKUP / "old", b"older backup")

    result = await configurator.restore("ollama")

    assert result.success is False
    assert result.error_kind == ErrorKind.CONFLICT
    assert await memory_adapter.lexists(BACKUP)


@pytest.mark.asyncio
async def test_configure_emits_event(configurator, memory_adapter):
    received = []

    async def handler(**kwargs):
        received.append(kwargs)

    on(STORAGE_CONFIGURED, handler)
    assert (await configurator.configure("lmstudio")).success

    assert len(received) == 1
    assert received[0]["runtime"] == "lmstudio"


@pytest.mark.asyncio
async def test_failed_configure_emits_nothing(configurator, memory_adapter):
    received = []

    async def handler(**kwargs):
        received.append(kwargs)

    on(STORAGE_CONFIGURED, handler)
    await _existing_models(memory_adapter)
    await configurator.configure("ollama", create_backup=False)

    assert received == []


@pytest.mark.asyncio
async def test_linked_lmstudio_root_hides_store_files(factory, memory_adapter):
    """Once LM Studio's directory points at the store, its files are not offered for import."""
    await memory_adapter.write_file(STORE_ROOT / "central-Q4_K_M.gguf", b"weights")
    assert (await factory.configurator.configure("lmstudio")).success
    assert await memory_adapter.is_symlink(LMSTUDIO_ROOT)

    result = await factory.detector.detect_lmstudio()

    assert result.exists is True
    assert result.models == []
