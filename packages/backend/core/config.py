"""Application configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings


def _default_storage_path() -> Path:
    """Return the default central model store."""
    return Path.home() / "Model-Depot"


class Settings(BaseSettings):
    """Application settings."""

    # API settings
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 52790

    # Central store
    STORAGE_PATH: Path = _default_storage_path()
    STORAGE_BACKEND: str = "local"  # local, memory

    # Registry database (None = <STORAGE_PATH>/.registry.db)
    DATABASE_URL: str | None = None

    # Runtime endpoints
    OLLAMA_URL: str = "http://localhost:11434"
    LMSTUDIO_URL: str = "http://localhost:1234"
    LMSTUDIO_API_KEY: str = "lm-studio"

    # Runtime storage overrides (checked before the per-OS defaults)
    OLLAMA_MODELS_PATH: Path | None = None
    LMSTUDIO_MODELS_PATH: Path | None = None

    # Folder inside the LM Studio tree that holds installed models
    LMSTUDIO_LINK_DIR: str = "model-depot"

    # Timeouts in seconds
    PROBE_TIMEOUT: float = 5.0
    CREATE_TIMEOUT: float = 600.0  # Ollama hashes the whole file on create

    # Hugging Face downloads into the store
    HF_ENDPOINT: str = "https://huggingface.co"
    HF_TOKEN: str | None = None  # gated repos
    DOWNLOAD_TIMEOUT: float = 30.0  # per read, not the whole transfer

    COPY_CHUNK_SIZE: int = 1024 * 1024

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Set derived values
        if self.DATABASE_URL is None:
            self.DATABASE_URL = f"sqlite+aiosqlite:///{self.STORAGE_PATH / '.registry.db'}"

    def ensure_directories(self) -> None:
        """Create required directories."""
        self.STORAGE_PATH.mkdir(parents=True, exist_ok=True)

    model_config = {"env_prefix": "MODEL_DEPOT_", "env_file": ".env"}


settings = Settings()
