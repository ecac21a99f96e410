"""SQLAlchemy models."""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class StoredModel(Base):
    """A model file under central management."""

    __tablename__ = "stored_models"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    format: Mapped[str] = mapped_column(String(20), default="unknown")
    quantization: Mapped[str | None] = mapped_column(String(50))
    parameters: Mapped[str | None] = mapped_column(String(50))
    source: Mapped[str] = mapped_column(String(20), default="manual")  # huggingface, ollama, lmstudio, manual
    source_url: Mapped[str | None] = mapped_column(Text)
    hf_repo: Mapped[str | None] = mapped_column(String(255))
    hf_file: Mapped[str | None] = mapped_column(String(255))
    # Runtimes the file is installed into, and the name used in each
    linked_runtimes: Mapped[list] = mapped_column(JSON, default=list)
    runtime_aliases: Mapped[dict] = mapped_column(JSON, default=dict)
    acquired_at: Mapped[datetime] = mapped_column(default=func.now())
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())
