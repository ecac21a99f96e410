"""Runtime client implementations.

OllamaClient: manifest-based runtime with a create/delete API
LMStudioClient: flat-file runtime, read-only OpenAI-compatible listing
"""

from .lmstudio import LMStudioClient
from .ollama import OllamaClient, build_modelfile

__all__ = ["LMStudioClient", "OllamaClient", "build_modelfile"]
