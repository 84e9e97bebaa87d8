"""Model providers."""

from overseer.providers.base import ModelProvider, StreamingModelProvider
from overseer.providers.langchain import LangChainProvider

__all__ = ["LangChainProvider", "ModelProvider", "StreamingModelProvider"]
