"""Remote repository clients used by the download manager."""

from .base import ByteProgress, RemoteFile, RepositoryClient
from .huggingface import HuggingFaceClient

__all__ = ["ByteProgress", "HuggingFaceClient", "RemoteFile", "RepositoryClient"]
