"""Article sources."""

from .blob_store import BlobStoreClient

__all__ = ["BlobStoreClient"]
