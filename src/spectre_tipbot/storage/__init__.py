"""Tip bot storage layer -- JSON-file metadata stores and Pydantic records."""

from spectre_tipbot.storage.metadata_store import MetadataStore
from spectre_tipbot.storage.models import OwnedWalletMetadata, TransitionWalletMetadata

__all__ = [
    "MetadataStore",
    "OwnedWalletMetadata",
    "TransitionWalletMetadata",
]
