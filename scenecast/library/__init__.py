"""
Asset library collaborator.

Persists campaigns and uploaded assets and publishes catalog snapshots.
"""

from .store import (
    AssetKind,
    AssetNotDeletableError,
    AssetNotFoundError,
    DuplicateCampaignError,
    InvalidInputError,
    LibraryError,
    LibraryStore,
    StoredUpload,
)

__all__ = [
    "AssetKind",
    "AssetNotDeletableError",
    "AssetNotFoundError",
    "DuplicateCampaignError",
    "InvalidInputError",
    "LibraryError",
    "LibraryStore",
    "StoredUpload",
]
