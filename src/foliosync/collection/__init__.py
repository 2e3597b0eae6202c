"""Collection domain — cached, searchable shared library index."""

from foliosync.collection.cache import CollectionIndexCache
from foliosync.collection.cache import HttpCollectionIndexFetcher
from foliosync.collection.cache import tokenize

__all__ = [
    "CollectionIndexCache",
    "HttpCollectionIndexFetcher",
    "tokenize",
]
