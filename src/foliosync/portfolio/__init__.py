"""Portfolio domain — local element files and their registry."""

from foliosync.portfolio.frontmatter import content_hash
from foliosync.portfolio.frontmatter import git_blob_sha
from foliosync.portfolio.frontmatter import parse_element
from foliosync.portfolio.frontmatter import serialize_element
from foliosync.portfolio.store import LoadFailure
from foliosync.portfolio.store import PortfolioStore

__all__ = [
    "content_hash",
    "git_blob_sha",
    "LoadFailure",
    "parse_element",
    "PortfolioStore",
    "serialize_element",
]
