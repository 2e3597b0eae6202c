"""Typed values returned by the remote portfolio client."""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field


class RepoSpec(BaseModel):
    """Requested repository shape for ``ensure_repository``."""

    model_config = {"frozen": True}

    name: str = "dollhouse-portfolio"
    description: str = "My element portfolio"
    private: bool = False


class RepoRef(BaseModel):
    model_config = {"frozen": True}

    owner: str
    name: str
    html_url: str = ""
    default_branch: str = "main"
    created: bool = Field(
        default=False,
        description="True when this call created the repository.",
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class TreeEntry(BaseModel):
    """A file or directory in the remote tree."""

    model_config = {"frozen": True}

    path: str
    kind: str = Field(description="'blob' for files, 'tree' for directories.")
    sha: str
    size: int | None = None


class BlobContent(BaseModel):
    """Decoded file content with its blob sha."""

    model_config = {"frozen": True}

    path: str
    sha: str
    text: str
    html_url: str | None = None


class CommitRef(BaseModel):
    """Outcome of a ``put_file`` commit."""

    model_config = {"frozen": True}

    sha: str
    path: str
    blob_sha: str | None = None
    html_url: str = Field(description="Best available link to the committed file.")
