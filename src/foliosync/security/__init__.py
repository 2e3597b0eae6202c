"""Security domain — normalization and content screening."""

from foliosync.security.content import find_secrets
from foliosync.security.pipeline import SecurityValidationPipeline
from foliosync.security.unicode import normalize
from foliosync.security.yaml_guard import load_mapping
from foliosync.security.yaml_guard import split_front_matter

__all__ = [
    "find_secrets",
    "load_mapping",
    "normalize",
    "SecurityValidationPipeline",
    "split_front_matter",
]
