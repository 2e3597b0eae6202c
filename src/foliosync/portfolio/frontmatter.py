"""Element file codec: YAML front matter followed by the body text."""

from __future__ import annotations

import hashlib
import uuid
from typing import Any

import yaml
from pydantic import ValidationError

from foliosync.errors import ElementValidationError
from foliosync.errors import ErrorCode
from foliosync.models.elements import Element
from foliosync.models.elements import ElementMetadata
from foliosync.models.elements import ElementType
from foliosync.security.yaml_guard import load_mapping
from foliosync.security.yaml_guard import split_front_matter

_RESERVED_KEYS = (
    "id",
    "name",
    "type",
    "version",
    "author",
    "description",
    "category",
    "tags",
    "triggers",
    "privacy",
)


def stable_id(element_type: ElementType, slug: str) -> str:
    """Deterministic id for files written without one."""
    return uuid.uuid5(uuid.NAMESPACE_URL, f"foliosync:{element_type.value}/{slug}").hex


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def git_blob_sha(text: str) -> str:
    """The sha git assigns to *text* as a blob, for comparing with remote trees."""
    data = text.encode("utf-8")
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


def serialize_element(element: Element) -> str:
    meta: dict[str, Any] = {
        "id": element.id,
        "name": element.name,
        "type": element.type.value,
        "version": element.version,
    }
    md = element.metadata
    if md.author:
        meta["author"] = md.author
    if md.description:
        meta["description"] = md.description
    if md.category:
        meta["category"] = md.category
    if md.tags:
        meta["tags"] = list(md.tags)
    if md.triggers:
        meta["triggers"] = list(md.triggers)
    if element.local_only:
        meta["privacy"] = {"local_only": True}
    for key, value in md.extra.items():
        if key not in _RESERVED_KEYS:
            meta[key] = value
    front = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{front}---\n{element.content}"


def parse_element(text: str, *, element_type: ElementType, slug: str) -> Element:
    """Build an ``Element`` from file text; structural problems raise ``ElementValidationError``.

    The text must already have passed the security pipeline, which screens
    the front matter for unsafe tags and alias bombs before it is loaded here.
    """
    yaml_text, body = split_front_matter(text)
    if yaml_text is None:
        raise ElementValidationError(
            f"{element_type.value}/{slug}: file has no front matter block",
            code=ErrorCode.PARSE_ERROR,
        )
    try:
        data = load_mapping(yaml_text)
    except (yaml.YAMLError, ValueError) as exc:
        raise ElementValidationError(
            f"{element_type.value}/{slug}: invalid front matter: {exc}",
            code=ErrorCode.PARSE_ERROR,
        ) from exc

    declared = data.pop("type", None)
    if declared is not None:
        try:
            declared_type = ElementType.parse(str(declared))
        except ValueError:
            declared_type = None
        if declared_type is not element_type:
            raise ElementValidationError(
                f"{element_type.value}/{slug}: front matter declares type {declared!r}",
                code=ErrorCode.INVALID_TYPE,
            )

    privacy = data.pop("privacy", None)
    local_only = bool(privacy.get("local_only")) if isinstance(privacy, dict) else False

    element_id = _optional_str(data.pop("id", None)) or stable_id(element_type, slug)
    name = _optional_str(data.pop("name", None)) or ""
    declared_version = data.pop("version", None)
    version = _raw_scalar(yaml_text, "version") or _optional_str(declared_version) or "1.0.0"
    try:
        metadata = ElementMetadata(
            author=_optional_str(data.pop("author", None)),
            description=_optional_str(data.pop("description", None)),
            category=_optional_str(data.pop("category", None)),
            tags=data.pop("tags", None),
            triggers=data.pop("triggers", None),
            extra=data,
        )
        return Element(
            id=element_id,
            type=element_type,
            slug=slug,
            name=name,
            version=version,
            metadata=metadata,
            content=body,
            local_only=local_only,
        )
    except ValidationError as exc:
        raise ElementValidationError(
            f"{element_type.value}/{slug}: invalid front matter values: {exc.errors()[0].get('msg', exc)}",
            code=ErrorCode.PARSE_ERROR,
        ) from exc


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _raw_scalar(yaml_text: str, key: str) -> str | None:
    """Source text of a top-level scalar, so an unquoted ``version: 1.10`` is not read as 1.1."""
    root = yaml.compose(yaml_text, Loader=yaml.SafeLoader)
    if not isinstance(root, yaml.MappingNode):
        return None
    for key_node, value_node in root.value:
        if isinstance(key_node, yaml.ScalarNode) and key_node.value == key:
            if isinstance(value_node, yaml.ScalarNode) and value_node.tag != "tag:yaml.org,2002:null":
                return value_node.value.strip() or None
            return None
    return None
