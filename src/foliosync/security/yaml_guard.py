"""Front-matter YAML screening.

The expansion check walks the parser's event stream, so anchors and aliases
are measured without ever constructing the aliased objects.  A billion-laughs
payload is refused while it is still a few hundred bytes of text.
"""

from __future__ import annotations

import re

import yaml

from foliosync.config import SecurityConfig
from foliosync.models.security import FindingCode
from foliosync.models.security import SecurityFinding
from foliosync.models.security import Severity

FRONT_MATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)

UNSAFE_TAG_RE = re.compile(
    r"!!(?:python|ruby|java|perl|php|js)\b|tag:yaml\.org,2002:(?:python|ruby|java)",
    re.IGNORECASE,
)


class YamlBombDetected(Exception):
    """Raised internally when the expansion budget is exhausted."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


def split_front_matter(text: str) -> tuple[str | None, str]:
    """Return ``(yaml_text, body)``; ``yaml_text`` is None without front matter."""
    match = FRONT_MATTER_RE.match(text)
    if match is None:
        return None, text
    return match.group(1), text[match.end():]


def measure_expansion(source: str, *, budget: int, max_aliases: int) -> int:
    """Return the expanded size of *source* in characters.

    Every scalar contributes its length, every collection one unit, and
    every alias the full size of the node it points at.  Raises
    ``YamlBombDetected`` as soon as the running total passes *budget* or the
    alias count passes *max_aliases*.
    """
    anchors: dict[str, int] = {}
    open_nodes: list[tuple[str | None, int]] = []
    expanded = 0
    aliases = 0

    def grow(amount: int) -> None:
        nonlocal expanded
        expanded += amount
        if expanded > budget:
            raise YamlBombDetected(
                f"alias expansion exceeds {budget} characters "
                f"for a {len(source)}-character document"
            )

    for event in yaml.parse(source, Loader=yaml.SafeLoader):
        if isinstance(event, (yaml.MappingStartEvent, yaml.SequenceStartEvent)):
            open_nodes.append((event.anchor, expanded))
            grow(1)
        elif isinstance(event, (yaml.MappingEndEvent, yaml.SequenceEndEvent)):
            anchor, started_at = open_nodes.pop()
            if anchor:
                anchors[anchor] = expanded - started_at
        elif isinstance(event, yaml.ScalarEvent):
            size = len(event.value) + 1
            if event.anchor:
                anchors[event.anchor] = size
            grow(size)
        elif isinstance(event, yaml.AliasEvent):
            aliases += 1
            if aliases > max_aliases:
                raise YamlBombDetected(
                    f"{aliases} aliases exceed the limit of {max_aliases}"
                )
            grow(anchors.get(event.anchor, 1))
    return expanded


def inspect_yaml(
    yaml_text: str,
    config: SecurityConfig,
    element_ref: str | None = None,
) -> list[SecurityFinding]:
    """Screen front-matter YAML; critical findings mean the text must be refused."""

    def finding(severity: Severity, code: FindingCode, detail: str) -> SecurityFinding:
        return SecurityFinding(
            severity=severity,
            code=code,
            element_ref=element_ref,
            detail=detail,
        )

    size = len(yaml_text.encode("utf-8"))
    if size > config.max_yaml_bytes:
        return [
            finding(
                Severity.critical,
                FindingCode.YAML_TOO_LARGE,
                f"front matter is {size} bytes (limit {config.max_yaml_bytes})",
            )
        ]

    tag = UNSAFE_TAG_RE.search(yaml_text)
    if tag is not None:
        return [
            finding(
                Severity.critical,
                FindingCode.YAML_UNSAFE_TAG,
                f"language-specific YAML tag {tag.group()!r} is not allowed",
            )
        ]

    budget = int(max(len(yaml_text), 1) * config.max_expansion_ratio)
    try:
        measure_expansion(yaml_text, budget=budget, max_aliases=config.max_aliases)
    except YamlBombDetected as exc:
        return [finding(Severity.critical, FindingCode.YAML_BOMB, exc.detail)]
    except yaml.YAMLError as exc:
        return [
            finding(
                Severity.medium,
                FindingCode.YAML_MALFORMED,
                f"front matter is not valid YAML: {_first_line(exc)}",
            )
        ]
    return []


def load_mapping(yaml_text: str) -> dict:
    """``yaml.safe_load`` that insists on a mapping at the root."""
    data = yaml.safe_load(yaml_text) if yaml_text.strip() else {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("front matter must be a YAML mapping")
    return data


def _first_line(exc: Exception) -> str:
    return str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
