"""Unicode normalization and spoofing detection.

``normalize`` strips invisible control characters and applies NFC; it is
idempotent.  ``scan_unicode`` reports what was (or would be) removed plus
homograph and private-use findings that normalization leaves in place.
"""

from __future__ import annotations

import re
import unicodedata

from foliosync.models.security import FindingCode
from foliosync.models.security import SecurityFinding
from foliosync.models.security import Severity

DIRECTION_OVERRIDE_RE = re.compile("[\u202a-\u202e\u2066-\u2069]")
# U+200D (zero-width joiner) is kept: emoji sequences depend on it.
ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200e\u200f\u2060\ufeff]")
NONPRINTABLE_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
NONCHARACTER_RE = re.compile("[\ufdd0-\ufdef\ufffe\uffff]")
PRIVATE_USE_RE = re.compile("[\ue000-\uf8ff\U000f0000-\U000ffffd\U00100000-\U0010fffd]")
ESCAPE_SEQUENCE_RE = re.compile(r"\\u[0-9a-fA-F]{4}")
WORD_RE = re.compile(r"\w+")

MAX_ESCAPE_SEQUENCES = 10
_CONFUSABLE_SCRIPTS = frozenset({"CYRILLIC", "GREEK", "ARMENIAN", "CHEROKEE"})
_MAX_REPORTED_WORDS = 5


def normalize(text: str) -> str:
    """Remove invisible/control characters, then apply NFC."""
    cleaned = DIRECTION_OVERRIDE_RE.sub("", text)
    cleaned = ZERO_WIDTH_RE.sub("", cleaned)
    cleaned = NONPRINTABLE_RE.sub("", cleaned)
    cleaned = NONCHARACTER_RE.sub("", cleaned)
    return unicodedata.normalize("NFC", cleaned)


def _script(ch: str) -> str | None:
    if not ch.isalpha():
        return None
    name = unicodedata.name(ch, "")
    return name.split(" ", 1)[0] if name else None


def mixed_script_words(text: str) -> list[str]:
    """Return words mixing Latin letters with a look-alike script."""
    suspicious: list[str] = []
    for match in WORD_RE.finditer(text):
        word = match.group()
        if word.isascii():
            continue
        scripts = {s for s in map(_script, word) if s is not None}
        if "LATIN" in scripts and scripts & _CONFUSABLE_SCRIPTS:
            suspicious.append(word)
    return suspicious


def scan_unicode(text: str, element_ref: str | None = None) -> list[SecurityFinding]:
    findings: list[SecurityFinding] = []

    def add(severity: Severity, code: FindingCode, detail: str) -> None:
        findings.append(
            SecurityFinding(
                severity=severity,
                code=code,
                element_ref=element_ref,
                detail=detail,
            )
        )

    overrides = len(DIRECTION_OVERRIDE_RE.findall(text))
    if overrides:
        add(
            Severity.high,
            FindingCode.UNICODE_DIRECTION_OVERRIDE,
            f"{overrides} bidirectional override character(s) removed",
        )

    zero_width = len(ZERO_WIDTH_RE.findall(text))
    if zero_width:
        add(
            Severity.medium,
            FindingCode.UNICODE_ZERO_WIDTH,
            f"{zero_width} zero-width character(s) removed",
        )

    nonprintable = len(NONPRINTABLE_RE.findall(text)) + len(NONCHARACTER_RE.findall(text))
    if nonprintable:
        add(
            Severity.medium,
            FindingCode.UNICODE_NONPRINTABLE,
            f"{nonprintable} non-printable character(s) removed",
        )

    private_use = len(PRIVATE_USE_RE.findall(text))
    if private_use:
        add(
            Severity.medium,
            FindingCode.UNICODE_PRIVATE_USE,
            f"{private_use} private-use character(s) present",
        )

    escapes = len(ESCAPE_SEQUENCE_RE.findall(text))
    if escapes > MAX_ESCAPE_SEQUENCES:
        add(
            Severity.high,
            FindingCode.UNICODE_ESCAPE_SEQUENCES,
            f"{escapes} literal \\uXXXX escape sequences (possible obfuscation)",
        )

    words = mixed_script_words(text)
    if words:
        shown = ", ".join(sorted(set(words))[:_MAX_REPORTED_WORDS])
        add(
            Severity.high,
            FindingCode.UNICODE_MIXED_SCRIPT,
            f"mixed-script word(s) that may spoof Latin text: {shown}",
        )

    return findings
