"""Content heuristics: command substitution, prompt injection, secrets.

Command policy
--------------
Documentation routinely shows shell commands, so commands are judged by
where they appear and what they target:

* inside a fenced code block: an example, reported as ``low`` at most;
* a ``$()`` or backtick span outside a fence with a privileged verb
  (``sudo``, ``exec``, a scoped ``rm -rf``): ``high``, flagged only;
* the same span running a catastrophic command (recursive delete of ``/``,
  ``~`` or ``*``, disk formatting, pipe-to-shell, fork bomb): ``critical``
  when ``SecurityConfig.reject_destructive_commands`` is on, else ``high``.
"""

from __future__ import annotations

import re

from foliosync.config import SecurityConfig
from foliosync.models.security import FindingCode
from foliosync.models.security import SecurityFinding
from foliosync.models.security import Severity

FENCE_RE = re.compile(r"^(?P<fence>`{3,}|~{3,})[^\n]*\n.*?^(?P=fence)[ \t]*$", re.DOTALL | re.MULTILINE)
SUBSTITUTION_RE = re.compile(r"\$\((?P<dollar>[^()\n]{1,500})\)|`(?P<tick>[^`\n]{1,500})`")

CATASTROPHIC_PATTERNS = (
    re.compile(r"\brm\s+(?:-{1,2}[\w-]+\s+)*(?:/\*?|~/?\*?|\$HOME/?\*?|\*)(?=[\s;&|]|$)"),
    re.compile(r"\bmkfs(?:\.\w+)?\b"),
    re.compile(r"\bdd\s+if=\S+\s+of=/dev/"),
    re.compile(r"\b(?:curl|wget)\b[^|]*\|\s*(?:sudo\s+)?(?:ba|z|k)?sh\b"),
    re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
    re.compile(r"\bchmod\s+-R\s+777\s+/(?:\s|$)"),
)
PRIVILEGED_RE = re.compile(r"\b(?:sudo|su\s+-|exec|eval|rm\s+-[a-zA-Z]*[rf]|chown|shutdown|reboot|kill\s+-9)\b")

PROMPT_INJECTION_PATTERNS = (
    re.compile(r"\bignore\s+(?:all\s+)?(?:previous|prior|above)\s+(?:instructions|prompts|rules)\b", re.IGNORECASE),
    re.compile(r"\bdisregard\s+(?:all\s+)?(?:previous|prior|your)\s+(?:instructions|programming|rules)\b", re.IGNORECASE),
    re.compile(r"\byou\s+are\s+now\s+(?:in\s+)?(?:admin|developer|jailbreak|god)\s+mode\b", re.IGNORECASE),
    re.compile(r"\[\s*(?:SYSTEM|ADMIN)\s*:", re.IGNORECASE),
    re.compile(r"<\|im_(?:start|end)\|>"),
)
PATH_TRAVERSAL_RE = re.compile(r"(?:\.\./){2,}|/etc/(?:passwd|shadow)\b")

SECRET_PATTERNS = (
    ("GitHub token", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b")),
    ("AWS access key", re.compile(r"\bAKIA[0-9A-Z]{16}\b")),
    ("private key block", re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----")),
    (
        "credential assignment",
        re.compile(
            r"\b(?:api[_-]?key|secret|password|passwd|token|private[_-]?key)\s*[:=]\s*[\"'][^\"'\s]{8,}[\"']",
            re.IGNORECASE,
        ),
    ),
)


def _fenced_spans(text: str) -> list[tuple[int, int]]:
    return [(m.start(), m.end()) for m in FENCE_RE.finditer(text)]


def _inside(position: int, spans: list[tuple[int, int]]) -> bool:
    return any(start <= position < end for start, end in spans)


def is_catastrophic(command: str) -> bool:
    return any(p.search(command) for p in CATASTROPHIC_PATTERNS)


def find_secrets(text: str) -> list[str]:
    """Return the kinds of credential found in *text* (no secret values)."""
    return [label for label, pattern in SECRET_PATTERNS if pattern.search(text)]


def scan_commands(
    text: str,
    config: SecurityConfig,
    element_ref: str | None = None,
) -> list[SecurityFinding]:
    fences = _fenced_spans(text)
    findings: list[SecurityFinding] = []

    if config.flag_commands_in_code_blocks:
        for start, end in fences:
            block = text[start:end]
            if is_catastrophic(block):
                findings.append(
                    SecurityFinding(
                        severity=Severity.low,
                        code=FindingCode.SHELL_COMMAND,
                        element_ref=element_ref,
                        detail="code example contains a destructive shell command",
                    )
                )

    for match in SUBSTITUTION_RE.finditer(text):
        if _inside(match.start(), fences):
            continue
        command = match.group("dollar") or match.group("tick") or ""
        if is_catastrophic(command):
            severity = Severity.critical if config.reject_destructive_commands else Severity.high
            findings.append(
                SecurityFinding(
                    severity=severity,
                    code=FindingCode.DESTRUCTIVE_COMMAND,
                    element_ref=element_ref,
                    detail=f"destructive command substitution: {command[:80]!r}",
                )
            )
        elif PRIVILEGED_RE.search(command):
            findings.append(
                SecurityFinding(
                    severity=Severity.high,
                    code=FindingCode.SHELL_COMMAND,
                    element_ref=element_ref,
                    detail=f"privileged command substitution: {command[:80]!r}",
                )
            )
    return findings


def scan_content(
    text: str,
    config: SecurityConfig,
    element_ref: str | None = None,
) -> list[SecurityFinding]:
    """Run every content heuristic over already-normalized text."""
    findings = scan_commands(text, config, element_ref)

    for pattern in PROMPT_INJECTION_PATTERNS:
        match = pattern.search(text)
        if match is not None:
            findings.append(
                SecurityFinding(
                    severity=Severity.high,
                    code=FindingCode.PROMPT_INJECTION,
                    element_ref=element_ref,
                    detail=f"instruction override phrase: {match.group()!r}",
                )
            )

    if PATH_TRAVERSAL_RE.search(text):
        findings.append(
            SecurityFinding(
                severity=Severity.medium,
                code=FindingCode.PATH_TRAVERSAL,
                element_ref=element_ref,
                detail="path traversal sequence or system file reference",
            )
        )

    for label in find_secrets(text):
        findings.append(
            SecurityFinding(
                severity=Severity.high,
                code=FindingCode.SECRET_EXPOSURE,
                element_ref=element_ref,
                detail=f"possible {label} in content",
            )
        )
    return findings
