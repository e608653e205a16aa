"""Prompt-injection defence for untrusted text.

``sanitize_content`` runs every step in ``SANITIZERS`` in order. The order is
part of the contract: entities are decoded before token redaction so an
entity-encoded token is still caught. Every step only ever removes or
shortens text, and the whole list is re-applied until the text stops
changing, so ``sanitize_content`` is idempotent.

``sanitize_agent_output`` is the narrower pass applied to what the agent
writes back: token redaction plus neutralising the trigger phrase so the
agent cannot re-trigger itself.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from taskfence.triggers import phrase_pattern

REDACTED_TOKEN = "[REDACTED_TOKEN]"
NEUTRAL_PHRASE = "the assistant"

# Keeps outputs well under the 2MB ARG_MAX limit on Linux runners.
OUTPUT_SIZE_LIMITS = {
    "title": 250,
    "summary": 15000,
    "pr_body": 40000,
}

TRUNCATION_MARKER = "\n\n... (output truncated due to size limits)"

_HTML_COMMENT = re.compile(r"<!--[\s\S]*?-->")

_INVISIBLE = [
    re.compile(r"[\u200B\u200C\u200D\uFEFF]"),  # zero-width
    # control characters, tab / newline / carriage return excepted
    re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F]"),
    re.compile(r"\u00AD"),  # soft hyphen
    re.compile(r"[\u202A-\u202E\u2066-\u2069]"),  # bidi overrides and isolates
]

_MD_IMAGE_ALT = re.compile(r"!\[[^\]]*\]\(")

_MD_LINK_TITLES = [
    re.compile(r'(\[[^\]]*\]\([^)]+)\s+"[^"]*"\)'),
    re.compile(r"(\[[^\]]*\]\([^)]+)\s+'[^']*'\)"),
]

_HIDDEN_ATTRIBUTES: list[re.Pattern] = []
for _name in ("alt", "title", "aria-label", r"data-[a-zA-Z0-9-]+", "placeholder"):
    _HIDDEN_ATTRIBUTES.append(re.compile(rf"\s{_name}\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE))
    _HIDDEN_ATTRIBUTES.append(re.compile(rf"\s{_name}\s*=\s*[^\s>]+", re.IGNORECASE))

_DEC_ENTITY = re.compile(r"&#(\d+);")
_HEX_ENTITY = re.compile(r"&#x([0-9a-fA-F]+);")

_TOKEN_PATTERNS = [
    re.compile(r"\bghp_[A-Za-z0-9]{36,}\b", re.ASCII),  # classic personal access token
    re.compile(r"\bgho_[A-Za-z0-9]{36,}\b", re.ASCII),  # OAuth
    re.compile(r"\bghs_[A-Za-z0-9]{36,}\b", re.ASCII),  # installation
    re.compile(r"\bghr_[A-Za-z0-9]{36,}\b", re.ASCII),  # refresh
    re.compile(r"\bgithub_pat_[A-Za-z0-9_]{11,}\b", re.ASCII),  # fine-grained
]


# ── Steps ────────────────────────────────────────────────────────────────────


def strip_html_comments(text: str) -> str:
    return _HTML_COMMENT.sub("", text)


def strip_invisible_characters(text: str) -> str:
    for pattern in _INVISIBLE:
        text = pattern.sub("", text)
    return text


def strip_markdown_image_alt_text(text: str) -> str:
    """``![alt](url)`` → ``![](url)``."""
    return _MD_IMAGE_ALT.sub("![](", text)


def strip_markdown_link_titles(text: str) -> str:
    """``[text](url "title")`` → ``[text](url)``."""
    for pattern in _MD_LINK_TITLES:
        text = pattern.sub(r"\1)", text)
    return text


def strip_hidden_attributes(text: str) -> str:
    for pattern in _HIDDEN_ATTRIBUTES:
        text = pattern.sub("", text)
    return text


def _printable(code: int) -> str:
    return chr(code) if 32 <= code <= 126 else ""


def normalize_html_entities(text: str) -> str:
    """Decode numeric entities, keeping only printable ASCII."""
    text = _DEC_ENTITY.sub(lambda m: _printable(int(m.group(1))), text)
    return _HEX_ENTITY.sub(lambda m: _printable(int(m.group(1), 16)), text)


def redact_github_tokens(text: str) -> str:
    for pattern in _TOKEN_PATTERNS:
        text = pattern.sub(REDACTED_TOKEN, text)
    return text


SANITIZERS: tuple[Callable[[str], str], ...] = (
    strip_html_comments,
    strip_invisible_characters,
    strip_markdown_image_alt_text,
    strip_markdown_link_titles,
    strip_hidden_attributes,
    normalize_html_entities,
    redact_github_tokens,
)


# ── Entry points ─────────────────────────────────────────────────────────────


def _sanitize_once(text: str) -> str:
    for step in SANITIZERS:
        text = step(text)
    return text


def sanitize_content(text: str | None) -> str:
    """Sanitize untrusted text for inclusion in a prompt. Never raises."""
    if not text:
        return ""
    # a decoded entity can form a new comment or token; repeat until stable
    while True:
        sanitized = _sanitize_once(text)
        if sanitized == text:
            return sanitized
        text = sanitized


def sanitize_agent_output(text: str | None, trigger_phrase: str) -> str:
    """Redact tokens and replace the trigger phrase with a neutral term."""
    if not text:
        return ""
    sanitized = redact_github_tokens(text)
    if trigger_phrase:
        sanitized = phrase_pattern(trigger_phrase).sub(NEUTRAL_PHRASE, sanitized)
    return sanitized


def truncate_output(text: str | None, max_length: int) -> str:
    """Cut ``text`` to ``max_length`` characters, marker included.

    Prefers the last space when it falls within the final 10% of the budget.
    """
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    target = max_length - len(TRUNCATION_MARKER)
    cut = text.rfind(" ", 0, target + 1)
    if cut <= target * 0.9:
        cut = target
    return text[:cut].rstrip() + TRUNCATION_MARKER


def create_comment_marker(workflow: str) -> str:
    """Hidden marker identifying this workflow's status comment.

    Inserted only after sanitizing, since ``strip_html_comments`` removes it.
    """
    safe = workflow.replace("--", "-").replace(">", "")
    return f"<!-- taskfence-bot-comment:{safe} -->"
