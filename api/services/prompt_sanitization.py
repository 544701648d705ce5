"""
Sanitize untrusted message text before it is embedded in an LLM prompt.

Email bodies are attacker-controlled. Before a body reaches the oracle it is
truncated, common instruction-injection phrases are neutralized, long
base64 runs (hidden payloads, inline attachments) are dropped, and
whitespace is collapsed.
"""
import re

_INSTRUCTION_PATTERNS = [
    re.compile(r"ignore (all )?(previous |above )?(instructions|prompts)", re.IGNORECASE),
    re.compile(r"disregard (all )?(previous |above )?(instructions|prompts)", re.IGNORECASE),
    re.compile(r"forget (all )?(previous |above )?(instructions|prompts)", re.IGNORECASE),
    re.compile(r"new instructions?:", re.IGNORECASE),
    re.compile(r"system prompt:", re.IGNORECASE),
    re.compile(r"you are now", re.IGNORECASE),
    re.compile(r"act as if", re.IGNORECASE),
    re.compile(r"pretend (that )?(you are|to be)", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"\[/INST\]", re.IGNORECASE),
    re.compile(r"<\|im_start\|>", re.IGNORECASE),
    re.compile(r"<\|im_end\|>", re.IGNORECASE),
]

_BASE64_RE = re.compile(r"[A-Za-z0-9+/]{50,}={0,2}")
_WHITESPACE_RE = re.compile(r"\s+")

TRUNCATION_MARKER = "... [truncated]"


def sanitize_for_prompt(text: str, max_length: int = 10000) -> str:
    """
    Make untrusted text safe to embed in a prompt.

    Args:
        text: Raw text (e.g., an email body)
        max_length: Characters kept before the truncation marker

    Returns:
        Sanitized single-line text
    """
    if not text:
        return ""

    sanitized = text
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + TRUNCATION_MARKER

    for pattern in _INSTRUCTION_PATTERNS:
        sanitized = pattern.sub("[FILTERED]", sanitized)

    sanitized = _BASE64_RE.sub("[BASE64_REMOVED]", sanitized)
    return _WHITESPACE_RE.sub(" ", sanitized).strip()


def escape_prompt_delimiters(text: str) -> str:
    """Escape sequences that could close a fenced or templated prompt section."""
    return (
        text.replace("```", "\\`\\`\\`")
        .replace('"""', '\\"\\"\\"')
        .replace("{{", "\\{\\{")
        .replace("}}", "\\}\\}")
    )
