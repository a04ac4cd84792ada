"""Output truncation — bound terminal output before it reaches the LLM.

Terminal output is bounded by keeping its head and its tail around an
omission marker: the command line and early errors are at the top, the
prompt and final status at the bottom, and both matter to the agent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

MAX_OUTPUT_LINES = 1000
MAX_OUTPUT_TOKENS = 10_000
TRANSCRIPT_MAX_BYTES = 1024 * 1024  # 1MB
BYTES_PER_TOKEN = 4

BYTES_MARKER = "\n... [truncated bytes] ...\n"

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]|\x1b\][^\x07]*\x07|\x1b[()][0-9A-Za-z]")


def approx_token_count(text: str) -> int:
    """Rough token estimate: one token per four UTF-8 bytes, rounded up."""
    if not text:
        return 0
    return -(-len(text.encode("utf-8", errors="replace")) // BYTES_PER_TOKEN)


def line_count(text: str) -> int:
    """Number of lines, counting empty ones. The empty string is one line."""
    return text.count("\n") + 1


@dataclass(frozen=True)
class HeadTailBuffer:
    """A bounded rendering of multi-line text: head + omission marker + tail.

    Build with ``HeadTailBuffer.build(text, max_lines)``. When the text fits
    it is kept verbatim in ``head`` and ``truncated`` is False.
    """

    head: list[str] = field(default_factory=list)
    tail: list[str] = field(default_factory=list)
    total_lines: int = 0
    truncated: bool = False

    @classmethod
    def build(cls, text: str, max_lines: int = MAX_OUTPUT_LINES) -> HeadTailBuffer:
        if max_lines < 0:
            raise ValueError(f"max_lines must be >= 0, got {max_lines}")

        lines = text.split("\n")
        total = len(lines)
        if total <= max_lines:
            return cls(head=lines, tail=[], total_lines=total, truncated=False)

        head_count = max_lines // 2
        tail_count = max_lines - head_count
        return cls(
            head=lines[:head_count],
            tail=lines[total - tail_count :] if tail_count else [],
            total_lines=total,
            truncated=True,
        )

    @property
    def head_lines(self) -> int:
        return len(self.head)

    @property
    def tail_lines(self) -> int:
        return len(self.tail)

    @property
    def omitted(self) -> int:
        return self.total_lines - self.head_lines - self.tail_lines

    @property
    def marker(self) -> str:
        return f"... [truncated {self.omitted} lines] ..."

    @property
    def text(self) -> str:
        if not self.truncated:
            return "\n".join(self.head)
        return "\n".join([*self.head, self.marker, *self.tail])


def truncate_head_tail_bytes(text: str, max_bytes: int) -> tuple[str, bool]:
    """Keep the first and last ``max_bytes / 2`` bytes of ``text``.

    Cuts land on UTF-8 character boundaries, so the result may be a few
    bytes short of the budget (plus the marker).

    Returns:
        (text, truncated) tuple.
    """
    encoded = text.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return text, False
    if max_bytes <= 0:
        return "", True

    head_budget = max_bytes // 2
    tail_budget = max_bytes - head_budget
    head = encoded[:head_budget].decode("utf-8", errors="ignore")
    tail = encoded[len(encoded) - tail_budget :].decode("utf-8", errors="ignore")
    return f"{head}{BYTES_MARKER}{tail}", True


def truncate_head_tail_tokens(text: str, max_tokens: int) -> tuple[str, bool]:
    """Token-budgeted variant of ``truncate_head_tail_bytes``."""
    if max_tokens <= 0:
        return "", bool(text)
    if approx_token_count(text) <= max_tokens:
        return text, False
    return truncate_head_tail_bytes(text, max_tokens * BYTES_PER_TOKEN)


def chunk_text_by_bytes(text: str, max_bytes: int) -> list[str]:
    """Split text into chunks of at most ``max_bytes`` UTF-8 bytes each.

    Never splits a character. Joining the chunks gives back ``text``.
    """
    if not text:
        return []
    if max_bytes <= 0:
        return [text]

    chunks: list[str] = []
    current: list[str] = []
    used = 0
    for ch in text:
        size = len(ch.encode("utf-8", errors="replace"))
        if used and used + size > max_bytes:
            chunks.append("".join(current))
            current = []
            used = 0
        current.append(ch)
        used += size
    if current:
        chunks.append("".join(current))
    return chunks


@dataclass
class OutputProjection:
    """What the agent sees of a raw transcript, plus how it was cut."""

    output: str = ""
    truncated: bool = False
    line_truncated: bool = False
    byte_truncated: bool = False
    token_truncated: bool = False
    original_line_count: int = 0
    original_byte_count: int = 0
    original_token_count_est: int = 0
    output_line_count: int = 0
    output_token_count_est: int = 0

    def to_dict(self) -> dict[str, int | bool]:
        return {
            "truncated": self.truncated,
            "line_truncated": self.line_truncated,
            "byte_truncated": self.byte_truncated,
            "token_truncated": self.token_truncated,
            "original_line_count": self.original_line_count,
            "original_byte_count": self.original_byte_count,
            "original_token_count_est": self.original_token_count_est,
            "output_line_count": self.output_line_count,
            "output_token_count_est": self.output_token_count_est,
        }


def project_output(
    raw_output: str,
    max_lines: int = MAX_OUTPUT_LINES,
    max_tokens: int = MAX_OUTPUT_TOKENS,
) -> OutputProjection:
    """Bound raw terminal output for the agent.

    The transcript is first capped at ``TRANSCRIPT_MAX_BYTES``, then at
    ``max_tokens`` (estimated), then rendered through a ``HeadTailBuffer``
    of ``max_lines``.
    """
    stored, byte_truncated = truncate_head_tail_bytes(raw_output, TRANSCRIPT_MAX_BYTES)
    token_bounded, token_truncated = truncate_head_tail_tokens(stored, max_tokens)
    buffer = HeadTailBuffer.build(token_bounded, max_lines)
    output = buffer.text

    return OutputProjection(
        output=output,
        truncated=byte_truncated or token_truncated or buffer.truncated,
        line_truncated=buffer.truncated,
        byte_truncated=byte_truncated,
        token_truncated=token_truncated,
        original_line_count=line_count(raw_output),
        original_byte_count=len(raw_output.encode("utf-8", errors="replace")),
        original_token_count_est=approx_token_count(raw_output),
        output_line_count=line_count(output),
        output_token_count_est=approx_token_count(output),
    )


def clean_terminal_output(data: bytes) -> str:
    """Decode raw PTY bytes into agent-readable text.

    Normalizes the terminal's CRLF line endings, strips ANSI escapes and
    drops binary garbage.
    """
    text = data.decode("utf-8", errors="replace")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return sanitize_binary_output(strip_ansi(text))


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def sanitize_binary_output(text: str) -> str:
    """Remove binary garbage from output.

    Keeps printable chars, tabs, newlines, and carriage returns.
    Strips everything else (control chars, undefined code points, format chars).
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            # Skip C0 controls (except above), C1 controls, and format chars
            if cp not in range(0xFFF9, 0xFFFC):
                cleaned.append(ch)
    return "".join(cleaned)
