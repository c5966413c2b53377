"""Markdown-aware text chunking for outbound replies."""

from __future__ import annotations

import re
from typing import Callable, Optional

Chunker = Callable[[str, int], list[str]]

_FENCE_PATTERN = re.compile(r"^\s*(`{3,}|~{3,})")


def _fence_marker(line: str) -> Optional[str]:
    match = _FENCE_PATTERN.match(line)
    return match.group(1) if match else None


def _closes(opener: str, line: str) -> bool:
    marker = _fence_marker(line)
    return (
        marker is not None
        and marker[0] == opener[0]
        and len(marker) >= len(opener)
        and not line.strip()[len(marker):].strip()
    )


def _split_long_line(line: str, width: int) -> list[str]:
    """Hard-split a single line, preferring whitespace near the limit."""
    if len(line) <= width:
        return [line]
    pieces: list[str] = []
    while len(line) > width:
        cut = line.rfind(" ", 0, width)
        if cut <= width // 4:
            cut = width
        pieces.append(line[:cut])
        line = line[cut:].lstrip(" ")
    if line:
        pieces.append(line)
    return pieces


def chunk_markdown_text(text: str, limit: int) -> list[str]:
    """Split ``text`` into chunks of at most ``limit`` characters.

    Chunks break on line boundaries. A fenced code block that straddles a
    boundary is closed at the end of one chunk and re-opened (with the same
    info string) at the start of the next, so every chunk renders on its own.
    """
    if not text:
        return []
    if limit <= 0 or len(text) <= limit:
        return [text]

    lines = text.split("\n")
    # Re-opening a fence costs the opener line plus a closing marker per chunk;
    # below that budget fences are split like plain text.
    track_fences = all(
        2 * len(line) + len(marker) + 2 <= limit
        for line in lines
        if (marker := _fence_marker(line)) is not None
    )

    chunks: list[str] = []
    current: list[str] = []
    size = 0
    opener_line: Optional[str] = None
    opener: Optional[str] = None

    def reserve() -> int:
        return len(opener) + 1 if opener else 0

    def flush() -> None:
        nonlocal current, size
        block = current
        if opener and block[-1] == opener_line:
            # block opened on the last line; move it whole to the next chunk
            body = "\n".join(block[:-1])
        elif opener:
            body = "\n".join(block) + "\n" + opener
        else:
            body = "\n".join(block)
        body = body.strip("\n")
        if body:
            chunks.append(body)
        current = [opener_line] if opener_line is not None else []
        size = len(opener_line) if opener_line is not None else 0

    for line in lines:
        closing = opener is not None and _closes(opener, line)
        tail = 0 if closing else reserve()
        width = limit - reserve() - (len(opener_line) + 1 if opener_line else 0)
        for piece in _split_long_line(line, max(width, 1)):
            added = len(piece) + (1 if current else 0)
            only_opener = opener_line is not None and current == [opener_line]
            if current and not only_opener and size + added + tail > limit:
                flush()
                added = len(piece) + (1 if current else 0)
            current.append(piece)
            size += added

        marker = _fence_marker(line) if track_fences else None
        if opener is None and marker is not None:
            opener, opener_line = marker, line
        elif opener is not None and _closes(opener, line):
            opener, opener_line = None, None

    if current:
        body = "\n".join(current).strip("\n")
        if body:
            chunks.append(body)
    return chunks
