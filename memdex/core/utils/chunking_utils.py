"""Chunking logic for memory documents.

Documents are split into token-bounded chunks whose line ranges point back
into the original text. Tokens are estimated at ~4 characters each.
"""

import re
from pathlib import Path
from typing import NamedTuple

from .common_utils import hash_text
from ..schema import TextChunk

CHARS_PER_TOKEN = 4
MIN_CHUNK_CHARS = 32
MARKDOWN_EXTENSIONS = (".md", ".markdown", ".mdown", ".mkd")

_HEADING_RE = re.compile(r"^ {0,3}#{1,6}(\s|$)")
_FENCE_RE = re.compile(r"^ {0,3}(```|~~~)")
_SENTENCE_END_RE = re.compile(r"[.!?]+\s+")


class _Piece(NamedTuple):
    text: str
    start_line: int
    end_line: int


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a text (~4 chars per token, rounded up)."""
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


def is_markdown(path: str) -> bool:
    """Check whether a path has a markdown extension."""
    return Path(path).suffix.lower() in MARKDOWN_EXTENSIONS


def chunk_text(
    text: str,
    path: str = "",
    max_tokens: int = 512,
    overlap_tokens: int = 50,
    min_tokens: int = 50,
    markdown_aware: bool = True,
) -> list[TextChunk]:
    """Split a document into overlapping, token-bounded chunks.

    Markdown documents are first split at headings and every heading section
    is chunked on its own. Inside a section, paragraphs are packed until the
    budget is reached; a paragraph that does not fit is split by lines, a line
    by sentences, and a sentence is hard-split at the budget.

    Args:
        text: Document text
        path: Document path, used to detect markdown by extension
        max_tokens: Maximum tokens per chunk
        overlap_tokens: Tokens carried from the end of one chunk into the next
        min_tokens: Adjacent chunks smaller than this are merged when they fit
        markdown_aware: Whether to split markdown at headings

    Returns:
        List of TextChunk objects in document order
    """
    if not text or not text.strip():
        return []

    max_chars = max(MIN_CHUNK_CHARS, max_tokens * CHARS_PER_TOKEN)
    # Overlap must leave room for new content or packing cannot advance
    overlap_chars = max(0, min(overlap_tokens * CHARS_PER_TOKEN, max_chars // 2))
    min_chars = max(0, min_tokens * CHARS_PER_TOKEN)

    lines = [line.rstrip("\r") for line in text.split("\n")]
    sections = _split_sections(lines, markdown_aware and is_markdown(path))

    pieces: list[_Piece] = []
    for section in sections:
        section_pieces: list[_Piece] = []
        for paragraph in _split_paragraphs(section):
            section_pieces.extend(_paragraph_pieces(paragraph, max_chars))
        pieces.extend(_pack(section_pieces, max_chars, overlap_chars))

    pieces = _merge_small(pieces, min_chars, max_chars)

    return [
        TextChunk(
            text=piece.text,
            start_line=piece.start_line,
            end_line=piece.end_line,
            token_count=estimate_tokens(piece.text),
            hash=hash_text(piece.text),
        )
        for piece in pieces
        if piece.text.strip()
    ]


def _split_sections(lines: list[str], markdown: bool) -> list[list[tuple[int, str]]]:
    """Group numbered lines into heading sections (a single section for plain text)."""
    numbered = list(enumerate(lines, start=1))
    if not markdown:
        return [numbered]

    sections: list[list[tuple[int, str]]] = []
    current: list[tuple[int, str]] = []
    in_fence = False
    for line_no, line in numbered:
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        elif not in_fence and _HEADING_RE.match(line) and current:
            sections.append(current)
            current = []
        current.append((line_no, line))

    if current:
        sections.append(current)
    return sections


def _split_paragraphs(section: list[tuple[int, str]]) -> list[list[tuple[int, str]]]:
    """Split a section at blank lines, keeping fenced code blocks whole."""
    paragraphs: list[list[tuple[int, str]]] = []
    current: list[tuple[int, str]] = []
    in_fence = False
    for line_no, line in section:
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        if not line.strip() and not in_fence:
            if current:
                paragraphs.append(current)
                current = []
            continue
        current.append((line_no, line))

    if current:
        paragraphs.append(current)
    return paragraphs


def _paragraph_pieces(paragraph: list[tuple[int, str]], max_chars: int) -> list[_Piece]:
    joined = "\n".join(line for _, line in paragraph)
    if len(joined) <= max_chars:
        return [_Piece(joined, paragraph[0][0], paragraph[-1][0])]

    pieces: list[_Piece] = []
    for line_no, line in paragraph:
        if len(line) <= max_chars:
            pieces.append(_Piece(line, line_no, line_no))
            continue

        for sentence in _split_sentences(line):
            if len(sentence) <= max_chars:
                pieces.append(_Piece(sentence, line_no, line_no))
                continue
            for start in range(0, len(sentence), max_chars):
                pieces.append(_Piece(sentence[start : start + max_chars], line_no, line_no))
    return pieces


def _split_sentences(line: str) -> list[str]:
    """Split a line after sentence terminators; the parts concatenate back to the line."""
    parts: list[str] = []
    start = 0
    for match in _SENTENCE_END_RE.finditer(line):
        parts.append(line[start : match.end()])
        start = match.end()
    if start < len(line):
        parts.append(line[start:])
    return parts


def _separator(prev: _Piece, nxt: _Piece) -> str:
    # Pieces cut from the same line join without a newline
    if nxt.start_line <= prev.end_line:
        return ""
    return "\n" * (nxt.start_line - prev.end_line)


def _join(pieces: list[_Piece]) -> _Piece:
    parts = [pieces[0].text]
    for prev, nxt in zip(pieces, pieces[1:]):
        parts.append(_separator(prev, nxt))
        parts.append(nxt.text)
    return _Piece("".join(parts), pieces[0].start_line, pieces[-1].end_line)


def _pack(pieces: list[_Piece], max_chars: int, overlap_chars: int) -> list[_Piece]:
    """Greedily pack pieces into chunks, carrying an overlap tail between them."""
    chunks: list[_Piece] = []
    current: list[_Piece] = []
    current_chars = 0
    carried = 0

    for piece in pieces:
        if current and current_chars + len(_separator(current[-1], piece)) + len(piece.text) > max_chars:
            if carried < len(current):
                chunks.append(_join(current))
                current = _overlap_tail(current, overlap_chars)
            else:
                current = []
            carried = len(current)
            current_chars = len(_join(current).text) if current else 0

            if current and current_chars + len(_separator(current[-1], piece)) + len(piece.text) > max_chars:
                current = []
                current_chars = 0
                carried = 0

        if current:
            current_chars += len(_separator(current[-1], piece))
        current.append(piece)
        current_chars += len(piece.text)

    if current and carried < len(current):
        chunks.append(_join(current))
    return chunks


def _overlap_tail(pieces: list[_Piece], overlap_chars: int) -> list[_Piece]:
    if overlap_chars <= 0:
        return []

    kept: list[_Piece] = []
    acc = 0
    for piece in reversed(pieces[1:]):
        acc += len(piece.text) + 1
        if acc > overlap_chars:
            break
        kept.insert(0, piece)
    return kept


def _merge_small(pieces: list[_Piece], min_chars: int, max_chars: int) -> list[_Piece]:
    """Merge adjacent undersized chunks that do not overlap and still fit the budget."""
    if min_chars <= 0:
        return pieces

    merged: list[_Piece] = []
    for piece in pieces:
        if merged:
            prev = merged[-1]
            small = len(prev.text) < min_chars or len(piece.text) < min_chars
            if small and piece.start_line > prev.end_line:
                text = prev.text + _separator(prev, piece) + piece.text
                if len(text) <= max_chars:
                    merged[-1] = _Piece(text, prev.start_line, piece.end_line)
                    continue
        merged.append(piece)
    return merged
