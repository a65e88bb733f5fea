"""
Heading-aware markdown chunking.

This module splits a markdown document into ChunkInput records for the
scoring pipeline. Headings are treated as metadata, not content:

Strategy:
1. Walk the document line by line, keeping a stack of open headings
   (a heading pops every open heading at the same or deeper level)
2. Body content under a heading accumulates into one section
3. A section whose body fits in max_tokens becomes one chunk
4. Larger sections are split on block, then sentence boundaries, with a
   small overlap carried into the next chunk

Every chunk's text is prefixed with its heading cascade ("# A\\n\\n## B")
so embeddings see the context the reader sees; text_without_cascade keeps
the body alone for display and lexical diagnostics.

Token Estimation:
~4 characters per token, rounded up. Good enough for sizing chunks; the
embedding model does its own tokenization.
"""

import math
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from covercheck.core.models import ChunkInput


# Approximate characters per token for English text
CHARS_PER_TOKEN = 4

_HEADING = re.compile(r"^(#{1,6})\s+(.+)$")
_FENCE = re.compile(r"^(```|~~~)")
_LIST_OR_TABLE = re.compile(r"^([-*+]|\d+\.|\|)", re.MULTILINE)
_SENTENCE = re.compile(r"[^.!?]+[.!?]+")


class ChunkingError(Exception):
    """Raised when document chunking fails."""
    pass


@dataclass
class ChunkingConfig:
    """
    Configuration for layout-aware chunking.

    Attributes:
        max_tokens: Maximum body tokens per chunk, cascade excluded (default: 512)
        overlap_tokens: Tokens carried over when a section is split (default: 50)
        cascade_headings: Prefix chunk text with its heading cascade (default: True)
    """
    max_tokens: int = 512
    overlap_tokens: int = 50
    cascade_headings: bool = True


DEFAULT_CHUNKING_CONFIG = ChunkingConfig()


@dataclass
class _Section:
    """Body content under one heading cascade."""
    headings: List[Tuple[int, str]]
    blocks: List[str] = field(default_factory=list)

    @property
    def body(self) -> str:
        return "\n\n".join(self.blocks)


def estimate_tokens(text: str) -> int:
    """Estimate token count from character length."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _parse_sections(document: str) -> List[_Section]:
    """
    Group the document's body blocks under their heading cascades.

    Blank lines separate blocks, except inside fenced code. Sections with
    no body (a heading immediately followed by another) are dropped.
    """
    sections: List[_Section] = []
    stack: List[Tuple[int, str]] = []
    current = _Section(headings=[])
    block: List[str] = []
    in_fence: Optional[str] = None

    def close_block():
        text = "\n".join(block).strip()
        if text:
            current.blocks.append(text)
        block.clear()

    for line in document.split("\n"):
        if in_fence is not None:
            block.append(line)
            if line.startswith(in_fence):
                in_fence = None
                close_block()
            continue

        fence = _FENCE.match(line)
        if fence:
            close_block()
            in_fence = fence.group(1)
            block.append(line)
            continue

        heading = _HEADING.match(line)
        if heading:
            close_block()
            if current.blocks:
                sections.append(current)
            level = len(heading.group(1))
            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, heading.group(2).strip()))
            current = _Section(headings=list(stack))
            continue

        if not line.strip():
            close_block()
        else:
            block.append(line)

    close_block()
    if current.blocks:
        sections.append(current)
    return sections


def _segments(body: str) -> List[str]:
    """Blocks small enough to pack; long prose paragraphs split by sentence."""
    segments: List[str] = []
    for block in re.split(r"\n\n+", body):
        if not block.strip():
            continue
        if estimate_tokens(block) <= 100 or _LIST_OR_TABLE.search(block) or _FENCE.match(block):
            segments.append(block)
        else:
            sentences = [s.strip() for s in _SENTENCE.findall(block) if s.strip()]
            segments.extend(sentences or [block])
    return segments


def _split_body(body: str, max_tokens: int, overlap_tokens: int) -> List[str]:
    """Pack segments into bodies of at most max_tokens, with trailing overlap."""
    parts: List[str] = []
    current: List[str] = []
    current_tokens = 0
    overlap: List[str] = []

    for segment in _segments(body):
        tokens = estimate_tokens(segment)
        if current and current_tokens + tokens > max_tokens:
            parts.append("\n\n".join(current))
            current = list(overlap)
            current_tokens = sum(estimate_tokens(s) for s in current)

        current.append(segment)
        current_tokens += tokens

        overlap.append(segment)
        while len(overlap) > 1 and sum(estimate_tokens(s) for s in overlap) > overlap_tokens:
            overlap.pop(0)

    if current:
        parts.append("\n\n".join(current))
    return parts


def _cascade_text(headings: List[Tuple[int, str]]) -> str:
    return "\n\n".join(f"{'#' * level} {text}" for level, text in headings)


def chunk_markdown(
    document: str,
    config: Optional[ChunkingConfig] = None,
) -> List[ChunkInput]:
    """
    Split a markdown document into heading-aware chunks.

    Args:
        document: Markdown text
        config: Optional chunk sizing; defaults to DEFAULT_CHUNKING_CONFIG

    Returns:
        ChunkInput records in document order, ids "chunk-0", "chunk-1", ...

    Raises:
        ChunkingError: If the document is empty or has no body content

    Example:
        >>> chunks = chunk_markdown("# Pricing\\n\\nPlans start at $10.")
        >>> chunks[0].heading_path
        ['Pricing']
    """
    if not document or not document.strip():
        raise ChunkingError("Document is empty or contains only whitespace")

    cfg = config or DEFAULT_CHUNKING_CONFIG
    if cfg.max_tokens <= 0:
        raise ChunkingError(f"max_tokens must be positive, got {cfg.max_tokens}")

    chunks: List[ChunkInput] = []
    for section in _parse_sections(document):
        cascade = _cascade_text(section.headings) if cfg.cascade_headings else ""
        body = section.body
        if estimate_tokens(body) <= cfg.max_tokens:
            bodies = [body]
        else:
            bodies = _split_body(body, cfg.max_tokens, cfg.overlap_tokens)

        for part in bodies:
            index = len(chunks)
            chunks.append(ChunkInput(
                id=f"chunk-{index}",
                index=index,
                text=f"{cascade}\n\n{part}" if cascade else part,
                heading_path=[text for _, text in section.headings],
                word_count=len(part.split()),
                char_count=len(part),
                text_without_cascade=part,
            ))

    if not chunks:
        raise ChunkingError("Could not extract any chunks from document")
    return chunks
