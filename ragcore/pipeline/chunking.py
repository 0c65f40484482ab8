"""
Text Chunker
============

Splits knowledge item content into chunks suitable for embedding.

Design principles:
- Clean first (HTML stripping, whitespace and PDF-extraction fixes)
- Sentence-aware grouping: sentences are packed into chunks of at most
  ``chunk_size`` characters, consecutive chunks sharing ``chunk_overlap``
  characters of context
- Character fallback at paragraph, sentence or word boundaries when
  sentence grouping yields nothing
- Chunk indexes are contiguous from 0, so order within an item is stable

Usage:
    chunker = TextChunker()
    chunks = chunker.chunk(item_content)
    texts = [c.content for c in chunks]
"""

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

# Abbreviations common in training/science text that do not end a sentence
ABBREVIATIONS = (
    "Dr", "Mr", "Mrs", "Ms", "vs", "etc", "i.e", "e.g", "rep", "reps", "max",
    "min", "kg", "lb", "cm", "ft", "in", "sec", "vol", "no", "fig", "ref",
    "al", "pp",
)

_ABBREVIATION_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(a) for a in ABBREVIATIONS) + r")\.",
    re.IGNORECASE,
)
_SENTENCE_END_RE = re.compile(r"[.!?]+(?:\s+|$)")
_PLACEHOLDER = "\u0000"
_MIN_SENTENCE_LENGTH = 10


@dataclass
class ChunkingOptions:
    """
    Chunking parameters.

    Attributes:
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters of the previous chunk repeated at the start of the next
        min_chunk_size: Chunks shorter than this are not emitted
        preserve_sentences: Prefer sentence boundaries in the character fallback
        preserve_paragraphs: Prefer paragraph boundaries in the character fallback
    """
    chunk_size: int = 512
    chunk_overlap: int = 100
    min_chunk_size: int = 50
    preserve_sentences: bool = True
    preserve_paragraphs: bool = True

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {self.chunk_overlap}"
            )
        if self.min_chunk_size < 0:
            raise ValueError(f"min_chunk_size must be >= 0, got {self.min_chunk_size}")


@dataclass
class TextChunk:
    """A chunk of cleaned text with its position in the item."""
    index: int
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.content)


def html_to_text(markup: str) -> str:
    """Convert HTML to plain text, keeping paragraph and list structure."""
    text = re.sub(r"<script[^>]*>[\s\S]*?</script>", "", markup, flags=re.IGNORECASE)
    text = re.sub(r"<style[^>]*>[\s\S]*?</style>", "", text, flags=re.IGNORECASE)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</div>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</h[1-6]>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<li[^>]*>", "• ", text, flags=re.IGNORECASE)
    text = re.sub(r"</li>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", "", text)
    text = html.unescape(text).replace("\xa0", " ")
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def clean_text(text: str) -> str:
    """
    Normalize raw document text before chunking.

    Strips HTML, normalizes line endings and spaces, repairs words glued
    together by PDF extraction and limits blank lines to one.
    """
    if not text:
        return ""

    cleaned = html_to_text(text) if re.search(r"<[^>]*>", text) else text

    cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    cleaned = re.sub(r" +", " ", cleaned)

    # PDF extraction artifacts
    cleaned = re.sub(r"([a-z])([A-Z])", r"\1 \2", cleaned)
    cleaned = re.sub(r"([.!?])([A-Z])", r"\1 \2", cleaned)
    cleaned = re.sub(r"(\d+)([A-Z])", r"\1 \2", cleaned)

    cleaned = re.sub(r"\s+([.!?,;:])", r"\1", cleaned)
    cleaned = re.sub(r"([.!?])[ ]*\n\s*", r"\1\n\n", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def split_into_sentences(text: str) -> List[str]:
    """
    Split text into sentences, keeping abbreviations such as "e.g." or
    "3 sec." inside their sentence. Fragments of 10 characters or fewer
    are dropped.
    """
    protected = _ABBREVIATION_RE.sub(lambda m: m.group(0).replace(".", _PLACEHOLDER), text)

    sentences = []
    last = 0
    for match in _SENTENCE_END_RE.finditer(protected):
        sentence = protected[last:match.end()].replace(_PLACEHOLDER, ".").strip()
        if len(sentence) > _MIN_SENTENCE_LENGTH:
            sentences.append(sentence)
        last = match.end()

    if last < len(protected):
        remaining = protected[last:].replace(_PLACEHOLDER, ".").strip()
        if len(remaining) > _MIN_SENTENCE_LENGTH:
            sentences.append(remaining)

    return sentences


class TextChunker:
    """
    Sentence-aware chunker with overlap.

    Usage:
        chunker = TextChunker(ChunkingOptions(chunk_size=400, chunk_overlap=80))
        chunks = chunker.chunk(document_text)
    """

    def __init__(self, options: ChunkingOptions = None):
        self.options = options or ChunkingOptions()

    def chunk(self, text: str) -> List[TextChunk]:
        """
        Chunk ``text``.

        Returns:
            Chunks with contiguous indexes from 0; one chunk for short
            non-empty text, none for empty text
        """
        opts = self.options
        cleaned = clean_text(text)

        if not cleaned:
            return []
        if len(cleaned) < opts.min_chunk_size:
            return [TextChunk(index=0, content=cleaned)]

        contents = self._group_sentences(split_into_sentences(cleaned))
        if not contents:
            logger.debug("Sentence grouping produced no chunks, using character fallback")
            contents = self._character_chunks(cleaned)
        else:
            # a single sentence may still be longer than chunk_size
            contents = [
                piece
                for content in contents
                for piece in (self._character_chunks(content) if len(content) > opts.chunk_size else [content])
            ]

        chunks = [TextChunk(index=i, content=c) for i, c in enumerate(contents)]
        logger.debug(f"Chunked {len(cleaned)} chars into {len(chunks)} chunks")
        return chunks

    def _overlap_tail(self, text: str) -> str:
        """Last ``chunk_overlap`` characters, starting at a word boundary."""
        overlap = self.options.chunk_overlap
        if overlap <= 0 or len(text) <= overlap:
            return ""
        tail = text[-overlap:]
        space = tail.find(" ")
        if 0 <= space < len(tail) - 1:
            tail = tail[space + 1:]
        return tail.strip()

    def _group_sentences(self, sentences: List[str]) -> List[str]:
        opts = self.options
        chunks = []
        current = ""

        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) > opts.chunk_size and len(current) >= opts.min_chunk_size:
                chunks.append(current.strip())
                tail = self._overlap_tail(current)
                current = f"{tail} {sentence}" if tail else sentence
            else:
                current = candidate

        if len(current.strip()) >= opts.min_chunk_size:
            chunks.append(current.strip())

        return chunks

    def _find_break_point(self, text: str, start: int, end: int) -> int:
        opts = self.options
        region = text[start:end]

        if opts.preserve_paragraphs:
            paragraph = region.rfind("\n\n")
            if paragraph > len(region) * 0.5:
                return start + paragraph + 2

        if opts.preserve_sentences:
            last_sentence_end = -1
            for match in re.finditer(r"[.!?]\s+", region):
                if match.start() > len(region) * 0.3:
                    last_sentence_end = start + match.end()
            if last_sentence_end > start:
                return last_sentence_end

        space = region.rfind(" ")
        if space > len(region) * 0.5:
            return start + space

        return end

    def _character_chunks(self, text: str) -> List[str]:
        opts = self.options
        chunks = []
        position = 0

        while position < len(text):
            end = min(position + opts.chunk_size, len(text))
            chunk_end = self._find_break_point(text, position, end) if end < len(text) else end

            content = text[position:chunk_end].strip()
            if len(content) >= opts.min_chunk_size:
                chunks.append(content)

            if chunk_end >= len(text):
                break
            position = max(chunk_end - opts.chunk_overlap, position + 1)

        return chunks


def validate_chunks(chunks: List[TextChunk], min_size: int = 50, max_size: int = 2000) -> List[str]:
    """
    Quality warnings for a chunking result (empty list when fine).

    Example:
        >>> validate_chunks([TextChunk(0, "short")])
        ['1 chunks are very small (<50 characters)']
    """
    warnings = []
    small = sum(1 for c in chunks if len(c) < min_size)
    if small:
        warnings.append(f"{small} chunks are very small (<{min_size} characters)")
    large = sum(1 for c in chunks if len(c) > max_size)
    if large:
        warnings.append(f"{large} chunks are very large (>{max_size} characters)")
    indexes = [c.index for c in chunks]
    if indexes != list(range(len(chunks))):
        warnings.append("chunk indexes are not contiguous from 0")
    return warnings


def chunk_text(text: str, **options: Any) -> List[TextChunk]:
    """Convenience function: chunk ``text`` with the given ChunkingOptions fields."""
    return TextChunker(ChunkingOptions(**options)).chunk(text)


__all__ = [
    "ChunkingOptions",
    "TextChunk",
    "TextChunker",
    "chunk_text",
    "clean_text",
    "html_to_text",
    "split_into_sentences",
    "validate_chunks",
]
