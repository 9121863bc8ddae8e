# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Script segmentation: turns raw script text into an immutable ScriptIndex.

The script is rendered from Markdown to HTML (so formatting characters never
reach the aligner), the visible text of each block element becomes a
paragraph, paragraphs are split into sentences on terminal punctuation, and
sentences into words. Every word keeps its character span in the plain text
so the renderer can map indices back to what is on screen.
"""

import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser

import markdown

logger = logging.getLogger(__name__)

# Block-level tags whose text forms a separate paragraph
BLOCK_TAGS: frozenset[str] = frozenset([
    'p', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'li', 'blockquote', 'pre', 'div',
])

SENTENCE_END = re.compile(r"[.!?]+[\"')\]]*(?=\s|$)")
PARAGRAPH_SPLIT = re.compile(r'\n\s*\n')
WORD_TOKEN = re.compile(r'\S+')


def normalize_word(word: str) -> str:
    """Normalize a word for matching (lowercase, strip punctuation).

    This is used for comparing spoken words to script words.
    """
    return re.sub(r'[^\w\s]', '', word.lower()).strip()


@dataclass(frozen=True)
class ScriptWordEntry:
    """One word of the script."""
    word: str  # Normalized form used for matching
    global_index: int
    paragraph_index: int
    sentence_index: int  # Global sentence counter, not per paragraph
    char_start: int  # Offsets into ScriptIndex.text
    char_end: int
    text: str = ""  # Token as written, punctuation included


@dataclass(frozen=True)
class ScriptIndex:
    """Flattened, read-only view of a script version."""
    text: str
    words: tuple[ScriptWordEntry, ...]
    paragraph_count: int
    sentence_count: int
    script_id: str | None = None

    def __len__(self) -> int:
        return len(self.words)

    def __getitem__(self, index: int) -> ScriptWordEntry:
        return self.words[index]

    def __iter__(self):
        return iter(self.words)

    @property
    def normalized_words(self) -> list[str]:
        """Normalized word list, in script order."""
        return [entry.word for entry in self.words]

    def get(self, index: int) -> ScriptWordEntry | None:
        """Return the entry at index or None if out of range."""
        if 0 <= index < len(self.words):
            return self.words[index]
        return None

    def paragraph_words(self, paragraph_index: int) -> list[ScriptWordEntry]:
        """All entries in one paragraph."""
        return [w for w in self.words if w.paragraph_index == paragraph_index]

    def sentence_words(self, sentence_index: int) -> list[ScriptWordEntry]:
        """All entries in one sentence."""
        return [w for w in self.words if w.sentence_index == sentence_index]


class BlockTextExtractor(HTMLParser):
    """Extract the text of each block element from rendered HTML."""

    def __init__(self) -> None:
        super().__init__()
        self.blocks: list[str] = []
        self._current: list[str] = []

    def handle_starttag(self, tag: str, attrs) -> None:
        if tag in BLOCK_TAGS:
            self._flush()
        elif tag == 'br':
            self._current.append(' ')

    def handle_endtag(self, tag: str) -> None:
        if tag in BLOCK_TAGS:
            self._flush()

    def handle_data(self, data: str) -> None:
        self._current.append(data)

    def close(self) -> None:
        super().close()
        self._flush()

    def _flush(self) -> None:
        text = ' '.join(''.join(self._current).split())
        if text:
            self.blocks.append(text)
        self._current = []


def split_paragraphs(text: str, render_markdown: bool = True) -> list[str]:
    """
    Split script text into paragraph strings.

    Args:
        text: Raw script text (Markdown allowed).
        render_markdown: If True, render Markdown and use HTML block elements
            as paragraph boundaries. Otherwise split on blank lines.

    Returns:
        List of whitespace-normalized paragraph strings.
    """
    if render_markdown:
        html = markdown.markdown(text)
        extractor = BlockTextExtractor()
        extractor.feed(html)
        extractor.close()
        return extractor.blocks

    paragraphs = []
    for chunk in PARAGRAPH_SPLIT.split(text):
        collapsed = ' '.join(chunk.split())
        if collapsed:
            paragraphs.append(collapsed)
    return paragraphs


def _sentence_spans(paragraph: str) -> list[tuple[int, int]]:
    """Character spans of sentences within a paragraph."""
    spans: list[tuple[int, int]] = []
    start = 0
    for match in SENTENCE_END.finditer(paragraph):
        end = match.end()
        if paragraph[start:end].strip():
            spans.append((start, end))
        start = end
    if paragraph[start:].strip():
        spans.append((start, len(paragraph)))
    return spans


def build_script_index(
    text: str,
    render_markdown: bool = True,
    script_id: str | None = None
) -> ScriptIndex:
    """
    Build the ScriptIndex for a script version.

    Tokens that normalize to nothing (pure punctuation such as "-" or "...")
    are not indexed, so every entry can be spoken.

    Args:
        text: Raw script text.
        render_markdown: Render Markdown before segmenting.
        script_id: Optional identifier carried through to reports.

    Returns:
        ScriptIndex with contiguous global indices.
    """
    paragraphs = split_paragraphs(text, render_markdown=render_markdown)
    plain_text = '\n\n'.join(paragraphs)

    entries: list[ScriptWordEntry] = []
    sentence_counter = 0
    paragraph_counter = 0
    offset = 0

    for paragraph in paragraphs:
        spans = _sentence_spans(paragraph)
        paragraph_has_words = False
        for sent_start, sent_end in spans:
            sentence_has_words = False
            for token in WORD_TOKEN.finditer(paragraph, sent_start, sent_end):
                norm = normalize_word(token.group())
                if not norm:
                    continue
                entries.append(ScriptWordEntry(
                    word=norm,
                    global_index=len(entries),
                    paragraph_index=paragraph_counter,
                    sentence_index=sentence_counter,
                    char_start=offset + token.start(),
                    char_end=offset + token.end(),
                    text=token.group(),
                ))
                sentence_has_words = True
            if sentence_has_words:
                sentence_counter += 1
                paragraph_has_words = True
        if paragraph_has_words:
            paragraph_counter += 1
        offset += len(paragraph) + 2

    logger.debug("Indexed script: %d words, %d sentences, %d paragraphs",
                 len(entries), sentence_counter, paragraph_counter)

    return ScriptIndex(
        text=plain_text,
        words=tuple(entries),
        paragraph_count=paragraph_counter,
        sentence_count=sentence_counter,
        script_id=script_id,
    )
