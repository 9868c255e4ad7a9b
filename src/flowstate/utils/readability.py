"""Readability and length metrics shown alongside the document."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

__all__ = ["DocumentStats", "document_stats", "flesch_reading_ease", "readability_label", "remove_tags", "strip_markup"]

_TAG_RE = re.compile(r"<[^>]*>?")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_SILENT_SUFFIX_RE = re.compile(r"(?:[^laeiouy]es|ed|[^laeiouy]e)$")
_VOWEL_GROUP_RE = re.compile(r"[aeiouy]{1,2}")
_WORDS_PER_MINUTE = 225

_LABELS: tuple[tuple[int, str], ...] = (
    (90, "Very Easy"),
    (80, "Easy"),
    (70, "Fairly Easy"),
    (60, "Standard"),
    (50, "Fairly Difficult"),
    (30, "Difficult"),
)


@dataclass(slots=True, frozen=True)
class DocumentStats:
    words: int
    characters: int
    reading_minutes: int
    readability: int
    label: str


def remove_tags(text: str) -> str:
    return _TAG_RE.sub("", text or "")


def strip_markup(text: str) -> str:
    """Replace tags with spaces so adjacent blocks do not merge into one word."""

    return _TAG_RE.sub(" ", text or "")


def _count_syllables(word: str) -> int:
    word = re.sub(r"[^a-z]", "", word.lower())
    if len(word) <= 3:
        return 1
    word = _SILENT_SUFFIX_RE.sub("", word)
    word = re.sub(r"^y", "", word)
    groups = _VOWEL_GROUP_RE.findall(word)
    return len(groups) if groups else 1


def flesch_reading_ease(text: str) -> int:
    """Return the Flesch reading-ease score clamped to ``0..100``.

    Very short inputs (under 20 non-blank characters) score 0.
    """

    if not text or len(text.strip()) < 20:
        return 0
    clean = strip_markup(text)
    sentences = len([part for part in _SENTENCE_SPLIT_RE.split(clean) if part.strip()]) or 1
    words = clean.split()
    word_count = len(words) or 1
    syllables = sum(_count_syllables(word) for word in words)
    score = 206.835 - 1.015 * (word_count / sentences) - 84.6 * (syllables / word_count)
    return max(0, min(100, round(score)))


def readability_label(score: int) -> str:
    for threshold, label in _LABELS:
        if score >= threshold:
            return label
    return "Very Confusing"


def document_stats(content: str) -> DocumentStats:
    clean = strip_markup(content)
    words = len(clean.split())
    score = flesch_reading_ease(content)
    return DocumentStats(
        words=words,
        characters=len(clean),
        reading_minutes=math.ceil(words / _WORDS_PER_MINUTE),
        readability=score,
        label=readability_label(score),
    )
