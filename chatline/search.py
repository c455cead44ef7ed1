"""
Full-text search over conversation titles.

A small inverted index: each title is tokenized, lower-cased, stripped of
common words and stemmed, and every resulting token maps to the sorted ids
of the titles containing it. A query matches the titles that contain all
of its tokens.
"""

from __future__ import annotations

import re

import snowballstemmer

STOP_WORDS = frozenset({"a", "and", "be", "have", "i", "in", "of", "that", "the", "to"})

_TOKEN_RE = re.compile(r"[^\W_]+")
_stemmer = snowballstemmer.stemmer("english")


def tokenize(text: str) -> list[str]:
    """Split on anything that is not a letter or a digit."""
    return _TOKEN_RE.findall(text)


def analyze(text: str) -> list[str]:
    tokens = [t.lower() for t in tokenize(text)]
    tokens = [t for t in tokens if t not in STOP_WORDS]
    return _stemmer.stemWords(tokens)


def intersection(a: list[int], b: list[int]) -> list[int]:
    """Intersect two ascending id lists."""
    result = []
    i = j = 0
    while i < len(a) and j < len(b):
        if a[i] < b[j]:
            i += 1
        elif a[i] > b[j]:
            j += 1
        else:
            result.append(a[i])
            i += 1
            j += 1
    return result


class TitleIndex:
    """Inverted index from stemmed tokens to title ids."""

    def __init__(self, titles: list[str] | None = None):
        self._postings: dict[str, list[int]] = {}
        self._titles: list[str] = []
        if titles:
            self.add(titles)

    def add(self, titles: list[str]) -> None:
        for title in titles:
            doc_id = len(self._titles)
            self._titles.append(title)
            for token in analyze(title):
                ids = self._postings.setdefault(token, [])
                if not ids or ids[-1] != doc_id:
                    ids.append(doc_id)

    def search(self, text: str) -> list[int]:
        result: list[int] | None = None
        for token in analyze(text):
            ids = self._postings.get(token)
            if ids is None:
                return []
            result = list(ids) if result is None else intersection(result, ids)
        return result or []

    def titles_for(self, ids: list[int]) -> list[str]:
        return [self._titles[i] for i in ids]

    def __len__(self) -> int:
        return len(self._titles)
