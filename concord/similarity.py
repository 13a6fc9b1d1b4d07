"""Lexical text similarity used by consensus scoring and pruning."""

import re

_PUNCTUATION = re.compile(r"[^\w\s]")

WORD_WEIGHT = 0.6
BIGRAM_WEIGHT = 0.4


def tokenize(text: str) -> list[str]:
    """Lowercase, replace punctuation with spaces and split on whitespace."""
    return _PUNCTUATION.sub(" ", text.lower()).split()


def _jaccard(a: set, b: set) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def word_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity over tokens longer than 3 characters."""
    words1 = {w for w in tokenize(text1) if len(w) > 3}
    words2 = {w for w in tokenize(text2) if len(w) > 3}
    return _jaccard(words1, words2)


def _bigrams(text: str) -> set[tuple[str, str]]:
    tokens = tokenize(text)
    return set(zip(tokens, tokens[1:]))


def bigram_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity over adjacent word pairs of the unfiltered token list."""
    return _jaccard(_bigrams(text1), _bigrams(text2))


def combined_similarity(text1: str, text2: str) -> float:
    """Blend of word and bigram similarity, symmetric in its arguments.

    Texts that normalize to the same non-empty token list score 1.0 even when
    one component has nothing to compare (a single word has no bigrams, short
    words are filtered out of the word set).
    """
    tokens1 = tokenize(text1)
    if tokens1 and tokens1 == tokenize(text2):
        return 1.0
    return WORD_WEIGHT * word_similarity(text1, text2) + BIGRAM_WEIGHT * bigram_similarity(text1, text2)
