"""Arabic-aware text normalization, tokenization and edit distance helpers."""

import re
from typing import Iterable, List, Set


_DIACRITICS = re.compile(r"[\u0617-\u061A\u064B-\u065F\u0670]")
_TATWEEL = "\u0640"
_PUNCTUATION = re.compile(r"[^\w\s\u0600-\u06FF]")
_WHITESPACE = re.compile(r"\s+")
_KEYWORD_PUNCTUATION = re.compile(r"[؟?.,!،]")

_LETTERFORMS = str.maketrans({
    "أ": "ا",
    "إ": "ا",
    "آ": "ا",
    "ى": "ي",
    "ة": "ه",
    "ؤ": "و",
    "ئ": "ي",
})

_ARABIC_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩", "0123456789")

STOPWORDS: Set[str] = {"ما", "هو", "هي", "في", "على", "من", "إلى", "عن", "هل", "كيف"}


def normalize_text(text: str) -> str:
    """Normalize text for indexing and matching.

    Lowercases, strips diacritics and tatweel, unifies alef/yaa/taa marbuta
    letterforms, converts Arabic-Indic digits, replaces punctuation with
    spaces and collapses whitespace.

    Args:
        text: Raw text

    Returns:
        Normalized text (empty string for falsy input)
    """
    if not text:
        return ""

    processed = text.lower()
    processed = _DIACRITICS.sub("", processed)
    processed = processed.replace(_TATWEEL, "")
    processed = processed.translate(_LETTERFORMS)
    processed = processed.translate(_ARABIC_DIGITS)
    processed = _PUNCTUATION.sub(" ", processed)
    processed = _WHITESPACE.sub(" ", processed).strip()

    return processed


def char_ngrams(text: str, n: int = 3) -> List[str]:
    """Character n-grams of the text with whitespace removed."""
    clean_text = _WHITESPACE.sub("", text)
    return [clean_text[i:i + n] for i in range(len(clean_text) - n + 1)]


def tokenize(text: str, use_ngrams: bool = True, ngram_size: int = 3) -> List[str]:
    """Split normalized text into terms.

    Words of a single character are dropped. When ``use_ngrams`` is set the
    character n-grams of the text are appended to the word list.

    Args:
        text: Normalized text
        use_ngrams: Append character n-grams
        ngram_size: N-gram length

    Returns:
        List of terms, duplicates preserved
    """
    words = [word for word in text.split() if len(word) > 1]

    if use_ngrams:
        return words + char_ngrams(text, ngram_size)

    return words


def levenshtein_distance(first: str, second: str) -> int:
    """Edit distance with unit insert, delete and substitute costs."""
    if len(first) < len(second):
        first, second = second, first

    previous = list(range(len(second) + 1))
    for i, left in enumerate(first, start=1):
        current = [i]
        for j, right in enumerate(second, start=1):
            cost = 0 if left == right else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost
            ))
        previous = current

    return previous[-1]


def levenshtein_similarity(first: str, second: str, window: int = 200) -> float:
    """Normalized edit similarity in [0, 1] over the first ``window`` characters."""
    s1 = first[:window]
    s2 = second[:window]

    max_length = max(len(s1), len(s2))
    if max_length == 0:
        return 1.0

    return 1.0 - levenshtein_distance(s1, s2) / max_length


def extract_keywords(text: str) -> List[str]:
    """Keywords of a query: words longer than two characters minus stopwords."""
    if not text:
        return []
    cleaned = _KEYWORD_PUNCTUATION.sub("", text.lower())
    return [word for word in cleaned.split() if len(word) > 2 and word not in STOPWORDS]


def word_overlap(first: Iterable[str], second: Iterable[str]) -> float:
    """Fraction of the words in ``first`` that also occur in ``second``."""
    first_words = set(first)
    if not first_words:
        return 0.0
    return len(first_words & set(second)) / len(first_words)
