"""
Bilingual Text Similarity

Normalized string comparison for English and Arabic incident text:
character-bigram Dice baseline, token-set Jaccard, and a boost for
descriptions that are a shorter summary of the other.
"""

import re
from collections import Counter
from typing import List, Set

SUMMARY_LENGTH_RATIO = 0.7
SUMMARY_CONTAINMENT = 0.8
SUMMARY_BONUS = 0.2

STOP_WORDS: Set[str] = {
    # English
    "a", "an", "the", "and", "or", "but", "of", "in", "on", "at", "to", "for",
    "from", "by", "with", "as", "is", "are", "was", "were", "be", "been",
    "being", "has", "have", "had", "it", "its", "this", "that", "these",
    "those", "into", "near", "after", "before", "during", "while", "which",
    "who", "whom", "their", "they", "them", "he", "she", "his", "her", "than",
    "then", "also", "not", "no", "there", "here", "about", "over", "under",
    # Arabic
    "في", "من", "على", "إلى", "الى", "عن", "مع", "هذا", "هذه", "ذلك", "تلك",
    "التي", "الذي", "الذين", "و", "او", "أو", "ثم", "كما", "قد", "لقد", "كان",
    "كانت", "هو", "هي", "هم", "بعد", "قبل", "خلال", "حيث", "عند", "إن", "ان",
    "أن", "لا", "ما", "لم", "لن", "بين", "حول", "منذ", "ضد", "عليه", "فيه",
}

_ARABIC_DIACRITICS = re.compile(r"[\u064B-\u0652\u0670\u0640]")
_ALEF_VARIANTS = re.compile(r"[\u0622\u0623\u0625]")
_NON_WORD = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation in both scripts, collapse whitespace."""
    if not text:
        return ""
    text = text.lower()
    text = _ARABIC_DIACRITICS.sub("", text)
    text = _ALEF_VARIANTS.sub("\u0627", text)
    text = _NON_WORD.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def tokenize(text: str) -> List[str]:
    """Normalized tokens with stop words removed."""
    return [token for token in normalize_text(text).split(" ") if token and token not in STOP_WORDS]


def dice_coefficient(a: str, b: str) -> float:
    """Sørensen-Dice coefficient over character bigrams, whitespace ignored."""
    a = _WHITESPACE.sub("", a.lower())
    b = _WHITESPACE.sub("", b.lower())

    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0

    bigrams_a = Counter(a[i:i + 2] for i in range(len(a) - 1))
    bigrams_b = Counter(b[i:i + 2] for i in range(len(b) - 1))
    overlap = sum((bigrams_a & bigrams_b).values())

    return 2.0 * overlap / (len(a) + len(b) - 2)


def jaccard_similarity(tokens_a: Set[str], tokens_b: Set[str]) -> float:
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def containment(inner: Set[str], outer: Set[str]) -> float:
    """Share of ``inner`` tokens that also appear in ``outer``."""
    if not inner:
        return 0.0
    return len(inner & outer) / len(inner)


def summary_boost(a: str, b: str) -> float:
    """Boosted containment when the shorter text reads as a summary of the longer.

    Returns 0 when no summary relationship is detected.
    """
    norm_a, norm_b = normalize_text(a), normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0

    if len(norm_a) <= len(norm_b):
        shorter, longer = norm_a, norm_b
    else:
        shorter, longer = norm_b, norm_a

    if len(shorter) / len(longer) >= SUMMARY_LENGTH_RATIO:
        return 0.0

    contained = containment(set(tokenize(shorter)), set(tokenize(longer)))
    if contained <= SUMMARY_CONTAINMENT:
        return 0.0

    return min(1.0, contained + SUMMARY_BONUS)


def text_similarity(a: str, b: str) -> float:
    """Similarity in [0, 1] between two texts.

    Empty input on either side yields 0: missing text never counts as
    agreement.
    """
    a = (a or "").strip()
    b = (b or "").strip()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    baseline = dice_coefficient(a, b)
    jaccard = jaccard_similarity(set(tokenize(a)), set(tokenize(b)))
    boosted = summary_boost(a, b)

    return max(0.0, min(1.0, max(baseline, jaccard, boosted)))
