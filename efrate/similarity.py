"""
String similarity helpers used for fuzzy cache lookups.
"""

import re

_WHITESPACE = re.compile(r"\s+")


def normalize_prompt(prompt: str) -> str:
    """Trim, lowercase and collapse whitespace runs to a single space."""
    return _WHITESPACE.sub(" ", prompt.strip().lower())


def levenshtein_distance(a: str, b: str) -> int:
    """
    Minimum number of single-character edits turning `a` into `b`.

    Args:
        a: First string
        b: Second string

    Returns:
        Edit distance (insertions, deletions and substitutions cost 1)
    """
    # Rows follow b, columns follow a
    matrix = [[0] * (len(a) + 1) for _ in range(len(b) + 1)]
    for i in range(len(b) + 1):
        matrix[i][0] = i
    for j in range(len(a) + 1):
        matrix[0][j] = j

    for i in range(1, len(b) + 1):
        for j in range(1, len(a) + 1):
            cost = 0 if a[j - 1] == b[i - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,         # deletion
                matrix[i][j - 1] + 1,         # insertion
                matrix[i - 1][j - 1] + cost,  # substitution
            )

    return matrix[len(b)][len(a)]


def calculate_similarity(a: str, b: str) -> float:
    """
    Similarity score between two strings in [0, 1].

    1.0 means identical (two empty strings included), 0.0 means one of
    them is empty while the other is not.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    distance = levenshtein_distance(a, b)
    return 1 - distance / max(len(a), len(b))
