"""Edit-distance string similarity."""


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character insertions, deletions or substitutions."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """Normalized similarity in [0, 1]: ``1 - distance / max(len)``.

    Two empty strings are identical (1.0).
    """
    max_length = max(len(a), len(b))
    if max_length == 0:
        return 1.0
    return (max_length - levenshtein_distance(a, b)) / max_length
