# backend/services/name_matching.py
"""
Fuzzy client lookup for spoken names. Speech-to-text often mangles names
("Jon" / "John", "Katherine" / "Kathryn"), so matching falls back from exact
and partial matches to a weighted score built from edit distance, a crude
phonetic key and shared letter pairs.
"""

import re
from typing import Iterable, List, Optional

VOWELS_RE = re.compile(r"[aeiou]")
NON_LETTERS_RE = re.compile(r"[^a-z]")

PHONETIC_RULES = (
    ("ph", "f"),
    ("ck", "k"),
    ("qu", "kw"),
    ("sh", "s"),
    ("ch", "s"),
)

MIN_SCORE = 0.5


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / longest


def common_sequences(a: str, b: str) -> int:
    """Positions where both strings carry the same two-letter chunk."""
    count = 0
    for i in range(min(len(a), len(b)) - 1):
        if a[i:i + 2] == b[i:i + 2]:
            count += 1
    return count


def phonetic_key(name: str) -> str:
    key = NON_LETTERS_RE.sub("", (name or "").lower())
    for src, dst in PHONETIC_RULES:
        key = key.replace(src, dst)
    return VOWELS_RE.sub("", key)


def sounds_similar(a: str, b: str) -> bool:
    ka, kb = phonetic_key(a), phonetic_key(b)
    if ka and kb:
        if ka == kb or ka in kb or kb in ka:
            return True
    return similarity((a or "").lower(), (b or "").lower()) >= 0.5


def _score(spoken: str, candidate: str) -> float:
    score = 0.0
    if sounds_similar(spoken, candidate):
        score += 0.6
    sim = similarity(spoken, candidate)
    if sim >= 0.4:
        score += sim * 0.5
    if common_sequences(spoken, candidate) > 2:
        score += 0.3
    if spoken and candidate and spoken[0] == candidate[0]:
        score += 0.2
    return score


def find_client_by_fuzzy_name(spoken, clients: Iterable[dict]) -> Optional[dict]:
    if not spoken or not isinstance(spoken, str):
        return None
    target = spoken.strip().lower()
    if not target:
        return None
    candidates: List[dict] = [c for c in clients if (c.get("name") or "").strip()]

    for c in candidates:
        if c["name"].strip().lower() == target:
            return c

    for c in candidates:
        name = c["name"].strip().lower()
        if target in name or name in target:
            return c

    best, best_score = None, 0.0
    for c in candidates:
        score = _score(target, c["name"].strip().lower())
        if score > best_score:
            best, best_score = c, score
    if best is not None and best_score >= MIN_SCORE:
        return best
    return None
