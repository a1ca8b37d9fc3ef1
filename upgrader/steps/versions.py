"""Dotted version strings and their ordering.

Ordering follows the classic ``version_compare`` rules used by the
application's release labels: numeric parts compare numerically and
pre-release words rank below any number::

    dev < alpha = a < beta = b < RC = rc < <number> < pl = p

so ``6.2.alpha1 < 6.2.beta1 < 6.2.0 < 6.2.1``.  Words outside that list
rank below ``dev``.
"""

from __future__ import annotations

import functools
import re

_VALID = re.compile(r"^\d+[0-9A-Za-z]*(?:[._+-][0-9A-Za-z]+)*$")
_TOKEN = re.compile(r"\d+|[A-Za-z]+")

# Prefix matches, checked in order
_SPECIAL_FORMS: tuple[tuple[str, int], ...] = (
    ("dev", 0),
    ("alpha", 1),
    ("a", 1),
    ("beta", 2),
    ("b", 2),
    ("rc", 3),
    ("#", 4),
    ("pl", 5),
    ("p", 5),
)
_UNKNOWN_RANK = -6
_NUMBER = "#"


def is_valid_version(version: str) -> bool:
    return bool(version) and _VALID.match(version) is not None


def tokenize(version: str) -> list[str]:
    """Split *version* into numeric and alphabetic parts.

    Raises ValueError for strings that are not dotted versions.
    """
    if not is_valid_version(version):
        raise ValueError(f"Malformed version string: {version!r}")
    return _TOKEN.findall(version)


def _rank(word: str) -> int:
    word = word.lower()
    for form, rank in _SPECIAL_FORMS:
        if word.startswith(form):
            return rank
    return _UNKNOWN_RANK


def _cmp(a: int, b: int) -> int:
    return (a > b) - (a < b)


def _compare_parts(left: str, right: str) -> int:
    if left.isdigit() and right.isdigit():
        return _cmp(int(left), int(right))
    if left.isdigit():
        return _cmp(_rank(_NUMBER), _rank(right))
    if right.isdigit():
        return _cmp(_rank(left), _rank(_NUMBER))
    return _cmp(_rank(left), _rank(right))


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 as *left* sorts before, equal to or after *right*."""
    lparts = tokenize(left)
    rparts = tokenize(right)

    for lp, rp in zip(lparts, rparts):
        result = _compare_parts(lp, rp)
        if result:
            return result

    # A trailing number makes a version newer; a trailing word is
    # ranked against a bare number (so "6.2.alpha1" < "6.2").
    if len(lparts) > len(rparts):
        extra = lparts[len(rparts)]
        return 1 if extra.isdigit() else _cmp(_rank(extra), _rank(_NUMBER))
    if len(rparts) > len(lparts):
        extra = rparts[len(lparts)]
        return -1 if extra.isdigit() else _cmp(_rank(_NUMBER), _rank(extra))
    return 0


version_key = functools.cmp_to_key(compare_versions)


def sort_versions(versions) -> list[str]:
    return sorted(versions, key=version_key)
