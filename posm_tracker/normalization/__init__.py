"""
POSM Tracker — Label Normalization
Case folding, whitespace collapsing, punctuation stripping, tokenization.
Never fails: absent or non-string input normalizes to "".
"""
import re

_WS = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^0-9a-z]+")

MIN_TOKEN_LENGTH = 3


def _text(value) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def normalize_label(value) -> str:
    """Lowercase, trim, collapse internal whitespace to single spaces."""
    return _WS.sub(" ", _text(value).lower().strip())


def normalize_model_token(value) -> str:
    """normalize_label, then drop every non-alphanumeric character and all whitespace."""
    return _NON_ALNUM.sub("", normalize_label(value))


def tokenize(value, min_length: int = MIN_TOKEN_LENGTH) -> set:
    """Split a normalized label on spaces, dropping tokens too short to discriminate."""
    label = normalize_label(value)
    if not label:
        return set()
    return {t for t in label.split(" ") if len(t) >= min_length}


def jaccard(a: set, b: set) -> float:
    """|a ∩ b| / |a ∪ b|, 0.0 when both are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def ends_with_digit(value) -> bool:
    """True for numbered-branch labels such as 'store a 2'."""
    label = normalize_label(value)
    return bool(label) and label[-1].isdigit()
