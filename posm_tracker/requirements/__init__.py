"""
POSM Tracker — Requirement Index
Reduces the POSM-requirement catalog to the distinct required codes per model.
"""
from collections import defaultdict

from posm_tracker.normalization import normalize_model_token


class RequirementIndex:
    """Distinct POSM codes per model, with a spacing/case-insensitive fallback key."""

    def __init__(self, requirements: list):
        codes = defaultdict(set)
        names = {}
        for r in requirements:
            codes[r["model"]].add(r["posmCode"])
            names.setdefault(r["posmCode"], r.get("posmName") or r["posmCode"])
        self._codes = {m: frozenset(c) for m, c in codes.items()}
        self._names = names

        loose = defaultdict(set)
        for model, c in self._codes.items():
            loose[normalize_model_token(model)] |= c
        self._loose = {k: frozenset(v) for k, v in loose.items() if k}

    def required_codes(self, model: str) -> frozenset:
        if model in self._codes:
            return self._codes[model]
        return self._loose.get(normalize_model_token(model), frozenset())

    def required_count(self, model: str) -> int:
        return len(self.required_codes(model))

    def models(self) -> list:
        return sorted(self._codes)

    def posm_names(self) -> dict:
        return dict(self._names)

    def counts(self) -> dict:
        return {m: len(c) for m, c in sorted(self._codes.items())}

    def __contains__(self, model) -> bool:
        return bool(self.required_codes(model))

    def __len__(self) -> int:
        return len(self._codes)


def build_requirement_index(requirements: list) -> RequirementIndex:
    """requirements are canonical records ({model, posmCode, posmName})."""
    return RequirementIndex(requirements)
