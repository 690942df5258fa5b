"""
POSM Tracker — Matching Policy Module

Centralized threshold state for identity resolution, model matching,
survey validation and audit classification. Single source of truth for all
tunable constants.

Architecture:
  - DEFAULT_POLICY: Immutable base policy with env var overrides
  - _active_policy: Mutable runtime state, updated via API
  - get_policy() / update_policy() / reset_policy(): accessors
  - POLICY_PRESETS: Named preset configurations (strict, default, lenient)

The identity thresholds and the model Jaccard threshold were tuned
empirically against field data. They are heuristics, not derived bounds.
"""

import os
import copy as _copy

from posm_tracker.config import MAX_WORKERS


# ============================================================
# DEFAULT POLICY — base configuration with env var overrides
# ============================================================
DEFAULT_POLICY = {
    # ── IDENTITY CASCADE ──
    "identity_accept_threshold": float(os.environ.get("IDENTITY_ACCEPT_THRESHOLD", "0.85")),
    "partial_token_overlap_min": float(os.environ.get("PARTIAL_TOKEN_OVERLAP_MIN", "0.85")),
    "partial_min_shared_tokens": int(os.environ.get("PARTIAL_MIN_SHARED_TOKENS", "3")),
    "partial_max_token_diff": int(os.environ.get("PARTIAL_MAX_TOKEN_DIFF", "1")),
    "partial_confidence_floor": 0.75,
    "partial_confidence_ceiling": 0.90,
    "id_in_name_min_length": int(os.environ.get("ID_IN_NAME_MIN_LENGTH", "4")),
    "id_in_name_confidence": 0.88,
    "label_in_name_confidence": 0.87,

    # ── NORMALIZATION ──
    "min_token_length": 3,

    # ── MODEL MATCHING ──
    "model_jaccard_threshold": float(os.environ.get("MODEL_JACCARD_THRESHOLD", "0.80")),

    # ── SURVEY VALIDATION ──
    "min_survey_quality": int(os.environ.get("MIN_SURVEY_QUALITY", "30")),

    # ── EXECUTION ──
    "max_workers": MAX_WORKERS,

    # ── AUDIT ──
    "audit_full_completion_share": float(os.environ.get("AUDIT_FULL_COMPLETION_SHARE", "0.50")),
    "audit_findings_share": float(os.environ.get("AUDIT_FINDINGS_SHARE", "0.10")),
    "distribution_bucket_pct": 10,
}

RATIO_FIELDS = {
    "identity_accept_threshold", "partial_token_overlap_min",
    "partial_confidence_floor", "partial_confidence_ceiling",
    "id_in_name_confidence", "label_in_name_confidence",
    "model_jaccard_threshold", "audit_full_completion_share", "audit_findings_share",
}
COUNT_FIELDS = {k for k, v in DEFAULT_POLICY.items() if isinstance(v, int) and not isinstance(v, bool)}


# ============================================================
# RUNTIME STATE — mutable, updated via API
# ============================================================
_active_policy = _copy.deepcopy(DEFAULT_POLICY)


def get_policy() -> dict:
    """Get the active matching policy."""
    return _active_policy


def _coerce(key: str, value):
    """Type-check and clamp one policy value. Returns None when it should be ignored."""
    if key not in DEFAULT_POLICY or isinstance(value, bool):
        return None
    expected_type = type(DEFAULT_POLICY[key])
    if expected_type == float and isinstance(value, (int, float)):
        value = float(value)
    elif not isinstance(value, expected_type):
        return None
    if key in RATIO_FIELDS:
        return max(0.0, min(1.0, value))
    if key in COUNT_FIELDS:
        return max(0, int(value))
    return value


def update_policy(updates: dict) -> dict:
    """Update specific policy fields. Returns the full updated policy."""
    for key, value in updates.items():
        value = _coerce(key, value)
        if value is not None:
            _active_policy[key] = value
    return _active_policy


def reset_policy():
    """Reset policy to defaults. Used in testing."""
    _active_policy.clear()
    _active_policy.update(_copy.deepcopy(DEFAULT_POLICY))


def resolve_policy(policy: dict = None) -> dict:
    """Overlay a caller-supplied partial policy on the active one, with the same checks as update_policy."""
    if not policy:
        return _active_policy
    merged = dict(_active_policy)
    for key, value in policy.items():
        value = _coerce(key, value)
        if value is not None:
            merged[key] = value
    return merged


# ============================================================
# POLICY PRESETS
# ============================================================
POLICY_PRESETS = {
    "strict": {
        "name": "Strict Audit",
        "description": "Only exact and near-exact identity matches, tighter model matching",
        "identity_accept_threshold": 0.90,
        "partial_token_overlap_min": 0.95,
        "model_jaccard_threshold": 0.90,
        "min_survey_quality": 70,
    },
    "default": {
        "name": "Default",
        "description": "Field-tuned thresholds",
        "identity_accept_threshold": 0.85,
        "partial_token_overlap_min": 0.85,
        "model_jaccard_threshold": 0.80,
        "min_survey_quality": 30,
    },
    "lenient": {
        "name": "Lenient / Early Rollout",
        "description": "Accepts controlled containment matches, looser model matching",
        "identity_accept_threshold": 0.80,
        "partial_token_overlap_min": 0.80,
        "model_jaccard_threshold": 0.70,
        "min_survey_quality": 30,
    },
}


def apply_preset(name: str) -> dict:
    """Apply a named preset on top of the defaults. Raises KeyError for unknown names."""
    preset = POLICY_PRESETS[name]
    reset_policy()
    return update_policy({k: v for k, v in preset.items() if k in DEFAULT_POLICY})
