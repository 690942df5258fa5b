"""
POSM Tracker — Model Name Matching
Free-text model names carry inconsistent spacing and punctuation relative to
the catalog. Accept on stripped-token equality, containment either way, or
word-level Jaccard over the un-stripped labels.
"""
from posm_tracker.normalization import normalize_label, normalize_model_token, jaccard
from posm_tracker.policy import resolve_policy


def model_similarity(display_model: str, submission_model: str) -> float:
    """Word-level Jaccard between two normalized labels (1.0 on exact label match)."""
    a, b = normalize_label(display_model), normalize_label(submission_model)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return jaccard(set(a.split(" ")), set(b.split(" ")))


def matches(display_model: str, submission_model: str, policy: dict = None) -> bool:
    display, survey = normalize_model_token(display_model), normalize_model_token(submission_model)
    if not display or not survey:
        return False
    if display == survey or display in survey or survey in display:
        return True
    threshold = resolve_policy(policy)["model_jaccard_threshold"]
    return model_similarity(display_model, submission_model) >= threshold


def find_matching_responses(display_model: str, submission: dict, policy: dict = None) -> list:
    """All model responses of a submission that refer to display_model."""
    return [r for r in submission.get("modelResponses", []) if matches(display_model, r["model"], policy)]
