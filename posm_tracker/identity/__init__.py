"""
POSM Tracker — Store Identity Resolution

Decides whether a free-text survey submission (shop name label + leader
label) refers to a catalog store. Ordered cascade of strategies; the first
strategy that accepts wins and later strategies are never consulted.

Methods (precedence order):
  1. exact_store_name     — catalog store name == shop label           (1.00)
  2. exact_identifier     — catalog store id == leader label           (1.00)
  3. strict_partial_name  — token overlap + containment, both ways     (0.75-0.90)
  4. identifier_in_name   — store id is a whole word of the shop label (0.88)
  5. label_in_name        — leader label is a whole word of store name (0.87)

A method accepts only when its confidence reaches identity_accept_threshold.
Scores are never combined across methods.

Numbered-store guard: when either name ends in a digit ("Branch 2" vs
"Branch 20") the partial method requires an exact match, since containment
alone conflates sibling branches.
"""
import re
import logging

from posm_tracker.config import (
    METHOD_EXACT_NAME, METHOD_EXACT_ID, METHOD_PARTIAL_NAME,
    METHOD_ID_IN_NAME, METHOD_LABEL_IN_NAME, METHOD_NONE,
)
from posm_tracker.normalization import normalize_label, tokenize, jaccard, ends_with_digit
from posm_tracker.policy import resolve_policy

log = logging.getLogger(__name__)

REJECT = (False, 0.0)


def _labels(submission: dict) -> tuple:
    leader = submission.get("leaderLabel", submission.get("leader"))
    shop = submission.get("shopNameLabel", submission.get("shopName"))
    return normalize_label(leader), normalize_label(shop)


def _store_name(store) -> str:
    if not store:
        return ""
    return normalize_label(store.get("storeName", store.get("store_name")))


def _contains_word(haystack: str, needle: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", haystack) is not None


# ============================================================
# STRATEGIES
# ============================================================
class IdentityStrategy:
    """One cascade tier. evaluate() returns (matched, confidence)."""
    method = METHOD_NONE

    def evaluate(self, submission: dict, candidate_id: str, store: dict, policy: dict) -> tuple:
        raise NotImplementedError


class ExactStoreName(IdentityStrategy):
    method = METHOD_EXACT_NAME

    def evaluate(self, submission, candidate_id, store, policy):
        _, shop = _labels(submission)
        name = _store_name(store)
        if shop and name and shop == name:
            return True, 1.0
        return REJECT


class ExactIdentifier(IdentityStrategy):
    method = METHOD_EXACT_ID

    def evaluate(self, submission, candidate_id, store, policy):
        leader, _ = _labels(submission)
        ident = normalize_label(candidate_id)
        if leader and ident and leader == ident:
            return True, 1.0
        return REJECT


class StrictPartialName(IdentityStrategy):
    method = METHOD_PARTIAL_NAME

    def evaluate(self, submission, candidate_id, store, policy):
        _, shop = _labels(submission)
        name = _store_name(store)
        if not shop or not name:
            return REJECT

        min_len = policy["min_token_length"]
        shop_tokens, name_tokens = tokenize(shop, min_len), tokenize(name, min_len)
        if len(shop_tokens) < 2 or len(name_tokens) < 2:
            return REJECT

        ceiling = policy["partial_confidence_ceiling"]
        if ends_with_digit(shop) or ends_with_digit(name):
            return (True, ceiling) if shop == name else REJECT

        overlap_min = policy["partial_token_overlap_min"]
        overlap = jaccard(shop_tokens, name_tokens)
        shared = shop_tokens & name_tokens
        if overlap < overlap_min or len(shared) < policy["partial_min_shared_tokens"]:
            return REJECT
        if abs(len(shop_tokens) - len(name_tokens)) > policy["partial_max_token_diff"]:
            return REJECT
        if shop not in name and name not in shop:
            return REJECT

        floor = policy["partial_confidence_floor"]
        span = 1.0 - overlap_min
        scale = (overlap - overlap_min) / span if span > 0 else 1.0
        return True, round(floor + (ceiling - floor) * scale, 4)


class IdentifierInName(IdentityStrategy):
    method = METHOD_ID_IN_NAME

    def evaluate(self, submission, candidate_id, store, policy):
        _, shop = _labels(submission)
        ident = normalize_label(candidate_id)
        if len(ident) < policy["id_in_name_min_length"] or len(shop) <= len(ident):
            return REJECT
        if _contains_word(shop, ident):
            return True, policy["id_in_name_confidence"]
        return REJECT


class LabelInName(IdentityStrategy):
    method = METHOD_LABEL_IN_NAME

    def evaluate(self, submission, candidate_id, store, policy):
        leader, _ = _labels(submission)
        name = _store_name(store)
        if len(leader) < policy["id_in_name_min_length"] or len(name) <= len(leader):
            return REJECT
        if _contains_word(name, leader):
            return True, policy["label_in_name_confidence"]
        return REJECT


DEFAULT_CASCADE = (
    ExactStoreName(),
    ExactIdentifier(),
    StrictPartialName(),
    IdentifierInName(),
    LabelInName(),
)


# ============================================================
# PUBLIC API
# ============================================================
def _lookup_store(candidate_id: str, store_catalog):
    if store_catalog is None:
        return None
    if isinstance(store_catalog, dict):
        return store_catalog.get(candidate_id)
    for s in store_catalog:
        if s.get("storeId", s.get("store_id")) == candidate_id:
            return s
    return None


def resolve_store_identity(submission: dict, candidate_store_id: str, store_catalog,
                           policy: dict = None, cascade=None, logger=None) -> dict:
    """Run the cascade for one (submission, candidate store) pair.

    store_catalog is either a storeId -> store mapping or a list of store records.
    Returns {"accepted", "confidence", "method"}.
    """
    policy = resolve_policy(policy)
    logger = logger or log
    threshold = policy["identity_accept_threshold"]
    store = _lookup_store(candidate_store_id, store_catalog)

    for strategy in (cascade or DEFAULT_CASCADE):
        matched, confidence = strategy.evaluate(submission, candidate_store_id, store, policy)
        if matched and confidence >= threshold:
            logger.debug("identity accept store=%s method=%s confidence=%.2f",
                         candidate_store_id, strategy.method, confidence)
            return {"accepted": True, "confidence": confidence, "method": strategy.method}
    return {"accepted": False, "confidence": 0.0, "method": METHOD_NONE}


def resolve(leader_label: str, shop_name_label: str, candidate_store_id: str,
            store_catalog, policy: dict = None) -> bool:
    """Boolean shortcut over resolve_store_identity."""
    submission = {"leaderLabel": leader_label, "shopNameLabel": shop_name_label}
    return resolve_store_identity(submission, candidate_store_id, store_catalog, policy)["accepted"]
