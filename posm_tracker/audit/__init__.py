"""
POSM Tracker — Anomaly & Audit Reporter

Diagnostic post-processing of Aggregator output. Never alters the results it
reads; it only annotates them.

Store findings:
  1. SINGLE_SUBMISSION_FULL_COMPLETION — 100% from exactly one validated,
     single-response submission (unverified by repetition)        → medium
  2. MISSING_EVIDENCE_TRAIL — positive completion with no contributing
     submission metadata                                            → low
  3. COMPLETED_EXCEEDS_REQUIRED — completed > required in the result → low
  4. NO_DISPLAY_ASSIGNMENT — store reported without a displayed
     assignment on record                                           → low
  5. COMPLETION_CAPPED — at least one model needed the anomaly cap (informational;
     a finding carrying only this is left out of findingCount and the review share)

Global recommendations:
  - POSSIBLE_OVER_MATCHING   — more than half the stores at 100%
  - REQUIREMENT_CATALOG_DRIFT — any completion cap fired
  - SYSTEMIC_REVIEW          — more than 10% of stores carry non-informational findings
"""
import logging

import numpy as np

from posm_tracker.config import CONFIDENCE_HIGH, CONFIDENCE_MEDIUM, CONFIDENCE_LOW, STATUSES
from posm_tracker.policy import resolve_policy
from posm_tracker.records import RecordError, coerce_display, coerce_submission, validate_submissions

log = logging.getLogger(__name__)

_RANK = {CONFIDENCE_HIGH: 0, CONFIDENCE_MEDIUM: 1, CONFIDENCE_LOW: 2}


def _downgrade(current: str, level: str) -> str:
    return level if _RANK[level] > _RANK[current] else current


# ============================================================
# DISTRIBUTION
# ============================================================
def rate_distribution(rates: list, bucket_pct: int = 10) -> dict:
    """Bucket completion rates into fixed-width percentage bins; 100 falls in the last bin."""
    edges = np.arange(0, 100 + bucket_pct, bucket_pct)
    counts, _ = np.histogram(np.clip(np.asarray(rates, dtype=float), 0, 100), bins=edges)
    return {f"{int(lo)}-{int(hi)}": int(c) for lo, hi, c in zip(edges[:-1], edges[1:], counts)}


def status_histogram(store_results: list) -> dict:
    counts = {s: 0 for s in STATUSES}
    for st in store_results:
        counts[st.get("status")] = counts.get(st.get("status"), 0) + 1
    return counts


# ============================================================
# STORE FINDINGS
# ============================================================
def _submission_index(submissions: list, policy: dict) -> dict:
    canon = []
    for i, raw in enumerate(submissions or []):
        try:
            canon.append(coerce_submission(raw, i))
        except RecordError:
            continue
    return {s["ref"]: s for s in validate_submissions(canon, policy["min_survey_quality"])}


def _displayed_store_ids(display_assignments: list) -> set:
    ids = set()
    for raw in display_assignments or []:
        try:
            d = coerce_display(raw)
        except RecordError:
            continue
        if d["isDisplayed"]:
            ids.add(d["storeId"])
    return ids


def audit_store(store: dict, validated: dict, displayed_ids: set, capped_models: list) -> dict:
    """AuditFinding for one store result, or None when nothing is suspicious."""
    confidence, issues = CONFIDENCE_HIGH, []
    refs = store.get("contributingSubmissions") or []
    rate = store.get("completionRate", 0) or 0

    if rate >= 100 and len(refs) == 1:
        sub = validated.get(refs[0])
        if sub is not None and len(sub["modelResponses"]) == 1:
            confidence = _downgrade(confidence, CONFIDENCE_MEDIUM)
            issues.append("SINGLE_SUBMISSION_FULL_COMPLETION: 100% completion from one "
                          f"single-response submission ({refs[0]})")
    if rate > 0 and not refs:
        confidence = _downgrade(confidence, CONFIDENCE_LOW)
        issues.append("MISSING_EVIDENCE_TRAIL: positive completion without contributing submissions")
    if store.get("completedCount", 0) > store.get("requiredCount", 0):
        confidence = _downgrade(confidence, CONFIDENCE_LOW)
        issues.append(f"COMPLETED_EXCEEDS_REQUIRED: {store.get('completedCount')} completed "
                      f"vs {store.get('requiredCount')} required")
    if displayed_ids is not None and store.get("storeId") not in displayed_ids:
        confidence = _downgrade(confidence, CONFIDENCE_LOW)
        issues.append("NO_DISPLAY_ASSIGNMENT: store has no displayed assignment on record")
    informational = not issues
    if capped_models:
        issues.append(f"COMPLETION_CAPPED: {', '.join(capped_models)}")

    if not issues:
        return None
    return {"storeId": store.get("storeId"), "confidence": confidence, "issues": issues,
            "informational": informational}


# ============================================================
# PUBLIC API
# ============================================================
def audit_completion(completion_results: dict, display_assignments: list, submissions: list,
                     policy: dict = None, logger=None) -> dict:
    """Build {summary, storeFindings, recommendations} from compute_completion output."""
    logger = logger or log
    policy = resolve_policy(policy)
    stores = completion_results.get("perStore", [])
    cap_events = completion_results.get("global", {}).get("capEvents", [])

    validated = _submission_index(submissions, policy)
    displayed_ids = _displayed_store_ids(display_assignments)
    capped = {}
    for ev in cap_events:
        capped.setdefault(ev["storeId"], []).append(ev["model"])

    findings = []
    for st in stores:
        finding = audit_store(st, validated, displayed_ids, capped.get(st.get("storeId"), []))
        if finding:
            findings.append(finding)

    flagged = [f for f in findings if not f["informational"]]

    rates = [st.get("completionRate", 0) or 0 for st in stores]
    full = sum(1 for r in rates if r >= 100)
    total = len(stores)
    summary = {
        "totalStores": total,
        "distribution": rate_distribution(rates, policy["distribution_bucket_pct"]),
        "statusCounts": status_histogram(stores),
        "storesAtFullCompletion": full,
        "capEventCount": len(cap_events),
        "findingCount": len(flagged),
        "informationalCount": len(findings) - len(flagged),
        "averageCompletion": round(sum(rates) / total, 1) if total else 0.0,
    }

    recommendations = []
    if total and full / total > policy["audit_full_completion_share"]:
        recommendations.append({
            "type": "POSSIBLE_OVER_MATCHING", "severity": "medium",
            "message": f"{full}/{total} stores report 100% completion; review identity matches for over-matching"})
    if cap_events:
        recommendations.append({
            "type": "REQUIREMENT_CATALOG_DRIFT", "severity": "medium",
            "message": f"{len(cap_events)} assignments confirmed more POSM codes than required; "
                       "check the requirement catalog against survey forms"})
    if total and len(flagged) / total > policy["audit_findings_share"]:
        recommendations.append({
            "type": "SYSTEMIC_REVIEW", "severity": "high",
            "message": f"{len(flagged)}/{total} stores carry audit findings; systemic review warranted"})

    logger.info("Audit: %d stores, %d findings, %d recommendations", total, len(flagged), len(recommendations))
    return {"summary": summary, "storeFindings": findings, "recommendations": recommendations}
