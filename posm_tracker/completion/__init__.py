"""
POSM Tracker — Completion Aggregator

For every displayed store×model assignment: find the validated submissions
that resolve to the store, union the selected POSM codes of every matching
model response across all of them, and compare with the required codes.

Per-assignment steps:
  1. Identity — submissions resolving to the assignment's store
  2. Validation — corrupt/incomplete submissions never contribute
  3. Cumulative union — selected codes across ALL matching submissions
  4. Counts — completed = |union|, required = index[model] (0 if absent)
  5. Anomaly cap — completed > required is logged and capped
  6. Rate — completed / required * 100, one decimal
  7. Status — no_displays / not_verified / complete / partial

Rollups (store, model, region, global) sum required and completed before
dividing: POSM-weighted, never an average of rates. Lists are ordered by
descending completion rate; ties keep input order.

Stateless: inputs are read once, nothing is mutated or cached between runs.
Per-assignment work fans out over a bounded thread pool; each worker writes
only its own result slot.
"""
import logging
import operator
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from functools import reduce

from posm_tracker.config import (
    STATUS_COMPLETE, STATUS_PARTIAL, STATUS_NOT_VERIFIED, STATUS_NO_DISPLAYS, STATUSES, UNKNOWN,
)
from posm_tracker.identity import resolve_store_identity
from posm_tracker.model_match import find_matching_responses
from posm_tracker.policy import resolve_policy
from posm_tracker.records import load_inputs, build_store_map, validate_submissions, latest_timestamp
from posm_tracker.requirements import build_requirement_index

log = logging.getLogger(__name__)


# ============================================================
# HELPERS
# ============================================================
def completion_status(completed: int, required: int) -> str:
    """Status derived purely from the two counts."""
    if required == 0:
        return STATUS_NO_DISPLAYS
    if completed == 0:
        return STATUS_NOT_VERIFIED
    if completed == required:
        return STATUS_COMPLETE
    return STATUS_PARTIAL


def completion_rate(completed: int, required: int) -> float:
    if required <= 0:
        return 0.0
    return round(completed / required * 100, 1)


def _by_rate(items: list) -> list:
    return sorted(items, key=lambda r: -r["completionRate"])


def _fan_out(fn, items: list, max_workers: int) -> list:
    """Apply fn to each item, preserving input order in the result."""
    if max_workers <= 1 or len(items) <= 1:
        return [fn(item) for item in items]
    results = [None] * len(items)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(fn, item): idx for idx, item in enumerate(items)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return results


def _selected_codes(responses: list) -> frozenset:
    return frozenset(sel["posmCode"] for r in responses for sel in r["posmSelections"] if sel["selected"])


# ============================================================
# PER-ASSIGNMENT EVALUATION
# ============================================================
def match_store_submissions(store_id: str, submissions: list, store_map: dict, policy: dict) -> list:
    """Validated submissions whose labels resolve to store_id, in input order."""
    return [s for s in submissions
            if resolve_store_identity(s, store_id, store_map, policy)["accepted"]]


def evaluate_assignment(display: dict, store_submissions: list, index, policy: dict,
                        logger=None) -> tuple:
    """Completion record for one assignment, plus its cap event (or None)."""
    logger = logger or log
    model = display["model"]

    contributions = []
    for s in store_submissions:
        responses = find_matching_responses(model, s, policy)
        if responses:
            contributions.append((s, _selected_codes(responses)))

    union = reduce(operator.or_, (codes for _, codes in contributions), frozenset())
    required_codes = index.required_codes(model)
    required = len(required_codes)
    completed = len(union)

    cap_event = None
    if completed > required:
        cap_event = {"storeId": display["storeId"], "model": model,
                     "completedCount": completed, "requiredCount": required,
                     "extraCodes": sorted(union - required_codes)}
        logger.warning("Completion cap: store=%s model=%s completed=%d required=%d extra=%s",
                       display["storeId"], model, completed, required, cap_event["extraCodes"])
        completed = required

    last_survey = latest_timestamp(s["submittedAt"] for s, _ in contributions)
    record = {
        "storeId": display["storeId"],
        "model": model,
        "requiredCount": required,
        "completedCount": completed,
        "completionRate": completion_rate(completed, required),
        "status": completion_status(completed, required),
        "contributingSubmissionCount": len(contributions),
        "contributingSubmissions": [s["ref"] for s, _ in contributions],
        "confirmedCodes": sorted(union),
        "capped": cap_event is not None,
        "lastSurveyAt": last_survey,
    }
    return record, cap_event


# ============================================================
# ROLLUPS
# ============================================================
def _store_info(store_id: str, store_map: dict) -> dict:
    info = store_map.get(store_id) or {}
    return {
        "storeName": info.get("storeName") or store_id,
        "region": info.get("region") or UNKNOWN,
        "province": info.get("province") or UNKNOWN,
        "channel": info.get("channel") or UNKNOWN,
    }


def rollup_stores(records: list, store_map: dict) -> list:
    stores = OrderedDict()
    for r in records:
        sid = r["storeId"]
        if sid not in stores:
            stores[sid] = {"storeId": sid, **_store_info(sid, store_map),
                           "totalDisplays": 0, "verifiedDisplays": 0,
                           "models": [], "verifiedModels": [],
                           "requiredCount": 0, "completedCount": 0,
                           "posmCompletionDetails": {}, "contributingSubmissions": [],
                           "lastSurveyAt": None}
        st = stores[sid]
        st["totalDisplays"] += 1
        st["requiredCount"] += r["requiredCount"]
        st["completedCount"] += r["completedCount"]
        if r["model"] not in st["models"]:
            st["models"].append(r["model"])
        st["posmCompletionDetails"][r["model"]] = {"required": r["requiredCount"],
                                                   "completed": r["completedCount"]}
        if r["contributingSubmissionCount"]:
            st["verifiedDisplays"] += 1
            if r["model"] not in st["verifiedModels"]:
                st["verifiedModels"].append(r["model"])
            for ref in r["contributingSubmissions"]:
                if ref not in st["contributingSubmissions"]:
                    st["contributingSubmissions"].append(ref)
        st["lastSurveyAt"] = latest_timestamp([st["lastSurveyAt"], r["lastSurveyAt"]])

    out = []
    for st in stores.values():
        st["modelCount"] = len(st["models"])
        st["verifiedModelCount"] = len(st["verifiedModels"])
        st["contributingSubmissionCount"] = len(st["contributingSubmissions"])
        st["completionRate"] = completion_rate(st["completedCount"], st["requiredCount"])
        st["status"] = completion_status(st["completedCount"], st["requiredCount"])
        out.append(st)
    return _by_rate(out)


def rollup_models(records: list) -> list:
    models = OrderedDict()
    for r in records:
        m = models.setdefault(r["model"], {"model": r["model"], "displayCount": 0, "stores": [],
                                           "verifiedDisplays": 0, "completeStores": 0,
                                           "requiredCount": 0, "completedCount": 0})
        m["displayCount"] += 1
        if r["storeId"] not in m["stores"]:
            m["stores"].append(r["storeId"])
        if r["contributingSubmissionCount"]:
            m["verifiedDisplays"] += 1
        if r["status"] == STATUS_COMPLETE:
            m["completeStores"] += 1
        m["requiredCount"] += r["requiredCount"]
        m["completedCount"] += r["completedCount"]

    for m in models.values():
        m["storeCount"] = len(m["stores"])
        m["completionRate"] = completion_rate(m["completedCount"], m["requiredCount"])
        m["status"] = completion_status(m["completedCount"], m["requiredCount"])
    return _by_rate(list(models.values()))


def rollup_regions(store_results: list) -> list:
    regions = OrderedDict()
    for st in store_results:
        g = regions.setdefault(st["region"], {"region": st["region"], "stores": [], "provinces": [],
                                              "requiredCount": 0, "completedCount": 0})
        g["stores"].append(st["storeId"])
        if st["province"] not in g["provinces"]:
            g["provinces"].append(st["province"])
        g["requiredCount"] += st["requiredCount"]
        g["completedCount"] += st["completedCount"]

    for g in regions.values():
        g["storeCount"] = len(g["stores"])
        g["provinceCount"] = len(g["provinces"])
        g["completionRate"] = completion_rate(g["completedCount"], g["requiredCount"])
        g["status"] = completion_status(g["completedCount"], g["requiredCount"])
    return _by_rate(list(regions.values()))


def rollup_global(records: list, store_results: list, cap_events: list, orphaned: list,
                  validation: dict, skipped: dict) -> dict:
    required = sum(st["requiredCount"] for st in store_results)
    completed = sum(st["completedCount"] for st in store_results)
    status_counts = {s: 0 for s in STATUSES}
    for st in store_results:
        status_counts[st["status"]] += 1
    return {
        "totalStores": len(store_results),
        "storesComplete": status_counts[STATUS_COMPLETE],
        "totalModels": len({r["model"] for r in records}),
        "totalDisplays": len(records),
        "totalRequired": required,
        "totalCompleted": completed,
        "overallCompletion": completion_rate(completed, required),
        "status": completion_status(completed, required),
        "statusCounts": status_counts,
        "capEvents": cap_events,
        "orphanedSubmissions": orphaned,
        "validation": validation,
        "skipped": skipped,
    }


# ============================================================
# PUBLIC API
# ============================================================
def compute_completion(display_assignments: list, submissions: list, posm_requirements: list,
                       store_catalog: list, policy: dict = None, logger=None) -> dict:
    """Full stateless recomputation of completion metrics.

    Returns {"records", "perStore", "perModel", "perRegion", "global"}; records
    holds one CompletionRecord per displayed store×model assignment.
    """
    logger = logger or log
    policy = resolve_policy(policy)
    inputs = load_inputs(display_assignments, submissions, posm_requirements, store_catalog)
    displays = inputs["displays"]
    store_map = build_store_map(inputs["stores"])
    index = build_requirement_index(inputs["requirements"])

    validated = validate_submissions(inputs["submissions"], policy["min_survey_quality"])
    logger.info("Survey validation: %d raw submissions -> %d validated",
                len(inputs["submissions"]), len(validated))
    if any(inputs["skipped"].values()):
        logger.info("Skipped input records: %s", inputs["skipped"])

    workers = policy["max_workers"]
    store_ids = list(OrderedDict.fromkeys(d["storeId"] for d in displays))
    matched = _fan_out(lambda sid: match_store_submissions(sid, validated, store_map, policy),
                       store_ids, workers)
    by_store = dict(zip(store_ids, matched))

    evaluated = _fan_out(lambda d: evaluate_assignment(d, by_store[d["storeId"]], index, policy, logger),
                         displays, workers)
    records = [rec for rec, _ in evaluated]
    cap_events = [cap for _, cap in evaluated if cap]

    matched_refs = {s["ref"] for subs in matched for s in subs}
    orphaned = [s["ref"] for s in validated if s["ref"] not in matched_refs]
    if orphaned:
        logger.info("%d validated submissions matched no display assignment", len(orphaned))

    store_results = rollup_stores(records, store_map)
    validation = {"raw": len(inputs["submissions"]), "validated": len(validated),
                  "dropped": len(inputs["submissions"]) - len(validated)}
    return {
        "records": _by_rate(records),
        "perStore": store_results,
        "perModel": rollup_models(records),
        "perRegion": rollup_regions(store_results),
        "global": rollup_global(records, store_results, cap_events, orphaned, validation, inputs["skipped"]),
    }
