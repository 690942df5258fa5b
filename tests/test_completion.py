"""
Tests for the completion aggregator: end-to-end scenarios, invariants and rollups.
"""

import copy
import json
import logging

import pytest

from posm_tracker.completion import (
    compute_completion, completion_status, completion_rate, evaluate_assignment,
)
from posm_tracker.config import STATUS_COMPLETE, STATUS_NO_DISPLAYS, STATUS_PARTIAL
from posm_tracker.requirements import build_requirement_index


def only_record(result, store_id="S1", model="M1"):
    found = [r for r in result["records"] if r["storeId"] == store_id and r["model"] == model]
    assert len(found) == 1
    return found[0]


# =============================================================================
# END-TO-END SCENARIOS
# =============================================================================

class TestScenarios:

    def test_single_partial_submission(self, single_display, requirements, stores, make_sub):
        subs = [make_sub("S1 Official", ["P1"], unselected=["P2"])]
        rec = only_record(compute_completion(single_display, subs, requirements, stores))
        assert rec["completedCount"] == 1
        assert rec["requiredCount"] == 2
        assert rec["completionRate"] == 50.0
        assert rec["status"] == STATUS_PARTIAL
        assert rec["contributingSubmissionCount"] == 1

    def test_two_submissions_complete_cumulatively(self, single_display, requirements, stores, make_sub):
        subs = [make_sub("S1 Official", ["P1"], "2026-03-01T09:00:00"),
                make_sub("S1 Official", ["P2"], "2026-03-05T09:00:00")]
        result = compute_completion(single_display, subs, requirements, stores)
        rec = only_record(result)
        assert rec["completedCount"] == 2
        assert rec["completionRate"] == 100.0
        assert rec["status"] == STATUS_COMPLETE
        assert rec["contributingSubmissionCount"] == 2
        assert rec["lastSurveyAt"] == "2026-03-05T09:00:00"

    def test_unknown_codes_are_capped_with_warning(self, single_display, requirements, stores, make_sub, caplog):
        subs = [make_sub("S1 Official", ["P1", "P2", "P3"])]
        with caplog.at_level(logging.WARNING, logger="posm_tracker.completion"):
            result = compute_completion(single_display, subs, requirements, stores)
        rec = only_record(result)
        assert rec["completedCount"] == 2
        assert rec["capped"] is True
        assert rec["completionRate"] == 100.0
        assert result["global"]["capEvents"] == [{"storeId": "S1", "model": "M1", "completedCount": 3,
                                                  "requiredCount": 2, "extraCodes": ["P3"]}]
        assert any("Completion cap" in r.getMessage() for r in caplog.records)

    def test_cumulative_union_of_overlapping_subsets(self, stores, make_sub):
        displays = [{"storeId": "S1", "model": "M1"}]
        reqs = [{"model": "M1", "posmCode": c} for c in "ABCD"]
        subs = [make_sub("S1 Official", ["A", "B"], "2026-03-01T09:00:00"),
                make_sub("S1 Official", ["B", "C"], "2026-03-02T09:00:00")]
        rec = only_record(compute_completion(displays, subs, reqs, stores))
        assert rec["completedCount"] == 3
        assert rec["confirmedCodes"] == ["A", "B", "C"]

    def test_model_without_requirements(self, stores, requirements, make_sub):
        displays = [{"storeId": "S1", "model": "M9"}]
        rec = only_record(compute_completion(displays, [make_sub("S1 Official", ["P1"], model="M9")],
                                             requirements, stores), model="M9")
        assert rec["requiredCount"] == 0
        assert rec["completedCount"] == 0
        assert rec["completionRate"] == 0.0
        assert rec["status"] == STATUS_NO_DISPLAYS

    def test_model_name_variants_contribute(self, single_display, requirements, stores, make_sub):
        rec = only_record(compute_completion(single_display, [make_sub("S1 Official", ["P1"], model="m-1")],
                                             requirements, stores))
        assert rec["completedCount"] == 1


# =============================================================================
# VALIDATION & DIRTY DATA
# =============================================================================

class TestDirtyData:

    def test_invalid_submissions_do_not_contribute(self, single_display, requirements, stores, make_sub):
        no_selections = make_sub("S1 Official", [])
        no_selections["modelResponses"][0]["posmSelections"] = []
        no_responses = {"leaderLabel": "T", "shopNameLabel": "S1 Official", "modelResponses": []}
        no_labels = make_sub("", ["P1", "P2"], leader="")
        result = compute_completion(single_display, [no_selections, no_responses, no_labels],
                                    requirements, stores)
        rec = only_record(result)
        assert rec["completedCount"] == 0
        assert rec["status"] == "not_verified"
        assert result["global"]["validation"] == {"raw": 3, "validated": 0, "dropped": 3}

    def test_malformed_records_are_skipped_and_counted(self, requirements, stores, make_sub):
        displays = [{"storeId": "S1", "model": "M1"}, {"model": "M1"},
                    {"storeId": "S2", "model": "M1", "isDisplayed": False}]
        result = compute_completion(displays, [make_sub("S1 Official", ["P1"]), "garbage"],
                                    requirements + [{"model": "M1"}], stores)
        skipped = result["global"]["skipped"]
        assert skipped["displays"] == 1
        assert skipped["notDisplayed"] == 1
        assert skipped["submissions"] == 1
        assert skipped["posmRequirements"] == 1
        assert [r["storeId"] for r in result["records"]] == ["S1"]

    def test_orphaned_submissions_are_reported(self, single_display, requirements, stores, make_sub):
        subs = [make_sub("S1 Official", ["P1"]), make_sub("Nowhere Mart", ["P1"], sub_id="orphan-1")]
        result = compute_completion(single_display, subs, requirements, stores)
        assert result["global"]["orphanedSubmissions"] == ["orphan-1"]

    def test_numbered_sibling_stores_stay_separate(self, requirements, stores, make_sub):
        displays = [{"storeId": "S2", "model": "M1"}, {"storeId": "S20", "model": "M1"}]
        result = compute_completion(displays, [make_sub("Store A 2", ["P1", "P2"])], requirements, stores)
        assert only_record(result, "S2")["completedCount"] == 2
        assert only_record(result, "S20")["completedCount"] == 0

    def test_inputs_are_not_mutated(self, single_display, requirements, stores, make_sub):
        subs = [make_sub("S1 Official", ["P1", "P2", "P3"])]
        before = copy.deepcopy((single_display, subs, requirements, stores))
        compute_completion(single_display, subs, requirements, stores)
        assert (single_display, subs, requirements, stores) == before


# =============================================================================
# INVARIANTS
# =============================================================================

@pytest.fixture
def mixed_result(requirements, stores, make_sub):
    displays = [
        {"storeId": "S1", "model": "M1"}, {"storeId": "S1", "model": "M2"},
        {"storeId": "S2", "model": "M1"}, {"storeId": "S20", "model": "M2"},
        {"storeId": "S20", "model": "M9"}, {"storeId": "S404", "model": "M1"},
    ]
    subs = [
        make_sub("S1 Official", ["P1"], "2026-03-01T09:00:00"),
        make_sub("S1 Official", ["Q1", "Q2", "Q3", "Q4"], "2026-03-02T09:00:00", model="M2"),
        make_sub("Store A 2", ["P1", "P2", "X9"], "2026-03-03T09:00:00"),
        make_sub("Store A 20", ["Q1"], "2026-03-04T09:00:00", model="M2"),
    ]
    return compute_completion(displays, subs, requirements, stores)


class TestInvariants:

    def test_cap_and_rate_bounds(self, mixed_result):
        for rec in mixed_result["records"]:
            assert 0 <= rec["completedCount"] <= rec["requiredCount"]
            assert 0.0 <= rec["completionRate"] <= 100.0

    def test_status_consistency(self, mixed_result):
        for rec in mixed_result["records"] + mixed_result["perStore"]:
            req, done = rec["requiredCount"], rec["completedCount"]
            assert (rec["status"] == STATUS_COMPLETE) == (done == req and req > 0)
            assert (rec["status"] == STATUS_NO_DISPLAYS) == (req == 0)

    def test_sorted_by_descending_rate(self, mixed_result):
        for key in ("records", "perStore", "perModel", "perRegion"):
            rates = [r["completionRate"] for r in mixed_result[key]]
            assert rates == sorted(rates, reverse=True)

    def test_idempotent_output(self, requirements, stores, make_sub):
        displays = [{"storeId": "S1", "model": "M1"}, {"storeId": "S2", "model": "M1"}]
        subs = [make_sub("S1 Official", ["P1"]), make_sub("Store A 2", ["P2"])]
        first = json.dumps(compute_completion(displays, subs, requirements, stores), sort_keys=True)
        second = json.dumps(compute_completion(displays, subs, requirements, stores), sort_keys=True)
        assert first == second

    def test_threaded_matches_inline(self, requirements, stores, make_sub):
        displays = [{"storeId": sid, "model": m} for sid in ("S1", "S2", "S20") for m in ("M1", "M2")]
        subs = [make_sub("S1 Official", ["P1"]), make_sub("Store A 20", ["Q2", "Q3"], model="M2")]
        inline = compute_completion(displays, subs, requirements, stores, policy={"max_workers": 1})
        threaded = compute_completion(displays, subs, requirements, stores, policy={"max_workers": 8})
        assert json.dumps(inline, sort_keys=True) == json.dumps(threaded, sort_keys=True)


# =============================================================================
# ROLLUPS
# =============================================================================

class TestRollups:

    def test_store_rate_is_posm_weighted(self, mixed_result):
        s1 = next(s for s in mixed_result["perStore"] if s["storeId"] == "S1")
        assert s1["requiredCount"] == 6
        assert s1["completedCount"] == 5
        assert s1["completionRate"] == 83.3
        assert s1["posmCompletionDetails"] == {"M1": {"required": 2, "completed": 1},
                                               "M2": {"required": 4, "completed": 4}}
        assert s1["verifiedModels"] == ["M1", "M2"]
        assert s1["contributingSubmissionCount"] == 2

    def test_unknown_catalog_store(self, mixed_result):
        s404 = next(s for s in mixed_result["perStore"] if s["storeId"] == "S404")
        assert s404["storeName"] == "S404"
        assert s404["region"] == "Unknown"
        assert s404["status"] == "not_verified"

    def test_model_rollup(self, mixed_result):
        m1 = next(m for m in mixed_result["perModel"] if m["model"] == "M1")
        assert m1["displayCount"] == 3
        assert m1["storeCount"] == 3
        assert m1["verifiedDisplays"] == 2
        assert m1["completeStores"] == 1
        assert (m1["requiredCount"], m1["completedCount"]) == (6, 3)
        assert m1["completionRate"] == 50.0

    def test_region_rollup(self, mixed_result):
        regions = {r["region"]: r for r in mixed_result["perRegion"]}
        assert set(regions) == {"North", "South", "Unknown"}
        assert regions["North"]["storeCount"] == 2
        assert (regions["North"]["requiredCount"], regions["North"]["completedCount"]) == (8, 7)
        assert regions["South"]["completionRate"] == 25.0

    def test_global_summary(self, mixed_result):
        g = mixed_result["global"]
        assert g["totalStores"] == 4
        assert g["totalModels"] == 3
        assert g["totalDisplays"] == 6
        assert (g["totalRequired"], g["totalCompleted"]) == (14, 8)
        assert g["overallCompletion"] == 57.1
        assert g["statusCounts"] == {"complete": 1, "partial": 2, "not_verified": 1, "no_displays": 0}
        assert len(g["capEvents"]) == 1


# =============================================================================
# HELPERS
# =============================================================================

def test_status_and_rate_helpers():
    assert completion_status(0, 0) == "no_displays"
    assert completion_status(0, 3) == "not_verified"
    assert completion_status(3, 3) == "complete"
    assert completion_status(1, 3) == "partial"
    assert completion_rate(1, 3) == 33.3
    assert completion_rate(5, 0) == 0.0


def test_evaluate_assignment_directly(requirements):
    index = build_requirement_index(requirements)
    sub = {"ref": "x", "submittedAt": None, "modelResponses": [
        {"model": "M1", "posmSelections": [{"posmCode": "P1", "selected": True},
                                           {"posmCode": "P2", "selected": False}]}]}
    record, cap = evaluate_assignment({"storeId": "S1", "model": "M1"}, [sub], index,
                                      {"model_jaccard_threshold": 0.8})
    assert cap is None
    assert record["confirmedCodes"] == ["P1"]
    assert record["contributingSubmissions"] == ["x"]


def test_last_survey_compares_instants_across_offsets(single_display, requirements, stores, make_sub):
    """01:00+07:00 is 18:00 UTC the day before, earlier than 20:00 UTC."""
    subs = [make_sub("S1 Official", ["P1"], "2026-03-05T01:00:00+07:00"),
            make_sub("S1 Official", ["P2"], "2026-03-04T20:00:00+00:00")]
    result = compute_completion(single_display, subs, requirements, stores)
    assert only_record(result)["lastSurveyAt"] == "2026-03-04T20:00:00+00:00"
    assert result["perStore"][0]["lastSurveyAt"] == "2026-03-04T20:00:00+00:00"
