"""
Pytest fixtures for the reconciliation engine and API tests.

Catalog fixtures mirror the shapes the catalog-management side exports.
"""

import pytest

from posm_tracker.policy import reset_policy


# =============================================================================
# POLICY ISOLATION
# =============================================================================

@pytest.fixture(autouse=True)
def _fresh_policy():
    """Every test starts from (and leaves behind) the default policy."""
    reset_policy()
    yield
    reset_policy()


# =============================================================================
# BUILDERS
# =============================================================================

def make_submission(shop, codes, submitted_at="2026-03-01T09:00:00", leader="Team A",
                    model="M1", unselected=(), sub_id=None, extra_responses=()):
    """Survey submission with one model response selecting `codes`."""
    selections = [{"posmCode": c, "selected": True} for c in codes]
    selections += [{"posmCode": c, "selected": False} for c in unselected]
    sub = {
        "leaderLabel": leader,
        "shopNameLabel": shop,
        "submittedAt": submitted_at,
        "modelResponses": [{"model": model, "posmSelections": selections}, *extra_responses],
    }
    if sub_id:
        sub["id"] = sub_id
    return sub


# =============================================================================
# SAMPLE CATALOGS
# =============================================================================

@pytest.fixture
def stores():
    return [
        {"storeId": "S1", "storeName": "S1 Official", "region": "North", "province": "Hanoi", "channel": "TGDD"},
        {"storeId": "S2", "storeName": "Store A 2", "region": "North", "province": "Hanoi", "channel": "FPT"},
        {"storeId": "S20", "storeName": "Store A 20", "region": "South", "province": "HCMC", "channel": "FPT"},
    ]


@pytest.fixture
def requirements():
    return [
        {"model": "M1", "posmCode": "P1", "posmName": "Poster"},
        {"model": "M1", "posmCode": "P2", "posmName": "Standee"},
        {"model": "M2", "posmCode": "Q1", "posmName": "Wobbler"},
        {"model": "M2", "posmCode": "Q2", "posmName": "Shelf talker"},
        {"model": "M2", "posmCode": "Q3", "posmName": "Price tag"},
        {"model": "M2", "posmCode": "Q4", "posmName": "Backdrop"},
    ]


@pytest.fixture
def single_display():
    return [{"storeId": "S1", "model": "M1", "isDisplayed": True, "updatedAt": "2026-03-01T00:00:00"}]


@pytest.fixture
def make_sub():
    return make_submission
