"""
POSM Tracker — Progress Views

Dashboard shaping layered on top of compute_completion output: overview
tiles, per-POSM-code progress, submission timeline, and the store × model
deployment matrix with search, sorting and pagination. Pure functions; the
Aggregator contract does not depend on anything here.
"""
from collections import OrderedDict
from datetime import datetime, timedelta, timezone

from posm_tracker.config import (
    CELL_COMPLETE, CELL_PARTIAL, CELL_NONE, CELL_NOT_APPLICABLE, STATUSES, RECENT_DISPLAY_DAYS,
)
from posm_tracker.records import RecordError, coerce_display, coerce_submission, parse_timestamp

MAX_PAGE_LIMIT = 100

# Scalar matrix columns; anything else (posmStatus, unknown names) sorts by store name
MATRIX_SORT_FIELDS = {"storeName", "storeId", "region", "province", "channel",
                      "totalModels", "completionRate", "status"}


# ============================================================
# PAGINATION
# ============================================================
def paginate(items: list, page=1, limit=20) -> tuple:
    """Slice items; returns (page_items, pagination_meta). page >= 1, 1 <= limit <= 100."""
    try:
        page = max(1, int(page))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = min(MAX_PAGE_LIMIT, max(1, int(limit)))
    except (TypeError, ValueError):
        limit = 20
    total = len(items)
    total_pages = -(-total // limit)
    start = (page - 1) * limit
    return items[start:start + limit], {
        "currentPage": page, "totalPages": total_pages, "totalCount": total, "limit": limit,
        "hasNextPage": page < total_pages, "hasPrevPage": page > 1,
    }


# ============================================================
# OVERVIEW
# ============================================================
def progress_overview(result: dict) -> dict:
    g = result["global"]
    return {
        "totalStores": g["totalStores"],
        "storesWithCompletePosm": sum(1 for s in result["perStore"] if s["completionRate"] >= 100),
        "totalModels": g["totalModels"],
        "totalPosm": g["totalRequired"],
        "overallCompletion": g["overallCompletion"],
    }


# ============================================================
# PER-POSM-CODE PROGRESS
# ============================================================
def posm_progress(result: dict, requirement_index) -> list:
    """Per POSM code: stores requiring it (via a displayed model) vs stores confirming it."""
    names = requirement_index.posm_names()
    stats = OrderedDict()
    for rec in result["records"]:
        required = requirement_index.required_codes(rec["model"])
        confirmed = set(rec["confirmedCodes"])
        for code in sorted(required):
            st = stats.setdefault(code, {"type": code, "posmName": names.get(code, code),
                                         "required": set(), "completed": set()})
            st["required"].add(rec["storeId"])
            if code in confirmed:
                st["completed"].add(rec["storeId"])

    out = []
    for st in stats.values():
        req, done = len(st["required"]), len(st["completed"])
        out.append({"type": st["type"], "posmName": st["posmName"],
                    "requiredStores": req, "completedStores": done,
                    "completion": round(done / req * 100, 1) if req else 0.0})
    return sorted(out, key=lambda r: -r["completion"])


# ============================================================
# TIMELINE
# ============================================================
def progress_timeline(submissions: list, days: int = 30, as_of: datetime = None) -> list:
    """Daily submission counts over the window ending at as_of, with cumulative totals."""
    as_of = as_of or datetime.now(timezone.utc)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    start = as_of - timedelta(days=days)

    daily = {}
    for i, raw in enumerate(submissions or []):
        try:
            s = coerce_submission(raw, i)
        except RecordError:
            continue
        ts = parse_timestamp(s["submittedAt"])
        if ts is None or ts < start or ts > as_of:
            continue
        day = daily.setdefault(ts.date().isoformat(), {"surveys": 0, "models": 0, "stores": set()})
        day["surveys"] += 1
        day["models"] += len(s["modelResponses"])
        day["stores"].add(s["leaderLabel"] or s["shopNameLabel"])

    timeline, surveys, models, stores = [], 0, 0, set()
    for date in sorted(daily):
        d = daily[date]
        surveys += d["surveys"]
        models += d["models"]
        stores |= d["stores"]
        timeline.append({"date": date, "surveys": d["surveys"], "models": d["models"],
                         "storeCount": len(d["stores"]), "stores": sorted(d["stores"]),
                         "cumulativeSurveys": surveys, "cumulativeModels": models,
                         "cumulativeStores": len(stores)})
    return timeline


# ============================================================
# DEPLOYMENT MATRIX
# ============================================================
def matrix_cell_status(completed: int, required: int) -> str:
    if required == 0:
        return CELL_NOT_APPLICABLE
    if completed == 0:
        return CELL_NONE
    if completed == required:
        return CELL_COMPLETE
    return CELL_PARTIAL


def _matrix_row(store: dict, models: list) -> dict:
    cells = {}
    for model in models:
        details = store["posmCompletionDetails"].get(model)
        if details is None:
            cells[model] = {"completed": 0, "required": 0, "status": CELL_NOT_APPLICABLE, "percentage": 0}
            continue
        done, req = details["completed"], details["required"]
        cells[model] = {"completed": done, "required": req, "status": matrix_cell_status(done, req),
                        "percentage": round(done / req * 100) if req else 0}
    return {"storeId": store["storeId"], "storeName": store["storeName"], "region": store["region"],
            "province": store["province"], "channel": store["channel"],
            "totalModels": store["modelCount"], "completionRate": store["completionRate"],
            "status": store["status"], "posmStatus": cells}


def posm_matrix(result: dict, search: str = "", sort_by: str = "storeName", sort_order: str = "asc",
                page=1, limit=20) -> dict:
    models = sorted({r["model"] for r in result["records"]})
    rows = [_matrix_row(st, models) for st in result["perStore"]]

    filtered = rows
    if search:
        needle = search.lower()
        filtered = [r for r in rows if any(needle in str(r[k]).lower()
                                           for k in ("storeName", "storeId", "region", "province"))]

    if sort_by not in MATRIX_SORT_FIELDS:
        sort_by = "storeName"

    def sort_key(row):
        value = row[sort_by]
        return value.lower() if isinstance(value, str) else (value if value is not None else 0)

    filtered = sorted(filtered, key=sort_key, reverse=(sort_order == "desc"))

    page_rows, pagination = paginate(filtered, page, limit)
    summary = {
        "totalStores": len(rows),
        "totalModels": len(models),
        "averageCompletion": round(sum(r["completionRate"] for r in rows) / len(rows), 1) if rows else 0.0,
        "statusCounts": {s: sum(1 for r in rows if r["status"] == s) for s in STATUSES},
    }
    return {"matrix": page_rows, "models": models, "summary": summary, "pagination": pagination}


# ============================================================
# RECENT ASSIGNMENTS
# ============================================================
def filter_recent_assignments(assignments: list, as_of: datetime = None,
                              days_back: int = RECENT_DISPLAY_DAYS) -> list:
    """Assignments updated within days_back of as_of. Undated records are kept."""
    as_of = as_of or datetime.now(timezone.utc)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    cutoff = as_of - timedelta(days=days_back)
    out = []
    for raw in assignments or []:
        try:
            updated = parse_timestamp(coerce_display(raw)["updatedAt"])
        except RecordError:
            continue
        if updated is None or updated >= cutoff:
            out.append(raw)
    return out
