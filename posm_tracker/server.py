"""
POSM Tracker — Completion & Audit API
Thin FastAPI routing layer over the reconciliation engine. POST endpoints take
the catalogs in the request body; GET progress endpoints read the snapshot
store fresh on every request.
"""

import os
from datetime import datetime

from fastapi import FastAPI, HTTPException, Body
from fastapi.middleware.cors import CORSMiddleware

from posm_tracker import __version__
from posm_tracker.audit import audit_completion
from posm_tracker.completion import compute_completion
from posm_tracker.config import configure_logging
from posm_tracker.db import load_snapshot
from posm_tracker.identity import resolve_store_identity
from posm_tracker.policy import get_policy, update_policy, apply_preset, reset_policy, POLICY_PRESETS
from posm_tracker.progress import (
    paginate, progress_overview, posm_progress, progress_timeline, posm_matrix, filter_recent_assignments,
)
from posm_tracker.records import load_inputs
from posm_tracker.requirements import build_requirement_index

app = FastAPI(title="POSM Tracker", version=__version__)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


# ============================================================
# REQUEST HELPERS
# ============================================================
def _collection(payload: dict, *keys) -> list:
    for k in keys:
        if k in payload:
            value = payload[k]
            if value is None:
                return []
            if not isinstance(value, list):
                raise HTTPException(400, f"'{k}' must be a list")
            return value
    return []


def _catalogs(payload: dict) -> tuple:
    return (_collection(payload, "displays", "displayAssignments"),
            _collection(payload, "submissions"),
            _collection(payload, "posmRequirements", "posm_requirements"),
            _collection(payload, "stores", "storeCatalog"))


def _policy_overrides(payload: dict):
    policy = payload.get("policy")
    if policy is not None and not isinstance(policy, dict):
        raise HTTPException(400, "'policy' must be an object")
    return policy


def _snapshot_completion(recent_days: int = None) -> tuple:
    snap = load_snapshot()
    displays = snap["displays"]
    if recent_days:
        displays = filter_recent_assignments(displays, days_back=recent_days)
    result = compute_completion(displays, snap["submissions"], snap["posm_requirements"], snap["stores"])
    return snap, result


# ============================================================
# HEALTH & POLICY
# ============================================================
@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__, "time": datetime.now().isoformat()}


@app.get("/api/policy")
async def read_policy():
    return {"policy": get_policy(), "presets": {k: v["name"] for k, v in POLICY_PRESETS.items()}}


@app.post("/api/policy")
async def write_policy(updates: dict = Body(...)):
    return {"success": True, "policy": update_policy(updates)}


@app.post("/api/policy/reset")
async def policy_reset():
    reset_policy()
    return {"success": True, "policy": get_policy()}


@app.post("/api/policy/presets/{name}")
async def policy_preset(name: str):
    if name not in POLICY_PRESETS:
        raise HTTPException(404, f"Unknown preset '{name}'")
    return {"success": True, "preset": name, "policy": apply_preset(name)}


# ============================================================
# ENGINE
# ============================================================
@app.post("/api/identity/resolve")
async def identity_resolve(payload: dict = Body(...)):
    submission = payload.get("submission")
    candidate = payload.get("candidateStoreId")
    if not isinstance(submission, dict) or not candidate:
        raise HTTPException(400, "'submission' object and 'candidateStoreId' are required")
    stores = load_inputs([], [], [], _collection(payload, "stores", "storeCatalog"))["stores"]
    return resolve_store_identity(submission, str(candidate), {s["storeId"]: s for s in stores},
                                  _policy_overrides(payload))


@app.post("/api/completion")
async def completion(payload: dict = Body(...)):
    displays, submissions, requirements, stores = _catalogs(payload)
    return {"success": True, "data": compute_completion(displays, submissions, requirements, stores,
                                                        policy=_policy_overrides(payload))}


@app.post("/api/audit")
async def audit(payload: dict = Body(...)):
    displays, submissions, requirements, stores = _catalogs(payload)
    policy = _policy_overrides(payload)
    result = payload.get("completion")
    if result is None:
        result = compute_completion(displays, submissions, requirements, stores, policy=policy)
    elif not isinstance(result, dict):
        raise HTTPException(400, "'completion' must be an object")
    return {"success": True, "data": audit_completion(result, displays, submissions, policy=policy)}


# ============================================================
# PROGRESS (snapshot-backed)
# ============================================================
@app.get("/api/progress/overview")
async def overview():
    _, result = _snapshot_completion()
    return {"success": True, "data": {"overview": progress_overview(result)}}


@app.get("/api/progress/stores")
async def store_progress(page: int = 1, limit: int = 20, recent_days: int = None):
    _, result = _snapshot_completion(recent_days)
    items, pagination = paginate(result["perStore"], page, limit)
    return {"success": True, "data": items, "pagination": pagination}


@app.get("/api/progress/models")
async def model_progress(recent_days: int = None):
    _, result = _snapshot_completion(recent_days)
    return {"success": True, "data": result["perModel"]}


@app.get("/api/progress/regions")
async def region_progress(recent_days: int = None):
    _, result = _snapshot_completion(recent_days)
    return {"success": True, "data": result["perRegion"]}


@app.get("/api/progress/posm")
async def posm_type_progress():
    snap, result = _snapshot_completion()
    index = build_requirement_index(load_inputs([], [], snap["posm_requirements"], [])["requirements"])
    return {"success": True, "data": posm_progress(result, index)}


@app.get("/api/progress/timeline")
async def timeline(days: int = 30):
    snap = load_snapshot()
    return {"success": True, "data": progress_timeline(snap["submissions"], days)}


@app.get("/api/progress/matrix")
async def matrix(page: int = 1, limit: int = 20, search: str = "", sortBy: str = "storeName",
                 sortOrder: str = "asc"):
    _, result = _snapshot_completion()
    return {"success": True, "data": posm_matrix(result, search, sortBy, sortOrder, page, limit)}


if __name__ == "__main__":
    import uvicorn
    configure_logging()
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
