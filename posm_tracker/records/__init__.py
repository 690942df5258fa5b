"""
POSM Tracker — Input Records Module

Coerces raw catalog and submission records (camelCase API shapes or the
snake_case storage names) into canonical dicts, and scores survey quality.

Malformed records are skipped and counted, never fatal:
  displays           — missing storeId or model
  stores             — missing storeId
  posm_requirements  — missing model or posmCode
  submissions        — responses not a list, or a response without a model

Survey quality (0-100):
  1. Has model responses        +30
  2. Any POSM selections        +40
  3. Shop name label present    +15
  4. Leader label present       +10
  5. Submission timestamp       +5
"""

from datetime import datetime, timezone

from posm_tracker.config import UNKNOWN


class RecordError(ValueError):
    """Raised when a raw record cannot be coerced to its canonical shape."""


def _pick(raw: dict, *keys, default=None):
    for k in keys:
        if k in raw and raw[k] is not None:
            return raw[k]
    return default


def _str(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _timestamp(value):
    """Return an ISO-8601 string for datetimes/strings, None when absent or unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).isoformat()
    except ValueError:
        return None


def _flag(value, default: bool) -> bool:
    """Boolean from a bool, number or "true"/"false"-style string."""
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes", "y"):
            return True
        if text in ("false", "0", "no", "n", ""):
            return False
        return default
    return bool(value)


def parse_timestamp(value):
    """Timezone-aware datetime for a canonical ISO string; naive values are taken as UTC."""
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def latest_timestamp(values):
    """The latest instant among ISO strings with mixed offsets, as given; None when empty."""
    dated = [v for v in values if v]
    return max(dated, key=parse_timestamp) if dated else None


# ============================================================
# CATALOG RECORDS
# ============================================================
def coerce_display(raw) -> dict:
    if not isinstance(raw, dict):
        raise RecordError("display record is not an object")
    store_id = _str(_pick(raw, "storeId", "store_id"))
    model = _str(_pick(raw, "model"))
    if not store_id or not model:
        raise RecordError("display record requires storeId and model")
    return {
        "storeId": store_id,
        "model": model,
        "isDisplayed": _flag(_pick(raw, "isDisplayed", "is_displayed"), True),
        "updatedAt": _timestamp(_pick(raw, "updatedAt", "updated_at", "createdAt")),
    }


def coerce_store(raw) -> dict:
    if not isinstance(raw, dict):
        raise RecordError("store record is not an object")
    store_id = _str(_pick(raw, "storeId", "store_id"))
    if not store_id:
        raise RecordError("store record requires storeId")
    return {
        "storeId": store_id,
        "storeName": _str(_pick(raw, "storeName", "store_name")),
        "region": _str(_pick(raw, "region")) or UNKNOWN,
        "province": _str(_pick(raw, "province")) or UNKNOWN,
        "channel": _str(_pick(raw, "channel")) or UNKNOWN,
    }


def coerce_requirement(raw) -> dict:
    if not isinstance(raw, dict):
        raise RecordError("requirement record is not an object")
    model = _str(_pick(raw, "model"))
    code = _str(_pick(raw, "posmCode", "posm"))
    if not model or not code:
        raise RecordError("requirement record requires model and posmCode")
    return {"model": model, "posmCode": code, "posmName": _str(_pick(raw, "posmName", "posm_name")) or code}


# ============================================================
# SURVEY SUBMISSIONS
# ============================================================
def _coerce_selection(raw) -> dict:
    if not isinstance(raw, dict):
        return None
    code = _str(_pick(raw, "posmCode", "posm_id", "posm"))
    if not code:
        return None
    return {"posmCode": code, "selected": _flag(raw.get("selected"), False)}


def _coerce_response(raw) -> dict:
    if not isinstance(raw, dict):
        raise RecordError("model response is not an object")
    model = _str(_pick(raw, "model"))
    if not model:
        raise RecordError("model response requires model")
    selections = _pick(raw, "posmSelections", "posm_selections", default=[])
    if not isinstance(selections, list):
        raise RecordError("posmSelections must be a list")
    return {"model": model, "posmSelections": [s for s in map(_coerce_selection, selections) if s]}


def coerce_submission(raw, index: int = 0) -> dict:
    if not isinstance(raw, dict):
        raise RecordError("submission is not an object")
    responses = _pick(raw, "modelResponses", "responses", default=[])
    if not isinstance(responses, list):
        raise RecordError("modelResponses must be a list")
    sub_id = _str(_pick(raw, "id", "_id"))
    return {
        "ref": sub_id or f"submission-{index}",
        "leaderLabel": _str(_pick(raw, "leaderLabel", "leader")),
        "shopNameLabel": _str(_pick(raw, "shopNameLabel", "shopName")),
        "submittedAt": _timestamp(_pick(raw, "submittedAt", "createdAt")),
        "modelResponses": [_coerce_response(r) for r in responses],
    }


def _coerce_all(raws, coerce, skipped: dict, key: str, indexed: bool = False) -> list:
    out = []
    for i, raw in enumerate(raws or []):
        try:
            out.append(coerce(raw, i) if indexed else coerce(raw))
        except RecordError:
            skipped[key] = skipped.get(key, 0) + 1
    return out


def load_inputs(displays, submissions, requirements, stores) -> dict:
    """Coerce all four input collections. Bad records are dropped and counted in 'skipped'."""
    skipped = {"displays": 0, "submissions": 0, "posmRequirements": 0, "stores": 0, "notDisplayed": 0}
    canon_displays = _coerce_all(displays, coerce_display, skipped, "displays")
    displayed = [d for d in canon_displays if d["isDisplayed"]]
    skipped["notDisplayed"] = len(canon_displays) - len(displayed)
    return {
        "displays": displayed,
        "submissions": _coerce_all(submissions, coerce_submission, skipped, "submissions", indexed=True),
        "requirements": _coerce_all(requirements, coerce_requirement, skipped, "posmRequirements"),
        "stores": _coerce_all(stores, coerce_store, skipped, "stores"),
        "skipped": skipped,
    }


def build_store_map(stores: list) -> dict:
    """storeId -> canonical store record. Later duplicates win."""
    return {s["storeId"]: s for s in stores}


# ============================================================
# SURVEY VALIDATION & QUALITY
# ============================================================
def has_posm_selections(submission: dict) -> bool:
    return any(r["posmSelections"] for r in submission["modelResponses"])


def survey_quality(submission: dict) -> int:
    """Score submission completeness 0-100."""
    if not submission["modelResponses"]:
        return 0
    score = 30
    if has_posm_selections(submission):
        score += 40
    if submission["shopNameLabel"]:
        score += 15
    if submission["leaderLabel"]:
        score += 10
    if submission["submittedAt"]:
        score += 5
    return min(score, 100)


def validate_submissions(submissions: list, min_quality: int = 30) -> list:
    """Drop submissions that cannot contribute evidence.

    Requires at least one model response, at least one POSM selection,
    and an identifying label (shop name or leader). Returns new dicts with
    'qualityScore' attached; inputs are not mutated.
    """
    validated = []
    for s in submissions:
        if not s["modelResponses"] or not has_posm_selections(s):
            continue
        if not s["shopNameLabel"] and not s["leaderLabel"]:
            continue
        quality = survey_quality(s)
        if quality < min_quality:
            continue
        validated.append({**s, "qualityScore": quality})
    return validated
