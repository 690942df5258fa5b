"""
POSM Tracker — Field Survey Reconciliation Backend (v1.0.0)

Architecture:
  posm_tracker/
  ├── config/         — Paths, feature flags, status vocabulary, logging setup
  ├── policy/         — Matching thresholds, presets, runtime configuration
  ├── records/        — Input coercion, validation, survey quality scoring
  ├── normalization/  — Label / model token normalization, tokenization
  ├── identity/       — Store identity cascade (5 graduated methods)
  ├── model_match/    — Free-text model name matching
  ├── requirements/   — Required POSM codes per model
  ├── completion/     — Per store/model completion + rollups
  ├── audit/          — Anomaly flags, distribution, audit findings
  ├── progress/       — Dashboard views: overview, POSM, timeline, matrix
  ├── db/             — Read-only JSON snapshot store
  └── server.py       — FastAPI routing layer

Each module is self-contained with clear imports and no circular dependencies.
"""
from posm_tracker.identity import resolve_store_identity
from posm_tracker.completion import compute_completion
from posm_tracker.audit import audit_completion

__version__ = "1.0.0"

__all__ = ["resolve_store_identity", "compute_completion", "audit_completion"]
