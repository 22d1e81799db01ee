"""
Runtime configuration, read once from the environment.

Defaults give a working demo: in-memory policy store, demo verifier,
permissive CORS. Point SELF_VERIFIER_URL at a Self verification service
and set POLICY_STORE_BACKEND=redis for a real deployment.
"""

import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def _csv(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# ---------------------------------------------------------------------------
# Policy store
# ---------------------------------------------------------------------------

POLICY_STORE_BACKEND = os.getenv("POLICY_STORE_BACKEND", "memory").strip().lower()
KV_REST_API_URL = os.getenv("KV_REST_API_URL", "")
KV_REST_API_TOKEN = os.getenv("KV_REST_API_TOKEN", "")
POLICY_TTL_SECONDS = int(os.getenv("POLICY_TTL_SECONDS", "0"))
SEED_DEFAULT_POLICIES = _flag("SEED_DEFAULT_POLICIES", "true")

# ---------------------------------------------------------------------------
# External verifier
# ---------------------------------------------------------------------------

SELF_VERIFIER_URL = os.getenv("SELF_VERIFIER_URL", "")
SELF_APP_SCOPE = os.getenv("SELF_APP_SCOPE", "self-playground")
SELF_ALLOWED_ATTESTATIONS = _csv("SELF_ALLOWED_ATTESTATIONS", "passport,eucard")
VERIFY_TIMEOUT_SECONDS = float(os.getenv("VERIFY_TIMEOUT_SECONDS", "30"))

# ---------------------------------------------------------------------------
# Key resolution
# ---------------------------------------------------------------------------

ACTION_KEY_THRESHOLD = int(os.getenv("ACTION_KEY_THRESHOLD", "10"))

# ---------------------------------------------------------------------------
# HTTP / logging
# ---------------------------------------------------------------------------

CORS_ORIGINS = _csv("CORS_ORIGINS", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
