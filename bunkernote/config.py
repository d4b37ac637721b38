"""
Configuration module for BunkerNote.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("BUNKERNOTE_ENV", "dev")  # dev|stage|prod

# Prefund policy: "partial" transfers what the Gateway holds and reports the
# deficiency, "strict" fails validation on any shortfall.
PREFUND_POLICY = os.getenv("BUNKERNOTE_PREFUND_POLICY", "partial")

# Prefund the reference relay requires per intent (wei)
RELAY_PREFUND = int(os.getenv("BUNKERNOTE_RELAY_PREFUND", "0"))

# Intents per minute the HTTP service relays for one beneficiary
SUBMIT_RPM = int(os.getenv("BUNKERNOTE_SUBMIT_RPM", "120"))

# Controller of the registry's admin Gateway when the service bootstraps itself
ADMIN_CONTROLLER = os.getenv("BUNKERNOTE_ADMIN_CONTROLLER", "")

# Logging
LOG_LEVEL = os.getenv("BUNKERNOTE_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("BUNKERNOTE_LOG_JSON", "1").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("BUNKERNOTE_LOG_FILE", "")

PREFUND_POLICIES = ("partial", "strict")
ENVIRONMENTS = ("dev", "stage", "prod")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate configured values.
    Returns dict of setting -> valid.
    """
    return {
        "env": ENV in ENVIRONMENTS,
        "prefund_policy": PREFUND_POLICY in PREFUND_POLICIES,
        "relay_prefund": RELAY_PREFUND >= 0,
        "submit_rpm": SUBMIT_RPM > 0,
        "log_level": LOG_LEVEL.upper() in LOG_LEVELS,
    }


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("BUNKERNOTE_DEBUG", "").lower() in ("1", "true", "yes")
