"""Human-readable business references.

Database primary keys are UUIDs; these references are what customers and
support staff read out over the phone.
"""

import secrets
import uuid

from src.fw_common.datetime_utils import utc_now

# No 0/O/1/I to keep references unambiguous when spoken or typed
_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def new_job_reference() -> str:
    """FW-YYMMDD-XXXXX, e.g. FW-261019-K7M2Q."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(5))
    return f"FW-{utc_now():%y%m%d}-{suffix}"


def new_idempotency_key(prefix: str) -> str:
    return f"{prefix}:{uuid.uuid4().hex}"
