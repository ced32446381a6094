"""Authentication utilities: tracker password hashing, MAC verification, write authorization."""

import enum
import hashlib
import hmac
import os
from typing import Mapping, Optional

from config import TrackerApiConfig

MAC_FIELD = "mac"


class AuthState(str, enum.Enum):
    AUTHENTICATED_TRACKER = "authenticated-tracker"
    NOT_AUTHENTICATED = "not-authenticated"
    UNKNOWN_TRACKER = "unknown-tracker"
    AUTHENTICATION_FAILED = "authentication-failed"


def hash_password(password: str) -> str:
    salt = os.urandom(32)
    key = hashlib.pbkdf2_hmac('sha256', password.encode(), salt, 100000)
    return salt.hex() + key.hex()


def verify_password(password: str, stored: str) -> bool:
    try:
        salt = bytes.fromhex(stored[:64])
        stored_key = stored[64:]
        key = hashlib.pbkdf2_hmac('sha256', password.encode(), salt, 100000)
        return hmac.compare_digest(key.hex(), stored_key)
    except (ValueError, AttributeError):
        return False


def compute_mac(params: Mapping[str, object], shared_secret: str) -> str:
    """HMAC-SHA1 over ``key:value|`` pairs sorted by key, excluding the mac itself."""
    message = "".join(
        f"{key}:{params[key]}|" for key in sorted(params) if key != MAC_FIELD and params[key] is not None
    )
    return hmac.new(shared_secret.encode(), message.encode(), hashlib.sha1).hexdigest()


def authentication_state(params: Mapping[str, object], tracker) -> AuthState:
    """Classify a request given its raw params and the tracker found for its code (or None)."""
    if tracker is None:
        return AuthState.UNKNOWN_TRACKER
    mac = params.get(MAC_FIELD)
    if not mac:
        return AuthState.NOT_AUTHENTICATED
    if not tracker.shared_secret:
        return AuthState.AUTHENTICATION_FAILED
    expected = compute_mac(params, tracker.shared_secret)
    if hmac.compare_digest(expected, str(mac).lower()):
        return AuthState.AUTHENTICATED_TRACKER
    return AuthState.AUTHENTICATION_FAILED


def is_create_event_allowed(state: Optional[AuthState], policy: TrackerApiConfig) -> bool:
    """Decide whether an event write is allowed.

    * A correctly authenticated tracker is always allowed.
    * A failed authentication is never allowed.
    * Unauthenticated requests and unknown trackers depend on the policy.
    * Anything unrecognised is denied.
    """
    if state == AuthState.AUTHENTICATED_TRACKER:
        return True
    if state == AuthState.NOT_AUTHENTICATED:
        return not policy.require_authentication
    if state == AuthState.UNKNOWN_TRACKER:
        return policy.allow_tracker_creation
    return False
