"""
Authentication gate.

The token proves itself by the SHA-256 digest of the first KEY_DATA_SIZE
bytes it yields. There is no cached trust: every session reads the token
again, and every failure looks the same to the caller.
"""

from __future__ import annotations

import hashlib
import hmac

from guardian.errors import AuthenticationError, DeviceError
from guardian.settings import validate_key_hash
from guardian.token import IdentityToken

KEY_DATA_SIZE = 1024


def digest_hex(data: bytes) -> str:
    """Lowercase hex SHA-256 of ``data``."""
    return hashlib.sha256(data).hexdigest()


class AuthenticationGate:

    def __init__(self, expected_key_hash: str):
        validate_key_hash(expected_key_hash)
        self.expected_key_hash = expected_key_hash.strip().lower()

    def verify_key(self, token: IdentityToken) -> bool:
        """Read fresh token data and compare its digest. Device errors propagate."""
        key_data = token.read_data(KEY_DATA_SIZE)[:KEY_DATA_SIZE]
        key_hash = digest_hex(key_data)
        return hmac.compare_digest(key_hash, self.expected_key_hash)

    def authenticate_key(self, token: IdentityToken) -> None:
        """Return on a match, raise AuthenticationError otherwise."""
        try:
            ok = self.verify_key(token)
        except DeviceError:
            ok = False

        if not ok:
            raise AuthenticationError()
