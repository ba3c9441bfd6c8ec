"""
Request signing for the airspace-safety network.

The network authenticates callers without a client library: every request
carries a credential identifier, an HMAC-SHA256 signature, a timestamp and
a nonce. The network recomputes the signature from the same shared secret
and rejects stale or replayed requests.

Derivation:
    key_id      = sha256(secret)[:32]              (hex)
    signing_key = HKDF-SHA256(secret, salt, info)  (32 bytes, RFC 5869)
    canonical   = METHOD \\n PATH \\n TIMESTAMP \\n NONCE \\n BODY
    signature   = base64(HMAC-SHA256(signing_key, canonical))

The raw secret never leaves the process and is never used as an HMAC key
directly.
"""

import base64
import binascii
import hashlib
import logging
import secrets
from datetime import datetime, timezone
from typing import Dict, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from skysync.exceptions import ConfigurationError, SigningError

logger = logging.getLogger(__name__)

KDF_SALT = b'skysync-request-signing-salt'
KDF_INFO = b'skysync-hmac-sha256-v1'
KEY_LENGTH = 32

HEADER_KEY_ID = 'X-SS-Key-Id'
HEADER_SIGNATURE = 'X-SS-Signature'
HEADER_TIMESTAMP = 'X-SS-Timestamp'
HEADER_NONCE = 'X-SS-Nonce'


def derive_signing_key(secret: str) -> bytes:
    """32-byte HMAC key derived from the shared secret with HKDF-SHA256."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=KDF_SALT,
        info=KDF_INFO,
    )
    return hkdf.derive(secret.encode('utf-8'))


def derive_key_id(secret: str) -> str:
    """Stable, one-way credential identifier for a secret."""
    return hashlib.sha256(secret.encode('utf-8')).hexdigest()[:32]


def utc_timestamp() -> str:
    """Current time as sortable ISO-8601 text, e.g. 2026-10-19T08:15:02.123Z."""
    now = datetime.now(timezone.utc)
    return now.strftime('%Y-%m-%dT%H:%M:%S.') + f'{now.microsecond // 1000:03d}Z'


def canonical_string(method: str, path: str, timestamp: str, nonce: str, body: str) -> str:
    return '\n'.join([method.upper(), path, timestamp, nonce, body])


class RequestSigner:
    """
    Produces authentication headers for one outbound request.

    The credential id and signing key are derived once per signer;
    timestamp and nonce are generated on every call.
    """

    def __init__(self, secret: Optional[str]):
        if not secret:
            raise ConfigurationError('Shared secret for request signing is missing')

        self.key_id = derive_key_id(secret)
        self._signing_key = derive_signing_key(secret)

    def _mac(self, message: str) -> hmac.HMAC:
        mac = hmac.HMAC(self._signing_key, hashes.SHA256())
        mac.update(message.encode('utf-8'))
        return mac

    def sign(
        self,
        method: str,
        path: str,
        body: Union[str, bytes, None] = '',
    ) -> Dict[str, str]:
        """
        Build signature headers for a request.

        Args:
            method: HTTP method
            path: Request path including the query string as sent
            body: Serialized request body ('' for GET)

        Raises:
            SigningError if any cryptographic step fails
        """
        try:
            if body is None:
                body = ''
            elif isinstance(body, bytes):
                body = body.decode('utf-8')

            timestamp = utc_timestamp()
            nonce = secrets.token_hex(16)

            message = canonical_string(method, path, timestamp, nonce, body)
            signature = base64.b64encode(self._mac(message).finalize()).decode('ascii')
        except Exception as e:
            logger.error(f'Request signing failed for {method} {path}: {e}')
            raise SigningError(original_error=e) from e

        return {
            HEADER_KEY_ID: self.key_id,
            HEADER_SIGNATURE: signature,
            HEADER_TIMESTAMP: timestamp,
            HEADER_NONCE: nonce,
        }

    def verify(
        self,
        method: str,
        path: str,
        body: Union[str, bytes, None],
        headers: Dict[str, str],
    ) -> bool:
        """
        Check headers produced by sign().

        Mirrors the check the network performs on its side.
        """
        if headers.get(HEADER_KEY_ID) != self.key_id:
            return False

        if body is None:
            body = ''
        elif isinstance(body, bytes):
            body = body.decode('utf-8')

        message = canonical_string(
            method,
            path,
            headers.get(HEADER_TIMESTAMP, ''),
            headers.get(HEADER_NONCE, ''),
            body,
        )
        try:
            signature = base64.b64decode(headers.get(HEADER_SIGNATURE, ''), validate=True)
            self._mac(message).verify(signature)
        except (binascii.Error, InvalidSignature):
            return False
        return True
