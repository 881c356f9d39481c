"""Summary: Reversible encoding for OAuth credentials at rest.

Importance: Keeps access and refresh tokens out of the SQLite file in plain text.
Alternatives: Use a secrets manager or a proper encryption library with key management.
"""

from __future__ import annotations

import base64
import hashlib


_PREFIX = "fs1:"


class TokenCodec:
    """Summary: XOR keystream codec keyed by the deployment token secret.

    Importance: Gives account credentials a lightweight obfuscation layer with no new dependencies.
    Alternatives: Store tokens in a vault and keep only references locally.
    """

    def __init__(self, secret: str) -> None:
        self._secret = (secret or "familysync").encode("utf-8")

    def encode(self, plaintext: str | None) -> str | None:
        """Summary: Encode a credential for storage.

        Importance: None stays None so a missing refresh token remains detectable.
        Alternatives: Store an empty string for missing credentials.
        """

        if plaintext is None:
            return None
        raw = plaintext.encode("utf-8")
        masked = bytes(b ^ k for b, k in zip(raw, _keystream(self._secret, len(raw))))
        return _PREFIX + base64.urlsafe_b64encode(masked).decode("utf-8")

    def decode(self, payload: str | None) -> str | None:
        """Summary: Decode a stored credential.

        Importance: Values written before encoding was enabled are returned unchanged.
        Alternatives: Force re-authentication for unencoded rows.
        """

        if payload is None:
            return None
        if not payload.startswith(_PREFIX):
            return payload
        masked = base64.urlsafe_b64decode(payload[len(_PREFIX):].encode("utf-8"))
        raw = bytes(b ^ k for b, k in zip(masked, _keystream(self._secret, len(masked))))
        return raw.decode("utf-8")


def _keystream(secret: bytes, length: int) -> bytes:
    blocks: list[bytes] = []
    counter = 0
    while sum(len(block) for block in blocks) < length:
        blocks.append(hashlib.sha256(secret + counter.to_bytes(4, "big")).digest())
        counter += 1
    return b"".join(blocks)[:length]
