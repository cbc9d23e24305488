"""Signs session identifiers into cookie values and verifies them on the way back."""
import base64
import re
import secrets
from typing import List, Sequence, Union

from jose import jwt
from jose.exceptions import JOSEError

from notes_backend.errors import TamperedOrInvalid

ALGORITHM = "HS256"
MAX_COOKIE_LENGTH = 4096

_SEGMENT_RE = re.compile(r"[A-Za-z0-9_-]+")

Key = Union[str, bytes]


def _is_canonical(segment: str) -> bool:
    # urlsafe_b64decode tolerates stray padding bits and junk characters, so
    # an altered character could decode to the same bytes. Only accept the
    # one spelling that re-encodes to itself.
    if not _SEGMENT_RE.fullmatch(segment):
        return False
    raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") == segment


# PUBLIC_INTERFACE
class CredentialCodec:
    """
    HMAC-signed (HS256 JWS) cookie values binding a cookie name to a session id.

    The first key signs, every key verifies, so keys can be rotated by
    prepending a new one. All decode failures raise the same
    TamperedOrInvalid error with no detail.
    """

    def __init__(self, keys: Sequence[Key]) -> None:
        if not keys:
            raise ValueError("CredentialCodec needs at least one key")
        self._keys: List[Key] = list(keys)

    @classmethod
    def generate(cls) -> "CredentialCodec":
        """Codec with a fresh random 256-bit key held only in memory."""
        return cls([secrets.token_bytes(32)])

    def encode(self, name: str, session_id: str) -> str:
        claims = {"nam": name, "sid": session_id}
        return jwt.encode(claims, self._keys[0], algorithm=ALGORITHM)

    def decode(self, name: str, value: str) -> str:
        if not value or len(value) > MAX_COOKIE_LENGTH:
            raise TamperedOrInvalid()
        segments = value.split(".")
        try:
            if len(segments) != 3 or not all(_is_canonical(s) for s in segments):
                raise TamperedOrInvalid()
        except ValueError as e:
            raise TamperedOrInvalid() from e

        for key in self._keys:
            try:
                claims = jwt.decode(value, key, algorithms=[ALGORITHM])
            except (JOSEError, ValueError):
                continue
            session_id = claims.get("sid")
            if claims.get("nam") != name or not isinstance(session_id, str) or not session_id:
                raise TamperedOrInvalid()
            return session_id
        raise TamperedOrInvalid()
