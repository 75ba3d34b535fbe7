"""PKCE material (:rfc:`7636`) and the session-scoped verifier store.

:func:`generate_pkce_pair` produces an S256 ``code_verifier`` /
``code_challenge`` pair. :class:`VerifierStore` holds verifiers between the
moment an authorization URL is built and the moment the code is exchanged.
Verifiers are never written to disk and never shared between sessions.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import threading

from credgate.exceptions import MissingVerifierError

logger = logging.getLogger(__name__)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    # 43-128 characters from the unreserved character set
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


def generate_state() -> str:
    """Return an opaque ``state`` value: 16 random bytes, base64url without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(16)).rstrip(b"=").decode("ascii")


class VerifierStore:
    """In-memory ``session key -> code_verifier`` mapping.

    There is one writer per key: the coordinator that owns the session.
    ``save`` overwrites, ``read`` fails loudly when nothing was saved, and
    ``discard`` is silent. A lock keeps the map consistent when the store is
    shared between threads.

    Example::

        store = VerifierStore()
        store.save("linear", verifier)
        assert store.read("linear") == verifier
        store.discard("linear")
    """

    def __init__(self) -> None:
        self._verifiers: dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, session: str, verifier: str) -> None:
        with self._lock:
            self._verifiers[session] = verifier
        logger.debug("Saved PKCE verifier for session %s", session)

    def read(self, session: str) -> str:
        """Return the verifier saved for *session*.

        Raises:
            MissingVerifierError: If no verifier was saved since the last
                discard. This is a caller bug, not an auth failure.
        """
        with self._lock:
            verifier = self._verifiers.get(session)
        if verifier is None:
            raise MissingVerifierError(f"No code verifier saved for session '{session}'")
        return verifier

    def discard(self, session: str) -> None:
        with self._lock:
            removed = self._verifiers.pop(session, None)
        if removed is not None:
            logger.debug("Discarded PKCE verifier for session %s", session)

    def __contains__(self, session: object) -> bool:
        with self._lock:
            return session in self._verifiers
