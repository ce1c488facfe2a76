"""
Session and derivation-context bookkeeping.

- A ``Session`` owns the contexts of its pending requests and is guarded by
  its own lock, so different sessions never contend.
- ``SessionManager`` enforces the open-session ceiling. Hitting it is an
  error; sessions are never evicted to make room.
- ``take_context`` removes the context it returns, so each response can
  be processed at most once.
- Recovered keys accumulate per request id; ``keys`` lists them in the
  order the responses were processed.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .constants import MAX_SESSIONS
from .exceptions import ContextNotFound, DuplicateContextError, InvalidSession, TooManySessions
from .key import ContentKey

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DerivationContext:
    """The two context strings built from one serialized request."""

    request_id: bytes
    encryption_context: bytes
    authentication_context: bytes

    def __repr__(self) -> str:
        return f"DerivationContext(request_id={self.request_id.hex()})"


class Session:
    def __init__(self, session_id: bytes, number: int):
        self.id = session_id
        self.number = number
        self.service_certificate = None
        self.unsupported_keys: List[bytes] = []
        self._keys: Dict[bytes, List[ContentKey]] = {}
        self._contexts: Dict[bytes, DerivationContext] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def next_request_number(self) -> int:
        with self._lock:
            self._counter += 1
            return self._counter

    def register_context(self, request_id: bytes, context: DerivationContext) -> None:
        with self._lock:
            if request_id in self._contexts:
                raise DuplicateContextError(f"context already pending for request {request_id.hex()}")
            self._contexts[request_id] = context
        LOGGER.debug("Session %s: registered context for request %s", self.id.hex(), request_id.hex())

    def take_context(self, request_id: bytes) -> DerivationContext:
        with self._lock:
            context = self._contexts.pop(request_id, None)
        if context is None:
            raise ContextNotFound(f"no pending context for request {request_id.hex()}")
        LOGGER.debug("Session %s: consumed context for request %s", self.id.hex(), request_id.hex())
        return context

    def take_only_context(self) -> DerivationContext:
        """Consume the single pending context, for replies that do not echo a request id."""
        with self._lock:
            if len(self._contexts) != 1:
                raise ContextNotFound(f"expected exactly one pending context, found {len(self._contexts)}")
            _, context = self._contexts.popitem()
        return context

    def has_context(self, request_id: bytes) -> bool:
        with self._lock:
            return request_id in self._contexts

    def record_keys(self, request_id: bytes, keys: List[ContentKey], unsupported: Sequence[bytes] = ()) -> None:
        """Store the outcome of one successfully processed response."""
        with self._lock:
            self._keys[request_id] = list(keys)
            for kid in unsupported:
                if kid not in self.unsupported_keys:
                    self.unsupported_keys.append(kid)
        LOGGER.debug("Session %s: stored %d keys for request %s", self.id.hex(), len(keys), request_id.hex())

    @property
    def keys(self) -> List[ContentKey]:
        with self._lock:
            return [key for keys in self._keys.values() for key in keys]

    def keys_for(self, request_id: bytes) -> List[ContentKey]:
        with self._lock:
            return list(self._keys.get(request_id, []))

    @property
    def pending(self) -> List[bytes]:
        with self._lock:
            return list(self._contexts)

    def __repr__(self) -> str:
        return f"Session(id={self.id.hex()}, number={self.number})"


class SessionManager:
    """Owns every open session of one engine instance."""

    def __init__(self, max_sessions: int = MAX_SESSIONS):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self._sessions: Dict[bytes, Session] = {}
        self._opened = 0
        self._lock = threading.Lock()

    def open_session(self) -> Session:
        """Open a new session.

        Raises:
            TooManySessions: If ``max_sessions`` sessions are already open
        """
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise TooManySessions(f"too many open sessions ({self.max_sessions})")
            self._opened += 1
            session = Session(os.urandom(16), self._opened)
            self._sessions[session.id] = session
        LOGGER.debug("Opened session %s (%d open)", session.id.hex(), len(self))
        return session

    def close_session(self, session_id: bytes) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise InvalidSession(f"session {session_id.hex()} is not open")
        LOGGER.debug("Closed session %s with %d pending contexts", session_id.hex(), len(session.pending))

    def get_session(self, session_id: bytes) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise InvalidSession(f"session {session_id.hex()} is not open")
        return session

    def register_context(self, session: Session, request_id: bytes, context: DerivationContext) -> None:
        session.register_context(request_id, context)

    def take_context(self, session: Session, request_id: bytes) -> DerivationContext:
        return session.take_context(request_id)

    def set_service_certificate(self, session: Session, certificate: Optional[object]) -> None:
        session.service_certificate = certificate

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: bytes) -> bool:
        with self._lock:
            return session_id in self._sessions
