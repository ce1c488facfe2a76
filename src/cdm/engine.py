"""
License engine facade.

``LicenseEngine`` binds one device credential to one protocol strategy and
owns the sessions opened against it. Network transport stays with the
caller: challenges come out as bytes and responses go back in as bytes.

Example:
    engine = LicenseEngine(credential, "widevine")
    session_id = engine.open_session()
    challenge = engine.build_challenge(session_id, pssh)
    keys = engine.process_response(session_id, post(challenge))
    engine.close_session(session_id)
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from .config import Config
from .device import DeviceCredential
from .formats.pssh import PSSH, ContentIdentifier, parse_content_identifier
from .key import ContentKey, KeyRole
from .protocols import Protocol, create_protocol
from .session import SessionManager

LOGGER = logging.getLogger(__name__)

ContentInput = Union[ContentIdentifier, PSSH, bytes]


class LicenseEngine:
    def __init__(
        self,
        credential: DeviceCredential,
        protocol: Union[str, Protocol, None] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or Config()
        if protocol is None:
            protocol = self.config.protocol
        if isinstance(protocol, str):
            protocol = create_protocol(protocol, self.config)
        self.credential = credential
        self.protocol = protocol
        self.sessions = SessionManager(self.config.max_sessions)
        LOGGER.debug("License engine ready for %s (max %d sessions)", protocol.name, self.config.max_sessions)

    def open_session(self) -> bytes:
        return self.sessions.open_session().id

    def close_session(self, session_id: bytes) -> None:
        self.sessions.close_session(session_id)

    def set_service_certificate(self, session_id: bytes, certificate: Optional[bytes]):
        """Verify and attach a service certificate, or clear it with ``None``.

        Returns:
            The verified certificate, or None when cleared
        """
        session = self.sessions.get_session(session_id)
        service = self.protocol.load_service_certificate(certificate)
        self.sessions.set_service_certificate(session, service)
        return service

    def get_service_certificate(self, session_id: bytes):
        return self.sessions.get_session(session_id).service_certificate

    def get_service_certificate_challenge(self) -> bytes:
        return self.protocol.service_certificate_challenge()

    def _content_identifier(self, content: ContentInput) -> ContentIdentifier:
        if isinstance(content, ContentIdentifier):
            return content
        if isinstance(content, PSSH):
            return content.to_content_identifier()
        return parse_content_identifier(bytes(content), self.protocol.system_id)

    def build_challenge(
        self,
        session_id: bytes,
        content: ContentInput,
        privacy_mode: Optional[bool] = None,
    ) -> bytes:
        session = self.sessions.get_session(session_id)
        if privacy_mode is None:
            privacy_mode = self.config.privacy_mode
        return self.protocol.build_challenge(
            self.credential, self._content_identifier(content), session, privacy_mode
        )

    def process_response(self, session_id: bytes, response: Union[bytes, str]) -> List[ContentKey]:
        session = self.sessions.get_session(session_id)
        if isinstance(response, str):
            response = response.encode("utf-8")
        return self.protocol.process_response(self.credential, session, response)

    def get_keys(self, session_id: bytes, role: Optional[KeyRole] = None) -> List[ContentKey]:
        """Keys recovered in this session, optionally only those of ``role``."""
        keys = self.sessions.get_session(session_id).keys
        if role is None:
            return list(keys)
        return [k for k in keys if k.role == role]

    def __repr__(self) -> str:
        return f"LicenseEngine(protocol={self.protocol.name}, sessions={len(self.sessions)})"
