"""Capability interface shared by the license protocol strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..device import DeviceCredential
from ..exceptions import CdmError
from ..formats.pssh import ContentIdentifier
from ..key import ContentKey
from ..session import Session


class Protocol(ABC):
    """One license protocol: builds challenges and turns responses into keys.

    Implementations hold no per-exchange state; everything an exchange needs
    lives in the ``Session`` passed to each call.
    """

    name = "abstract"
    system_id = b""

    @abstractmethod
    def build_challenge(
        self,
        credential: DeviceCredential,
        content_id: ContentIdentifier,
        session: Session,
        privacy_mode: bool = False,
    ) -> bytes:
        """Serialize and sign a license request and register its context."""

    @abstractmethod
    def process_response(
        self,
        credential: DeviceCredential,
        session: Session,
        response: bytes,
    ) -> List[ContentKey]:
        """Verify a license response and recover every key it carries."""

    def service_certificate_challenge(self) -> bytes:
        raise CdmError(f"{self.name} does not use service certificates")

    def load_service_certificate(self, blob: Optional[bytes]):
        raise CdmError(f"{self.name} does not use service certificates")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
