"""License protocol strategies."""

from __future__ import annotations

from typing import Optional

from ..config import Config
from .base import Protocol
from .playready import PlayReadyProtocol
from .widevine import WidevineProtocol


def create_protocol(name: str, config: Optional[Config] = None) -> Protocol:
    """Build the protocol strategy named ``name`` (``widevine`` or ``playready``)."""
    config = config or Config()
    name = name.lower()
    if name == WidevineProtocol.name:
        return WidevineProtocol(license_type=config.license_type)
    if name == PlayReadyProtocol.name:
        return PlayReadyProtocol(client_version=config.client_version)
    raise ValueError(f"unknown protocol: {name}")


__all__ = ["PlayReadyProtocol", "Protocol", "WidevineProtocol", "create_protocol"]
