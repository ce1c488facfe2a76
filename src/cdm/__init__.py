"""License acquisition engine for Widevine and PlayReady content keys."""

from .device import DeviceCredential
from .engine import LicenseEngine
from .key import ContentKey, KeyRole

__version__ = "0.1.0"

__all__ = ["ContentKey", "DeviceCredential", "KeyRole", "LicenseEngine", "__version__"]
