from .bcert import BCert, BCertChain
from .pssh import PSSH, ContentIdentifier, WrmHeader, parse_content_identifier
from .xmr import XmrLicense

__all__ = [
    "BCert",
    "BCertChain",
    "ContentIdentifier",
    "PSSH",
    "WrmHeader",
    "XmrLicense",
    "parse_content_identifier",
]
