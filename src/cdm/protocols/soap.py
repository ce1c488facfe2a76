"""
SOAP framing for PlayReady license acquisition.

Challenge fragments are assembled as strings in a fixed order: the
``<LA>`` element is hashed and the ``<SignedInfo>`` element is signed
exactly as written, so they must not be reformatted.
"""

from __future__ import annotations

import base64
import binascii
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional, Union

from ..exceptions import DecodeError, LicenseServerError

LOGGER = logging.getLogger(__name__)

SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"
PROTOCOLS_NS = "http://schemas.microsoft.com/DRM/2007/03/protocols"
MESSAGES_NS = "http://schemas.microsoft.com/DRM/2007/03/protocols/messages"
XMLDSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
XMLENC_NS = "http://www.w3.org/2001/04/xmlenc#"


def build_client_data(certificate_chain_b64: str) -> str:
    s = "<Data><CertificateChains><CertificateChain>"
    s += certificate_chain_b64
    s += "</CertificateChain></CertificateChains>"
    s += '<Features><Feature Name="AESCBC"></Feature></Features>'
    s += "</Data>"
    return s


def build_la(
    wrm_header: str,
    client_version: str,
    nonce_b64: str,
    client_time: int,
    key_data_b64: str,
    cipher_data_b64: str,
) -> str:
    s = f'<LA xmlns="{PROTOCOLS_NS}" Id="SignedData" xml:space="preserve">'
    s += "<Version>1</Version>"
    s += f"<ContentHeader>{wrm_header}</ContentHeader>"
    s += f"<CLIENTINFO><CLIENTVERSION>{client_version}</CLIENTVERSION></CLIENTINFO>"
    s += f"<LicenseNonce>{nonce_b64}</LicenseNonce>"
    s += f"<ClientTime>{client_time}</ClientTime>"
    s += f'<EncryptedData xmlns="{XMLENC_NS}" Type="{XMLENC_NS}Element">'
    s += f'<EncryptionMethod Algorithm="{XMLENC_NS}aes128-cbc"></EncryptionMethod>'
    s += f'<KeyInfo xmlns="{XMLDSIG_NS}">'
    s += f'<EncryptedKey xmlns="{XMLENC_NS}">'
    s += f'<EncryptionMethod Algorithm="{PROTOCOLS_NS}#ecc256"></EncryptionMethod>'
    s += f'<KeyInfo xmlns="{XMLDSIG_NS}"><KeyName>WMRMServer</KeyName></KeyInfo>'
    s += f"<CipherData><CipherValue>{key_data_b64}</CipherValue></CipherData>"
    s += "</EncryptedKey>"
    s += "</KeyInfo>"
    s += f"<CipherData><CipherValue>{cipher_data_b64}</CipherValue></CipherData>"
    s += "</EncryptedData>"
    s += "</LA>"
    return s


def build_signed_info(digest_b64: str) -> str:
    s = f'<SignedInfo xmlns="{XMLDSIG_NS}">'
    s += '<CanonicalizationMethod Algorithm="http://www.w3.org/TR/2001/REC-xml-c14n-20010315"></CanonicalizationMethod>'
    s += f'<SignatureMethod Algorithm="{PROTOCOLS_NS}#ecdsa-sha256"></SignatureMethod>'
    s += '<Reference URI="#SignedData">'
    s += f'<DigestMethod Algorithm="{PROTOCOLS_NS}#sha256"></DigestMethod>'
    s += f"<DigestValue>{digest_b64}</DigestValue>"
    s += "</Reference>"
    s += "</SignedInfo>"
    return s


def build_challenge_envelope(la: str, signed_info: str, signature_b64: str, public_key_b64: str) -> str:
    s = '<?xml version="1.0" encoding="utf-8"?>'
    s += '<soap:Envelope xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
    s += 'xmlns:xsd="http://www.w3.org/2001/XMLSchema" '
    s += f'xmlns:soap="{SOAP_NS}">'
    s += "<soap:Body>"
    s += f'<AcquireLicense xmlns="{PROTOCOLS_NS}">'
    s += f'<challenge><Challenge xmlns="{MESSAGES_NS}">'
    s += la
    s += f'<Signature xmlns="{XMLDSIG_NS}">'
    s += signed_info
    s += f"<SignatureValue>{signature_b64}</SignatureValue>"
    s += f'<KeyInfo xmlns="{XMLDSIG_NS}"><KeyValue><ECCKeyValue><PublicKey>'
    s += public_key_b64
    s += "</PublicKey></ECCKeyValue></KeyValue></KeyInfo>"
    s += "</Signature>"
    s += "</Challenge></challenge></AcquireLicense>"
    s += "</soap:Body>"
    s += "</soap:Envelope>"
    return s


@dataclass
class LicenseResponse:
    licenses: List[bytes] = field(default_factory=list)
    nonce: Optional[bytes] = None


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _first_text(root: ET.Element, name: str) -> Optional[str]:
    for el in root.iter():
        if _local(el.tag) == name:
            return (el.text or "").strip()
    return None


def _b64(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise DecodeError(f"invalid base64 in {what}") from e


def parse_license_response(data: Union[bytes, str]) -> LicenseResponse:
    """Pull the XMR licenses (and echoed nonce) out of a SOAP reply.

    Raises:
        LicenseServerError: If the reply is a SOAP fault
        DecodeError: If the reply is not well-formed XML
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise DecodeError(f"license response is not XML: {e}") from e

    for el in root.iter():
        if _local(el.tag) == "Fault":
            message = _first_text(el, "faultstring") or "SOAP fault"
            raise LicenseServerError(message, code=_first_text(el, "StatusCode"))

    response = LicenseResponse()
    for el in root.iter():
        if _local(el.tag) == "License" and (el.text or "").strip():
            response.licenses.append(_b64(el.text.strip(), "License"))
    nonce = _first_text(root, "LicenseNonce")
    if nonce:
        response.nonce = _b64(nonce, "LicenseNonce")
    LOGGER.debug("License response carries %d licenses", len(response.licenses))
    return response
