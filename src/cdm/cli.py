from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .constants import PLAYREADY_SYSTEM_ID, WIDEVINE_SYSTEM_ID
from .exceptions import CdmError
from .formats.bcert import BCertChain, CertType, KeyUsage
from .formats.pssh import PSSH, wrm_headers
from .formats.xmr import CipherType, KeyType, XmrLicense
from .verify import verify_bcert_chain

app = typer.Typer(help="Inspect DRM init data, certificate chains and licenses.")

_SYSTEM_NAMES = {WIDEVINE_SYSTEM_ID: "Widevine", PLAYREADY_SYSTEM_ID: "PlayReady"}


@app.callback()
def _setup(
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity"),
):
    load_dotenv()
    try:
        cfg = load_config()
    except ValueError as e:
        _fail(str(e))
    level = _log_level(cfg, verbose)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    logging.getLogger().setLevel(level)


def _log_level(cfg: Config, verbose: int) -> int:
    """The configured level, lowered one step per ``-v`` down to DEBUG."""
    return max(cfg.log_level_value - 10 * verbose, logging.DEBUG)


def _fail(message: str) -> None:
    typer.echo(f"ERROR: {message}", err=True)
    raise typer.Exit(code=1)


def _read_blob(value: str) -> bytes:
    """A file path, or the base64 text of the blob itself."""
    path = Path(value)
    if path.is_file():
        return path.read_bytes()
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error:
        _fail(f"{value!r} is neither a file nor base64")


@app.command("inspect-pssh")
def inspect_pssh(
    value: str = typer.Argument(..., help="PSSH box as base64, or a file holding it"),
):
    """Print the system, version and key ids of a PSSH box."""
    try:
        pssh = PSSH.from_bytes(_read_blob(value))
        typer.echo(f"System:  {_SYSTEM_NAMES.get(pssh.system_id, 'unknown')} ({pssh.system_id.hex()})")
        typer.echo(f"Version: {pssh.version}")
        typer.echo(f"Data:    {len(pssh.data)} bytes")
        for kid in pssh.get_key_ids():
            typer.echo(f"  KID {kid.hex()}")
        if pssh.is_widevine:
            content_id = pssh.content_id()
            if content_id:
                typer.echo(f"Content ID: {content_id.decode('utf-8', 'replace')}")
        if pssh.is_playready:
            for header in wrm_headers(pssh.data):
                typer.echo(f"WRM header {header.version}")
                if header.la_url:
                    typer.echo(f"  LA_URL {header.la_url}")
    except CdmError as e:
        _fail(str(e))


@app.command("inspect-chain")
def inspect_chain(
    path: Path = typer.Argument(..., help="BCert chain file"),
):
    """List the certificates of a PlayReady BCert chain, leaf first."""
    if not path.is_file():
        _fail(f"File not found: {path}")
    try:
        chain = BCertChain.from_bytes(path.read_bytes())
    except CdmError as e:
        _fail(str(e))
    typer.echo(f"Chain version {chain.version}, {len(chain)} certificates")
    for i, cert in enumerate(chain.certificates):
        basic = cert.basic_info
        if basic is None:
            typer.echo(f"[{i}] (no basic info)")
            continue
        try:
            kind = CertType(basic.cert_type).name
        except ValueError:
            kind = str(basic.cert_type)
        typer.echo(f"[{i}] {kind} security level {basic.security_level}")
        manufacturer = cert.manufacturer_info
        if manufacturer is not None:
            typer.echo(f"    {manufacturer.name} {manufacturer.model_name}".rstrip())
        if cert.key_info is not None:
            for key in cert.key_info.keys:
                usages = ", ".join(_usage_name(u) for u in key.usages)
                typer.echo(f"    key {key.key[:8].hex()}... ({usages})")


def _usage_name(usage: int) -> str:
    try:
        return KeyUsage(usage).name
    except ValueError:
        return str(usage)


@app.command("verify-chain")
def verify_chain(
    path: Path = typer.Argument(..., help="BCert chain file"),
    root_key: Optional[str] = typer.Option(None, "--root-key", help="Hex X||Y root key to trust instead of the built-in one"),
):
    """Verify every signature of a BCert chain up to the root key."""
    if not path.is_file():
        _fail(f"File not found: {path}")
    try:
        chain = BCertChain.from_bytes(path.read_bytes())
        if root_key:
            verify_bcert_chain(chain, bytes.fromhex(root_key))
        else:
            verify_bcert_chain(chain)
    except CdmError as e:
        typer.echo(f"[FAIL] {e}", err=True)
        raise typer.Exit(code=1)
    except ValueError as e:
        _fail(f"invalid root key: {e}")
    typer.echo(f"[OK] chain of {len(chain)} certificates verified")


@app.command("inspect-license")
def inspect_license(
    value: str = typer.Argument(..., help="XMR license as base64, or a file holding it"),
):
    """Print the objects of an XMR license that matter for key recovery."""
    try:
        xmr = XmrLicense.from_bytes(_read_blob(value))
    except CdmError as e:
        _fail(str(e))
    typer.echo(f"XMR version {xmr.version}, rights id {xmr.rights_id.hex()}")
    for key in xmr.content_keys:
        typer.echo(f"  key {key.key_id.hex()} {_enum_name(KeyType, key.key_type)} "
                   f"cipher {_enum_name(CipherType, key.cipher_type)}")
    if xmr.ecc_key is not None:
        typer.echo(f"  bound to {xmr.ecc_key.key[:8].hex()}...")
    if xmr.expiration is not None:
        typer.echo(f"  valid {xmr.expiration.begin_date} to {xmr.expiration.end_date}")
    if xmr.security_level is not None:
        typer.echo(f"  minimum security level {xmr.security_level.minimum_security_level}")
    typer.echo(f"  signed: {'yes' if xmr.signature is not None else 'no'}")


def _enum_name(enum, value: int) -> str:
    try:
        return enum(value).name
    except ValueError:
        return str(value)


@app.command("show-status")
def show_status(
    config: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
):
    """Show the effective configuration and the supported protocols."""
    try:
        cfg = load_config(config)
    except ValueError as e:
        _fail(str(e))
    typer.echo(f"cdm {__version__}")
    typer.echo("\n[CONFIG]")
    typer.echo(f"  protocol:      {cfg.protocol}")
    typer.echo(f"  privacy_mode:  {cfg.privacy_mode}")
    typer.echo(f"  max_sessions:  {cfg.max_sessions}")
    typer.echo(f"  license_type:  {cfg.license_type}")
    typer.echo(f"  log_level:     {cfg.log_level}")
    typer.echo("\n[PROTOCOLS]")
    typer.echo("  * widevine:  protobuf messages, RSA-OAEP/PSS, AES-CMAC key derivation")
    typer.echo("  * playready: SOAP/XMR, ECC P-256 ElGamal and ECDSA, AES-CMAC integrity")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
