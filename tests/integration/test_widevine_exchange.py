"""Integration tests for a full Widevine license exchange through the engine."""

import pytest

from cdm import LicenseEngine
from cdm.codec.messages import KeyType, MessageType, SignedMessage
from cdm.config import Config
from cdm.exceptions import CdmError, InvalidSession, TooManySessions
from cdm.key import KeyRole, render_keys
from cdm.protocols.widevine import WidevineProtocol

from conftest import CONTENT_KEY_1, CONTENT_KEY_2, KID_1, KID_2


@pytest.fixture
def engine(widevine_credential, rsa_root_key):
    return LicenseEngine(widevine_credential, WidevineProtocol(root_key=rsa_root_key.public_key()))


class TestWidevineExchange:
    """Test challenge, response and key retrieval end to end."""

    def test_full_exchange(self, engine, widevine_pssh, widevine_server):
        """Test keys come back for a PSSH box and the context is consumed."""
        session_id = engine.open_session()
        challenge = engine.build_challenge(session_id, widevine_pssh.to_bytes())
        response = widevine_server.respond(challenge, [
            (KID_1, CONTENT_KEY_1, KeyType.CONTENT),
            (KID_2, CONTENT_KEY_2, KeyType.CONTENT),
            (b"", b"\x42" * 32, KeyType.SIGNING),
        ])
        keys = engine.process_response(session_id, response)
        assert len(keys) == 3

        content = engine.get_keys(session_id, KeyRole.CONTENT)
        assert [(k.kid, k.key) for k in content] == [(KID_1, CONTENT_KEY_1), (KID_2, CONTENT_KEY_2)]
        assert len(engine.get_keys(session_id)) == 3
        assert render_keys(engine.get_keys(session_id)) == (
            f"{KID_1.hex()}:{CONTENT_KEY_1.hex()}\n{KID_2.hex()}:{CONTENT_KEY_2.hex()}"
        )
        assert engine.sessions.get_session(session_id).pending == []
        engine.close_session(session_id)

    def test_bare_init_data(self, engine, widevine_pssh, widevine_server):
        """Test a bare PSSH payload is accepted as content."""
        session_id = engine.open_session()
        challenge = engine.build_challenge(session_id, widevine_pssh.data)
        response = widevine_server.respond(challenge, [(KID_1, CONTENT_KEY_1, KeyType.CONTENT)])
        assert engine.process_response(session_id, response)[0].key == CONTENT_KEY_1

    def test_privacy_mode_with_fetched_certificate(self, engine, widevine_pssh, widevine_server, service_certificate):
        """Test the certificate request flow followed by a private challenge."""
        request = SignedMessage.decode(engine.get_service_certificate_challenge())
        assert request.type == MessageType.SERVICE_CERTIFICATE_REQUEST
        reply = SignedMessage(type=MessageType.SERVICE_CERTIFICATE, msg=service_certificate).encode()

        session_id = engine.open_session()
        service = engine.set_service_certificate(session_id, reply)
        assert engine.get_service_certificate(session_id) is service

        challenge = engine.build_challenge(session_id, widevine_pssh, privacy_mode=True)
        _, license_request = widevine_server.read_request(challenge)
        assert license_request.client_id is None
        assert widevine_server.decrypt_client_id(license_request) == b"synthetic client identification"

        response = widevine_server.respond(challenge, [(KID_1, CONTENT_KEY_1, KeyType.CONTENT)])
        assert engine.process_response(session_id, response)[0].key == CONTENT_KEY_1

        assert engine.set_service_certificate(session_id, None) is None
        assert engine.get_service_certificate(session_id) is None

    def test_configured_privacy_mode(self, widevine_credential, rsa_root_key, widevine_pssh, widevine_server,
                                     service_certificate):
        """Test privacy mode defaults to the configured value."""
        engine = LicenseEngine(
            widevine_credential,
            WidevineProtocol(root_key=rsa_root_key.public_key()),
            config=Config(privacy_mode=True),
        )
        session_id = engine.open_session()
        engine.set_service_certificate(session_id, service_certificate)
        _, request = widevine_server.read_request(engine.build_challenge(session_id, widevine_pssh))
        assert request.encrypted_client_id is not None

    def test_two_requests_in_one_session(self, engine, widevine_pssh, widevine_server):
        """Test responses may arrive out of order for concurrent requests."""
        session_id = engine.open_session()
        first = engine.build_challenge(session_id, widevine_pssh)
        second = engine.build_challenge(session_id, widevine_pssh)
        assert len(engine.sessions.get_session(session_id).pending) == 2

        engine.process_response(session_id, widevine_server.respond(second, [(KID_2, CONTENT_KEY_2, KeyType.CONTENT)]))
        assert engine.get_keys(session_id)[0].key == CONTENT_KEY_2
        engine.process_response(session_id, widevine_server.respond(first, [(KID_1, CONTENT_KEY_1, KeyType.CONTENT)]))
        assert [k.key for k in engine.get_keys(session_id)] == [CONTENT_KEY_2, CONTENT_KEY_1]

    def test_response_on_other_session(self, engine, widevine_pssh, widevine_server):
        """Test a response cannot be consumed by a session that did not ask for it."""
        first, other = engine.open_session(), engine.open_session()
        challenge = engine.build_challenge(first, widevine_pssh)
        response = widevine_server.respond(challenge, [(KID_1, CONTENT_KEY_1, KeyType.CONTENT)])
        with pytest.raises(CdmError):
            engine.process_response(other, response)
        assert engine.process_response(first, response)[0].key == CONTENT_KEY_1


class TestEngineSessions:
    """Test session handling through the engine."""

    def test_session_ceiling(self, widevine_credential):
        """Test the configured session limit is enforced."""
        engine = LicenseEngine(widevine_credential, "widevine", config=Config(max_sessions=2))
        first = engine.open_session()
        engine.open_session()
        with pytest.raises(TooManySessions):
            engine.open_session()
        engine.close_session(first)
        engine.open_session()

    def test_closed_session(self, engine, widevine_pssh):
        """Test a closed session cannot build challenges."""
        session_id = engine.open_session()
        engine.close_session(session_id)
        with pytest.raises(InvalidSession):
            engine.build_challenge(session_id, widevine_pssh)

    def test_protocol_from_config(self, widevine_credential):
        """Test the protocol name defaults to the configured one."""
        engine = LicenseEngine(widevine_credential, config=Config(protocol="playready"))
        assert engine.protocol.name == "playready"
        assert "playready" in repr(engine)
