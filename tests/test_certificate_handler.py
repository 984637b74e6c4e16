import http.client
import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from certnet.entities import Beacon, Signer, SingleSignature
from certnet.signer.certificate_handler import (
    HttpCertificateHandler,
    JsonParseError,
    RemoteServerLogicalError,
    RemoteServerTechnicalError,
)

ENDPOINT = "http://aggregator.test/aggregator/"

PENDING = {
    "beacon": {"network": "devnet", "epoch": 3, "immutable_file_number": 120},
    "protocol": {"k": 5, "m": 100, "phi_f": 0.65},
    "signers": [{"party_id": "1", "verification_key": "ab" * 32, "stake": 10}],
}


def _response(status=200, body=b""):
    resp = MagicMock()
    resp.status = status
    resp.read.return_value = body
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


def _http_error(code, body=b"nope"):
    return urllib.error.HTTPError(ENDPOINT, code, "error", {}, io.BytesIO(body))


class TestRetrievePendingCertificate:

    def test_pending_certificate_is_decoded(self):
        with patch("urllib.request.urlopen", return_value=_response(200, json.dumps(PENDING).encode())) as urlopen:
            pending = HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate()

        assert pending.beacon == Beacon(network="devnet", epoch=3, immutable_file_number=120)
        assert pending.protocol_parameters.m == 100
        assert pending.stake_distribution[0].party_id == "1"

        request = urlopen.call_args[0][0]
        assert request.full_url == "http://aggregator.test/aggregator/certificate-pending"
        assert request.get_method() == "GET"

    def test_no_content_means_nothing_pending(self):
        with patch("urllib.request.urlopen", return_value=_response(204)):
            assert HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate() is None

    @pytest.mark.parametrize("body", [b"{not json", b"[]", json.dumps({"beacon": {}}).encode()])
    def test_undecodable_payload(self, body):
        with patch("urllib.request.urlopen", return_value=_response(200, body)):
            with pytest.raises(JsonParseError):
                HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate()

    def test_client_error_is_logical(self):
        with patch("urllib.request.urlopen", side_effect=_http_error(400)):
            with pytest.raises(RemoteServerLogicalError) as exc_info:
                HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate()
        assert "400" in str(exc_info.value)

    def test_server_error_is_technical(self):
        with patch("urllib.request.urlopen", side_effect=_http_error(503)):
            with pytest.raises(RemoteServerTechnicalError):
                HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate()

    def test_connection_error_is_technical(self):
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("refused")):
            with pytest.raises(RemoteServerTechnicalError):
                HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate()

    @pytest.mark.parametrize("error", [
        http.client.BadStatusLine("garbage"),
        http.client.IncompleteRead(b""),
        http.client.RemoteDisconnected("closed"),
        http.client.InvalidURL("nonnumeric port"),
        ValueError("unknown url type"),
    ])
    def test_protocol_errors_are_technical(self, error):
        with patch("urllib.request.urlopen", side_effect=error):
            with pytest.raises(RemoteServerTechnicalError) as exc_info:
                HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate()
        assert exc_info.value.__cause__ is error

    def test_truncated_body_is_technical(self):
        resp = _response(200)
        resp.read.side_effect = http.client.IncompleteRead(b"{", 10)
        with patch("urllib.request.urlopen", return_value=resp):
            with pytest.raises(RemoteServerTechnicalError):
                HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate()

    def test_unexpected_status_is_technical(self):
        with patch("urllib.request.urlopen", return_value=_response(202)):
            with pytest.raises(RemoteServerTechnicalError):
                HttpCertificateHandler(ENDPOINT).retrieve_pending_certificate()

    def test_timeout_is_forwarded(self):
        with patch("urllib.request.urlopen", return_value=_response(204)) as urlopen:
            HttpCertificateHandler(ENDPOINT, timeout_seconds=2.5).retrieve_pending_certificate()
        assert urlopen.call_args[1]["timeout"] == 2.5


class TestRegistration:

    def test_register_signatures_posts_json(self):
        signatures = [SingleSignature(party_id="1", index=4, signature="cd" * 64)]
        with patch("urllib.request.urlopen", return_value=_response(201)) as urlopen:
            HttpCertificateHandler(ENDPOINT).register_signatures(signatures)

        request = urlopen.call_args[0][0]
        assert request.full_url.endswith("/register-signatures")
        assert request.get_method() == "POST"
        assert request.get_header("Content-type") == "application/json"
        assert json.loads(request.data) == [{"party_id": "1", "index": 4, "signature": "cd" * 64}]

    def test_register_signer_posts_identity(self):
        with patch("urllib.request.urlopen", return_value=_response(201)) as urlopen:
            HttpCertificateHandler(ENDPOINT).register_signer(Signer(party_id="1", verification_key="ab" * 32))

        request = urlopen.call_args[0][0]
        assert request.full_url.endswith("/register-signer")
        assert json.loads(request.data) == {"party_id": "1", "verification_key": "ab" * 32}

    def test_register_signer_rejection_is_logical(self):
        with patch("urllib.request.urlopen", side_effect=_http_error(409)):
            with pytest.raises(RemoteServerLogicalError):
                HttpCertificateHandler(ENDPOINT).register_signer(Signer(party_id="1", verification_key="ab"))
