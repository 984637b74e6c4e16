import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import yaml

from certnet.cli import CertnetCLI, OutputFormat, format_output
from certnet.merkle import MerkleTree
from certnet.messages import CertifiedTransactionsMessage, SetProofMessagePart, TransactionsSetProof
from certnet.observability import ROOT_LOGGER_NAME

SEED = "11" * 32


@pytest.fixture
def cli(config_manager, tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    yield CertnetCLI()
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)


def _message_file(tmp_path, parts):
    message = CertifiedTransactionsMessage(
        certificate_hash="cert-1",
        certified_transactions=parts,
        non_certified_transactions=["tx-unknown"],
        latest_immutable_file_number=7,
    )
    path = tmp_path / "proofs.json"
    path.write_text(message.to_json())
    return path


def _part(leaves, tree_leaves):
    proof = MerkleTree(tree_leaves).compute_proof(leaves)
    return SetProofMessagePart.from_set_proof(TransactionsSetProof(transactions_hashes=leaves, proof=proof))


def _response(status, body=b""):
    resp = MagicMock()
    resp.status = status
    resp.read.return_value = body
    resp.__enter__.return_value = resp
    return resp


def test_format_output_text_nests():
    text = format_output({"a": 1, "b": {"c": [1, 2]}}, OutputFormat.TEXT)
    assert text.splitlines() == ["a: 1", "b:", "  c:", "    - 1", "    - 2"]


def test_no_command_prints_help(cli, capsys):
    assert cli.run([]) == 0
    assert "usage: certnet" in capsys.readouterr().out


class TestVerifyProofs:

    def test_valid_message(self, cli, tmp_path, capsys):
        leaves = ["tx-1", "tx-2", "tx-3"]
        path = _message_file(tmp_path, [_part(["tx-1"], leaves), _part(["tx-3"], leaves)])

        assert cli.run(["verify-proofs", str(path)]) == 0

        out = json.loads(capsys.readouterr().out)
        assert out["verified"] is True
        assert out["merkle_root"] == MerkleTree(leaves).root
        assert out["certified_transactions"] == ["tx-1", "tx-3"]
        assert out["non_certified_transactions"] == ["tx-unknown"]
        assert out["protocol_message"] == {
            "latest_immutable_file_number": "7",
            "merkle_root": MerkleTree(leaves).root,
        }
        assert len(out["protocol_message_hash"]) == 64

    def test_invalid_proofs_exit_non_zero(self, cli, tmp_path, capsys):
        path = _message_file(tmp_path, [_part(["tx-1"], ["tx-1"]), _part(["tx-2"], ["tx-2"])])

        assert cli.run(["verify-proofs", str(path)]) == 1
        assert "Verification failed" in capsys.readouterr().err

    def test_schema_violation(self, cli, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"certificate_hash": "x"}))

        assert cli.run(["verify-proofs", str(path)]) == 1
        assert "Invalid message" in capsys.readouterr().err

    def test_missing_file(self, cli, tmp_path, capsys):
        assert cli.run(["verify-proofs", str(tmp_path / "nope.json")]) == 1
        assert "Cannot read" in capsys.readouterr().err

    def test_yaml_output(self, cli, tmp_path, capsys):
        path = _message_file(tmp_path, [_part(["tx-1"], ["tx-1", "tx-2"])])

        assert cli.run(["--format", "yaml", "verify-proofs", str(path)]) == 0

        out = yaml.safe_load(capsys.readouterr().out)
        assert out["certified_transactions"] == ["tx-1"]


class TestSignerCommands:

    def test_tick_without_pending_certificate(self, cli, config_manager, capsys):
        config_manager.set("signer.key_seed", SEED)
        responses = [_response(204), _response(201)]

        with patch("urllib.request.urlopen", side_effect=responses) as urlopen:
            assert cli.run(["signer", "tick"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert out == {"status": "ok", "phase": "no_beacon", "current_beacon": None}
        register = urlopen.call_args_list[1][0][0]
        assert register.full_url == "http://localhost:8080/aggregator/register-signer"
        assert json.loads(register.data)["party_id"] == "0"

    def test_tick_failure_exit_code(self, cli, capsys):
        import urllib.error

        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("refused")):
            assert cli.run(["signer", "tick"]) == 1

        assert "RetrievePendingCertificateFailed" in capsys.readouterr().err

    def test_run_reports_ticks(self, cli, config_manager, capsys):
        config_manager.set("signer.run_interval_seconds", 0.01)
        responses = [_response(204), _response(201), _response(204), _response(201)]

        with patch("urllib.request.urlopen", side_effect=responses):
            assert cli.run(["signer", "run", "--max-ticks", "2"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert out["ticks"] == 2
        assert out["failures"] == 0

    def test_run_rejects_zero_ticks(self, cli, capsys):
        assert cli.run(["signer", "run", "--max-ticks", "0"]) == 1


class TestConfigCommands:

    def test_show(self, cli, capsys):
        assert cli.run(["config", "show"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["signer"]["registration_failure_policy"] == "log"

    def test_config_file_option(self, cli, tmp_path, capsys):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"signer": {"party_id": "pool1abc"}}))

        assert cli.run(["--config", str(path), "config", "show"]) == 0

        assert json.loads(capsys.readouterr().out)["signer"]["party_id"] == "pool1abc"

    def test_default_project_file_is_loaded(self, cli, tmp_path, capsys):
        (tmp_path / "certnet.yaml").write_text(yaml.safe_dump({"signer": {"stake": 42}}))

        assert cli.run(["config", "show"]) == 0

        assert json.loads(capsys.readouterr().out)["signer"]["stake"] == 42

    def test_missing_config_file(self, cli, tmp_path, capsys):
        assert cli.run(["--config", str(tmp_path / "missing.yaml"), "config", "show"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_validate(self, cli, capsys):
        assert cli.run(["config", "validate"]) == 0
        assert json.loads(capsys.readouterr().out) == {"valid": True, "errors": []}

    def test_validate_failure(self, cli, monkeypatch, capsys):
        monkeypatch.setenv("CERTNET_LOG_FORMAT", "xml")
        assert cli.run(["config", "validate"]) == 2
        assert "log_format" in capsys.readouterr().err

    def test_validate_reports_unknown_log_level(self, cli, monkeypatch, capsys):
        monkeypatch.setenv("CERTNET_LOG_LEVEL", "loud")
        assert cli.run(["config", "validate"]) == 2
        assert "log_level" in capsys.readouterr().err

    @pytest.mark.parametrize("env_var,value,key", [
        ("CERTNET_REGISTRATION_FAILURE_POLICY", "bogus", "registration_failure_policy"),
        ("CERTNET_KEY_SEED", "zz", "key_seed"),
        ("CERTNET_STAKE", "lots", "stake"),
    ])
    @pytest.mark.parametrize("command", [["signer", "tick"], ["signer", "run", "--max-ticks", "1"]])
    def test_signer_commands_reject_invalid_environment(self, cli, monkeypatch, capsys, env_var, value, key, command):
        monkeypatch.setenv(env_var, value)

        with patch("urllib.request.urlopen") as urlopen:
            assert cli.run(command) == 2

        urlopen.assert_not_called()
        err = capsys.readouterr().err
        assert "Invalid configuration" in err
        assert key in err
