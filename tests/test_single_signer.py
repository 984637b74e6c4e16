import hashlib

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from certnet.entities import ProtocolParameters, SignerWithStake
from certnet.signer.single_signer import (
    CodecError,
    Ed25519SingleSigner,
    NoProtocolInitializerError,
    ProtocolInitializer,
    SingleSignerError,
    UnregisteredPartyIdError,
    UnregisteredVerificationKeyError,
    encode_verification_key,
    lottery_threshold,
    lottery_value,
)

SEED_A = hashlib.sha256(b"signer-a").digest()
SEED_B = hashlib.sha256(b"signer-b").digest()


def _distribution(*entries):
    return [
        SignerWithStake(
            party_id=party_id,
            verification_key=encode_verification_key(initializer.verification_key()),
            stake=stake,
        )
        for party_id, initializer, stake in entries
    ]


class TestProtocolInitializer:

    def test_from_seed_is_deterministic(self):
        a1 = ProtocolInitializer.from_seed(10, SEED_A)
        a2 = ProtocolInitializer.from_seed(10, SEED_A)
        b = ProtocolInitializer.from_seed(10, SEED_B)
        assert a1.verification_key() == a2.verification_key()
        assert a1.verification_key() != b.verification_key()
        assert len(a1.verification_key()) == 32

    def test_signature_verifies_with_verification_key(self):
        initializer = ProtocolInitializer.generate(1)
        signature = initializer.sign(b"message")
        Ed25519PublicKey.from_public_bytes(initializer.verification_key()).verify(signature, b"message")

    def test_negative_stake_rejected(self):
        with pytest.raises(ValueError):
            ProtocolInitializer.generate(-1)


class TestVerificationKeyCodec:

    def test_hex_encoding(self):
        assert encode_verification_key(bytes(32)) == "00" * 32

    @pytest.mark.parametrize("key", [b"", bytes(31), bytes(33), "00" * 32, None])
    def test_rejects_non_key_input(self, key):
        with pytest.raises(CodecError):
            encode_verification_key(key)


class TestLottery:

    def test_threshold_bounds(self):
        assert lottery_threshold(0, 100, 0.65) == 0.0
        assert lottery_threshold(100, 100, 0.65) == pytest.approx(0.65)
        assert lottery_threshold(100, 100, 1.0) == 1.0
        assert 0.0 < lottery_threshold(10, 100, 0.65) < 0.65

    def test_threshold_requires_stake(self):
        with pytest.raises(ValueError):
            lottery_threshold(1, 0, 0.5)

    def test_lottery_value_in_unit_interval(self):
        for index in range(20):
            value = lottery_value(index, bytes([index]) * 64)
            assert 0.0 <= value < 1.0


class TestEd25519SingleSigner:

    def test_full_stake_with_phi_one_wins_every_index(self):
        initializer = ProtocolInitializer.from_seed(10, SEED_A)
        signer = Ed25519SingleSigner("a", initializer)
        params = ProtocolParameters(k=2, m=5, phi_f=1.0)

        signatures = signer.compute_single_signatures(b"msg", _distribution(("a", initializer, 10)), params)

        assert [s.index for s in signatures] == [0, 1, 2, 3, 4]
        assert all(s.party_id == "a" for s in signatures)
        public_key = Ed25519PublicKey.from_public_bytes(initializer.verification_key())
        for s in signatures:
            public_key.verify(bytes.fromhex(s.signature), b"msg" + s.index.to_bytes(8, "big"))

    def test_zero_stake_wins_nothing(self):
        a = ProtocolInitializer.from_seed(0, SEED_A)
        b = ProtocolInitializer.from_seed(10, SEED_B)
        signer = Ed25519SingleSigner("a", a)
        params = ProtocolParameters(k=1, m=20, phi_f=0.9)

        signatures = signer.compute_single_signatures(
            b"msg", _distribution(("a", a, 0), ("b", b, 10)), params,
        )

        assert signatures == []

    def test_signatures_are_deterministic(self):
        a = ProtocolInitializer.from_seed(5, SEED_A)
        b = ProtocolInitializer.from_seed(5, SEED_B)
        distribution = _distribution(("a", a, 5), ("b", b, 5))
        params = ProtocolParameters(k=1, m=50, phi_f=0.5)

        first = Ed25519SingleSigner("a", a).compute_single_signatures(b"msg", distribution, params)
        second = Ed25519SingleSigner("a", a).compute_single_signatures(b"msg", distribution, params)

        assert first == second

    def test_unregistered_party(self):
        a = ProtocolInitializer.from_seed(5, SEED_A)
        b = ProtocolInitializer.from_seed(5, SEED_B)
        signer = Ed25519SingleSigner("a", a)
        with pytest.raises(UnregisteredPartyIdError):
            signer.compute_single_signatures(b"m", _distribution(("b", b, 5)), ProtocolParameters(1, 1, 0.5))

    def test_unregistered_verification_key(self):
        a = ProtocolInitializer.from_seed(5, SEED_A)
        b = ProtocolInitializer.from_seed(5, SEED_B)
        signer = Ed25519SingleSigner("a", a)
        with pytest.raises(UnregisteredVerificationKeyError):
            signer.compute_single_signatures(b"m", _distribution(("a", b, 5)), ProtocolParameters(1, 1, 0.5))

    def test_no_protocol_initializer(self):
        signer = Ed25519SingleSigner("a")
        assert signer.get_protocol_initializer() is None
        with pytest.raises(NoProtocolInitializerError):
            signer.compute_single_signatures(b"m", [], ProtocolParameters(1, 1, 0.5))

    def test_distribution_without_stake(self):
        a = ProtocolInitializer.from_seed(0, SEED_A)
        signer = Ed25519SingleSigner("a", a)
        with pytest.raises(SingleSignerError):
            signer.compute_single_signatures(b"m", _distribution(("a", a, 0)), ProtocolParameters(1, 1, 0.5))

    def test_update_protocol_initializer(self):
        signer = Ed25519SingleSigner("a")
        initializer = ProtocolInitializer.generate(3)
        signer.update_protocol_initializer(initializer)
        assert signer.get_protocol_initializer() is initializer
        assert signer.get_party_id() == "a"

    @pytest.mark.slow
    def test_win_rate_tracks_phi(self):
        a = ProtocolInitializer.from_seed(1, SEED_A)
        signer = Ed25519SingleSigner("a", a)
        params = ProtocolParameters(k=1, m=2000, phi_f=0.3)

        signatures = signer.compute_single_signatures(b"msg", _distribution(("a", a, 1)), params)

        assert 0.25 < len(signatures) / params.m < 0.35
