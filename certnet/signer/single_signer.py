"""
Signature computer.

A `SingleSigner` turns a message, a stake distribution and the protocol
parameters into the signer's single signatures. `Ed25519SingleSigner`
implements the stake-weighted lottery with Ed25519 keys:

    for index in range(m):
        sig   = Ed25519.sign(message || index)
        ev    = SHA256(index || sig) / 2**256          in [0, 1)
        phi   = 1 - (1 - phi_f) ** (stake / total_stake)
        won   = ev < phi

A signer holding all the stake wins each index with probability phi_f; a
signer with no stake never wins.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
from typing import List, Optional, Protocol, Sequence

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from certnet.entities import (
    PartyId,
    ProtocolParameters,
    SignerWithStake,
    SingleSignature,
)


class SingleSignerError(Exception):
    """Base error of the signature computer."""
    pass


class UnregisteredPartyIdError(SingleSignerError):
    """The signer does not appear in the stake distribution."""
    pass


class UnregisteredVerificationKeyError(SingleSignerError):
    """The stake distribution holds another verification key for this signer."""
    pass


class NoProtocolInitializerError(SingleSignerError):
    """No key material is available to sign."""
    pass


class CodecError(ValueError):
    """A key could not be encoded."""
    pass


def encode_verification_key(key: bytes) -> str:
    """Hex encode a raw Ed25519 verification key."""
    if not isinstance(key, (bytes, bytearray)) or len(key) != 32:
        raise CodecError("verification key must be 32 raw bytes")
    return bytes(key).hex()


class ProtocolInitializer:
    """Key material and stake of a signer for the current epoch."""

    def __init__(self, stake: int, private_key: Ed25519PrivateKey):
        if stake < 0:
            raise ValueError("stake must be >= 0")
        self.stake = stake
        self._private_key = private_key

    @classmethod
    def generate(cls, stake: int) -> "ProtocolInitializer":
        return cls(stake, Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, stake: int, seed: bytes) -> "ProtocolInitializer":
        """Deterministic initializer from a 32-byte seed."""
        return cls(stake, Ed25519PrivateKey.from_private_bytes(seed))

    def verification_key(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def sign(self, data: bytes) -> bytes:
        return self._private_key.sign(data)


class SingleSigner(Protocol):
    """Signature computation capability used by the signer runtime."""

    def compute_single_signatures(
        self,
        message: bytes,
        stake_distribution: Sequence[SignerWithStake],
        protocol_parameters: ProtocolParameters,
    ) -> List[SingleSignature]:
        ...

    def get_party_id(self) -> PartyId:
        ...

    def get_protocol_initializer(self) -> Optional[ProtocolInitializer]:
        ...


def lottery_threshold(stake: int, total_stake: int, phi_f: float) -> float:
    """Probability of winning one index for a signer holding `stake`."""
    if total_stake <= 0:
        raise ValueError("total stake must be positive")
    return 1.0 - (1.0 - phi_f) ** (stake / total_stake)


def lottery_value(index: int, signature: bytes) -> float:
    """Map a signature on a lottery index to [0, 1)."""
    digest = hashlib.sha256(index.to_bytes(8, "big") + signature).digest()
    return int.from_bytes(digest, "big") / float(1 << 256)


class Ed25519SingleSigner:
    """Stake-weighted lottery signer backed by an Ed25519 key."""

    def __init__(self, party_id: PartyId, protocol_initializer: Optional[ProtocolInitializer] = None):
        self.party_id = party_id
        self._protocol_initializer = protocol_initializer

    def get_party_id(self) -> PartyId:
        return self.party_id

    def get_protocol_initializer(self) -> Optional[ProtocolInitializer]:
        return self._protocol_initializer

    def update_protocol_initializer(self, protocol_initializer: ProtocolInitializer) -> None:
        self._protocol_initializer = protocol_initializer

    def compute_single_signatures(
        self,
        message: bytes,
        stake_distribution: Sequence[SignerWithStake],
        protocol_parameters: ProtocolParameters,
    ) -> List[SingleSignature]:
        initializer = self._protocol_initializer
        if initializer is None:
            raise NoProtocolInitializerError("no protocol initializer available")

        own = next((s for s in stake_distribution if s.party_id == self.party_id), None)
        if own is None:
            raise UnregisteredPartyIdError(f"party {self.party_id} is not in the stake distribution")
        if own.verification_key != encode_verification_key(initializer.verification_key()):
            raise UnregisteredVerificationKeyError(
                f"verification key of party {self.party_id} is not registered"
            )

        total_stake = sum(s.stake for s in stake_distribution)
        if total_stake <= 0:
            raise SingleSignerError("stake distribution holds no stake")
        phi = lottery_threshold(own.stake, total_stake, protocol_parameters.phi_f)

        signatures: List[SingleSignature] = []
        for index in range(protocol_parameters.m):
            signature = initializer.sign(message + index.to_bytes(8, "big"))
            if lottery_value(index, signature) < phi:
                signatures.append(SingleSignature(
                    party_id=self.party_id,
                    index=index,
                    signature=signature.hex(),
                ))
        return signatures
