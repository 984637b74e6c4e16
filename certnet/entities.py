"""
certnet entities

Domain types shared by the proof verification engine and the signer runtime.

    Beacon              When a signature applies (network, epoch, immutable file)
    ProtocolParameters  Lottery parameters of the threshold signature scheme
    CertificatePending  Next beacon to sign, as announced by the aggregator
    ProtocolMessage     Key/value parts whose hash is what a certificate signs

All value types are frozen dataclasses compared by value; the beacon is the
sole driver of signing idempotency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from certnet.core import canonical_digest

TransactionHash = str
PartyId = str


# =============================================================================
# BEACON
# =============================================================================

@dataclass(frozen=True)
class Beacon:
    """Identifier of a certification round."""
    network: str
    epoch: int
    immutable_file_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network,
            "epoch": self.epoch,
            "immutable_file_number": self.immutable_file_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Beacon":
        return cls(
            network=str(data["network"]),
            epoch=int(data["epoch"]),
            immutable_file_number=int(data["immutable_file_number"]),
        )

    def digest(self) -> str:
        """SHA-256 of the canonical beacon."""
        return canonical_digest(self.to_dict())

    def __str__(self) -> str:
        return f"{self.network}/epoch-{self.epoch}/immutable-{self.immutable_file_number}"


# =============================================================================
# PROTOCOL PARAMETERS & STAKE
# =============================================================================

@dataclass(frozen=True)
class ProtocolParameters:
    """
    Lottery parameters.

    k: quorum of won indexes needed to aggregate a certificate
    m: number of lottery indexes each signer plays
    phi_f: probability that a signer holding all the stake wins an index
    """
    k: int
    m: int
    phi_f: float

    def __post_init__(self):
        if self.m <= 0 or self.k <= 0:
            raise ValueError("protocol parameters k and m must be positive")
        if not 0.0 < self.phi_f <= 1.0:
            raise ValueError("protocol parameter phi_f must be in (0, 1]")

    def to_dict(self) -> Dict[str, Any]:
        return {"k": self.k, "m": self.m, "phi_f": self.phi_f}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProtocolParameters":
        return cls(k=int(data["k"]), m=int(data["m"]), phi_f=float(data["phi_f"]))


@dataclass(frozen=True)
class SignerWithStake:
    """A registered signer and its stake in the distribution."""
    party_id: PartyId
    verification_key: str  # hex encoded
    stake: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "party_id": self.party_id,
            "verification_key": self.verification_key,
            "stake": self.stake,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignerWithStake":
        return cls(
            party_id=str(data["party_id"]),
            verification_key=str(data["verification_key"]),
            stake=int(data["stake"]),
        )


StakeDistribution = List[SignerWithStake]


@dataclass(frozen=True)
class CertificatePending:
    """Aggregator-supplied descriptor of the next beacon to be signed."""
    beacon: Beacon
    protocol_parameters: ProtocolParameters
    signers: Tuple[SignerWithStake, ...] = ()

    @property
    def stake_distribution(self) -> StakeDistribution:
        return list(self.signers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "beacon": self.beacon.to_dict(),
            "protocol": self.protocol_parameters.to_dict(),
            "signers": [s.to_dict() for s in self.signers],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CertificatePending":
        return cls(
            beacon=Beacon.from_dict(data["beacon"]),
            protocol_parameters=ProtocolParameters.from_dict(data["protocol"]),
            signers=tuple(SignerWithStake.from_dict(s) for s in data.get("signers", [])),
        )


# =============================================================================
# SIGNATURES & SIGNER IDENTITY
# =============================================================================

@dataclass(frozen=True)
class SingleSignature:
    """One signer's contribution for one won lottery index."""
    party_id: PartyId
    index: int
    signature: str  # hex encoded

    def to_dict(self) -> Dict[str, Any]:
        return {"party_id": self.party_id, "index": self.index, "signature": self.signature}


@dataclass(frozen=True)
class Signer:
    """Identity a signer registers with the aggregator on every tick."""
    party_id: PartyId
    verification_key: str  # hex encoded

    def to_dict(self) -> Dict[str, Any]:
        return {"party_id": self.party_id, "verification_key": self.verification_key}


# =============================================================================
# PROTOCOL MESSAGE
# =============================================================================

class ProtocolMessagePartKey(Enum):
    """Keys of the signable protocol message."""
    SNAPSHOT_DIGEST = "snapshot_digest"
    MERKLE_ROOT = "merkle_root"
    LATEST_IMMUTABLE_FILE_NUMBER = "latest_immutable_file_number"
    NEXT_AGGREGATE_VERIFICATION_KEY = "next_aggregate_verification_key"


@dataclass
class ProtocolMessage:
    """
    Generic signable message.

    Each part is owned by one subsystem; setting a part overwrites any
    previous value for that key and leaves the other parts untouched.
    """
    message_parts: Dict[ProtocolMessagePartKey, str] = field(default_factory=dict)

    def set_message_part(self, key: ProtocolMessagePartKey, value: str) -> None:
        self.message_parts[key] = value

    def get_message_part(self, key: ProtocolMessagePartKey) -> Optional[str]:
        return self.message_parts.get(key)

    def parts(self) -> List[Tuple[ProtocolMessagePartKey, str]]:
        """Parts ordered by key name."""
        return sorted(self.message_parts.items(), key=lambda kv: kv[0].value)

    def keys(self) -> List[ProtocolMessagePartKey]:
        return [k for k, _ in self.parts()]

    def compute_hash(self) -> str:
        """SHA-256 over the key/value parts in key order."""
        return canonical_digest(self.to_dict())

    def to_dict(self) -> Dict[str, str]:
        return {k.value: v for k, v in self.parts()}
