"""certnet.messages

Certified transactions proofs: the wire message, its verification and the
protocol message assembler.

A `CertifiedTransactionsMessage` carries one or more set proofs, each proving
a disjoint batch of transaction hashes against the same Merkle root, plus the
hash of the certificate that signs that root. `verify()` is the only way to
obtain a `VerifiedCertifiedTransactions`, which in turn is the only input
accepted by `fill_protocol_message()`.

Verification invariants:
- every set proof must decode and verify on its own;
- all set proofs must share the same Merkle root (exact equality);
- at least one set proof must be present.

Verification holds no shared state and is safe to run concurrently; its only
side effect is a debug timing record.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from certnet.entities import ProtocolMessage, ProtocolMessagePartKey, TransactionHash
from certnet.merkle import MerkleProof, MerkleProofDecodeError, MerkleProofError
from certnet.observability import Layer, get_logger, timed_operation
from certnet.schema import CERTIFIED_TRANSACTIONS_MESSAGE_SCHEMA, validate_against_schema

logger = get_logger("verify", Layer.PROOF)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class VerifyTransactionsProofsError(Exception):
    """Base error of certified transactions proof verification."""
    pass


class MalformedDataError(VerifyTransactionsProofsError):
    """A set proof part could not be decoded into a Merkle proof."""

    def __init__(self, message: str = "Malformed data or unknown set proof format"):
        super().__init__(message)


class InvalidSetProofError(VerifyTransactionsProofsError):
    """The proof of one batch of transactions does not check out."""

    def __init__(self, transactions_hashes: List[TransactionHash]):
        self.transactions_hashes = list(transactions_hashes)
        super().__init__(f"Invalid set proof for transactions hashes: {self.transactions_hashes}")


class NonMatchingMerkleRootError(VerifyTransactionsProofsError):
    """Two valid set proofs were generated against different Merkle trees."""

    def __init__(self, expected_root: str = "", actual_root: str = ""):
        self.expected_root = expected_root
        self.actual_root = actual_root
        super().__init__("All certified transactions set proofs must share the same Merkle root")


class NoCertifiedTransactionError(VerifyTransactionsProofsError):
    """The message does not contain any set proof."""

    def __init__(self):
        super().__init__("There's no certified transaction to verify")


class MessageSchemaError(ValueError):
    """A wire message does not conform to its JSON schema."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid certified transactions message: " + "; ".join(errors))


# ---------------------------------------------------------------------------
# Set proofs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionsSetProof:
    """Decoded set proof: a batch of transaction hashes and its Merkle proof."""
    transactions_hashes: List[TransactionHash]
    proof: MerkleProof

    def merkle_root(self) -> str:
        return self.proof.merkle_root()

    def verify(self) -> None:
        """Raises MerkleProofError if the proof does not cover the hashes."""
        self.proof.verify(self.transactions_hashes)


@dataclass(frozen=True)
class SetProofMessagePart:
    """Wire form of a set proof: hashes plus the hex encoded proof blob."""
    transactions_hashes: List[TransactionHash]
    proof: str

    @classmethod
    def from_set_proof(cls, set_proof: TransactionsSetProof) -> "SetProofMessagePart":
        return cls(
            transactions_hashes=list(set_proof.transactions_hashes),
            proof=set_proof.proof.to_hex(),
        )

    def to_set_proof(self) -> TransactionsSetProof:
        try:
            proof = MerkleProof.from_hex(self.proof)
        except MerkleProofDecodeError as e:
            raise MalformedDataError() from e
        return TransactionsSetProof(transactions_hashes=list(self.transactions_hashes), proof=proof)

    def to_dict(self) -> Dict[str, Any]:
        return {"transactions_hashes": list(self.transactions_hashes), "proof": self.proof}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SetProofMessagePart":
        return cls(transactions_hashes=list(data["transactions_hashes"]), proof=data["proof"])


# ---------------------------------------------------------------------------
# Verified result
# ---------------------------------------------------------------------------

_VERIFICATION_SEAL = object()


@dataclass(frozen=True)
class VerifiedCertifiedTransactions:
    """Set of transactions verified by `CertifiedTransactionsMessage.verify`.

    Can be used to rebuild the part of a `ProtocolMessage` that the
    certificate signs. Instances are only created by successful verification.
    """
    certificate_hash: str
    merkle_root: str
    certified_transactions: List[TransactionHash]
    latest_immutable_file_number: int
    _seal: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self._seal is not _VERIFICATION_SEAL:
            raise TypeError(
                "VerifiedCertifiedTransactions can only be built by verifying "
                "a CertifiedTransactionsMessage"
            )

    def fill_protocol_message(self, message: ProtocolMessage) -> None:
        fill_protocol_message(message, self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "certificate_hash": self.certificate_hash,
            "merkle_root": self.merkle_root,
            "certified_transactions": list(self.certified_transactions),
            "latest_immutable_file_number": self.latest_immutable_file_number,
        }


def fill_protocol_message(message: ProtocolMessage, verified: VerifiedCertifiedTransactions) -> None:
    """Set the Merkle root and latest immutable file number parts of `message`.

    Overwrites previous values for those two keys, leaves every other part alone.
    """
    message.set_message_part(ProtocolMessagePartKey.MERKLE_ROOT, verified.merkle_root)
    message.set_message_part(
        ProtocolMessagePartKey.LATEST_IMMUTABLE_FILE_NUMBER,
        str(verified.latest_immutable_file_number),
    )


# ---------------------------------------------------------------------------
# Wire message
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertifiedTransactionsMessage:
    """A cryptographic proof for a set of transactions."""
    certificate_hash: str
    certified_transactions: List[SetProofMessagePart] = field(default_factory=list)
    non_certified_transactions: List[TransactionHash] = field(default_factory=list)
    latest_immutable_file_number: int = 0

    def transactions_hashes(self) -> List[TransactionHash]:
        """Hashes of every certified transaction, in part order."""
        return [h for part in self.certified_transactions for h in part.transactions_hashes]

    @timed_operation(logger, "verify_certified_transactions")
    def verify(self) -> VerifiedCertifiedTransactions:
        """Verify that all the certified transactions proofs are valid.

        Checks, in input order:
        1. each set proof decodes (MalformedDataError)
        2. each set proof verifies (InvalidSetProofError)
        3. all set proofs share the first proof's Merkle root (NonMatchingMerkleRootError)
        4. there is at least one set proof (NoCertifiedTransactionError)
        """
        merkle_root: Optional[str] = None

        for part in self.certified_transactions:
            set_proof = part.to_set_proof()
            try:
                set_proof.verify()
            except MerkleProofError as e:
                raise InvalidSetProofError(set_proof.transactions_hashes) from e

            part_root = set_proof.merkle_root()
            if merkle_root is None:
                merkle_root = part_root
            elif merkle_root != part_root:
                raise NonMatchingMerkleRootError(merkle_root, part_root)

        if merkle_root is None:
            raise NoCertifiedTransactionError()

        return VerifiedCertifiedTransactions(
            certificate_hash=self.certificate_hash,
            merkle_root=merkle_root,
            certified_transactions=self.transactions_hashes(),
            latest_immutable_file_number=self.latest_immutable_file_number,
            _seal=_VERIFICATION_SEAL,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "certificate_hash": self.certificate_hash,
            "certified_transactions": [p.to_dict() for p in self.certified_transactions],
            "non_certified_transactions": list(self.non_certified_transactions),
            "latest_immutable_file_number": self.latest_immutable_file_number,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Any) -> "CertifiedTransactionsMessage":
        errors = validate_against_schema(data, CERTIFIED_TRANSACTIONS_MESSAGE_SCHEMA)
        if errors:
            raise MessageSchemaError(errors)
        return cls(
            certificate_hash=data["certificate_hash"],
            certified_transactions=[SetProofMessagePart.from_dict(p) for p in data["certified_transactions"]],
            non_certified_transactions=list(data["non_certified_transactions"]),
            latest_immutable_file_number=data["latest_immutable_file_number"],
        )

    @classmethod
    def from_json(cls, text: str) -> "CertifiedTransactionsMessage":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MessageSchemaError([f"$: invalid JSON ({e.msg})"]) from e
        except RecursionError as e:
            raise MessageSchemaError(["$: JSON nested too deeply"]) from e
        return cls.from_dict(data)
