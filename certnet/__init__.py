"""
certnet: certified transaction proofs and beacon-driven signing.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────┐
    │  CLIENT SIDE                                                        │
    │    merkle.py      Merkle tree, batch membership proofs, hex codec   │
    │    messages.py    Certified transactions message verification       │
    │    schema.py      Wire schema validation                            │
    │                                                                     │
    │  SIGNER SIDE                                                        │
    │    signer/certificate_handler.py   Aggregator REST client           │
    │    signer/single_signer.py         Stake-weighted lottery signer    │
    │    signer/runtime.py               Tick state machine + scheduler   │
    │                                                                     │
    │  AMBIENT                                                            │
    │    config.py  observability.py  resilience.py  cli.py               │
    └─────────────────────────────────────────────────────────────────────┘

A client receives a `CertifiedTransactionsMessage` from an aggregator and
checks, with `verify()`, that every transaction it names is a member of the
certified Merkle tree. The verified result feeds a `ProtocolMessage` whose
hash is compared with the one signed in the certificate.

A signer runs `SignerRuntime.tick()` on a schedule: it signs each new beacon
once and registers its identity every tick.
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import certnet modules on first access."""

    if name in ("MerkleTree", "MerkleProof", "MerkleProofError", "MerkleProofDecodeError"):
        from certnet import merkle
        return getattr(merkle, name)

    if name in ("Beacon", "ProtocolParameters", "SignerWithStake", "CertificatePending",
                "SingleSignature", "Signer", "ProtocolMessage", "ProtocolMessagePartKey"):
        from certnet import entities
        return getattr(entities, name)

    if name in ("CertifiedTransactionsMessage", "SetProofMessagePart", "TransactionsSetProof",
                "VerifiedCertifiedTransactions", "VerifyTransactionsProofsError",
                "MalformedDataError", "InvalidSetProofError", "NonMatchingMerkleRootError",
                "NoCertifiedTransactionError", "MessageSchemaError", "fill_protocol_message"):
        from certnet import messages
        return getattr(messages, name)

    if name in ("SignerRuntime", "SignerRunner", "SignerState", "SignerPhase",
                "SignerError", "RegistrationFailurePolicy"):
        from certnet.signer import runtime
        return getattr(runtime, name)

    raise AttributeError(f"module 'certnet' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Merkle
    "MerkleTree",
    "MerkleProof",
    "MerkleProofError",
    "MerkleProofDecodeError",
    # Entities
    "Beacon",
    "ProtocolParameters",
    "SignerWithStake",
    "CertificatePending",
    "SingleSignature",
    "Signer",
    "ProtocolMessage",
    "ProtocolMessagePartKey",
    # Messages
    "CertifiedTransactionsMessage",
    "SetProofMessagePart",
    "TransactionsSetProof",
    "VerifiedCertifiedTransactions",
    "VerifyTransactionsProofsError",
    "MalformedDataError",
    "InvalidSetProofError",
    "NonMatchingMerkleRootError",
    "NoCertifiedTransactionError",
    "MessageSchemaError",
    "fill_protocol_message",
    # Signer runtime
    "SignerRuntime",
    "SignerRunner",
    "SignerState",
    "SignerPhase",
    "SignerError",
    "RegistrationFailurePolicy",
]
