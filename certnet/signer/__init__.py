"""Signer side: aggregator client, signature computer and tick runtime."""

from certnet.signer.certificate_handler import (
    CertificateHandler,
    CertificateHandlerError,
    HttpCertificateHandler,
    JsonParseError,
    RemoteServerLogicalError,
    RemoteServerTechnicalError,
)
from certnet.signer.runtime import (
    CodecFailed,
    ConcurrentTickError,
    RegisterSignaturesFailed,
    RegisterSignerFailed,
    RegistrationFailurePolicy,
    RetrievePendingCertificateFailed,
    RetrieveProtocolInitializerFailed,
    RunReport,
    SignerError,
    SignerPhase,
    SignerRunner,
    SignerRuntime,
    SignerState,
    SingleSignaturesComputeFailed,
    beacon_message,
    beacon_protocol_message,
)
from certnet.signer.single_signer import (
    CodecError,
    Ed25519SingleSigner,
    ProtocolInitializer,
    SingleSigner,
    SingleSignerError,
    encode_verification_key,
)

__all__ = [
    "CertificateHandler",
    "CertificateHandlerError",
    "HttpCertificateHandler",
    "JsonParseError",
    "RemoteServerLogicalError",
    "RemoteServerTechnicalError",
    "CodecFailed",
    "ConcurrentTickError",
    "RegisterSignaturesFailed",
    "RegisterSignerFailed",
    "RegistrationFailurePolicy",
    "RetrievePendingCertificateFailed",
    "RetrieveProtocolInitializerFailed",
    "RunReport",
    "SignerError",
    "SignerPhase",
    "SignerRunner",
    "SignerRuntime",
    "SignerState",
    "SingleSignaturesComputeFailed",
    "beacon_message",
    "beacon_protocol_message",
    "CodecError",
    "Ed25519SingleSigner",
    "ProtocolInitializer",
    "SingleSigner",
    "SingleSignerError",
    "encode_verification_key",
]
