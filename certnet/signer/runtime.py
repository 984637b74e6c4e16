"""
Signer runtime.

Drives a signer through one *tick* per external trigger:

    1. retrieve the pending certificate from the aggregator
    2. no pending certificate: skip to 5
    3. beacon unseen (or changed): record it, then sign
    4. compute single signatures; register them when there are any
    5. always: register the signer identity and verification key

State machine:

    NO_BEACON ──(new beacon)──▶ PENDING_SIGNATURE ──(same tick)──▶ SIGNED(b)
    SIGNED(b) ──(same beacon)──▶ SIGNED(b)          registration only
    SIGNED(b) ──(beacon b')───▶ PENDING_SIGNATURE ──▶ SIGNED(b')

The beacon is recorded *before* signatures are computed: a computation that
fails is not attempted again for the same beacon. `current_beacon` is the only
durable effect of a failed tick.

Ticks must be serialized by the caller (`SignerRunner` does so); a tick
entered while another one is running fails with `ConcurrentTickError`.
No error is retried inside a tick, except signature registration when the
registration-failure policy is RETRY. Whatever a capability raises surfaces as
the matching `SignerError` subclass, with the original error as its cause.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from certnet.entities import (
    Beacon,
    CertificatePending,
    ProtocolMessage,
    ProtocolMessagePartKey,
    Signer,
    SingleSignature,
)
from certnet.observability import (
    Layer,
    generate_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
    timed_operation,
)
from certnet.resilience import BackoffStrategy, RetryPolicy
from certnet.signer.certificate_handler import (
    CertificateHandler,
    RemoteServerTechnicalError,
)
from certnet.signer.single_signer import SingleSigner, encode_verification_key

logger = get_logger("runtime", Layer.SIGNER)


# =============================================================================
# ERRORS
# =============================================================================

class SignerError(Exception):
    """Base error of a signer tick."""
    pass


class RetrievePendingCertificateFailed(SignerError):
    """The pending certificate could not be retrieved."""
    pass


class SingleSignaturesComputeFailed(SignerError):
    """Single signatures computation failed."""
    pass


class RetrieveProtocolInitializerFailed(SignerError):
    """No protocol initializer is available."""

    def __init__(self, message: str = "could not retrieve protocol initializer"):
        super().__init__(message)


class RegisterSignerFailed(SignerError):
    """Registration of the signer identity failed."""
    pass


class RegisterSignaturesFailed(SignerError):
    """Registration of single signatures failed (RAISE policy only)."""
    pass


class CodecFailed(SignerError):
    """The verification key could not be encoded."""
    pass


class ConcurrentTickError(SignerError):
    """A tick was started while another one is running."""

    def __init__(self):
        super().__init__("a tick is already in progress for this signer")


# =============================================================================
# STATE
# =============================================================================

class SignerPhase(Enum):
    NO_BEACON = "no_beacon"
    PENDING_SIGNATURE = "pending_signature"
    SIGNED = "signed"


@dataclass
class SignerState:
    """Durable state of the runtime: the last beacon a signature was attempted for."""
    current_beacon: Optional[Beacon] = None

    @property
    def phase(self) -> SignerPhase:
        return SignerPhase.NO_BEACON if self.current_beacon is None else SignerPhase.SIGNED


class RegistrationFailurePolicy(Enum):
    """What a tick does when registering single signatures fails."""
    IGNORE = "ignore"  # discard the error, debug log only
    LOG = "log"        # log a warning and continue the tick
    RAISE = "raise"    # fail the tick with RegisterSignaturesFailed
    RETRY = "retry"    # retry technical failures, then log


def beacon_protocol_message(beacon: Beacon) -> ProtocolMessage:
    """Protocol message signed for a beacon."""
    message = ProtocolMessage()
    message.set_message_part(ProtocolMessagePartKey.SNAPSHOT_DIGEST, beacon.digest())
    message.set_message_part(
        ProtocolMessagePartKey.LATEST_IMMUTABLE_FILE_NUMBER,
        str(beacon.immutable_file_number),
    )
    return message


def beacon_message(beacon: Beacon) -> bytes:
    return beacon_protocol_message(beacon).compute_hash().encode("ascii")


# =============================================================================
# RUNTIME
# =============================================================================

class SignerRuntime:
    """
    Idempotent beacon-driven signer.

    Capabilities are injected at construction and owned by the runtime.
    """

    def __init__(
        self,
        certificate_handler: CertificateHandler,
        single_signer: SingleSigner,
        *,
        registration_failure_policy: RegistrationFailurePolicy = RegistrationFailurePolicy.LOG,
        retry_policy: Optional[RetryPolicy] = None,
        message_builder: Callable[[Beacon], bytes] = beacon_message,
        state: Optional[SignerState] = None,
    ):
        self.certificate_handler = certificate_handler
        self.single_signer = single_signer
        self.registration_failure_policy = registration_failure_policy
        if retry_policy is None and registration_failure_policy == RegistrationFailurePolicy.RETRY:
            retry_policy = RetryPolicy(
                max_attempts=3,
                base_delay_seconds=0.5,
                backoff_strategy=BackoffStrategy.EXPONENTIAL,
                retryable_exceptions=(RemoteServerTechnicalError,),
            )
        self.retry_policy = retry_policy
        self.message_builder = message_builder
        self._state = state or SignerState()
        self._tick_lock = threading.Lock()
        self._signing = False

    @property
    def state(self) -> SignerState:
        return self._state

    @property
    def current_beacon(self) -> Optional[Beacon]:
        return self._state.current_beacon

    @property
    def phase(self) -> SignerPhase:
        if self._signing:
            return SignerPhase.PENDING_SIGNATURE
        return self._state.phase

    @timed_operation(logger, "tick")
    def tick(self) -> None:
        """Run one tick. Raises a SignerError subclass on failure."""
        if not self._tick_lock.acquire(blocking=False):
            raise ConcurrentTickError()
        token = set_correlation_id(generate_correlation_id())
        try:
            self._tick()
        finally:
            reset_correlation_id(token)
            self._tick_lock.release()

    def _tick(self) -> None:
        try:
            pending = self.certificate_handler.retrieve_pending_certificate()
        except Exception as e:
            logger.error("Could not retrieve pending certificate", error_code="retrieve_pending", error=str(e))
            raise RetrievePendingCertificateFailed(f"could not retrieve pending certificate: {e}") from e

        if pending is None:
            logger.debug("No pending certificate")
        else:
            self._sign_if_new_beacon(pending)

        self._register_signer()

    def _sign_if_new_beacon(self, pending: CertificatePending) -> None:
        beacon = pending.beacon
        if self._state.current_beacon == beacon:
            logger.debug("Beacon already signed", beacon=str(beacon))
            return

        logger.info(
            "New beacon, computing single signatures",
            beacon=str(beacon),
            previous_beacon=str(self._state.current_beacon) if self._state.current_beacon else "",
        )
        self._state.current_beacon = beacon

        self._signing = True
        try:
            message = self.message_builder(beacon)
            try:
                signatures = self.single_signer.compute_single_signatures(
                    message,
                    pending.stake_distribution,
                    pending.protocol_parameters,
                )
            except Exception as e:
                logger.error("Single signatures computation failed", error_code="compute_signatures", error=str(e))
                raise SingleSignaturesComputeFailed(f"single signatures computation failed: {e}") from e
        finally:
            self._signing = False

        if not signatures:
            logger.info("No lottery index won, nothing to register", beacon=str(beacon))
            return

        self._register_signatures(signatures, beacon)

    def _register_signatures(self, signatures: Sequence[SingleSignature], beacon: Beacon) -> None:
        policy = self.registration_failure_policy

        def register() -> None:
            self.certificate_handler.register_signatures(signatures)

        try:
            if policy == RegistrationFailurePolicy.RETRY and self.retry_policy is not None:
                self.retry_policy.execute(register)
            else:
                register()
        except Exception as e:
            if policy == RegistrationFailurePolicy.RAISE:
                logger.error("Signatures registration failed", error_code="register_signatures", error=str(e))
                raise RegisterSignaturesFailed(f"register signatures failed: {e}") from e
            if policy == RegistrationFailurePolicy.IGNORE:
                logger.debug("Signatures registration failed, ignored", error=str(e))
            else:
                logger.warning(
                    "Signatures registration failed, continuing",
                    beacon=str(beacon),
                    error=str(e),
                )
            return

        logger.info("Signatures registered", beacon=str(beacon), count=len(signatures))

    def _register_signer(self) -> None:
        try:
            initializer = self.single_signer.get_protocol_initializer()
        except Exception as e:
            raise RetrieveProtocolInitializerFailed(f"could not retrieve protocol initializer: {e}") from e
        if initializer is None:
            logger.error("No protocol initializer available", error_code="protocol_initializer")
            raise RetrieveProtocolInitializerFailed()

        try:
            verification_key = encode_verification_key(initializer.verification_key())
        except Exception as e:
            raise CodecFailed(f"codec error: {e}") from e

        signer = Signer(party_id=self.single_signer.get_party_id(), verification_key=verification_key)
        try:
            self.certificate_handler.register_signer(signer)
        except Exception as e:
            logger.error("Signer registration failed", error_code="register_signer", error=str(e))
            raise RegisterSignerFailed(f"register signer failed: {e}") from e


# =============================================================================
# SCHEDULER
# =============================================================================

@dataclass
class RunReport:
    ticks: int = 0
    failures: int = 0
    errors: List[str] = field(default_factory=list)


class SignerRunner:
    """
    Fires serialized ticks on a fixed cadence.

    A failing tick is logged and the next one runs after the usual interval;
    retrying is only ever done by running the next tick.
    """

    def __init__(
        self,
        runtime: SignerRuntime,
        interval_seconds: float,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.runtime = runtime
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self._stopped = threading.Event()

    def stop(self) -> None:
        self._stopped.set()

    def run(self, max_ticks: Optional[int] = None) -> RunReport:
        report = RunReport()
        while not self._stopped.is_set():
            try:
                self.runtime.tick()
            except SignerError as e:
                report.failures += 1
                report.errors.append(str(e))
                logger.error("Tick failed", error_code=type(e).__name__, error=str(e))
            report.ticks += 1

            if max_ticks is not None and report.ticks >= max_ticks:
                break
            self._sleep(self.interval_seconds)

        return report
