"""
Relay Errors
============

Exception taxonomy shared by the prover, ledger, chain and pipeline.

Retryable errors (SubmissionError, NotReadyError) are only retried by the
orchestrator around side-effect-free calls. Everything else fails the
stage it was raised in.

Version: 0.1.0
"""


class RelayError(Exception):
    """Base class for all relay pipeline errors."""


class ProofGenerationError(RelayError):
    """The prover rejected the input or the circuit failed."""


class SubmissionError(RelayError):
    """Transport or session failure talking to an external system."""


class AttestationRejectedError(RelayError):
    """The ledger refused the proof record."""


class AttestationFailedError(RelayError):
    """The ledger reported a Failed lifecycle status."""


class AttestationTimeoutError(RelayError):
    """Finalization was not observed within the configured bound."""


class NotReadyError(RelayError):
    """The inclusion proof is not available yet."""


class NotFoundError(RelayError):
    """The ledger does not know the attestation or leaf."""


class InvalidInclusionProofError(RelayError):
    """An inclusion proof does not belong to the finalized attestation."""


class ChainEventTimeoutError(RelayError):
    """The bridge contract did not post the attestation root in time."""


class ContractRevertError(RelayError):
    """The verification transaction reverted."""

    def __init__(self, reason: str, tx_hash: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.tx_hash = tx_hash


class ConfirmationTimeoutError(RelayError):
    """
    The verification transaction was sent but no receipt arrived in time.

    The outcome is ambiguous: the transaction may still be mined, so the
    hash is kept for reconciliation.
    """

    def __init__(self, attestation_id: int, tx_hash: str) -> None:
        super().__init__(
            f"No receipt for relay of attestation {attestation_id} (tx {tx_hash})"
        )
        self.attestation_id = attestation_id
        self.tx_hash = tx_hash


class RelayAlreadyAttemptedError(RelayError):
    """A relay for this attestation was already issued."""

    def __init__(self, attestation_id: int, tx_hash: str | None = None) -> None:
        super().__init__(f"Relay already attempted for attestation {attestation_id}")
        self.attestation_id = attestation_id
        self.tx_hash = tx_hash


class InvalidTransitionError(RelayError):
    """A pipeline state transition skipped or repeated a stage."""
