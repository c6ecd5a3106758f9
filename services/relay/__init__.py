"""
Relay Service
=============

HTTP front end for the proof relay pipeline.

This service provides:
- Proof generation, ledger attestation and on-chain verification in one call
- Progress lookup by request id
- Relay reconciliation for unconfirmed transactions
- Claimant verification queries against the verifying contract

Version: 0.1.0
"""

__version__ = "0.1.0"
