"""
Relay Service Routes
====================

API route handlers for the relay service.
"""

from services.relay.routes import claimants, proofs, relays


__all__ = ["claimants", "proofs", "relays"]
