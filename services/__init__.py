"""
ZK Relay Services
=================

Network services built on the zkrelay core.

Services:
- relay: Proof-to-chain relay API
"""

__all__ = [
    "relay",
]
