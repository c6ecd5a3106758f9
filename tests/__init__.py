"""
ZK Relay Test Suite
===================

Test organization:
- tests/unit/              - Unit tests (mocks, no network)
- tests/services/relay/    - Relay API tests over ASGITransport

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
    pytest --cov=zkrelay            # With coverage
"""
