"""pushdispatch Test Suite

Test organization:
- unit/: Unit tests for individual modules
  - models/: Message, Subscription and dispatch state machine
  - push/: VAPID keys, signer, transport status mapping
  - queue/: Collapse table, retry policy, delivery scheduler
  - store/: In-memory and SQLite subscription stores
  - config/: YAML and environment configuration

Running tests:
    # All tests
    pytest

    # Specific module
    pytest tests/unit/queue/
"""
