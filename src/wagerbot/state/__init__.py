"""Session state: machine, store, idempotency ledger and persistence."""
