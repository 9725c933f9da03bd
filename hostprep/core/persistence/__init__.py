"""Step ledger and run history."""
