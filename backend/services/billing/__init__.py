"""Credit ledger."""
