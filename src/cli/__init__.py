"""Command line interface for the tranche staking ledger."""
