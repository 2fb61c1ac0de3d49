"""Persistence for the quote cache and the usage ledger."""
