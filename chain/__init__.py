"""
Ledger-side Boundaries

Protocols and clients for everything outside this process: the ledger node,
the read-only history index and the price oracle, plus a deterministic
in-memory ledger for tests and local development.
"""
