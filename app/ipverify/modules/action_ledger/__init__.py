"""
Action Ledger module.

Append-only log of cipher-key actions (encrypt/decrypt) per client IP.
Entries are never updated; retention pruning is the only delete path and is
verified (count, delete, recount) inside a single transaction.
"""
