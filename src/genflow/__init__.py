"""
genflow - Execution engine for node-based AI generation workflows.

Runs workflow graphs against pluggable generation providers with
fallback chains, charging each node against a per-user credit ledger.
"""

__version__ = "0.1.0"
