"""
Materials Kernel

The request lifecycle and inventory ledger core:
- Append-only stock movements with derived, reproducible balances
- Per-family request state machines with role-checked transitions
- Optimistic concurrency on balances, requests and dispatches
- Full audit trail of every workflow step
"""

__version__ = "0.1.0"
