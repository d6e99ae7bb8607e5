"""
Resolution Module: decide what goes into an export and who pays for it.

- resolver: requested ids -> accessible, ordered track list
- ledger: atomic credit reserve / commit / rollback
"""

__all__ = ["resolver", "ledger"]
