from .lot_ledger import LotLedger, LotLedgerError, LotTake, total_cost, total_taken

__all__ = [
    "LotLedger",
    "LotLedgerError",
    "LotTake",
    "total_cost",
    "total_taken",
]
