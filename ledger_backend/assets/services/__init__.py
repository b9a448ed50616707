from .depreciation import (
    DepreciationOutcome,
    compute_monthly_depreciation,
    next_run_from,
    register_asset,
    run_due,
    run_one,
)

__all__ = [
    "DepreciationOutcome",
    "compute_monthly_depreciation",
    "next_run_from",
    "register_asset",
    "run_due",
    "run_one",
]
