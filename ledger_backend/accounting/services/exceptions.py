# accounting/services/exceptions.py

"""
ACCOUNTING SERVICE ERRORS

Centralized domain errors for accounting services.

Every error carries a stable `code` that callers can surface as-is.
Duplicate submissions are NOT errors: they come back as a PostingResult with
is_existing=True (see accounting.services.ledger_writer).
"""

from __future__ import annotations

DUPLICATE_REFERENCE = "DUPLICATE_REFERENCE"
DUPLICATE_INVOICE_NUMBER = "DUPLICATE_INVOICE_NUMBER"
ALREADY_VOIDED = "ALREADY_VOIDED"
SCHEDULE_SKIPPED = "SCHEDULE_SKIPPED"


class AccountingServiceError(Exception):
    """Base exception for all accounting service failures."""

    code = "ACCOUNTING_SERVICE_ERROR"

    def __init__(self, message: str = "", *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class PostingValidationError(AccountingServiceError):
    """Raised when an event payload is malformed. Carries field-level errors."""

    code = "VALIDATION_FAILED"

    def __init__(self, errors: dict, message: str = "Posting payload failed validation"):
        super().__init__(message, details={"fields": errors})
        self.errors = errors


class AccountResolutionError(AccountingServiceError):
    """Raised when an expected account cannot be resolved."""

    code = "ACCOUNT_RESOLUTION_FAILED"


class AccountsNotFoundError(AccountResolutionError):
    """Raised when required chart entries are missing for a tenant."""

    code = "ACCOUNTS_NOT_FOUND"

    def __init__(self, codes, *, tenant_code: str = ""):
        codes = sorted(set(codes))
        super().__init__(
            f"Accounts not found in chart of accounts: {', '.join(codes)}. "
            "Run seed_chart for this tenant or create the accounts.",
            details={"codes": codes, "tenant": tenant_code},
        )
        self.codes = codes


class FallbackAccountMissingError(AccountResolutionError):
    """Raised when neither the catch-all nor its substitute exists."""

    code = "FALLBACK_ACCOUNT_MISSING"


class AccountingError(AccountingServiceError):
    """Raised when a posting cannot be built into a valid journal."""

    code = "ACCOUNTING_ERROR"


class AccountingInvariantViolation(AccountingError):
    """Raised when debits and credits do not balance. Always a logic bug."""

    code = "ACCOUNTING_INVARIANT_VIOLATION"


class JournalEntryCreationError(AccountingError):
    """Raised when a journal entry cannot be created."""


class IdempotencyError(AccountingServiceError):
    """
    Raised inside the unit of work when the reference already exists.
    The ledger writer turns this into an idempotent success.
    """

    code = DUPLICATE_REFERENCE

    def __init__(self, message: str, *, existing=None, code: str = DUPLICATE_REFERENCE):
        super().__init__(message)
        self.existing = existing
        self.code = code
