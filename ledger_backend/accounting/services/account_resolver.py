# PATH: accounting/services/account_resolver.py

"""
PATH: accounting/services/account_resolver.py

ACCOUNT RESOLVER (AUTHORITATIVE)

This module answers ONE question:
"Which account should this transaction line hit?"

Debit side: an ordered chain of strategies, first match wins:
  1. OVERRIDE   caller-supplied account code (honored if it exists)
  2. HEURISTIC  fixed pattern families (utilities, processor fees, hosting),
                checked before any network call
  3. CATEGORY   logical category key -> account code table
  4. ORACLE     optional external classifier (bounded timeout, never raises)
  5. KEYWORD    keyword -> category -> account table
  6. FALLBACK   6999 General Expense, else 6020 Office Supplies,
                else FALLBACK_ACCOUNT_MISSING

A strategy only proposes a code; the resolver accepts it only if the code
exists in the tenant's chart, otherwise the next tier runs.

Credit side: a fixed table keyed by payment status; negative amounts always
move cash.

Resolution happens BEFORE the ledger writer opens its transaction, so a slow
oracle never holds a database transaction open.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from accounting.models.account import Account
from accounting.models.tenant import Tenant
from accounting.services import chart_of_accounts as coa
from accounting.services.classifier import ClassificationOracle
from accounting.services.exceptions import FallbackAccountMissingError

logger = logging.getLogger(__name__)

# ------------------------------------------------------------
# STATIC TABLES
# ------------------------------------------------------------

CATEGORY_ACCOUNT_CODES = {
    "SOFTWARE": "6030",
    "TELECOMMUNICATIONS": "6150",
    "BANK_FEES": "6100",
    "UTILITIES": "6080",
    "OFFICE_SUPPLIES": "6020",
    "PROFESSIONAL_SERVICES": "6090",
    "INSURANCE": "6110",
    "LEGAL_COMPLIANCE": "6120",
    "TRAINING": "6130",
    "RENT": "6070",
    "TRAVEL": "6060",
    "MARKETING": "6040",
    "COGS": "5010",
    "MEALS": "6140",
    "GENERAL_EXPENSE": "6999",
}

# Categories that carry no real signal: let later tiers try first.
UNINFORMATIVE_CATEGORIES = frozenset({"", "OTHER", "GENERAL", "GENERAL_EXPENSE"})

# Ordered: the first category with a matching keyword wins.
KEYWORD_CATEGORIES = [
    ("SOFTWARE", ["software", "adobe", "microsoft", "google", "cloud", "saas", "hosting",
                  "domain", "server", "api", "slack", "zoom", "dropbox", "notion"]),
    ("TELECOMMUNICATIONS", ["phone", "internet", "wifi", "mobile", "cellular", "verizon",
                            "at&t", "t-mobile", "comcast", "spectrum", "xfinity", "fiber",
                            "telephone", "broadband"]),
    ("BANK_FEES", ["bank", "fee", "fees", "wire", "transfer", "overdraft", "atm",
                   "merchant", "paypal", "stripe"]),
    ("UTILITIES", ["utility", "utilities", "electric", "electricity", "power", "water",
                   "sewer", "garbage", "waste", "heating", "cooling", "energy"]),
    ("OFFICE_SUPPLIES", ["office", "supplies", "stationery", "paper", "printer", "ink",
                         "toner", "desk", "chair", "furniture", "staples", "depot"]),
    ("PROFESSIONAL_SERVICES", ["legal", "attorney", "lawyer", "consulting", "consultant",
                               "accountant", "accounting", "audit", "bookkeeping", "advisor"]),
    ("INSURANCE", ["insurance", "liability", "coverage", "policy", "premium", "dental",
                   "vision"]),
    ("TRAINING", ["training", "education", "course", "workshop", "seminar", "certification",
                  "conference", "learning", "udemy", "coursera", "pluralsight"]),
    ("RENT", ["rent", "lease", "coworking", "workspace"]),
    ("TRAVEL", ["travel", "flight", "hotel", "airfare", "airline", "airport", "uber", "lyft",
                "taxi", "fuel", "parking", "toll", "mileage"]),
    ("MARKETING", ["marketing", "advertising", "ads", "promotion", "facebook", "linkedin",
                   "twitter", "instagram", "youtube", "campaign", "seo", "ppc"]),
    ("MEALS", ["meal", "meals", "food", "restaurant", "lunch", "dinner", "breakfast", "coffee",
               "catering", "starbucks", "doordash", "grubhub", "ubereats"]),
]

HEURISTIC_PATTERNS = [
    (
        "UTILITIES",
        re.compile(
            r"\b(water\s+delivery|bottled\s+water|culligan|sparkletts|primo\s+water"
            r"|electric(ity)?\s+(bill|company|co)|gas\s*&\s*electric|power\s+company"
            r"|utility\s+bill|sewer)\b"
        ),
    ),
    (
        "BANK_FEES",
        re.compile(
            r"\b(stripe|paypal|square|braintree|adyen|shopify\s+payments)\b.*\b(fee|fees|charge|charges)\b"
            r"|\b(processing|merchant|transaction)\s+fees?\b"
        ),
    ),
    (
        "SOFTWARE",
        re.compile(
            r"\b(aws|amazon\s+web\s+services|azure|google\s+cloud|gcp|digitalocean|heroku"
            r"|vercel|netlify|linode|cloudflare|render\.com)\b"
        ),
    ),
]

PAYMENT_STATUS_CREDIT = {
    "paid": coa.CASH,
    "unpaid": coa.ACCOUNTS_PAYABLE,
    "overpaid": coa.CASH,
    "partial": coa.ACCOUNTS_PAYABLE,
    "refunded": coa.CASH,
}

REVENUE_CATEGORY_CODES = {
    "OFFICE_SUPPLIES": "4010",
    "PRODUCTS": "4010",
    "SERVICES": "4030",
    "PROFESSIONAL_SERVICES": "4030",
    "SUBSCRIPTIONS": "4040",
    "SOFTWARE": "4040",
}

FALLBACK_CODES = ("6999", "6020")


def _norm_key(value: str) -> str:
    return (value or "").strip().upper()


# ------------------------------------------------------------
# VALUE TYPES
# ------------------------------------------------------------


@dataclass(frozen=True)
class ResolutionHint:
    category_key: str = ""
    vendor_name: str = ""
    description: str = ""
    suggested_account_code: str = ""

    @property
    def text(self) -> str:
        return " ".join(p for p in (self.vendor_name, self.description) if p).lower()


@dataclass(frozen=True)
class Resolution:
    account: Account
    source: str

    @property
    def code(self) -> str:
        return self.account.code


# ------------------------------------------------------------
# STRATEGIES
# ------------------------------------------------------------


class ResolverStrategy:
    source = ""

    def try_resolve(self, hint: ResolutionHint, chart: coa.TenantChart) -> str | None:
        raise NotImplementedError


class ExplicitOverrideStrategy(ResolverStrategy):
    source = "OVERRIDE"

    def try_resolve(self, hint, chart):
        return (hint.suggested_account_code or "").strip() or None


class HeuristicPatternStrategy(ResolverStrategy):
    source = "HEURISTIC"

    def try_resolve(self, hint, chart):
        text = hint.text
        if not text:
            return None
        for category, pattern in HEURISTIC_PATTERNS:
            if pattern.search(text):
                return CATEGORY_ACCOUNT_CODES[category]
        return None


class CategoryKeyStrategy(ResolverStrategy):
    source = "CATEGORY"

    def try_resolve(self, hint, chart):
        key = _norm_key(hint.category_key)
        if key in UNINFORMATIVE_CATEGORIES:
            return None
        return CATEGORY_ACCOUNT_CODES.get(key)


class OracleStrategy(ResolverStrategy):
    source = "ORACLE"

    def __init__(self, oracle: ClassificationOracle | None):
        self.oracle = oracle

    def try_resolve(self, hint, chart):
        if self.oracle is None or not self.oracle.enabled:
            return None

        accounts = [
            {"code": a.code, "name": a.name, "type": a.account_type}
            for a in chart.accounts()
            if a.account_type == Account.EXPENSE
        ]
        suggestion = self.oracle.suggest(
            accounts=accounts,
            description=hint.description,
            vendor_name=hint.vendor_name,
        )
        if suggestion is None:
            return None

        logger.info(
            "Oracle suggested %s for %r: %s",
            suggestion.account_code,
            hint.vendor_name,
            suggestion.reason,
        )
        return suggestion.account_code


class KeywordStrategy(ResolverStrategy):
    source = "KEYWORD"

    _compiled = [
        (category, re.compile(r"\b(" + "|".join(re.escape(k) for k in words) + r")\b"))
        for category, words in KEYWORD_CATEGORIES
    ]

    def try_resolve(self, hint, chart):
        text = hint.text
        if not text:
            return None
        for category, pattern in self._compiled:
            if pattern.search(text):
                return CATEGORY_ACCOUNT_CODES[category]
        return None


class FallbackStrategy(ResolverStrategy):
    source = "FALLBACK"

    def try_resolve(self, hint, chart):
        for code in FALLBACK_CODES:
            if code in chart:
                if code != FALLBACK_CODES[0]:
                    logger.warning(
                        "Fallback account %s missing for tenant %s; substituting %s",
                        FALLBACK_CODES[0],
                        chart.tenant.code,
                        code,
                    )
                return code
        raise FallbackAccountMissingError(
            f"Neither fallback account ({', '.join(FALLBACK_CODES)}) exists for tenant "
            f"{chart.tenant.code}. Run seed_chart for this tenant.",
            details={"codes": list(FALLBACK_CODES), "tenant": chart.tenant.code},
        )


def default_strategies(oracle: ClassificationOracle | None = None) -> list[ResolverStrategy]:
    return [
        ExplicitOverrideStrategy(),
        HeuristicPatternStrategy(),
        CategoryKeyStrategy(),
        OracleStrategy(oracle),
        KeywordStrategy(),
        FallbackStrategy(),
    ]


# ------------------------------------------------------------
# RESOLVER
# ------------------------------------------------------------


class AccountResolver:
    """
    Tenant-scoped resolver. Holds one chart snapshot for its lifetime, so a
    resolver should be built per posting (or per scheduler sweep).
    """

    def __init__(
        self,
        tenant: Tenant,
        *,
        oracle: ClassificationOracle | None = None,
        strategies: list[ResolverStrategy] | None = None,
        chart: coa.TenantChart | None = None,
    ):
        self.tenant = tenant
        self.chart = chart or coa.TenantChart(tenant)
        self.strategies = strategies if strategies is not None else default_strategies(oracle)

    def resolve_debit_account(self, hint: ResolutionHint) -> Resolution:
        for strategy in self.strategies:
            code = strategy.try_resolve(hint, self.chart)
            if not code:
                continue
            account = self.chart.get(code)
            if account is not None:
                return Resolution(account=account, source=strategy.source)
            logger.debug(
                "%s proposed %s but tenant %s has no such account",
                strategy.source,
                code,
                self.tenant.code,
            )

        # The chain always ends with FallbackStrategy unless a caller replaced it.
        raise FallbackAccountMissingError(
            f"No account could be resolved for tenant {self.tenant.code}",
            details={"tenant": self.tenant.code},
        )

    def resolve_credit_account(self, payment_status: str, amount) -> Resolution:
        if amount is not None and amount < 0:
            return Resolution(account=self.chart.semantic(coa.CASH), source="REFUND")

        status = (payment_status or "").strip().lower()
        key = PAYMENT_STATUS_CREDIT.get(status, coa.ACCOUNTS_PAYABLE)
        return Resolution(account=self.chart.semantic(key), source="PAYMENT_STATUS")

    def resolve_revenue_account(self, category_key: str = "", explicit_code: str = "") -> Resolution:
        explicit = self.chart.get(explicit_code) if explicit_code else None
        if explicit is not None:
            return Resolution(account=explicit, source="OVERRIDE")

        code = REVENUE_CATEGORY_CODES.get(_norm_key(category_key))
        account = self.chart.get(code) if code else None
        if account is not None:
            return Resolution(account=account, source="CATEGORY")

        return Resolution(account=self.chart.semantic(coa.SALES_REVENUE), source="DEFAULT")

    def semantic(self, key: str) -> Account:
        return self.chart.semantic(key)

    def tax_account(self, *, sales: bool) -> Account:
        return self.chart.tax_account(sales=sales)
