# accounting/services/classifier.py
from __future__ import annotations

import http.client
import json
import logging
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from django.conf import settings

from accounting.services.rate_limiter import ClassifierQuota

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```\s*$")
SUGGESTION_KEYS = frozenset({"accountCode", "reason"})


@dataclass(frozen=True)
class Suggestion:
    account_code: str
    reason: str


def _safe_preview(text: str, limit: int = 300) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + " …(truncated)"


def parse_suggestion(raw: str) -> Suggestion | None:
    """
    Strict contract: a JSON object with exactly {accountCode: str, reason: str}.
    Markdown code fences around the object are tolerated; anything else is
    "no suggestion".
    """
    text = _FENCE_RE.sub("", (raw or "").strip())
    try:
        parsed = json.loads(text)
    except ValueError:
        return None

    if not isinstance(parsed, dict) or set(parsed) != SUGGESTION_KEYS:
        return None

    code = parsed["accountCode"]
    reason = parsed["reason"]
    if not isinstance(code, str) or not isinstance(reason, str):
        return None

    code = code.strip()
    if not code:
        return None

    return Suggestion(account_code=code, reason=reason.strip())


class ClassificationOracle:
    """
    Optional external classifier: given the chart and the expense text, asks a
    remote service for the best account code.

    Never raises. Disabled endpoint, exhausted quota, timeouts, HTTP errors
    and malformed replies all come back as None.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        api_key: str = "",
        timeout: float = 4.0,
        quota: ClassifierQuota | None = None,
        cache_size: int = 256,
        opener: Callable[..., Any] = urlopen,
    ):
        self.endpoint = (endpoint or "").strip()
        self.api_key = (api_key or "").strip()
        self.timeout = timeout
        self.quota = quota
        self.cache_size = cache_size
        self._opener = opener
        self._cache: OrderedDict[tuple, Suggestion | None] = OrderedDict()
        self._cache_lock = threading.Lock()

    @classmethod
    def from_settings(cls, *, quota: ClassifierQuota | None = None) -> "ClassificationOracle":
        cfg = settings.LEDGER["CLASSIFIER"]
        return cls(
            cfg["ENDPOINT"],
            api_key=cfg["API_KEY"],
            timeout=cfg["TIMEOUT_SECONDS"],
            quota=quota or ClassifierQuota.from_settings(),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    def suggest(
        self,
        *,
        accounts: list[dict],
        description: str,
        vendor_name: str,
    ) -> Suggestion | None:
        if not self.enabled:
            return None

        text = " ".join(p for p in (vendor_name, description) if p).strip()
        if not text:
            return None

        cache_key = (text.lower(), tuple(a["code"] for a in accounts))
        with self._cache_lock:
            if cache_key in self._cache:
                self._cache.move_to_end(cache_key)
                return self._cache[cache_key]

        if self.quota is not None:
            decision = self.quota.acquire()
            if not decision.allowed:
                logger.warning(
                    "Classifier quota exhausted (%s limit, retry in %.0fs); skipping oracle",
                    decision.limit,
                    decision.retry_after,
                )
                return None

        suggestion = self._request(
            {
                "accounts": accounts,
                "description": description,
                "vendor": vendor_name,
                "reply_format": {"accountCode": "string", "reason": "string"},
            }
        )

        with self._cache_lock:
            self._cache[cache_key] = suggestion
            if len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return suggestion

    def _request(self, payload: dict) -> Suggestion | None:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            req = Request(
                self.endpoint,
                data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
                headers=headers,
                method="POST",
            )
            with self._opener(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except HTTPError as e:
            logger.warning("Classifier HTTPError: %s", e.code)
            return None
        except URLError as e:
            logger.warning("Classifier URLError: %s", e.reason)
            return None
        except (TimeoutError, OSError, http.client.HTTPException) as e:
            logger.warning("Classifier request failed: %s", e)
            return None
        except ValueError as e:
            # unusable endpoint URL
            logger.warning("Classifier request could not be built: %s", e)
            return None

        suggestion = parse_suggestion(raw)
        if suggestion is None:
            logger.warning("Classifier returned an unusable reply: %s", _safe_preview(raw))
        return suggestion


# ------------------------------------------------------------
# PROCESS-WIDE ORACLE
# ------------------------------------------------------------

_shared: tuple[tuple, ClassificationOracle] | None = None
_shared_lock = threading.Lock()


def _settings_key() -> tuple:
    cfg = settings.LEDGER["CLASSIFIER"]
    return tuple(cfg[k] for k in ("ENDPOINT", "API_KEY", "TIMEOUT_SECONDS", "PER_MINUTE", "PER_DAY"))


def shared_oracle() -> ClassificationOracle:
    """
    The oracle (and its quota and reply cache) every default resolver in this
    process shares, so PER_MINUTE / PER_DAY hold across postings.

    Rebuilt only when the LEDGER["CLASSIFIER"] settings change.
    """
    global _shared
    key = _settings_key()
    with _shared_lock:
        if _shared is None or _shared[0] != key:
            _shared = (key, ClassificationOracle.from_settings())
        return _shared[1]
