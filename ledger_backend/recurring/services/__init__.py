from .rules import create_rule, delete_rule, pause_rule, preview_occurrences, resume_rule, update_rule
from .scheduler import RecurringScheduler, RunOutcome, materialize
from .ticker import RecurringTicker

__all__ = [
    "RecurringScheduler",
    "RecurringTicker",
    "RunOutcome",
    "create_rule",
    "delete_rule",
    "materialize",
    "pause_rule",
    "preview_occurrences",
    "resume_rule",
    "update_rule",
]
