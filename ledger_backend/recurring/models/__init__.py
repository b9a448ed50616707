# recurring/models/__init__.py

from recurring.models.rule import RecurringRule

__all__ = [
    "RecurringRule",
]
