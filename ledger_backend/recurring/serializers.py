# recurring/serializers.py

"""
Input validation for recurring rules (create / partial update).

Options are stored as plain JSON on the rule: dates as ISO strings, unset
keys omitted.
"""

from rest_framework import serializers

from recurring.models import RecurringRule


class RecurringOptionsSerializer(serializers.Serializer):
    day_of_month = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=31)
    weekday = serializers.IntegerField(required=False, allow_null=True, min_value=0, max_value=6)
    nth_week = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=5)
    nth_weekday = serializers.IntegerField(required=False, allow_null=True, min_value=0, max_value=6)
    end_of_month = serializers.BooleanField(required=False)
    interval_days = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    interval_weeks = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    pause_until = serializers.DateField(required=False, allow_null=True)
    resume_on = serializers.DateField(required=False, allow_null=True)
    due_days = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    invoice_number_prefix = serializers.CharField(required=False, allow_blank=True, max_length=30)

    def validate(self, attrs):
        if (attrs.get("nth_week") is None) != (attrs.get("nth_weekday") is None):
            raise serializers.ValidationError(
                {"nth_week": ["nth_week and nth_weekday must be given together."]}
            )
        return attrs

    @staticmethod
    def to_options(attrs: dict) -> dict:
        out = {}
        for key, value in attrs.items():
            if value is None or value == "":
                continue
            out[key] = value.isoformat() if hasattr(value, "isoformat") else value
        return out


class RecurringRuleSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, max_length=150, default="")
    kind = serializers.CharField()
    cadence = serializers.CharField()
    start_date = serializers.DateField()
    end_date = serializers.DateField(required=False, allow_null=True, default=None)
    options = RecurringOptionsSerializer(required=False)
    payload_template = serializers.DictField()

    def _choice(self, value, choices):
        v = (value or "").strip().upper()
        allowed = [c for c, _ in choices]
        if v not in allowed:
            raise serializers.ValidationError(f"Must be one of: {', '.join(allowed)}.")
        return v

    def validate_kind(self, value):
        return self._choice(value, RecurringRule.KIND_CHOICES)

    def validate_cadence(self, value):
        return self._choice(value, RecurringRule.CADENCE_CHOICES)

    def validate_payload_template(self, value):
        if not value:
            raise serializers.ValidationError("payload_template cannot be empty.")
        return value

    def validate(self, attrs):
        start = attrs.get("start_date") or getattr(self.instance, "start_date", None)
        end = attrs.get("end_date", getattr(self.instance, "end_date", None))
        if start and end and end < start:
            raise serializers.ValidationError({"end_date": ["end_date cannot be before start_date."]})
        return attrs
