"""
Alert rule data models.

A rule pairs a typed condition with response metadata. The condition shape
is tied to the rule type: pattern rules carry a PatternCondition, rate rules
carry a RateCondition. Mismatches are rejected at validation time.

Models:
    RuleType: Rule variants (pattern, rate)
    PatternCondition: Conjunction of optional event predicates
    RateCondition: Sliding-window event count
    EscalationLevel: One timed follow-up notification step
    AlertRule: Complete rule definition
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from sentinel.models.alerts import AlertSeverity
from sentinel.models.events import utc_now


class RuleType(str, Enum):
    """
    Alert rule variants.

    Attributes:
        PATTERN: Fires on every event matching the condition.
        RATE: Fires when enough matching events occur within a window.
    """

    PATTERN = "pattern"
    RATE = "rate"


def _as_lower_list(v: Any) -> Optional[List[str]]:
    """Accept a string or a list of strings; normalize to lower-case list."""
    if v is None:
        return None
    if isinstance(v, str):
        return [v.strip().lower()]
    return [str(item).strip().lower() for item in v]


class PatternCondition(BaseModel):
    """
    Pattern rule condition.

    Every present sub-predicate must match; absent ones are wildcards.

    Attributes:
        severity: Event severity must be one of these.
        categories: Event category must be one of these.
        event_type: Event type must equal this value.
        pattern: Case-insensitive regular expression searched in the message.

    Example:
        >>> PatternCondition(severity="critical", pattern="(down|offline)")
    """

    model_config = {"frozen": True, "extra": "forbid"}

    severity: Optional[List[str]] = Field(
        default=None,
        description="Allowed event severities",
    )
    categories: Optional[List[str]] = Field(
        default=None,
        description="Allowed event categories",
    )
    event_type: Optional[str] = Field(
        default=None,
        description="Required event type",
    )
    pattern: Optional[str] = Field(
        default=None,
        description="Case-insensitive regex searched in the message",
    )

    @field_validator("severity", "categories", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> Optional[List[str]]:
        """Allow a single string where a list is expected."""
        return _as_lower_list(v)

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: Optional[str]) -> Optional[str]:
        """Reject patterns that do not compile."""
        if v is not None:
            try:
                re.compile(v, re.IGNORECASE)
            except re.error as e:
                raise ValueError(f"Invalid regex pattern {v!r}: {e}") from e
        return v


class RateCondition(BaseModel):
    """
    Rate rule condition.

    Attributes:
        severity: Only events with one of these severities count.
        category: Only events with one of these categories count.
        count: Number of qualifying events that fires the rule.
        time_window_seconds: Sliding window length.

    Example:
        >>> RateCondition(severity="error", count=10, time_window_seconds=300)
    """

    model_config = {"frozen": True, "extra": "forbid"}

    severity: Optional[List[str]] = Field(
        default=None,
        description="Qualifying event severities",
    )
    category: Optional[List[str]] = Field(
        default=None,
        description="Qualifying event categories",
    )
    count: int = Field(
        ...,
        description="Qualifying events needed within the window",
        ge=1,
    )
    time_window_seconds: int = Field(
        ...,
        description="Sliding window length in seconds",
        gt=0,
    )

    @field_validator("severity", "category", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> Optional[List[str]]:
        """Allow a single string where a list is expected."""
        return _as_lower_list(v)


RuleCondition = Union[PatternCondition, RateCondition]

_CONDITION_MODELS = {
    RuleType.PATTERN: PatternCondition,
    RuleType.RATE: RateCondition,
}


class EscalationLevel(BaseModel):
    """
    One escalation step.

    Attributes:
        delay_seconds: Seconds after the alert triggered that this level fires.
        channels: Channel ids notified at this level.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    delay_seconds: int = Field(
        ...,
        description="Seconds after trigger that this level fires",
        ge=0,
    )
    channels: List[str] = Field(
        ...,
        description="Channel ids notified at this level",
        min_length=1,
    )


class AlertRule(BaseModel):
    """
    Alert rule definition.

    Attributes:
        id: Unique rule identifier (cooldown and rate windows key on it).
        name: Human-readable name.
        description: Free-text description.
        type: Rule variant.
        condition: Condition matching the rule type.
        channels: Channel ids notified when the rule fires.
        severity: Severity of alerts produced by this rule.
        enabled: Whether the rule is evaluated.
        cooldown_seconds: Minimum seconds between two triggers (0 = none).
        escalation_levels: Escalation steps, sorted by ascending delay.
        last_triggered_at: When the rule last fired.
        trigger_count: Number of times the rule fired.

    Example:
        >>> rule = AlertRule(
        ...     name="Login failures",
        ...     type=RuleType.PATTERN,
        ...     condition={"pattern": "(failed|denied)"},
        ...     channels=["ops_slack"],
        ...     severity=AlertSeverity.HIGH,
        ...     cooldown_seconds=300,
        ... )
    """

    model_config = {"extra": "forbid"}

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique rule identifier",
        min_length=1,
    )
    name: str = Field(
        ...,
        description="Human-readable name",
        min_length=1,
        max_length=200,
    )
    description: str = Field(
        default="",
        description="Free-text description",
    )
    type: RuleType = Field(
        ...,
        description="Rule variant",
    )
    condition: RuleCondition = Field(
        ...,
        description="Condition matching the rule type",
    )
    channels: List[str] = Field(
        default_factory=list,
        description="Channel ids notified when the rule fires",
    )
    severity: AlertSeverity = Field(
        default=AlertSeverity.MEDIUM,
        description="Severity of alerts produced by this rule",
    )
    enabled: bool = Field(
        default=True,
        description="Whether the rule is evaluated",
    )
    cooldown_seconds: int = Field(
        default=300,
        description="Minimum seconds between two triggers",
        ge=0,
    )
    escalation_levels: List[EscalationLevel] = Field(
        default_factory=list,
        description="Escalation steps, sorted by ascending delay",
    )
    last_triggered_at: Optional[datetime] = Field(
        default=None,
        description="When the rule last fired",
    )
    trigger_count: int = Field(
        default=0,
        description="Number of times the rule fired",
        ge=0,
    )

    @model_validator(mode="before")
    @classmethod
    def coerce_condition(cls, data: Any) -> Any:
        """Validate the condition against the model that matches the rule type."""
        if not isinstance(data, dict):
            return data
        raw_type = data.get("type")
        condition = data.get("condition")
        if raw_type is None or condition is None or not isinstance(condition, dict):
            return data
        try:
            rule_type = RuleType(raw_type)
        except ValueError:
            return data
        return {**data, "condition": _CONDITION_MODELS[rule_type].model_validate(condition)}

    @model_validator(mode="after")
    def check_condition_type(self) -> "AlertRule":
        """Ensure the condition shape matches the rule type."""
        expected = _CONDITION_MODELS[self.type]
        if not isinstance(self.condition, expected):
            raise ValueError(
                f"Rule type '{self.type.value}' requires a {expected.__name__}"
            )
        return self

    @field_validator("escalation_levels")
    @classmethod
    def sort_levels(cls, v: List[EscalationLevel]) -> List[EscalationLevel]:
        """Order escalation levels by ascending delay."""
        return sorted(v, key=lambda level: level.delay_seconds)

    @property
    def has_escalation(self) -> bool:
        """Check if the rule defines escalation levels."""
        return bool(self.escalation_levels)

    def record_trigger(self, timestamp: Optional[datetime] = None) -> "AlertRule":
        """
        Record that the rule fired.

        Args:
            timestamp: Trigger time, defaults to now.

        Returns:
            AlertRule: Updated rule.
        """
        return self.model_copy(
            update={
                "trigger_count": self.trigger_count + 1,
                "last_triggered_at": timestamp or utc_now(),
            }
        )

    def apply_updates(self, updates: Dict[str, Any]) -> "AlertRule":
        """
        Apply a partial update with full re-validation.

        Args:
            updates: Field values to change. The id cannot be changed.

        Returns:
            AlertRule: New validated rule.

        Raises:
            pydantic.ValidationError: If the merged rule is invalid.
        """
        data = self.model_dump()
        data.update({k: v for k, v in updates.items() if k != "id"})
        if "condition" in updates and isinstance(updates["condition"], BaseModel):
            data["condition"] = updates["condition"].model_dump()
        return AlertRule.model_validate(data)
