"""
In-memory rule registry backed by the alert store.

RuleStore holds the working set of alert rules in storage order. Startup
loads from the store; if the store is unreachable or empty the configured
seed rules (or the built-in defaults) are used instead and written back on
a best-effort basis.

Example:
    >>> rules = RuleStore(store, seed_rules=config.rules.rules)
    >>> await rules.load()
    >>> for rule in rules.enabled_rules():
    ...     ...
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog

from sentinel.detection.defaults import default_alert_rules
from sentinel.errors import PersistenceError
from sentinel.models.events import utc_now
from sentinel.models.rules import AlertRule
from sentinel.storage.base import AlertStore

logger = structlog.get_logger(__name__)


class RuleStore:
    """
    Ordered registry of alert rules.

    In-memory state is authoritative for evaluation; every mutation is
    mirrored to the store, and store failures are logged without rolling
    back the in-memory change.

    Attributes:
        store: Persistence collaborator.
        seed_rules: Rules used when the store provides none.
        _rules: Rules keyed by id, in insertion (storage) order.
    """

    def __init__(
        self,
        store: AlertStore,
        seed_rules: Optional[Sequence[AlertRule]] = None,
    ) -> None:
        self.store = store
        self.seed_rules = list(seed_rules or [])
        self._rules: Dict[str, AlertRule] = {}

    async def load(self) -> List[AlertRule]:
        """
        Load rules from the store, falling back to seeds or defaults.

        Returns:
            List[AlertRule]: Loaded rules in order.
        """
        try:
            stored = await self.store.load_rules()
        except PersistenceError as e:
            logger.error("rule_load_failed_using_defaults", **e.log_fields())
            stored = []
            persist_fallback = False
        else:
            persist_fallback = True

        if stored:
            self._rules = {rule.id: rule for rule in stored}
            logger.info("rules_loaded", count=len(stored), source="store")
            return self.all()

        fallback = self.seed_rules or default_alert_rules()
        self._rules = {rule.id: rule for rule in fallback}
        logger.info(
            "rules_loaded",
            count=len(fallback),
            source="seed" if self.seed_rules else "defaults",
        )

        if persist_fallback:
            for rule in fallback:
                await self._persist(rule)

        return self.all()

    async def _persist(self, rule: AlertRule) -> None:
        try:
            await self.store.save_rule(rule)
        except PersistenceError as e:
            logger.warning("rule_persist_failed", rule_id=rule.id, error=str(e))

    def all(self) -> List[AlertRule]:
        """All rules in storage order."""
        return list(self._rules.values())

    def enabled_rules(self) -> List[AlertRule]:
        """Enabled rules in storage order."""
        return [rule for rule in self._rules.values() if rule.enabled]

    def get(self, rule_id: str) -> Optional[AlertRule]:
        """Get a rule by id."""
        return self._rules.get(rule_id)

    def __len__(self) -> int:
        return len(self._rules)

    async def create(self, rule: AlertRule) -> AlertRule:
        """
        Add a rule.

        Args:
            rule: Validated rule. An existing rule with the same id is replaced.

        Returns:
            AlertRule: The stored rule.
        """
        self._rules[rule.id] = rule
        await self._persist(rule)
        logger.info("rule_created", rule_id=rule.id, rule_name=rule.name, type=rule.type.value)
        return rule

    async def update(self, rule_id: str, updates: Dict[str, Any]) -> Optional[AlertRule]:
        """
        Apply a partial update to a rule.

        Args:
            rule_id: Rule to update.
            updates: Fields to change.

        Returns:
            Optional[AlertRule]: Updated rule, or None if unknown.

        Raises:
            pydantic.ValidationError: If the merged rule is invalid.
        """
        current = self._rules.get(rule_id)
        if current is None:
            return None
        updated = current.apply_updates(updates)
        self._rules[rule_id] = updated
        await self._persist(updated)
        logger.info("rule_updated", rule_id=rule_id, fields=sorted(updates))
        return updated

    async def delete(self, rule_id: str) -> bool:
        """
        Delete a rule.

        Returns:
            bool: True if the rule existed.
        """
        if self._rules.pop(rule_id, None) is None:
            return False
        try:
            await self.store.delete_rule(rule_id)
        except PersistenceError as e:
            logger.warning("rule_delete_persist_failed", rule_id=rule_id, error=str(e))
        logger.info("rule_deleted", rule_id=rule_id)
        return True

    async def record_trigger(self, rule_id: str, timestamp: Optional[datetime] = None) -> None:
        """
        Bump a rule's trigger statistics.

        Args:
            rule_id: Rule that fired.
            timestamp: Trigger time, defaults to now.
        """
        ts = timestamp or utc_now()
        rule = self._rules.get(rule_id)
        if rule is not None:
            self._rules[rule_id] = rule.record_trigger(ts)
        try:
            await self.store.increment_rule_stats(rule_id, ts)
        except PersistenceError as e:
            logger.warning("rule_stats_persist_failed", rule_id=rule_id, error=str(e))
