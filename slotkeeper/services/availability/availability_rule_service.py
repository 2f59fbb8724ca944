# ===== slotkeeper/services/availability/availability_rule_service.py =====
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging
import secrets
import string
import uuid

from slotkeeper.config.settings import get_settings
from slotkeeper.core.exceptions import NotFoundError, ValidationError
from slotkeeper.models import AvailabilityRule
from slotkeeper.repositories.base import AvailabilityRuleRepository
from slotkeeper.schemas.calendar_events import AvailabilityRuleCreate, AvailabilityRuleUpdate

logger = logging.getLogger(__name__)

SHARE_TOKEN_ALPHABET = string.ascii_lowercase + string.digits
SHARE_TOKEN_ATTEMPTS = 10


def _to_columns(values: Dict[str, Any]) -> Dict[str, Any]:
    """Schema values to JSON-column friendly values"""
    columns = dict(values)
    if columns.get("time_ranges") is not None:
        columns["time_ranges"] = [
            {"start": time_range["start"], "end": time_range["end"]}
            for time_range in columns["time_ranges"]
        ]
    if columns.get("calendar_ids") is not None:
        columns["calendar_ids"] = [str(calendar_id) for calendar_id in columns["calendar_ids"]]
    return columns


class AvailabilityRuleService:
    """Owner-side management of availability rules and their share tokens"""

    def __init__(self, rule_repository: AvailabilityRuleRepository, token_length: Optional[int] = None):
        self.rule_repository = rule_repository
        self.token_length = token_length or get_settings().SHARE_TOKEN_LENGTH

    async def create_rule(self, owner_id: UUID, data: AvailabilityRuleCreate) -> AvailabilityRule:
        share_token = await self._generate_share_token()
        rule = AvailabilityRule(
            owner_id=owner_id,
            share_token=share_token,
            **_to_columns(data.model_dump()),
        )
        rule = await self.rule_repository.add(rule)
        logger.info(f"Availability rule {rule.id} created for owner {owner_id} (token {share_token})")
        return rule

    async def update_rule(self, rule_id: UUID, data: AvailabilityRuleUpdate) -> AvailabilityRule:
        rule = await self.get_rule(rule_id)
        changes = _to_columns(data.model_dump(exclude_unset=True))

        start_date = changes.get("start_date", rule.start_date)
        end_date = changes.get("end_date", rule.end_date)
        if start_date and end_date and start_date > end_date:
            raise ValidationError("start_date must not be after end_date")

        updated = await self.rule_repository.update(rule_id, changes)
        if updated is None:
            raise NotFoundError(f"Availability rule not found: {rule_id}")
        logger.info(f"Availability rule {rule_id} updated: {sorted(changes)}")
        return updated

    async def get_rule(self, rule_id: UUID) -> AvailabilityRule:
        rule = await self.rule_repository.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Availability rule not found: {rule_id}")
        return rule

    async def get_rule_by_share_token(self, share_token: str) -> AvailabilityRule:
        """Public lookup; inactive rules are not exposed"""
        rule = await self.rule_repository.get_by_share_token(share_token)
        if rule is None or not rule.is_active:
            raise NotFoundError("Availability rule not found")
        return rule

    async def list_rules(self, owner_id: UUID) -> List[AvailabilityRule]:
        return await self.rule_repository.list_by_owner(owner_id)

    async def delete_rule(self, rule_id: UUID) -> None:
        if not await self.rule_repository.delete(rule_id):
            raise NotFoundError(f"Availability rule not found: {rule_id}")
        logger.info(f"Availability rule {rule_id} deleted")

    async def _generate_share_token(self) -> str:
        for _ in range(SHARE_TOKEN_ATTEMPTS):
            token = "".join(secrets.choice(SHARE_TOKEN_ALPHABET) for _ in range(self.token_length))
            if not await self.rule_repository.share_token_exists(token):
                return token

        logger.warning("Share token space congested, falling back to a uuid-derived token")
        return uuid.uuid4().hex[:self.token_length]
