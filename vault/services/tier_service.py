"""
Tier Management Service.

Admin management of a merchant's tier ladder. Customers are not re-tiered
when the ladder is edited; the next balance change (or an explicit
recompute) picks up the new thresholds. Deleting a tier re-tiers its
holders immediately.
"""
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any

from flask import current_app

from ..extensions import db
from ..models import Tier
from ..utils.exceptions import DuplicateError, TierNotFoundError, ValidationError
from .points_engine import PointsEngine


EDITABLE_FIELDS = ('name', 'points_required', 'earning_multiplier', 'is_active')


class TierService:
    """
    Usage:
        service = TierService('M1')
        gold = service.create_tier('Gold', points_required=500, earning_multiplier=1.5)
    """

    def __init__(self, collecto_id: str):
        if not collecto_id:
            raise ValidationError('collectoId is required', 'collecto_id')
        self.collecto_id = collecto_id

    def _query(self):
        return Tier.query.filter_by(collecto_id=self.collecto_id)

    # ==================== Queries ====================

    def list_tiers(self, include_inactive: bool = False) -> List[Tier]:
        query = self._query()
        if not include_inactive:
            query = query.filter_by(is_active=True)
        return query.order_by(Tier.points_required.asc(), Tier.id.asc()).all()

    def get_tier(self, tier_id: int) -> Tier:
        tier = self._query().filter_by(id=tier_id).first()
        if not tier:
            raise TierNotFoundError(tier_id)
        return tier

    # ==================== Mutations ====================

    def create_tier(
        self,
        name: str,
        points_required,
        earning_multiplier=1,
        is_active: bool = True,
        created_by: str = None
    ) -> Tier:
        name = self._validate_name(name)
        self._ensure_unique_name(name)

        tier = Tier(
            collecto_id=self.collecto_id,
            name=name,
            points_required=self._validate_threshold(points_required),
            earning_multiplier=self._validate_multiplier(earning_multiplier),
            is_active=bool(is_active),
            created_by=created_by
        )
        db.session.add(tier)
        db.session.commit()

        current_app.logger.info(
            f'Tier created: {self.collecto_id}/{name} at {tier.points_required} pts x{tier.earning_multiplier}'
        )
        return tier

    def update_tier(self, tier_id: int, updates: Dict[str, Any]) -> Tier:
        tier = self.get_tier(tier_id)

        for field, value in updates.items():
            if field not in EDITABLE_FIELDS:
                continue
            if field == 'name':
                value = self._validate_name(value)
                if value != tier.name:
                    self._ensure_unique_name(value, exclude_id=tier.id)
            elif field == 'points_required':
                value = self._validate_threshold(value)
            elif field == 'earning_multiplier':
                value = self._validate_multiplier(value)
            elif field == 'is_active':
                value = bool(value)
            setattr(tier, field, value)

        db.session.commit()
        current_app.logger.info(f'Tier {tier_id} updated: {sorted(updates)}')
        return tier

    def update_multiplier(self, tier_id: int, earning_multiplier) -> Tier:
        return self.update_tier(tier_id, {'earning_multiplier': earning_multiplier})

    def deactivate_tier(self, tier_id: int) -> Tier:
        return self.update_tier(tier_id, {'is_active': False})

    def delete_tier(self, tier_id: int) -> int:
        """
        Hard-delete a tier.

        Customers holding it are moved by the PointsEngine to the best other
        tier they qualify for, or left untiered.

        Returns:
            Number of customers that lost the tier
        """
        tier = self.get_tier(tier_id)

        # Deactivate first so no earning assigns it while holders are moved
        tier.is_active = False
        db.session.commit()
        detached = PointsEngine().detach_tier(tier.id)

        db.session.delete(tier)
        db.session.commit()
        current_app.logger.info(f'Tier {tier_id} deleted, {detached} customers detached')
        return detached

    # ==================== Validation ====================

    def _validate_name(self, name) -> str:
        name = (name or '').strip()
        if not name:
            raise ValidationError('name is required', 'name')
        if len(name) > 100:
            raise ValidationError('name cannot exceed 100 characters', 'name')
        return name

    def _validate_threshold(self, points_required) -> int:
        if points_required is None or isinstance(points_required, bool):
            raise ValidationError('points_required is required', 'points_required')
        try:
            value = int(str(points_required).strip())
        except ValueError:
            raise ValidationError('points_required must be a whole number', 'points_required')
        if value < 0:
            raise ValidationError('points_required must be non-negative', 'points_required')
        return value

    def _validate_multiplier(self, multiplier) -> Decimal:
        try:
            value = Decimal(str(multiplier))
        except (InvalidOperation, ValueError):
            raise ValidationError('earning_multiplier must be a number', 'earning_multiplier')
        if not value.is_finite() or value <= 0:
            raise ValidationError('earning_multiplier must be greater than 0', 'earning_multiplier')
        return value

    def _ensure_unique_name(self, name: str, exclude_id: int = None) -> None:
        query = self._query().filter_by(name=name)
        if exclude_id:
            query = query.filter(Tier.id != exclude_id)
        if query.first():
            raise DuplicateError('Tier', f'name {name}')
