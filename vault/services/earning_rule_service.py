"""
Earning Rule Service.

Admin management of a merchant's earning rules. Rules are soft-deactivated
so historical earnings keep pointing at a real row; delete is reserved for
rules created by mistake.
"""
from typing import Optional, List, Dict, Any

from flask import current_app

from ..extensions import db
from ..models import EarningRule
from ..utils.exceptions import DuplicateError, EarningRuleNotFoundError, ValidationError


MAX_TITLE_LENGTH = 255

# Fields admins may change through update_rule()
EDITABLE_FIELDS = ('rule_title', 'description', 'points', 'is_active')


def _validate_points(points, field: str = 'points') -> int:
    if points is None or isinstance(points, bool):
        raise ValidationError(f'{field} is required', field)
    try:
        value = int(str(points).strip())
    except ValueError:
        raise ValidationError(f'{field} must be a whole number', field)
    if value < 0:
        raise ValidationError(f'{field} must be non-negative', field)
    return value


class EarningRuleService:
    """
    Usage:
        service = EarningRuleService('M1')
        rule = service.create_rule('Invoice Paid', 'Points per paid invoice', 100)
    """

    def __init__(self, collecto_id: str):
        if not collecto_id:
            raise ValidationError('collectoId is required', 'collecto_id')
        self.collecto_id = collecto_id

    def _query(self):
        return EarningRule.query.filter_by(collecto_id=self.collecto_id)

    # ==================== Queries ====================

    def list_rules(self, include_inactive: bool = False) -> List[EarningRule]:
        query = self._query()
        if not include_inactive:
            query = query.filter_by(is_active=True)
        return query.order_by(EarningRule.created_at.asc(), EarningRule.id.asc()).all()

    def list_active_rules(self) -> List[EarningRule]:
        return self.list_rules(include_inactive=False)

    def get_rule(self, rule_id: int) -> EarningRule:
        rule = self._query().filter_by(id=rule_id).first()
        if not rule:
            raise EarningRuleNotFoundError(rule_id)
        return rule

    def get_rule_by_title(self, title: str) -> EarningRule:
        rule = self._query().filter_by(rule_title=(title or '').strip()).first()
        if not rule:
            raise EarningRuleNotFoundError(title)
        return rule

    def list_rules_by_points_range(self, min_points: int, max_points: int) -> List[EarningRule]:
        """Active rules with min_points <= points <= max_points."""
        min_points = _validate_points(min_points, 'min_points')
        max_points = _validate_points(max_points, 'max_points')
        if min_points > max_points:
            raise ValidationError('min_points cannot be greater than max_points')
        return self._query().filter(
            EarningRule.is_active.is_(True),
            EarningRule.points >= min_points,
            EarningRule.points <= max_points
        ).order_by(EarningRule.points.asc(), EarningRule.id.asc()).all()

    # ==================== Mutations ====================

    def create_rule(
        self,
        rule_title: str,
        description: str,
        points,
        is_active: bool = True,
        created_by: str = None
    ) -> EarningRule:
        title = self._validate_title(rule_title)
        if not description or not str(description).strip():
            raise ValidationError('description is required', 'description')
        self._ensure_unique_title(title)

        rule = EarningRule(
            collecto_id=self.collecto_id,
            rule_title=title,
            description=str(description).strip(),
            points=_validate_points(points),
            is_active=bool(is_active),
            created_by=created_by
        )
        db.session.add(rule)
        db.session.commit()

        current_app.logger.info(f'Earning rule created: {self.collecto_id}/{title} ({rule.points} pts)')
        return rule

    def update_rule(self, rule_id: int, updates: Dict[str, Any]) -> EarningRule:
        rule = self.get_rule(rule_id)

        for field, value in updates.items():
            if field not in EDITABLE_FIELDS:
                continue
            if field == 'rule_title':
                value = self._validate_title(value)
                if value != rule.rule_title:
                    self._ensure_unique_title(value, exclude_id=rule.id)
            elif field == 'points':
                value = _validate_points(value)
            elif field == 'description':
                if not value or not str(value).strip():
                    raise ValidationError('description cannot be empty', 'description')
                value = str(value).strip()
            elif field == 'is_active':
                value = bool(value)
            setattr(rule, field, value)

        db.session.commit()
        current_app.logger.info(f'Earning rule {rule_id} updated: {sorted(updates)}')
        return rule

    def update_points(self, rule_id: int, points) -> EarningRule:
        return self.update_rule(rule_id, {'points': points})

    def update_details(self, rule_id: int, rule_title: str = None, description: str = None) -> EarningRule:
        updates = {}
        if rule_title is not None:
            updates['rule_title'] = rule_title
        if description is not None:
            updates['description'] = description
        return self.update_rule(rule_id, updates)

    def activate_rule(self, rule_id: int) -> EarningRule:
        return self.update_rule(rule_id, {'is_active': True})

    def deactivate_rule(self, rule_id: int) -> EarningRule:
        return self.update_rule(rule_id, {'is_active': False})

    def delete_rule(self, rule_id: int) -> None:
        rule = self.get_rule(rule_id)
        db.session.delete(rule)
        db.session.commit()
        current_app.logger.info(f'Earning rule {rule_id} deleted')

    # ==================== Validation ====================

    def _validate_title(self, title: Optional[str]) -> str:
        title = (title or '').strip()
        if not title:
            raise ValidationError('rule_title is required', 'rule_title')
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f'rule_title cannot exceed {MAX_TITLE_LENGTH} characters', 'rule_title')
        return title

    def _ensure_unique_title(self, title: str, exclude_id: int = None) -> None:
        query = self._query().filter_by(rule_title=title)
        if exclude_id:
            query = query.filter(EarningRule.id != exclude_id)
        if query.first():
            raise DuplicateError('EarningRule', f'title {title}')
