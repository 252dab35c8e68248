"""
Vault Package Service.

Admin management of the point bundles customers can buy. The buy-points flow
matches a payment to a package by exact price, so prices are kept as
decimals end to end.
"""
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any

from flask import current_app

from ..extensions import db
from ..models import VaultPackage
from ..utils.exceptions import DuplicateError, PackageNotFoundError, ValidationError


MAX_NAME_LENGTH = 100

EDITABLE_FIELDS = ('name', 'points_amount', 'price', 'is_active', 'is_popular')


class VaultPackageService:
    """
    Usage:
        service = VaultPackageService('M1')
        package = service.create_package('Starter', points_amount=500, price=5000)
    """

    def __init__(self, collecto_id: str):
        if not collecto_id:
            raise ValidationError('collectoId is required', 'collecto_id')
        self.collecto_id = collecto_id

    def _query(self):
        return VaultPackage.query.filter_by(collecto_id=self.collecto_id)

    # ==================== Queries ====================

    def list_packages(self, include_inactive: bool = False) -> List[VaultPackage]:
        query = self._query()
        if not include_inactive:
            query = query.filter_by(is_active=True)
        return query.order_by(VaultPackage.price.asc(), VaultPackage.id.asc()).all()

    def list_active_packages(self) -> List[VaultPackage]:
        return self.list_packages(include_inactive=False)

    def list_popular_packages(self) -> List[VaultPackage]:
        return self._query().filter_by(is_active=True, is_popular=True).order_by(
            VaultPackage.price.asc(), VaultPackage.id.asc()
        ).all()

    def get_package(self, package_id: int) -> VaultPackage:
        package = self._query().filter_by(id=package_id).first()
        if not package:
            raise PackageNotFoundError(package_id)
        return package

    def get_package_by_name(self, name: str) -> VaultPackage:
        package = self._query().filter_by(name=(name or '').strip()).first()
        if not package:
            raise PackageNotFoundError(name)
        return package

    # ==================== Mutations ====================

    def create_package(
        self,
        name: str,
        points_amount,
        price,
        is_active: bool = True,
        is_popular: bool = False,
        created_by: str = None
    ) -> VaultPackage:
        name = self._validate_name(name)
        self._ensure_unique_name(name)

        package = VaultPackage(
            collecto_id=self.collecto_id,
            name=name,
            points_amount=self._validate_points(points_amount),
            price=self._validate_price(price),
            is_active=bool(is_active),
            is_popular=bool(is_popular),
            created_by=created_by
        )
        db.session.add(package)
        db.session.commit()

        current_app.logger.info(
            f'Package created: {self.collecto_id}/{name} {package.points_amount} pts for {package.price}'
        )
        return package

    def update_package(self, package_id: int, updates: Dict[str, Any]) -> VaultPackage:
        package = self.get_package(package_id)

        for field, value in updates.items():
            if field not in EDITABLE_FIELDS:
                continue
            if field == 'name':
                value = self._validate_name(value)
                if value != package.name:
                    self._ensure_unique_name(value, exclude_id=package.id)
            elif field == 'points_amount':
                value = self._validate_points(value)
            elif field == 'price':
                value = self._validate_price(value)
            else:
                value = bool(value)
            setattr(package, field, value)

        db.session.commit()
        current_app.logger.info(f'Package {package_id} updated: {sorted(updates)}')
        return package

    def activate_package(self, package_id: int) -> VaultPackage:
        return self.update_package(package_id, {'is_active': True})

    def deactivate_package(self, package_id: int) -> VaultPackage:
        return self.update_package(package_id, {'is_active': False})

    def mark_popular(self, package_id: int) -> VaultPackage:
        return self.update_package(package_id, {'is_popular': True})

    def unmark_popular(self, package_id: int) -> VaultPackage:
        return self.update_package(package_id, {'is_popular': False})

    def delete_package(self, package_id: int) -> None:
        package = self.get_package(package_id)
        db.session.delete(package)
        db.session.commit()
        current_app.logger.info(f'Package {package_id} deleted')

    # ==================== Validation ====================

    def _validate_name(self, name) -> str:
        name = (name or '').strip()
        if not name:
            raise ValidationError('name is required', 'name')
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f'name cannot exceed {MAX_NAME_LENGTH} characters', 'name')
        return name

    def _validate_points(self, points_amount) -> int:
        if points_amount is None or isinstance(points_amount, bool):
            raise ValidationError('points_amount is required', 'points_amount')
        try:
            value = int(str(points_amount).strip())
        except ValueError:
            raise ValidationError('points_amount must be a whole number', 'points_amount')
        if value <= 0:
            raise ValidationError('points_amount must be greater than 0', 'points_amount')
        return value

    def _validate_price(self, price) -> Decimal:
        if price is None or isinstance(price, bool):
            raise ValidationError('price is required', 'price')
        try:
            value = Decimal(str(price))
        except (InvalidOperation, ValueError):
            raise ValidationError('price must be a number', 'price')
        if not value.is_finite() or value < 0:
            raise ValidationError('price must be non-negative', 'price')
        return value

    def _ensure_unique_name(self, name: str, exclude_id: int = None) -> None:
        query = self._query().filter_by(name=name)
        if exclude_id:
            query = query.filter(VaultPackage.id != exclude_id)
        if query.first():
            raise DuplicateError('VaultPackage', f'name {name}')
