"""
Vault package model (point-purchase SKU).
"""
from datetime import datetime
from decimal import Decimal
from ..extensions import db


class VaultPackage(db.Model):
    """
    A bundle of points sold at a fixed price.

    Buy-points payments are translated into a point quantity by looking up
    the active package whose price matches the amount paid.
    """
    __tablename__ = 'vault_packages'

    id = db.Column(db.Integer, primary_key=True)
    collecto_id = db.Column(db.String(64), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    points_amount = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0'))

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_popular = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('collecto_id', 'name', name='uq_package_collecto_name'),
    )

    def __repr__(self):
        return f'<VaultPackage {self.name}: {self.points_amount} pts for {self.price}>'

    def to_dict(self):
        return {
            'id': self.id,
            'collecto_id': self.collecto_id,
            'name': self.name,
            'points_amount': self.points_amount,
            'price': float(self.price),
            'is_active': self.is_active,
            'is_popular': self.is_popular,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
