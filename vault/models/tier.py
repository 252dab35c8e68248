"""
Reward tier model.
"""
from datetime import datetime
from decimal import Decimal
from ..extensions import db


class Tier(db.Model):
    """
    Reward tier of a merchant.

    Tiers form a threshold ladder per collecto account: a customer holds the
    highest active tier whose points_required is within their balance.
    """
    __tablename__ = 'vault_tiers'

    id = db.Column(db.Integer, primary_key=True)
    collecto_id = db.Column(db.String(64), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)  # 'Bronze', 'Silver', 'Gold'
    points_required = db.Column(db.Integer, nullable=False, default=0)
    earning_multiplier = db.Column(db.Numeric(6, 2), nullable=False, default=Decimal('1.00'))

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('collecto_id', 'name', name='uq_tier_collecto_name'),
    )

    def __repr__(self):
        return f'<Tier {self.name} ({self.points_required}+ pts, x{self.earning_multiplier})>'

    def to_dict(self):
        return {
            'id': self.id,
            'collecto_id': self.collecto_id,
            'name': self.name,
            'points_required': self.points_required,
            'earning_multiplier': float(self.earning_multiplier),
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
