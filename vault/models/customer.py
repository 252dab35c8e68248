"""
Customer model.

A customer is scoped to one merchant (collecto) account and identified there
by the merchant's own client id. Point balances are split into two pools:
earned points (accrued from spend) and bought points (purchased directly).
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy.ext.hybrid import hybrid_property
from ..extensions import db


class Customer(db.Model):
    """
    Loyalty customer of a merchant.

    current_points is derived from the two pools and never stored. Writes to
    the point pools and current_tier_id go through PointsEngine only.
    """
    __tablename__ = 'vault_customers'

    id = db.Column(db.Integer, primary_key=True)
    collecto_id = db.Column(db.String(64), nullable=False, index=True)
    client_id = db.Column(db.String(64), nullable=False)

    name = db.Column(db.String(255))
    email = db.Column(db.String(255))

    # Point pools
    earned_points = db.Column(db.Integer, nullable=False, default=0)
    bought_points = db.Column(db.Integer, nullable=False, default=0)

    current_tier_id = db.Column(db.Integer, db.ForeignKey('vault_tiers.id'), nullable=True)

    # Running totals
    total_purchased = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Optimistic concurrency: stale writes raise StaleDataError
    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    current_tier = db.relationship('Tier')

    __table_args__ = (
        db.UniqueConstraint('collecto_id', 'client_id', name='uq_customer_collecto_client'),
    )
    __mapper_args__ = {'version_id_col': version}

    def __init__(self, **kwargs):
        kwargs.setdefault('earned_points', 0)
        kwargs.setdefault('bought_points', 0)
        kwargs.setdefault('total_purchased', Decimal('0'))
        kwargs.setdefault('is_active', True)
        super().__init__(**kwargs)

    @hybrid_property
    def current_points(self):
        return (self.earned_points or 0) + (self.bought_points or 0)

    @current_points.expression
    def current_points(cls):
        return cls.earned_points + cls.bought_points

    def __repr__(self):
        return f'<Customer {self.collecto_id}/{self.client_id}: {self.current_points} pts>'

    def to_dict(self, include_tier=True):
        data = {
            'id': self.id,
            'collecto_id': self.collecto_id,
            'client_id': self.client_id,
            'name': self.name,
            'email': self.email,
            'earned_points': self.earned_points,
            'bought_points': self.bought_points,
            'current_points': self.current_points,
            'current_tier_id': self.current_tier_id,
            'total_purchased': float(self.total_purchased or 0),
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
        if include_tier:
            data['tier'] = self.current_tier.to_dict() if self.current_tier else None
        return data
