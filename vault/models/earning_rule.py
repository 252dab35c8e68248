"""
Earning rule model.
"""
from datetime import datetime
from ..extensions import db


class EarningRule(db.Model):
    """
    Named rule granting a fixed number of base points when it fires.

    The tier multiplier is applied on top of the base points at earn time.
    """
    __tablename__ = 'vault_earning_rules'

    id = db.Column(db.Integer, primary_key=True)
    collecto_id = db.Column(db.String(64), nullable=False, index=True)

    rule_title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    points = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('collecto_id', 'rule_title', name='uq_rule_collecto_title'),
    )

    def __repr__(self):
        return f'<EarningRule {self.rule_title}: {self.points} pts>'

    def to_dict(self):
        return {
            'id': self.id,
            'collecto_id': self.collecto_id,
            'rule_title': self.rule_title,
            'description': self.description,
            'points': self.points,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
