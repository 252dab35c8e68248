"""
Transaction journal model.

Every point-affecting event is journaled here, keyed by an external
transaction id that doubles as the idempotency key.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from ..extensions import db


class TransactionType(str, Enum):
    """Kinds of journaled events."""
    POINTS_PURCHASE = 'points_purchase'   # Customer bought points (credits bought pool)
    INVOICE_EARNING = 'invoice_earning'   # Paid invoice earned points (credits earned pool)
    REDEMPTION = 'redemption'             # Customer spent points (debits, points is the magnitude)


class TransactionStatus(str, Enum):
    """Journal entry lifecycle. CONFIRMED and FAILED are terminal."""
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


# Reference tag for buy-points journal rows
BUY_POINTS_REFERENCE = 'BUYPOINTS'


class Transaction(db.Model):
    """
    Append-only journal of point-affecting events.

    points is always the non-negative magnitude of the event; the direction
    is carried by the type (REDEMPTION debits, the others credit).
    """
    __tablename__ = 'vault_transactions'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('vault_customers.id'), nullable=False, index=True)
    collecto_id = db.Column(db.String(64), nullable=False, index=True)
    client_id = db.Column(db.String(64), nullable=False)

    # Idempotency key
    transaction_id = db.Column(db.String(100), nullable=False, unique=True)
    partner_transaction_id = db.Column(db.String(100))  # Id issued by the partner on request-to-pay
    reference = db.Column(db.String(255))

    type = db.Column(db.String(30), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))
    points = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.PENDING.value)
    payment_method = db.Column(db.String(50))
    phone = db.Column(db.String(30))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    confirmed_at = db.Column(db.DateTime)

    # Relationships
    customer = db.relationship('Customer', backref=db.backref('transactions', lazy='dynamic'))

    __table_args__ = (
        db.Index('ix_vault_transactions_status_type', 'status', 'type'),
    )

    def __repr__(self):
        return f'<Transaction {self.transaction_id}: {self.type} {self.points} pts [{self.status}]>'

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING.value

    @property
    def is_terminal(self) -> bool:
        return TransactionStatus(self.status).is_terminal

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'collecto_id': self.collecto_id,
            'client_id': self.client_id,
            'transaction_id': self.transaction_id,
            'partner_transaction_id': self.partner_transaction_id,
            'reference': self.reference,
            'type': self.type,
            'amount': float(self.amount or 0),
            'points': self.points,
            'status': self.status,
            'payment_method': self.payment_method,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'confirmed_at': self.confirmed_at.isoformat() if self.confirmed_at else None
        }
