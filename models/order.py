"""Order model definition."""

from datetime import datetime
from decimal import Decimal
from pathlib import PurePosixPath

from . import db


STATUS_PENDING = "Pending Assignment"
STATUS_IN_PROGRESS = "In Progress"
STATUS_SUBMITTED = "Submitted"
STATUS_DELIVERED = "Delivered to Client"
ORDER_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_SUBMITTED, STATUS_DELIVERED)

PAYMENT_UNPAID = "unpaid"
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_STATUSES = (PAYMENT_UNPAID, PAYMENT_PENDING, PAYMENT_PAID)

_ACTIVE_CLAUSE = db.text(f"status = '{STATUS_IN_PROGRESS}'")


class Order(db.Model):
    """A unit of writing work owned by a client and optionally held by a writer."""

    __tablename__ = "orders"
    __table_args__ = (
        # A writer holds at most one order in progress, whatever the application does.
        db.Index(
            "uq_orders_active_writer",
            "writer_id",
            unique=True,
            sqlite_where=_ACTIVE_CLAUSE,
            postgresql_where=_ACTIVE_CLAUSE,
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    client_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    writer_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status = db.Column(
        db.String(32),
        nullable=False,
        default=STATUS_PENDING,
        server_default=db.text(f"'{STATUS_PENDING}'"),
    )
    submission_date = db.Column(db.String(64), nullable=True)
    expected_ready = db.Column(db.String(64), nullable=True)
    client_guide = db.Column(db.String(512), nullable=True)
    submission_file = db.Column(db.String(512), nullable=True)
    payment_status = db.Column(
        db.String(16),
        nullable=False,
        default=PAYMENT_UNPAID,
        server_default=db.text(f"'{PAYMENT_UNPAID}'"),
    )
    payment_ref = db.Column(db.String(128), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    client = db.relationship("User", foreign_keys=[client_id], passive_deletes=True)
    writer = db.relationship("User", foreign_keys=[writer_id], passive_deletes=True)

    @property
    def is_paid(self) -> bool:
        return str(self.payment_status or "").lower() == PAYMENT_PAID

    @property
    def submission_filename(self) -> str | None:
        if not self.submission_file:
            return None
        return PurePosixPath(self.submission_file).name

    def to_dict(self, include_names: bool = False) -> dict:
        """Serialize the order into a dictionary."""

        amount = float(self.amount) if isinstance(self.amount, Decimal) else self.amount
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "client_id": self.client_id,
            "writer_id": self.writer_id,
            "status": self.status,
            "submission_date": self.submission_date,
            "expected_ready": self.expected_ready,
            "client_guide": self.client_guide,
            "submission_file": self.submission_file,
            "payment_status": self.payment_status,
            "payment_ref": self.payment_ref,
            "amount": amount,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_names:
            data["client_name"] = self.client.name if self.client else None
            data["writer_name"] = self.writer.name if self.writer else None
        return data

    def payment_summary(self) -> dict:
        amount = float(self.amount) if isinstance(self.amount, Decimal) else self.amount
        return {
            "id": self.id,
            "payment_status": self.payment_status,
            "payment_ref": self.payment_ref,
            "amount": amount,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} writer_id={self.writer_id}>"
