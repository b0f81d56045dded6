from sqlalchemy import func
from prdbuilder.extensions import db

# Statuses consumers treat as "paid up"
ACTIVE_STATUSES = ("active", "trialing")
STATUS_CANCELED = "canceled"

class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    # No per-workspace uniqueness: upgrades create new Stripe subscriptions and history is kept
    workspace_id = db.Column(db.String(36), db.ForeignKey("workspaces.id", ondelete="RESTRICT"), nullable=False, index=True)

    stripe_subscription_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    plan_id = db.Column(db.String(64), nullable=True, index=True)
    # Price of the first item; carries the billing cycle
    price_id = db.Column(db.String(64), nullable=True)
    # Provider-defined string: active, trialing, past_due, canceled, incomplete, ...
    status = db.Column(db.String(32), nullable=False, index=True, server_default="incomplete")
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "plan_id": self.plan_id,
            "price_id": self.price_id,
            "status": self.status,
            "is_active": self.is_active,
            "current_period_end": self.current_period_end.isoformat() if self.current_period_end else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} workspace_id={self.workspace_id!r} status={self.status!r} plan_id={self.plan_id!r}>"
