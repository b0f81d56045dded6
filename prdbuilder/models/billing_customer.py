from sqlalchemy import func
from prdbuilder.extensions import db

class BillingCustomer(db.Model):
    __tablename__ = "billing_customers"

    id = db.Column(db.Integer, primary_key=True)
    # Upsert key: one Stripe customer per user
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, unique=True, index=True)
    workspace_id = db.Column(db.String(36), db.ForeignKey("workspaces.id", ondelete="RESTRICT"), nullable=False, index=True)
    # NULL until the first checkout creates the Stripe customer
    stripe_customer_id = db.Column(db.String(64), nullable=True, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<BillingCustomer id={self.id} user_id={self.user_id!r} stripe_customer_id={self.stripe_customer_id!r}>"
