from sqlalchemy import func
from sqlalchemy.dialects.postgresql import JSONB
from prdbuilder.extensions import db

JSON_TYPE = db.JSON().with_variant(JSONB(), "postgresql")

class StripeEvent(db.Model):
    """Append-only audit log: one row per verified webhook delivery."""
    __tablename__ = "stripe_events"

    id = db.Column(db.Integer, primary_key=True)
    # Not unique: redeliveries of the same event append a new row
    stripe_event_id = db.Column(db.String(255), nullable=True, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    payload = db.Column(JSON_TYPE, nullable=False, default=dict)
    notes = db.Column(db.String(255), nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<StripeEvent id={self.id} type={self.type!r} stripe_event_id={self.stripe_event_id!r}>"
