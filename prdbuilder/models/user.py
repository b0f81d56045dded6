import uuid
from flask_login import UserMixin
from sqlalchemy import func
from prdbuilder.extensions import db, login_manager

class User(db.Model, UserMixin):
    __tablename__ = "users"

    # Identity is issued by the auth provider; we only mirror it
    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(255), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_app_admin = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<User id={self.id!r} email={self.email!r}>"

@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, user_id)
