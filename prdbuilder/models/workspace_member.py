from sqlalchemy import func, CheckConstraint, UniqueConstraint
from prdbuilder.extensions import db

# Keep simple text+CHECK for evolvable roles (no DB enum migration pain)
ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_EDITOR = "editor"
ROLE_VIEWER = "viewer"
ROLE_CHOICES = (ROLE_OWNER, ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER)

class WorkspaceMember(db.Model):
    __tablename__ = "workspace_members"

    id = db.Column(db.Integer, primary_key=True)

    workspace_id = db.Column(
        db.String(36),
        db.ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.String(64),
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # default is viewer; owner/admin must be explicit
    role = db.Column(db.String(20), nullable=False, server_default=ROLE_VIEWER)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    workspace = db.relationship("Workspace", lazy="joined")

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
        CheckConstraint(
            "role IN ('owner','admin','editor','viewer')",
            name="ck_workspace_members_role_valid",
        ),
    )
