from typing import Optional
from flask import current_app
from prdbuilder.errors import ValidationError
from prdbuilder.extensions import db
from prdbuilder.models import Workspace, WorkspaceMember, ROLE_OWNER
from prdbuilder.services.persistence import commit

def default_workspace_name(email: Optional[str]) -> str:
    local = (email or "").split("@")[0] or "My"
    return f"{local}'s Workspace"

def create_workspace(user, name: Optional[str] = None) -> Workspace:
    """
    Bootstrap a first workspace with `user` as its owner.
    Users that already belong to any workspace are rejected.
    """
    existing = db.session.query(WorkspaceMember).filter_by(user_id=user.id).first()
    if existing:
        raise ValidationError(
            "User already has a workspace",
            error="User already has a workspace",
            extra={"workspace_id": existing.workspace_id},
        )

    ws = Workspace(name=(name or "").strip() or default_workspace_name(user.email), created_by=user.id)
    db.session.add(ws)
    db.session.flush()
    db.session.add(WorkspaceMember(workspace_id=ws.id, user_id=user.id, role=ROLE_OWNER))
    commit("create workspace")

    current_app.logger.info("workspace.created", extra={"workspace_id": ws.id, "user_id": user.id})
    return ws
