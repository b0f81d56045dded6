from functools import wraps
from typing import Optional
from flask import g, request, session
from flask_login import current_user
from prdbuilder.errors import AuthenticationError, AuthorizationError, ValidationError
from prdbuilder.extensions import db
from prdbuilder.models import WorkspaceMember

def _current_workspace_id() -> Optional[str]:
    # Explicit context wins over the session-selected workspace
    return request.args.get("workspace_id") or session.get("current_workspace_id")

def _membership(workspace_id: str) -> Optional[WorkspaceMember]:
    return db.session.query(WorkspaceMember).filter_by(
        workspace_id=workspace_id, user_id=current_user.id
    ).one_or_none()

def login_required_json(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            raise AuthenticationError("Authentication required")
        return fn(*args, **kwargs)
    return _wrap

def require_member(fn):
    """Require membership (any role) of the current workspace; sets g.workspace_member."""
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            raise AuthenticationError("Authentication required")
        workspace_id = _current_workspace_id()
        if not workspace_id:
            raise ValidationError("workspace_id is required", error="Workspace required")
        m = _membership(workspace_id)
        if not m:
            raise AuthorizationError("You are not a member of this workspace")
        g.workspace_member = m
        return fn(*args, **kwargs)
    return _wrap

def app_admin_required(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            raise AuthenticationError("Authentication required")
        if not getattr(current_user, "is_app_admin", False):
            raise AuthorizationError("Admin access required")
        return fn(*args, **kwargs)
    return _wrap
