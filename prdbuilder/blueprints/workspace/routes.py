from flask import jsonify, request, session
from flask_login import current_user
from . import bp
from prdbuilder.services.policy import login_required_json
from prdbuilder.services.workspaces import create_workspace

@bp.post("/create")
@login_required_json
def create():
    data = request.get_json(silent=True) or {}
    ws = create_workspace(current_user, name=data.get("name"))
    session["current_workspace_id"] = ws.id
    return jsonify({"success": True, "workspace": ws.to_dict()})
