from flask import Blueprint

bp = Blueprint("workspace", __name__)

from . import routes  # noqa: E402,F401
