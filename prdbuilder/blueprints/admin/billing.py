from flask import jsonify
from . import bp
from prdbuilder.billing.metrics import billing_metrics
from prdbuilder.services.policy import app_admin_required

@bp.get("/billing/metrics")
@app_admin_required
def metrics():
    return jsonify({"metrics": billing_metrics()})
