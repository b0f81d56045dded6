from typing import Optional, Dict, Any, List
from urllib.parse import urljoin
from flask import current_app, render_template
from flask_mail import Message
from sqlalchemy import select
from prdbuilder.extensions import db, mail
from prdbuilder.services.persistence import commit
from prdbuilder.models import EmailLog, User, WorkspaceMember, ROLE_OWNER
import json
import time


def _log_structured(event: str, **fields):
    """One JSON object per line; no PII beyond the recipient email."""
    current_app.logger.info(json.dumps({"event": event, **fields}))

def absolute_url(path: str) -> str:
    base = current_app.config["APP_BASE_URL"].rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))

def send_email(to_email: str, subject: str, template: str, context: Optional[Dict[str, Any]] = None, user_id: Optional[str] = None) -> bool:
    """
    template: basename under templates/email/ without extension (e.g. 'payment_failed').
    Renders HTML and plaintext, logs to email_logs. Returns True when handed to the mail server.
    """
    context = context or {}
    msg = Message(recipients=[to_email], subject=subject)
    msg.body = render_template(f"email/{template}.txt", **context)
    msg.html = render_template(f"email/{template}.html", **context)

    elog = EmailLog(
        user_id=user_id,
        to_email=to_email.lower(),
        template=template,
        subject=subject,
        status="queued",
        meta={},
    )
    db.session.add(elog)
    commit("record email")

    start = time.perf_counter()
    try:
        mail.send(msg)
    except Exception as ex:
        # SMTP failures are recorded, never raised into billing flows
        latency_ms = int((time.perf_counter() - start) * 1000)
        elog.status = "failed"
        elog.meta = {"error": str(ex)}
        commit("record email")
        current_app.logger.warning(json.dumps({
            "event": "mail_send",
            "template": template,
            "to": to_email.lower(),
            "outcome": "smtp_error",
            "latency_ms": latency_ms,
            "smtp_error": str(ex),
        }))
        return False

    elog.status = "sent"
    commit("record email")
    _log_structured(
        "mail_send",
        template=template,
        to=to_email.lower(),
        outcome="sent",
        latency_ms=int((time.perf_counter() - start) * 1000),
    )
    return True

def _workspace_owners(workspace_id: str) -> List[User]:
    return db.session.execute(
        select(User)
        .join(WorkspaceMember, WorkspaceMember.user_id == User.id)
        .where(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.role == ROLE_OWNER)
    ).scalars().all()

def send_payment_failed_email(workspace_id: str, *, stripe_subscription_id: str) -> int:
    """Tell the workspace owners their last invoice failed; returns emails sent."""
    if not current_app.config.get("BILLING_NOTIFY_PAYMENT_FAILED", True):
        return 0
    sent = 0
    for owner in _workspace_owners(workspace_id):
        ctx = {
            "product_name": current_app.config.get("SITE_NAME", "PRD Builder Pro"),
            "action_url": absolute_url("billing"),
            "user_name": owner.email,
            "stripe_subscription_id": stripe_subscription_id,
        }
        if send_email(
            to_email=owner.email,
            subject="Your payment failed",
            template="payment_failed",
            context=ctx,
            user_id=owner.id,
        ):
            sent += 1
    return sent
