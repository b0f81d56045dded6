from prdbuilder.extensions import db, mail
from prdbuilder.models import EmailLog
from prdbuilder.services.email import send_email, send_payment_failed_email

def test_payment_failed_templates_include_action_url(app):
    ctx = dict(
        action_url="http://example.test/billing",
        user_name="owner@example.com",
        product_name="PRD Builder Pro",
        stripe_subscription_id="sub_123",
    )
    with app.app_context():
        html = app.jinja_env.get_template("email/payment_failed.html").render(**ctx)
        txt = app.jinja_env.get_template("email/payment_failed.txt").render(**ctx)
    assert "http://example.test/billing" in html
    assert "http://example.test/billing" in txt
    assert "PRD Builder Pro" in txt

def test_send_email_logs_sent(app, make_user):
    uid, _ = make_user("mail@example.com")
    with app.test_request_context():
        with mail.record_messages() as outbox:
            ok = send_email(
                to_email="Mail@Example.com",
                subject="Hello",
                template="payment_failed",
                context={"action_url": "x", "user_name": "m", "product_name": "p", "stripe_subscription_id": "s"},
                user_id=uid,
            )
        assert ok is True
        assert len(outbox) == 1
        row = db.session.query(EmailLog).one()
        assert row.to_email == "mail@example.com"
        assert row.status == "sent"

def test_payment_failed_email_goes_to_owners_only(app, make_user):
    from prdbuilder.models import WorkspaceMember, ROLE_EDITOR
    owner_id, ws_id = make_user("boss@example.com")
    editor_id, _ = make_user("editor@example.com", with_workspace=False)
    with app.app_context():
        db.session.add(WorkspaceMember(workspace_id=ws_id, user_id=editor_id, role=ROLE_EDITOR))
        db.session.commit()

    with app.test_request_context():
        with mail.record_messages() as outbox:
            sent = send_payment_failed_email(ws_id, stripe_subscription_id="sub_9")
    assert sent == 1
    assert [m.recipients for m in outbox] == [["boss@example.com"]]
