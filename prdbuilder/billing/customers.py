"""
Billing customer registry: one Stripe customer per user, attached to the
user's billing workspace.
"""
from typing import Optional

import stripe
from flask import current_app
from sqlalchemy import func, select

from prdbuilder.errors import NoWorkspaceError
from prdbuilder.extensions import db
from prdbuilder.models import BillingCustomer, Workspace, WorkspaceMember, ROLE_OWNER
from prdbuilder.services import billing as gateway
from prdbuilder.services.persistence import commit, upsert


def find_by_user(user_id: str) -> Optional[BillingCustomer]:
    return db.session.execute(
        select(BillingCustomer)
        .where(BillingCustomer.user_id == str(user_id))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def find_by_stripe_customer(stripe_customer_id: Optional[str]) -> Optional[BillingCustomer]:
    if not stripe_customer_id:
        return None
    return db.session.execute(
        select(BillingCustomer).where(BillingCustomer.stripe_customer_id == stripe_customer_id)
    ).scalar_one_or_none()


def select_billing_workspace(user_id: str) -> WorkspaceMember:
    """
    Billing is per user, charged to the earliest-created workspace the user owns.
    Swap this rule out if billing ever becomes per workspace.
    """
    owned = db.session.execute(
        select(WorkspaceMember)
        .join(Workspace, Workspace.id == WorkspaceMember.workspace_id)
        .where(WorkspaceMember.user_id == str(user_id), WorkspaceMember.role == ROLE_OWNER)
        .order_by(Workspace.created_at.asc(), WorkspaceMember.id.asc())
    ).scalars().all()

    if not owned:
        current_app.logger.warning("billing.customer.no_workspace", extra={"user_id": user_id})
        raise NoWorkspaceError()

    chosen = owned[0]
    if len(owned) > 1:
        current_app.logger.info(
            "billing.customer.multiple_workspaces",
            extra={
                "user_id": user_id,
                "workspace_id": chosen.workspace_id,
                "workspace_name": chosen.workspace.name if chosen.workspace else None,
                "total_workspaces": len(owned),
            },
        )
    return chosen


def link_customer(*, user_id: str, workspace_id: str, stripe_customer_id: str) -> BillingCustomer:
    """
    Upsert the BillingCustomer keyed by user_id.
    An already-stored Stripe id wins over the incoming one, so concurrent
    callers all end up observing the first writer's customer.
    """
    table = BillingCustomer.__table__
    upsert(
        BillingCustomer,
        {
            "user_id": str(user_id),
            "workspace_id": workspace_id,
            "stripe_customer_id": stripe_customer_id,
        },
        conflict_on=["user_id"],
        update=lambda excluded: {
            "stripe_customer_id": func.coalesce(table.c.stripe_customer_id, excluded.stripe_customer_id),
            "updated_at": func.now(),
        },
    )
    commit("set up billing")
    return find_by_user(user_id)


def get_or_create_customer(user) -> str:
    """Return the user's Stripe customer id, creating the customer on first checkout."""
    existing = find_by_user(user.id)
    if existing and existing.stripe_customer_id:
        current_app.logger.debug(
            "billing.customer.found",
            extra={"user_id": user.id, "stripe_customer_id": existing.stripe_customer_id},
        )
        return existing.stripe_customer_id

    # Resolve the workspace first: no Stripe customer for users who can't subscribe
    membership = select_billing_workspace(user.id)

    try:
        created_id = gateway.create_customer(email=getattr(user, "email", None), user_id=user.id)
    except stripe.StripeError as e:
        current_app.logger.exception("billing.customer.create_failed", extra={"user_id": user.id})
        raise gateway.provider_error(e, "create billing customer")
    current_app.logger.info(
        "billing.customer.created",
        extra={"user_id": user.id, "stripe_customer_id": created_id, "workspace_id": membership.workspace_id},
    )

    stored = link_customer(
        user_id=user.id,
        workspace_id=membership.workspace_id,
        stripe_customer_id=created_id,
    )
    if stored.stripe_customer_id != created_id:
        # Lost a race with a concurrent checkout; the Stripe customer we made is unused
        current_app.logger.warning(
            "billing.customer.orphaned",
            extra={"user_id": user.id, "orphan_customer_id": created_id, "kept_customer_id": stored.stripe_customer_id},
        )
    return stored.stripe_customer_id
