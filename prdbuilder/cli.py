import click
import stripe
from flask.cli import with_appcontext
from prdbuilder.errors import BillingError
from prdbuilder.extensions import db
from prdbuilder.models.user import User
from prdbuilder.services import billing as billing_service
from prdbuilder.services.workspaces import create_workspace
from prdbuilder.billing.sync import sync_from_provider

def _get_user(user_id: str) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise click.ClickException(f"User id {user_id} not found")
    return user

@click.group()
def workspaces():
    """Workspace bootstrap."""

@workspaces.command("create")
@click.option("--user-id", required=True, help="Existing user id (becomes owner)")
@click.option("--name", default=None, help="Defaults to \"<email name>'s Workspace\"")
@with_appcontext
def workspaces_create(user_id, name):
    user = _get_user(user_id)
    try:
        ws = create_workspace(user, name=name)
    except BillingError as e:
        raise click.ClickException(e.message)
    click.echo(f"Workspace created id={ws.id} name={ws.name!r} owner_user_id={user.id}")

@click.group()
def billing():
    """Billing ops."""

@billing.command("sync")
@click.option("--user-id", required=True)
@with_appcontext
def billing_sync(user_id):
    """Pull a user's subscriptions from Stripe (repair for missed webhooks)."""
    user = _get_user(user_id)
    try:
        result = sync_from_provider(user)
    except BillingError as e:
        raise click.ClickException(f"{e.error}: {e.message}")
    click.echo(f"Synced {result.synced_count} subscription(s) for user {user.id}")
    for sub in result.subscriptions:
        click.echo(f"  {sub.stripe_subscription_id}  status={sub.status}  plan={sub.plan_id}")

@billing.command("prices")
@with_appcontext
def billing_prices():
    """List active Stripe prices by product, for the STRIPE_PRICE_* settings."""
    try:
        prices = billing_service.list_active_prices()
    except (stripe.StripeError, BillingError) as e:
        raise click.ClickException(str(e))

    if not prices:
        click.echo("No active prices found in Stripe.")
        return

    by_product = {}
    for price in prices:
        by_product.setdefault(price.get("product_name") or "(unknown product)", []).append(price)

    for product_name in sorted(by_product):
        click.echo(product_name)
        for price in by_product[product_name]:
            recurring = price.get("recurring") or {}
            interval = recurring.get("interval") or "one_time"
            amount = (price.get("unit_amount") or 0) / 100
            currency = (price.get("currency") or "").upper()
            click.echo(f"  {price.get('id')}  {amount:.2f} {currency} / {interval}")

def register_cli(app):
    app.cli.add_command(workspaces)
    app.cli.add_command(billing)
