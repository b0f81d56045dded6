from .user import User
from .workspace import Workspace
from .workspace_member import WorkspaceMember, ROLE_OWNER, ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER
from .billing_customer import BillingCustomer
from .subscription import Subscription
from .stripe_event import StripeEvent
from .email_log import EmailLog

__all__ = [
    "User",
    "Workspace",
    "WorkspaceMember",
    "BillingCustomer",
    "Subscription",
    "StripeEvent",
    "EmailLog",
    "ROLE_OWNER",
    "ROLE_ADMIN",
    "ROLE_EDITOR",
    "ROLE_VIEWER",
]
