"""
Affirmly Backend — ORM Models
==============================

Importing this package registers every table with `Base.metadata`
(used by Alembic autogenerate and by the test suite's `create_all`).
"""

from app.models.affirmation import Affirmation, AffirmationHistory, Category
from app.models.notification import Notification, NotificationType
from app.models.subscription import PlanType, Subscription
from app.models.user import User

__all__ = [
    "Affirmation",
    "AffirmationHistory",
    "Category",
    "Notification",
    "NotificationType",
    "PlanType",
    "Subscription",
    "User",
]
