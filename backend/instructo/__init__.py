# backend/instructo/__init__.py
"""
Import ORM models from each app so that Base.metadata.create_all() sees
every table and relationship strings resolve.

The actual model classes are kept in instructo/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models            # users / one-time codes
from .apps.audit import models as audit_models                  # append-only audit trail
from .apps.trainees import models as trainees_models            # trainees
from .apps.projects import models as projects_models            # projects + progress log
from .apps.documents import models as documents_models          # uploaded file metadata
from .apps.reviews import models as reviews_models              # progress reviews
from .apps.notifications import models as notifications_models  # in-app notifications + email log
from .apps.events import models as events_models                # domain event outbox

__all__ = [
    "accounts_models",
    "audit_models",
    "trainees_models",
    "projects_models",
    "documents_models",
    "reviews_models",
    "notifications_models",
    "events_models",
]
