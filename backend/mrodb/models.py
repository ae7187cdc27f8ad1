# backend/mrodb/models.py
"""
Registry of every ORM model.

Importing this module registers all tables on `Base.metadata` for
`create_all()` (tests, local demos) and for Alembic autogenerate. The
model classes themselves live in mrodb/apps/<app>/models.py.
"""

from .apps.accounts import models as accounts_models                # companies / users / permissions
from .apps.activity import models as activity_models                # user activity trail
from .apps.flight_records import models as flight_records_models    # flights + attachments
from .apps.publications import models as publications_models        # technical publications + revisions
from .apps.sms_reports import models as sms_reports_models          # safety reports
from .apps.audits import models as audits_models                    # audits / findings / corrective actions
from .apps.stock_inventory import models as stock_inventory_models  # stock lines + usage history

__all__ = [
    "accounts_models",
    "activity_models",
    "flight_records_models",
    "publications_models",
    "sms_reports_models",
    "audits_models",
    "stock_inventory_models",
]
