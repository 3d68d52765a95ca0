# Models package: import all models here so Alembic can discover them.

from hostpanel.models.pending_deployment import PendingDeployment  # noqa: F401
from hostpanel.models.site_overlay import SiteOverlay  # noqa: F401
from hostpanel.models.audit import AuditEvent  # noqa: F401
