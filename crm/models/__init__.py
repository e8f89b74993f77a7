# Models package: import all models here so Alembic can discover them.

from crm.models.user import User  # noqa: F401
from crm.models.prospect import Prospect  # noqa: F401
from crm.models.lead import Lead  # noqa: F401
from crm.models.sample_order import SampleOrder  # noqa: F401
from crm.models.agreement import Agreement  # noqa: F401
from crm.models.lookup import (  # noqa: F401
    DropReason,
    PincodePersonaMap,
    SkuMapping,
    StageMapping,
)
from crm.models.activity_log import ActivityLog  # noqa: F401
