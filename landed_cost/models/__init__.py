from landed_cost.models.rate_record import RateRecord, DutyRateComponent  # noqa: F401
from landed_cost.models.idempotency import IdempotencyKey  # noqa: F401
from landed_cost.models.fx_rate import FxRate  # noqa: F401
from landed_cost.models.import_run import ImportRun  # noqa: F401
from landed_cost.models.reference import Category, DeMinimisThreshold, MerchantProfile, TaxRegistration  # noqa: F401
from landed_cost.models.enums import (  # noqa: F401
    Confidence,
    DutyComponentType,
    IdempotencyStatus,
    LookupStatus,
    RateKind,
    RateSource,
)
