from __future__ import annotations

from enum import Enum


class RateKind(str, Enum):
    DUTY = "duty"
    VAT = "vat"
    SURCHARGE = "surcharge"
    FREIGHT = "freight"


class RateSource(str, Enum):
    OFFICIAL = "official"
    OVERRIDE = "override"
    DEFAULT = "default"


class DutyRule(str, Enum):
    MFN = "mfn"
    FTA = "fta"
    ANTI_DUMPING = "anti_dumping"
    SAFEGUARD = "safeguard"


class DutyComponentType(str, Enum):
    AD_VALOREM = "ad_valorem"
    SPECIFIC = "specific"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"
    OTHER = "other"


class VatRateKind(str, Enum):
    STANDARD = "STANDARD"
    REDUCED = "REDUCED"
    SUPER_REDUCED = "SUPER_REDUCED"
    ZERO = "ZERO"
    EXEMPT = "EXEMPT"


class VatBase(str, Enum):
    CIF = "CIF"
    CIF_PLUS_DUTY = "CIF_PLUS_DUTY"


class TransportMode(str, Enum):
    AIR = "air"
    SEA = "sea"


class FreightUnit(str, Enum):
    KG = "kg"
    M3 = "m3"


class DeMinimisKind(str, Enum):
    DUTY = "DUTY"
    VAT = "VAT"


class DeMinimisBasis(str, Enum):
    INTRINSIC = "INTRINSIC"
    CIF = "CIF"


class IdempotencyStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class LookupStatus(str, Enum):
    OK = "ok"
    NO_MATCH = "no_match"
    NO_DATASET = "no_dataset"
    OUT_OF_SCOPE = "out_of_scope"
    ERROR = "error"


class Confidence(str, Enum):
    AUTHORITATIVE = "authoritative"
    ESTIMATED = "estimated"
    MISSING = "missing"


class CheckoutVatPreference(str, Enum):
    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


class Incoterm(str, Enum):
    DAP = "DAP"
    DDP = "DDP"


class ImportStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
