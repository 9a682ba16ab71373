from __future__ import annotations

from collections.abc import Iterable

from landed_cost.models.enums import Confidence, LookupStatus

COMPONENTS = ("duty", "vat", "surcharges", "freight", "fx")

_SEVERITY = {
    Confidence.AUTHORITATIVE: 0,
    Confidence.ESTIMATED: 1,
    Confidence.MISSING: 2,
}


def confidence_for(status: LookupStatus) -> Confidence:
    if status == LookupStatus.OK:
        return Confidence.AUTHORITATIVE
    if status in (LookupStatus.NO_DATASET, LookupStatus.ERROR):
        return Confidence.MISSING
    return Confidence.ESTIMATED


def worst(confidences: Iterable[Confidence]) -> Confidence:
    result = Confidence.AUTHORITATIVE
    for confidence in confidences:
        if _SEVERITY[confidence] > _SEVERITY[result]:
            result = confidence
    return result


def missing_components(grades: dict[str, Confidence]) -> list[str]:
    return [name for name in COMPONENTS if grades.get(name) == Confidence.MISSING]
