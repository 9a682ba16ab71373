from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from landed_cost.models.enums import Confidence, DeMinimisBasis, DeMinimisKind, LookupStatus
from landed_cost.services.confidence import confidence_for, missing_components, worst
from landed_cost.services.de_minimis import evaluate_de_minimis
from landed_cost.services.freshness import FreshnessService
from landed_cost.services.fx.table import FxTable


def test_status_determines_confidence():
    assert confidence_for(LookupStatus.OK) == Confidence.AUTHORITATIVE
    assert confidence_for(LookupStatus.NO_DATASET) == Confidence.MISSING
    assert confidence_for(LookupStatus.ERROR) == Confidence.MISSING
    assert confidence_for(LookupStatus.NO_MATCH) == Confidence.ESTIMATED
    assert confidence_for(LookupStatus.OUT_OF_SCOPE) == Confidence.ESTIMATED


def test_overall_is_worst_and_missing_keeps_component_order():
    grades = {
        "duty": Confidence.MISSING,
        "vat": Confidence.AUTHORITATIVE,
        "surcharges": Confidence.ESTIMATED,
        "freight": Confidence.AUTHORITATIVE,
        "fx": Confidence.MISSING,
    }
    assert worst(grades.values()) == Confidence.MISSING
    assert worst([Confidence.AUTHORITATIVE, Confidence.ESTIMATED]) == Confidence.ESTIMATED
    assert worst([]) == Confidence.AUTHORITATIVE
    assert missing_components(grades) == ["duty", "fx"]


def threshold(kind, value, currency="EUR", basis=DeMinimisBasis.INTRINSIC, **overrides):
    values = dict(
        kind=kind,
        basis=basis,
        value=Decimal(value),
        currency=currency,
        effective_from=date(2021, 7, 1),
        effective_to=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


EUR_TABLE = FxTable.from_rows(
    date(2024, 5, 2), [SimpleNamespace(provider="ecb", base="EUR", quote="GBP", rate=Decimal("0.85"))]
)


def test_de_minimis_duty_only_under_threshold():
    rows = [threshold(DeMinimisKind.DUTY, "150")]
    decision = evaluate_de_minimis(rows, "EUR", Decimal("100"), Decimal("20"), date(2024, 5, 2), EUR_TABLE)
    assert decision.suppress_duty is True
    assert decision.suppress_vat is False
    assert decision.applied


def test_de_minimis_threshold_is_inclusive_and_cif_basis_adds_freight():
    rows = [threshold(DeMinimisKind.VAT, "120", basis=DeMinimisBasis.CIF)]
    at_limit = evaluate_de_minimis(rows, "EUR", Decimal("100"), Decimal("20"), date(2024, 5, 2), EUR_TABLE)
    assert at_limit.suppress_vat is True
    over = evaluate_de_minimis(rows, "EUR", Decimal("100"), Decimal("20.01"), date(2024, 5, 2), EUR_TABLE)
    assert over.suppress_vat is False


def test_de_minimis_threshold_converted_to_destination_currency():
    rows = [threshold(DeMinimisKind.DUTY, "135", currency="EUR")]
    decision = evaluate_de_minimis(rows, "GBP", Decimal("110"), Decimal("0"), date(2024, 5, 2), EUR_TABLE)
    assert decision.duty.threshold_dest == Decimal("114.75")
    assert decision.suppress_duty is True


def test_de_minimis_without_fx_is_not_applied():
    rows = [threshold(DeMinimisKind.DUTY, "800", currency="USD")]
    decision = evaluate_de_minimis(rows, "EUR", Decimal("1"), Decimal("0"), date(2024, 5, 2), EUR_TABLE)
    assert decision.suppress_duty is False
    assert decision.duty.threshold_dest is None


def test_expired_threshold_is_ignored():
    rows = [threshold(DeMinimisKind.VAT, "22", effective_from=date(2015, 1, 1), effective_to=date(2021, 7, 1))]
    decision = evaluate_de_minimis(rows, "EUR", Decimal("10"), Decimal("0"), date(2024, 5, 2), EUR_TABLE)
    assert decision.vat is None
    assert not decision.applied


class FakeImportRuns:
    def __init__(self, finished):
        self.finished = finished

    async def last_success(self, dataset):
        return self.finished.get(dataset)


@pytest.mark.asyncio
async def test_freshness_flags_old_and_never_imported_datasets():
    now = datetime(2024, 5, 2, 12, tzinfo=timezone.utc)
    runs = FakeImportRuns({"ecb": now - timedelta(hours=72), "wits": now - timedelta(days=10)})
    service = FreshnessService(runs, {"ecb": 48, "wits": 24 * 400, "vat": 24})

    stale = await service.stale(["ecb", "wits", "vat", None, "unknown"], now=now)
    assert stale == {"ecb", "vat"}
