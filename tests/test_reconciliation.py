from sqlalchemy import select, update

from helpers import BUSINESS_ID, OWNER, auth_headers, record_movement, seed_inventory, stock_at
from stockflow.models.inventory import StockLedgerEntry, StockProjection
from stockflow.services.ledger_service import LedgerKey, ledger_sum
from stockflow.services.reconciliation_service import run_reconciliation


def _drift(session_local, seed: dict[str, str], quantity: int) -> None:
    with session_local() as db:
        db.execute(
            update(StockProjection)
            .where(
                StockProjection.product_variation_id == seed["variation_id"],
                StockProjection.location_id == seed["source_id"],
            )
            .values(quantity_available=quantity)
        )
        db.commit()


def test_report_mode_detects_drift_without_writing(test_context, notifier):
    client, session_local = test_context
    seed = seed_inventory(client, opening=100)
    _drift(session_local, seed, 104)

    res = client.post("/reconciliation/runs", json={"mode": "report"}, headers=OWNER)
    assert res.status_code == 201, res.text
    run = res.json()
    assert run["checked_pairs"] == 1
    assert run["variance_count"] == 1
    assert run["corrections_written"] == 0
    variance = run["variances"][0]
    assert variance["ledger_sum"] == 100
    assert variance["projection_quantity"] == 104
    assert variance["variance"] == 4
    assert variance["direction"] == "overage"
    assert variance["auto_fixable"] is True
    assert variance["balance_chain_intact"] is True
    assert variance["corrected"] is False
    assert notifier.events() == ["reconciliation_discrepancy"]

    with session_local() as db:
        count = len(db.execute(select(StockLedgerEntry.id)).all())
    assert count == 1


def test_fix_mode_appends_correction_and_reaches_fixed_point(test_context):
    client, session_local = test_context
    seed = seed_inventory(client, opening=100)
    _drift(session_local, seed, 97)

    res = client.post("/reconciliation/runs", json={"mode": "fix"}, headers=OWNER)
    assert res.status_code == 201, res.text
    run = res.json()
    assert run["corrections_written"] == 1
    variance = run["variances"][0]
    assert variance["direction"] == "shortage"
    assert variance["corrected"] is True

    with session_local() as db:
        correction = db.execute(
            select(StockLedgerEntry).where(StockLedgerEntry.entry_type == "correction")
        ).scalar_one()
        assert correction.quantity_delta == -3
        assert correction.reference_type == "reconciliation"
        assert correction.reference_id == run["id"]
        assert correction.id == variance["correction_entry_id"]
        key = LedgerKey(product_variation_id=seed["variation_id"], location_id=seed["source_id"])
        assert ledger_sum(db, business_id=BUSINESS_ID, key=key) == 97

    assert stock_at(client, seed["source_id"], seed["variation_id"]) == 97

    second = client.post("/reconciliation/runs", json={"mode": "fix"}, headers=OWNER)
    assert second.status_code == 201, second.text
    assert second.json()["variance_count"] == 0
    assert second.json()["corrections_written"] == 0

    runs = client.get("/reconciliation/runs", headers=OWNER).json()
    assert runs["pagination"]["total"] == 2


def test_large_variance_needs_force(test_context):
    client, session_local = test_context
    seed = seed_inventory(client, opening=100)
    _drift(session_local, seed, 150)

    res = client.post("/reconciliation/runs", json={"mode": "fix"}, headers=OWNER)
    assert res.status_code == 201, res.text
    variance = res.json()["variances"][0]
    assert variance["auto_fixable"] is False
    assert variance["corrected"] is False
    assert res.json()["corrections_written"] == 0

    forced = client.post("/reconciliation/runs", json={"mode": "fix", "force": True}, headers=OWNER)
    assert forced.status_code == 201, forced.text
    assert forced.json()["corrections_written"] == 1


def test_reconciliation_scoped_to_location_and_business(test_context):
    client, session_local = test_context
    seed = seed_inventory(client, opening=100)
    record_movement(client, seed["destination_id"], seed["variation_id"], "opening", 5)
    _drift(session_local, seed, 90)

    scoped = client.post(
        "/reconciliation/runs",
        json={"mode": "report", "location_id": seed["destination_id"]},
        headers=OWNER,
    )
    assert scoped.status_code == 201, scoped.text
    assert scoped.json()["checked_pairs"] == 1
    assert scoped.json()["variance_count"] == 0

    missing = client.post("/reconciliation/runs", json={"location_id": "nowhere"}, headers=OWNER)
    assert missing.status_code == 404

    with session_local() as db:
        other = run_reconciliation(db, business_id="biz-empty", mode="report")
    assert other.run.checked_pairs == 0
    assert other.variances == []


def test_reconciliation_requires_capability(test_context):
    client, _ = test_context
    staff = auth_headers("sam", roles=("staff",))
    res = client.post("/reconciliation/runs", json={"mode": "report"}, headers=staff)
    assert res.status_code == 403
    assert res.json()["error"]["details"] == [{"capability": "inventory.reconcile"}]
