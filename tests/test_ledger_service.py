from decimal import Decimal

import pytest
from sqlalchemy import select

from helpers import BUSINESS_ID, OWNER, auth_headers, create_location, record_movement, seed_inventory, stock_at
from stockflow.core.errors import LedgerImmutableError, TransferValidationError
from stockflow.models.inventory import StockLedgerEntry
from stockflow.services.ledger_service import (
    LedgerKey,
    append_entry,
    get_projection,
    ledger_sum,
    lock_projection,
)


def test_movements_build_a_balance_chain(test_context):
    client, session_local = test_context
    seed = seed_inventory(client, opening=100)

    for entry_type, quantity in (("purchase", 20), ("sale", 30), ("adjustment", -5), ("customer_return", 2)):
        res = record_movement(client, seed["source_id"], seed["variation_id"], entry_type, quantity)
        assert res.status_code == 201, res.text

    assert stock_at(client, seed["source_id"], seed["variation_id"]) == 87

    history = client.get(f"/locations/{seed['source_id']}/ledger", headers=OWNER)
    assert history.status_code == 200, history.text
    rows = history.json()["items"]
    assert history.json()["pagination"]["total"] == 5
    assert [(row["sequence_no"], row["quantity_delta"], row["balance_after"]) for row in rows] == [
        (5, 2, 87),
        (4, -5, 85),
        (3, -30, 90),
        (2, 20, 120),
        (1, 100, 100),
    ]
    assert {row["reference_type"] for row in rows} == {"stock_movement"}

    with session_local() as db:
        key = LedgerKey(product_variation_id=seed["variation_id"], location_id=seed["source_id"])
        assert ledger_sum(db, business_id=BUSINESS_ID, key=key) == 87


def test_movement_guards(test_context):
    client, _ = test_context
    seed = seed_inventory(client, opening=10)

    oversell = record_movement(client, seed["source_id"], seed["variation_id"], "sale", 11)
    assert oversell.status_code == 400
    assert oversell.json()["error"]["code"] == "insufficient_stock"
    assert oversell.json()["error"]["details"][0]["available"] == 10

    reserved = record_movement(client, seed["source_id"], seed["variation_id"], "transfer_in", 5)
    assert reserved.status_code == 400
    assert reserved.json()["error"]["code"] == "invalid_request"

    second_opening = record_movement(client, seed["source_id"], seed["variation_id"], "opening", 5)
    assert second_opening.status_code == 400

    negative_purchase = record_movement(client, seed["source_id"], seed["variation_id"], "purchase", -5)
    assert negative_purchase.status_code == 400

    staff = auth_headers("sam", roles=("staff",))
    denied = record_movement(client, seed["source_id"], seed["variation_id"], "purchase", 5, headers=staff)
    assert denied.status_code == 403

    assert stock_at(client, seed["source_id"], seed["variation_id"]) == 10


def test_ledger_entries_cannot_be_updated_or_deleted(test_context):
    client, session_local = test_context
    seed = seed_inventory(client, opening=10)

    with session_local() as db:
        entry = db.execute(select(StockLedgerEntry)).scalar_one()
        entry.quantity_delta = 50
        with pytest.raises(LedgerImmutableError):
            db.flush()
        db.rollback()

        entry = db.execute(select(StockLedgerEntry)).scalar_one()
        db.delete(entry)
        with pytest.raises(LedgerImmutableError):
            db.flush()
        db.rollback()

    assert stock_at(client, seed["source_id"], seed["variation_id"]) == 10


def test_append_entry_rejects_zero_delta(test_context):
    client, session_local = test_context
    seed = seed_inventory(client, opening=10)

    with session_local() as db:
        with pytest.raises(TransferValidationError):
            append_entry(
                db,
                business_id=BUSINESS_ID,
                product_id=seed["product_id"],
                product_variation_id=seed["variation_id"],
                location_id=seed["source_id"],
                entry_type="adjustment",
                quantity_delta=0,
                actor_id="owner-1",
            )


def test_projection_is_created_lazily_with_variation_price(test_context):
    client, session_local = test_context
    seed = seed_inventory(client, opening=10)
    store_id = create_location(client, "Lekki Store", "LKK")

    with session_local() as db:
        key = LedgerKey(product_variation_id=seed["variation_id"], location_id=store_id)
        assert get_projection(db, business_id=BUSINESS_ID, key=key) is None

        projection = lock_projection(db, business_id=BUSINESS_ID, product_id=seed["product_id"], key=key)
        assert projection.quantity_available == 0
        assert projection.selling_price == Decimal("100.00")

        again = lock_projection(db, business_id=BUSINESS_ID, product_id=seed["product_id"], key=key)
        assert again.id == projection.id
        db.commit()


def test_ledger_sort_key_orders_by_variation_then_location():
    keys = [
        LedgerKey(product_variation_id="b", location_id="x"),
        LedgerKey(product_variation_id="a", location_id="z"),
        LedgerKey(product_variation_id="a", location_id="y"),
    ]
    assert sorted(keys) == [
        LedgerKey(product_variation_id="a", location_id="y"),
        LedgerKey(product_variation_id="a", location_id="z"),
        LedgerKey(product_variation_id="b", location_id="x"),
    ]
