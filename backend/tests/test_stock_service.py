"""
Stock Mutation Service tests.

Covers delta/target changes, the paired history entry, non-negativity,
rollback on injected failure, bulk updates and history replay.
"""

import pytest

from stockledger.extensions import db
from stockledger.errors import InsufficientStock, InvalidState, NotFound, ValidationFailed
from stockledger.models import Product, StockHistoryEntry, StockReason
from stockledger.services import stock_service
from stockledger.validation import MAX_STOCK_QUANTITY


def _history(product_id):
    return (
        db.session.query(StockHistoryEntry)
        .filter_by(product_id=product_id)
        .order_by(StockHistoryEntry.id.asc())
        .all()
    )


def test_create_product_writes_initial_stock_entry(product):
    entries = _history(product.id)
    assert len(entries) == 1
    assert entries[0].reason == StockReason.INITIAL_STOCK
    assert entries[0].previous_quantity == 0
    assert entries[0].new_quantity == 10
    assert entries[0].delta == 10


def test_apply_delta_updates_product_and_history(product):
    result = stock_service.apply_stock_delta(product.id, delta=-3, reason="damaged", actor="alice")

    assert result.previous_quantity == 10
    assert result.new_quantity == 7
    assert result.delta == -3
    assert result.stock_trend == pytest.approx(-30.0)

    p = db.session.get(Product, product.id)
    assert p.stock_quantity == 7
    assert p.inventory_value_cents == 7000
    assert p.stock_trend == pytest.approx(-30.0)
    assert p.last_updated is not None

    entry = db.session.get(StockHistoryEntry, result.history_entry_id)
    assert entry.previous_quantity == 10
    assert entry.new_quantity == 7
    assert entry.reason == "damaged"
    assert entry.actor == "alice"


def test_apply_target_records_difference(product):
    result = stock_service.set_stock_level(product.id, 25, actor="bob")

    assert result.previous_quantity == 10
    assert result.new_quantity == 25
    assert result.delta == 15
    assert result.stock_trend == pytest.approx(150.0)
    assert _history(product.id)[-1].reason == StockReason.MANUAL_ADJUSTMENT


def test_target_zero_is_allowed(product):
    result = stock_service.set_stock_level(product.id, 0)
    assert result.new_quantity == 0
    assert db.session.get(Product, product.id).inventory_value_cents == 0


def test_negative_result_is_rejected_not_clamped(product):
    with pytest.raises(InsufficientStock) as exc:
        stock_service.apply_stock_delta(product.id, delta=-11, reason="manual-adjustment")

    shortage = exc.value.shortages[0]
    assert shortage["product_id"] == product.id
    assert shortage["available"] == 10
    assert shortage["requested"] == 11
    assert shortage["shortfall"] == 1

    assert db.session.get(Product, product.id).stock_quantity == 10
    assert len(_history(product.id)) == 1


def test_trend_is_zero_from_empty_stock(make_product):
    empty = make_product(stock_quantity=0)
    result = stock_service.restock(empty.id, 5)
    assert result.stock_trend == 0.0


@pytest.mark.parametrize("kwargs", [
    {},
    {"delta": 1, "target": 1},
    {"target": -1},
    {"delta": "1.5"},
    {"delta": True},
])
def test_invalid_change_requests(product, kwargs):
    with pytest.raises(ValidationFailed):
        stock_service.apply_stock_delta(product.id, reason="manual-adjustment", **kwargs)
    assert len(_history(product.id)) == 1


def test_blank_reason_is_rejected(product):
    with pytest.raises(ValidationFailed) as exc:
        stock_service.apply_stock_delta(product.id, delta=1, reason="  ")
    assert exc.value.errors[0]["field"] == "reason"


def test_unknown_product(db_session):
    with pytest.raises(NotFound):
        stock_service.apply_stock_delta(9999, delta=1, reason="restock")


def test_restock_requires_positive_quantity(product):
    with pytest.raises(ValidationFailed):
        stock_service.restock(product.id, 0)


def test_product_without_price_is_invalid_state(product):
    product.price_cents = None
    db.session.commit()

    with pytest.raises(InvalidState):
        stock_service.apply_stock_delta(product.id, delta=1, reason="restock")
    assert len(_history(product.id)) == 1


def test_failure_after_product_write_rolls_back_everything(product, monkeypatch):
    def _boom(**kwargs):
        raise RuntimeError("history store unavailable")

    monkeypatch.setattr(stock_service, "_append_history_entry", _boom)

    with pytest.raises(RuntimeError):
        stock_service.apply_stock_delta(product.id, delta=5, reason="restock")

    p = db.session.get(Product, product.id)
    assert p.stock_quantity == 10
    assert p.stock_trend == 0.0
    assert len(_history(product.id)) == 1


def test_history_is_most_recent_first_and_limited(product):
    for delta in (1, 2, 3):
        stock_service.apply_stock_delta(product.id, delta=delta, reason="restock")

    entries = stock_service.get_stock_history(product.id, limit=2)
    assert [e.delta for e in entries] == [3, 2]

    all_entries = stock_service.get_stock_history(product.id)
    assert [e.delta for e in all_entries] == [3, 2, 1, 10]


def test_history_limit_is_clamped(app, product):
    stock_service.apply_stock_delta(product.id, delta=1, reason="restock")
    assert len(stock_service.get_stock_history(product.id, limit=0)) == 1
    assert len(stock_service.get_stock_history(product.id, limit=10_000)) == 2


def test_history_unknown_product(db_session):
    with pytest.raises(NotFound):
        stock_service.get_stock_history(12345)


def test_history_replays_to_current_quantity(product):
    stock_service.apply_stock_delta(product.id, delta=-4, reason="damaged")
    stock_service.restock(product.id, 7)
    stock_service.set_stock_level(product.id, 3)
    stock_service.apply_stock_delta(product.id, delta=-3, reason="manual-adjustment")

    assert stock_service.replay_history(product.id) == 0
    assert db.session.get(Product, product.id).stock_quantity == 0
    assert stock_service.verify_history(product.id)["replayed_quantity"] == 0

    for entry in _history(product.id):
        assert entry.new_quantity == entry.previous_quantity + entry.delta
        assert entry.new_quantity >= 0


def test_verify_history_detects_drift(product):
    db.session.query(Product).filter_by(id=product.id).update({Product.stock_quantity: 99})
    db.session.commit()

    with pytest.raises(InvalidState):
        stock_service.verify_history(product.id)


def test_bulk_update_is_one_transaction(make_product):
    a = make_product(stock_quantity=5)
    b = make_product(stock_quantity=8)

    results = stock_service.bulk_update_stock(
        [{"product_id": b.id, "target": 2}, {"product_id": a.id, "target": 10}],
        actor="carol",
    )

    assert [r.product_id for r in results] == sorted([a.id, b.id])
    assert db.session.get(Product, a.id).stock_quantity == 10
    assert db.session.get(Product, b.id).stock_quantity == 2
    assert _history(a.id)[-1].reason == StockReason.BULK_UPDATE
    assert db.session.get(Product, a.id).stock_trend == pytest.approx(100.0)


def test_bulk_update_unknown_product_fails_whole_batch(make_product):
    a = make_product(stock_quantity=5)

    with pytest.raises(NotFound):
        stock_service.bulk_update_stock([
            {"product_id": a.id, "target": 1},
            {"product_id": 424242, "target": 1},
        ])

    assert db.session.get(Product, a.id).stock_quantity == 5
    assert len(_history(a.id)) == 1


def test_bulk_update_collects_validation_errors(product):
    with pytest.raises(ValidationFailed) as exc:
        stock_service.bulk_update_stock([
            {"product_id": product.id, "target": -1},
            {"product_id": product.id, "target": 3},
            {"target": 3},
        ])

    fields = {e["field"] for e in exc.value.errors}
    assert "updates[0].target" in fields
    assert "updates[2].product_id" in fields


def test_bulk_update_rejects_non_object_entries(product):
    with pytest.raises(ValidationFailed) as exc:
        stock_service.bulk_update_stock([5, {"product_id": product.id, "target": 3}])

    assert exc.value.errors == [{"field": "updates[0]", "message": "update must be an object"}]
    assert db.session.get(Product, product.id).stock_quantity == 10


def test_restock_cannot_exceed_max_quantity(product):
    with pytest.raises(ValidationFailed):
        stock_service.restock(product.id, MAX_STOCK_QUANTITY)

    assert db.session.get(Product, product.id).stock_quantity == 10
    assert len(_history(product.id)) == 1


def test_out_of_range_product_id_is_validation_error(db_session):
    with pytest.raises(ValidationFailed) as exc:
        stock_service.apply_stock_delta(10**20, delta=1, reason="restock")
    assert exc.value.errors[0]["field"] == "product_id"
