"""
Sale Transaction Coordinator tests.

A sale either debits every product and writes every line, or changes
nothing at all.
"""

import pytest

from stockledger.extensions import db
from stockledger.errors import InsufficientStock, NotFound, ValidationFailed
from stockledger.models import Product, SaleLine, StockHistoryEntry, StockReason
from stockledger.services import products_service, sales_service


def _line(product_id, quantity, unit_price_cents=500, customer="Walk-in"):
    return {
        "product_id": product_id,
        "customer": customer,
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
    }


def _sale_history(product_id):
    return (
        db.session.query(StockHistoryEntry)
        .filter_by(product_id=product_id, reason=StockReason.SALE)
        .all()
    )


def test_two_lines_exceeding_stock_fail_and_change_nothing(make_product):
    p = make_product(stock_quantity=6)

    with pytest.raises(InsufficientStock) as exc:
        sales_service.record_sale("sam", [_line(p.id, 3), _line(p.id, 4)])

    assert exc.value.shortages[0]["requested"] == 7
    assert exc.value.shortages[0]["available"] == 6
    assert db.session.get(Product, p.id).stock_quantity == 6
    assert db.session.query(SaleLine).count() == 0
    assert _sale_history(p.id) == []


def test_two_lines_within_stock_succeed(make_product):
    p = make_product(stock_quantity=10)

    result = sales_service.record_sale("sam", [_line(p.id, 3, 250), _line(p.id, 4, 300)])

    assert db.session.get(Product, p.id).stock_quantity == 3
    assert len(result.sale_ids) == 2
    assert result.total_amount_cents == 3 * 250 + 4 * 300
    assert not result.replayed

    lines = db.session.query(SaleLine).order_by(SaleLine.line_number).all()
    assert [line.total_cents for line in lines] == [750, 1200]
    assert [(line.previous_stock, line.new_stock) for line in lines] == [(10, 7), (7, 3)]
    assert {line.sale_ref for line in lines} == {result.sale_ref}
    assert all(line.salesperson == "sam" for line in lines)

    entries = _sale_history(p.id)
    assert len(entries) == 1
    assert entries[0].delta == -7
    assert entries[0].sale_ref == result.sale_ref
    assert entries[0].actor == "sam"


def test_multi_product_sale_is_all_or_nothing(make_product):
    plenty = make_product(stock_quantity=20)
    scarce = make_product(stock_quantity=1)

    with pytest.raises(InsufficientStock) as exc:
        sales_service.record_sale("sam", [_line(plenty.id, 5), _line(scarce.id, 2)])

    assert [s["product_id"] for s in exc.value.shortages] == [scarce.id]
    assert db.session.get(Product, plenty.id).stock_quantity == 20
    assert db.session.get(Product, scarce.id).stock_quantity == 1


def test_snapshot_of_product_name_and_type(make_product):
    p = make_product(name="Blue Mug", product_type="KITCHEN", stock_quantity=4)

    result = sales_service.record_sale("sam", [_line(p.id, 1)])

    line = db.session.get(SaleLine, result.sale_ids[0])
    assert line.product_name == "Blue Mug"
    assert line.product_type == "KITCHEN"
    assert line.status == "completed"


def test_validation_errors_are_collected(make_product):
    p = make_product()
    archived = make_product()
    products_service.archive_product(archived.id)

    with pytest.raises(ValidationFailed) as exc:
        sales_service.record_sale("", [
            _line(p.id, 0),
            _line(p.id, 1, unit_price_cents=-5),
            _line(9999, 1),
            _line(archived.id, 1, customer=" "),
        ])

    fields = {e["field"] for e in exc.value.errors}
    assert fields >= {
        "salesperson",
        "lines[0].quantity",
        "lines[1].unit_price_cents",
        "lines[2].product_id",
        "lines[3].product_id",
        "lines[3].customer",
    }
    assert db.session.get(Product, p.id).stock_quantity == 10


def test_empty_sale_is_rejected(db_session):
    with pytest.raises(ValidationFailed) as exc:
        sales_service.record_sale("sam", [])
    assert exc.value.errors[0]["field"] == "lines"


def test_retry_after_abort_succeeds_once(make_product, monkeypatch):
    p = make_product(stock_quantity=10)

    original = sales_service._apply_stock_delta_locked
    calls = {"n": 0}

    def _flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("connection dropped")
        return original(*args, **kwargs)

    monkeypatch.setattr(sales_service, "_apply_stock_delta_locked", _flaky)

    with pytest.raises(RuntimeError):
        sales_service.record_sale("sam", [_line(p.id, 4)], idempotency_key="order-1")

    assert db.session.get(Product, p.id).stock_quantity == 10
    assert db.session.query(SaleLine).count() == 0

    result = sales_service.record_sale("sam", [_line(p.id, 4)], idempotency_key="order-1")
    assert db.session.get(Product, p.id).stock_quantity == 6
    assert len(result.sale_ids) == 1


def test_idempotency_key_returns_stored_sale(make_product):
    p = make_product(stock_quantity=10)

    first = sales_service.record_sale("sam", [_line(p.id, 2)], idempotency_key="order-2")
    again = sales_service.record_sale("sam", [_line(p.id, 2)], idempotency_key="order-2")

    assert again.replayed
    assert again.sale_ref == first.sale_ref
    assert again.sale_ids == first.sale_ids
    assert db.session.get(Product, p.id).stock_quantity == 8
    assert len(_sale_history(p.id)) == 1


def test_product_deleted_mid_sale_surfaces_not_found(make_product, monkeypatch):
    p = make_product(stock_quantity=5)
    pid = p.id

    original = sales_service._validate_products

    def _validate_then_delete(lines, errors):
        original(lines, errors)
        products_service.delete_product(pid, hard=True)

    monkeypatch.setattr(sales_service, "_validate_products", _validate_then_delete)

    with pytest.raises(NotFound) as exc:
        sales_service.record_sale("sam", [_line(pid, 1)])

    assert exc.value.entity_ids == [pid]
    assert db.session.query(SaleLine).count() == 0


def test_get_sale_and_list_sales(make_product):
    p = make_product(stock_quantity=10)
    first = sales_service.record_sale("sam", [_line(p.id, 1)])
    second = sales_service.record_sale("sam", [_line(p.id, 2), _line(p.id, 1)])

    fetched = sales_service.get_sale(second.sale_ref)
    assert fetched.sale_ids == second.sale_ids
    assert fetched.total_amount_cents == 1500

    listed = sales_service.list_sales()
    assert len(listed) == 3
    assert listed[-1].sale_ref == first.sale_ref

    summary = sales_service.sales_summary()
    assert summary["total_transactions"] == 3
    assert summary["total_sales_cents"] == 2000

    with pytest.raises(NotFound):
        sales_service.get_sale("missing")


def test_update_sale_line_quantity_moves_stock(make_product):
    p = make_product(stock_quantity=10)
    result = sales_service.record_sale("sam", [_line(p.id, 3, 200)])
    line_id = result.sale_ids[0]

    line = sales_service.update_sale_line(line_id, {"quantity": 5, "customer": "Dana"}, actor="manager")

    assert line.quantity == 5
    assert line.total_cents == 1000
    assert line.customer == "Dana"
    assert db.session.get(Product, p.id).stock_quantity == 5

    correction = (
        db.session.query(StockHistoryEntry)
        .filter_by(product_id=p.id, reason=StockReason.SALE_CORRECTION)
        .one()
    )
    assert correction.delta == -2
    assert correction.actor == "manager"


def test_update_sale_line_cannot_oversell(make_product):
    p = make_product(stock_quantity=4)
    result = sales_service.record_sale("sam", [_line(p.id, 3)])

    with pytest.raises(InsufficientStock):
        sales_service.update_sale_line(result.sale_ids[0], {"quantity": 5})

    assert db.session.get(SaleLine, result.sale_ids[0]).quantity == 3
    assert db.session.get(Product, p.id).stock_quantity == 1


def test_update_sale_line_price_recomputes_total(make_product):
    p = make_product(stock_quantity=4)
    result = sales_service.record_sale("sam", [_line(p.id, 2, 100)])

    line = sales_service.update_sale_line(result.sale_ids[0], {"unit_price_cents": 150})
    assert line.total_cents == 300
    assert db.session.get(Product, p.id).stock_quantity == 2


def test_failure_writing_sale_lines_rolls_back_every_debit(make_product, monkeypatch):
    a = make_product(stock_quantity=10)
    b = make_product(stock_quantity=10)

    original_add = db.session.add

    def _add(obj, *args, **kwargs):
        if isinstance(obj, SaleLine):
            raise RuntimeError("sale store unavailable")
        return original_add(obj, *args, **kwargs)

    monkeypatch.setattr(db.session, "add", _add)

    with pytest.raises(RuntimeError):
        sales_service.record_sale("sam", [_line(a.id, 3), _line(b.id, 4)])

    monkeypatch.undo()

    assert db.session.get(Product, a.id).stock_quantity == 10
    assert db.session.get(Product, b.id).stock_quantity == 10
    assert _sale_history(a.id) == []
    assert _sale_history(b.id) == []
    assert db.session.query(SaleLine).count() == 0


def test_update_sale_line_quantity_is_bounded(make_product):
    p = make_product(stock_quantity=4)
    result = sales_service.record_sale("sam", [_line(p.id, 1)])

    with pytest.raises(ValidationFailed) as exc:
        sales_service.update_sale_line(result.sale_ids[0], {"quantity": 10**19})

    assert exc.value.errors[0]["field"] == "quantity"
    assert db.session.get(Product, p.id).stock_quantity == 3
