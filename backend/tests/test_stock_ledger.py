# Overview: Pytest coverage for the stock ledger and movement recorder.

"""
Stock Ledger Tests

Covers the core invariants:
1. current_stock never goes below zero
2. Every movement balances: new_stock - previous_stock == signed quantity
3. current_stock == opening balance + signed sum of movements
4. Only the ledger may assign Product.current_stock
"""

import pytest
from sqlalchemy.exc import IntegrityError

from stockledger.errors import (
    InsufficientStockError,
    NotFoundError,
    StockLedgerViolation,
    ValidationError,
)
from stockledger.models import Product, StockMovement, ledger_write_scope
from stockledger.services import (
    inventory_service,
    movement_service,
    reporting_service,
    return_service,
    sales_service,
)
from stockledger.services.ledger_service import apply_delta


class TestApplyDelta:
    """Direct ledger calls inside the test's unit of work."""

    def test_out_movement_records_snapshot(self, db_session, product, stock_of):
        result = apply_delta(product.id, -3, "out", reference="TEST-1", reason="Test", user_id=9)
        db_session.commit()

        assert result.previous_stock == 10
        assert result.new_stock == 7
        assert result.movement.movement_type == "out"
        assert result.movement.quantity == 3
        assert result.movement.user_id == 9
        assert stock_of(product.id) == 7

    def test_adjustment_can_go_either_way(self, db_session, product, stock_of):
        apply_delta(product.id, 5, "adjustment")
        apply_delta(product.id, -2, "adjustment")
        db_session.commit()

        assert stock_of(product.id) == 13

    def test_sign_must_match_movement_type(self, db_session, product):
        with pytest.raises(ValidationError):
            apply_delta(product.id, 3, "out")
        with pytest.raises(ValidationError):
            apply_delta(product.id, -3, "in")
        with pytest.raises(ValidationError):
            apply_delta(product.id, -1, "return")

    def test_zero_delta_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            apply_delta(product.id, 0, "adjustment")

    def test_unknown_movement_type_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            apply_delta(product.id, 1, "transfer")

    def test_missing_product(self, db_session):
        with pytest.raises(NotFoundError):
            apply_delta(999999, 1, "in")

    def test_insufficient_stock_writes_nothing(self, db_session, product, stock_of, movements_for):
        with pytest.raises(InsufficientStockError) as exc_info:
            apply_delta(product.id, -11, "out")
        db_session.rollback()

        assert exc_info.value.requested == 11
        assert exc_info.value.available == 10
        assert exc_info.value.details["product_id"] == product.id
        assert stock_of(product.id) == 10
        assert movements_for(product.id) == []

    def test_can_drain_to_exactly_zero(self, db_session, product, stock_of):
        apply_delta(product.id, -10, "out")
        db_session.commit()
        assert stock_of(product.id) == 0


class TestWriteGuard:
    """current_stock is owned by the ledger."""

    def test_direct_assignment_on_persisted_product_raises(self, db_session, product):
        with pytest.raises(StockLedgerViolation):
            product.current_stock = 50

    def test_opening_balance_allowed_on_new_product(self, db_session):
        product = Product(name="Tape measure", current_stock=12)
        db_session.add(product)
        db_session.commit()
        assert product.current_stock == 12

    def test_ledger_scope_allows_assignment(self, db_session, product):
        with ledger_write_scope():
            product.current_stock = 4
        db_session.rollback()

    def test_other_columns_are_unguarded(self, db_session, product):
        product.min_stock = 2
        db_session.commit()
        assert product.min_stock == 2


class TestMovementRecorder:
    def test_rejects_unbalanced_movement(self, db_session, product):
        with pytest.raises(ValidationError):
            movement_service.record_movement(
                product_id=product.id,
                movement_type="in",
                magnitude=3,
                previous_stock=10,
                new_stock=12,
            )

    def test_rejects_non_positive_magnitude(self, db_session, product):
        with pytest.raises(ValidationError):
            movement_service.record_movement(
                product_id=product.id,
                movement_type="adjustment",
                magnitude=0,
                previous_stock=10,
                new_stock=10,
            )

    def test_database_rejects_unbalanced_rows(self, db_session, product):
        db_session.add(StockMovement(
            product_id=product.id,
            movement_type="out",
            quantity=2,
            previous_stock=10,
            new_stock=9,
        ))
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_signed_quantity(self):
        assert movement_service.signed_quantity("in", 4) == 4
        assert movement_service.signed_quantity("return", 4) == 4
        assert movement_service.signed_quantity("out", 4) == -4
        assert movement_service.signed_quantity("adjustment", 4, 10, 6) == -4
        assert movement_service.signed_quantity("adjustment", 4, 6, 10) == 4

    def test_history_is_newest_first_and_filterable(self, db_session, product, make_product):
        other = make_product()
        inventory_service.record_manual_movement(product.id, "in", 5)
        inventory_service.record_manual_movement(product.id, "out", 2)
        inventory_service.record_manual_movement(other.id, "in", 1)

        history = movement_service.get_product_movements(product.id)
        assert [m.movement_type for m in history] == ["out", "in"]

        outs = movement_service.list_movements(movement_type="out")
        assert len(outs) == 1
        assert outs[0].product_id == product.id

        assert len(movement_service.list_movements(limit=1)) == 1


class TestManualMovements:
    def test_in_and_out_use_magnitude(self, db_session, product, stock_of):
        inventory_service.record_manual_movement(product.id, "in", -4, reason="Delivery without PO")
        assert stock_of(product.id) == 14

        movement = inventory_service.record_manual_movement(product.id, "out", 6, reason="Breakage")
        assert stock_of(product.id) == 8
        assert movement.quantity == 6
        assert movement.previous_stock == 14
        assert movement.new_stock == 8

    def test_adjustment_is_signed(self, db_session, product, stock_of):
        inventory_service.record_manual_movement(product.id, "adjustment", -3, reason="Inventory count")
        assert stock_of(product.id) == 7

    def test_zero_quantity_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            inventory_service.record_manual_movement(product.id, "adjustment", 0)

    def test_invalid_type_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            inventory_service.record_manual_movement(product.id, "shrink", 1)


class TestLedgerScenario:
    """Stock 10 / min 5 through a sale, a return and an impossible adjustment."""

    def test_sale_return_adjustment(self, db_session, product, stock_of, movements_for):
        sales_service.create_sale(
            [{"product_id": product.id, "quantity": 3, "unit_price_cents": 1000}],
        )
        assert stock_of(product.id) == 7

        return_service.create_return(
            [{"product_id": product.id, "quantity": 2, "unit_price_cents": 1000}],
        )
        assert stock_of(product.id) == 9

        with pytest.raises(InsufficientStockError):
            inventory_service.record_manual_movement(product.id, "adjustment", -20)
        assert stock_of(product.id) == 9

        moves = movements_for(product.id)
        assert [(m.movement_type, m.previous_stock, m.new_stock) for m in moves] == [
            ("out", 10, 7),
            ("return", 7, 9),
        ]

    def test_every_movement_balances_and_reconciles(self, db_session, product, make_product):
        hinge = make_product(current_stock=3)
        sale = sales_service.create_sale([
            {"product_id": product.id, "quantity": 4},
            {"product_id": hinge.id, "quantity": 1},
        ])
        ret = return_service.create_return(
            [{"sale_item_id": sale.items[0].id, "quantity": 2}],
            sale_id=sale.id,
        )
        return_service.cancel_return(ret.id)
        inventory_service.record_manual_movement(hinge.id, "in", 7)
        inventory_service.record_manual_movement(product.id, "adjustment", -1)

        for movement in db_session.query(StockMovement).all():
            assert movement.new_stock >= 0
            assert movement.new_stock - movement.previous_stock == movement_service.signed_quantity(
                movement.movement_type, movement.quantity, movement.previous_stock, movement.new_stock
            )

        for p in (product, hinge):
            report = reporting_service.get_stock_reconciliation(p.id)
            assert report["is_consistent"], report
            assert report["current_stock"] >= 0
