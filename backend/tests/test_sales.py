"""
Sale workflow tests.

A sale is all-or-nothing: header, items and every 'out' movement exist
together, or none of them do.
"""

from datetime import datetime

import pytest

from stockledger.errors import InsufficientStockError, NotFoundError, ValidationError
from stockledger.models import Sale, SaleItem, StockMovement
from stockledger.services import sales_service


class TestCreateSale:
    def test_totals_and_net_amount(self, db_session, product, make_product):
        nails = make_product(name="Nails 50mm", selling_price_cents=250, current_stock=100)

        sale = sales_service.create_sale(
            [
                {"product_id": product.id, "quantity": 2, "unit_price_cents": 1200},
                {"product_id": nails.id, "quantity": 10},
            ],
            customer_id=3,
            user_id=8,
            payment_method="card",
            discount_cents=500,
            tax_cents=120,
        )

        assert sale.total_cents == 2 * 1200 + 10 * 250
        assert sale.discount_cents == 500
        assert sale.tax_cents == 120
        assert sale.net_amount_cents == 4900 - 500 + 120
        assert sale.payment_method == "card"
        assert sale.payment_status == "paid"
        assert [item.subtotal_cents for item in sale.items] == [2400, 2500]

    def test_unit_price_defaults_to_selling_price(self, db_session, product):
        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 1}])
        assert sale.items[0].unit_price_cents == 1000
        assert sale.items[0].product_name == "Claw hammer"

    def test_each_product_line_writes_an_out_movement(self, db_session, product, stock_of, movements_for):
        sale = sales_service.create_sale(
            [{"product_id": product.id, "quantity": 3}],
            user_id=4,
            as_of=datetime(2024, 3, 15, 9, 0),
        )

        assert stock_of(product.id) == 7
        (movement,) = movements_for(product.id)
        assert movement.movement_type == "out"
        assert movement.quantity == 3
        assert movement.reference == sale.sale_number
        assert movement.reason == "Sale"
        assert movement.sale_id == sale.id
        assert movement.user_id == 4
        assert movement.movement_date == datetime(2024, 3, 15, 9, 0)

    def test_free_text_line_moves_no_stock(self, db_session, product, stock_of):
        sale = sales_service.create_sale([
            {"product_name": "Key cutting", "quantity": 2, "unit_price_cents": 350},
        ])

        assert sale.items[0].product_id is None
        assert sale.total_cents == 700
        assert db_session.query(StockMovement).count() == 0
        assert stock_of(product.id) == 10

    def test_free_text_line_needs_name_and_price(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.create_sale([{"quantity": 1, "unit_price_cents": 100}])
        with pytest.raises(ValidationError):
            sales_service.create_sale([{"product_name": "Service", "quantity": 1}])


class TestSaleAtomicity:
    def test_oversold_second_line_leaves_nothing(self, db_session, product, make_product, stock_of):
        scarce = make_product(name="Padlock", current_stock=1)

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.create_sale([
                {"product_id": product.id, "quantity": 2},
                {"product_id": scarce.id, "quantity": 5},
            ])

        assert exc_info.value.product_id == scarce.id
        assert exc_info.value.requested == 5
        assert exc_info.value.available == 1

        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert stock_of(product.id) == 10
        assert stock_of(scarce.id) == 1

    def test_same_product_on_two_lines_is_checked_cumulatively(self, db_session, product, stock_of):
        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.create_sale([
                {"product_id": product.id, "quantity": 6},
                {"product_id": product.id, "quantity": 6},
            ])

        assert exc_info.value.available == 4
        assert stock_of(product.id) == 10
        assert db_session.query(Sale).count() == 0

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            sales_service.create_sale([{"product_id": 424242, "quantity": 1}])
        assert db_session.query(Sale).count() == 0


class TestSaleValidation:
    def test_empty_items(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.create_sale([])

    @pytest.mark.parametrize("quantity", [0, -2, None, 1.5, True])
    def test_bad_quantity(self, db_session, product, quantity):
        with pytest.raises(ValidationError):
            sales_service.create_sale([{"product_id": product.id, "quantity": quantity}])

    def test_bad_payment_method(self, db_session, product):
        with pytest.raises(ValidationError):
            sales_service.create_sale([{"product_id": product.id, "quantity": 1}], payment_method="bitcoin")

    def test_negative_discount(self, db_session, product):
        with pytest.raises(ValidationError):
            sales_service.create_sale([{"product_id": product.id, "quantity": 1}], discount_cents=-1)

    def test_negative_price(self, db_session, product):
        with pytest.raises(ValidationError):
            sales_service.create_sale([{"product_id": product.id, "quantity": 1, "unit_price_cents": -5}])


class TestSaleQueries:
    def test_get_and_list(self, db_session, product):
        first = sales_service.create_sale([{"product_id": product.id, "quantity": 1}], customer_id=1,
                                          as_of=datetime(2024, 3, 14, 12, 0))
        second = sales_service.create_sale([{"product_id": product.id, "quantity": 1}], customer_id=2,
                                           as_of=datetime(2024, 3, 15, 12, 0))

        assert sales_service.get_sale(first.id).sale_number == first.sale_number
        assert [s.id for s in sales_service.list_sales()] == [second.id, first.id]
        assert [s.id for s in sales_service.list_sales(customer_id=1)] == [first.id]
        assert [s.id for s in sales_service.list_sales(start_date=datetime(2024, 3, 15))] == [second.id]

    def test_get_missing_sale(self, db_session):
        with pytest.raises(NotFoundError):
            sales_service.get_sale(1)


class TestSalesStats:
    def test_revenue_and_payment_split(self, db_session, product):
        sales_service.create_sale([{"product_id": product.id, "quantity": 2}])
        sales_service.create_sale([{"product_id": product.id, "quantity": 1}], discount_cents=200,
                                  payment_status="pending")
        sales_service.create_sale([{"product_id": product.id, "quantity": 1}], payment_status="partial")

        assert sales_service.get_sales_stats() == {
            "total_sales": 3,
            "total_revenue_cents": 2000 + 800 + 1000,
            "average_sale_cents": 1267,
            "paid_amount_cents": 2000,
            "pending_amount_cents": 800,
        }

    def test_date_bounds(self, db_session, product):
        sales_service.create_sale([{"product_id": product.id, "quantity": 1}], as_of=datetime(2024, 3, 14, 12, 0))
        sales_service.create_sale([{"product_id": product.id, "quantity": 3}], as_of=datetime(2024, 3, 15, 12, 0))

        stats = sales_service.get_sales_stats(start_date=datetime(2024, 3, 15))
        assert stats["total_sales"] == 1
        assert stats["total_revenue_cents"] == 3000

    def test_no_sales(self, db_session):
        assert sales_service.get_sales_stats() == {
            "total_sales": 0,
            "total_revenue_cents": 0,
            "average_sale_cents": 0,
            "paid_amount_cents": 0,
            "pending_amount_cents": 0,
        }
