from datetime import datetime

from stockledger.models import Product, Quotation
from stockledger.services import quotation_service, sales_service


class TestSystemCommands:
    def test_seed_demo_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "seed-demo"])
        assert first.exit_code == 0
        count = db_session.query(Product).count()
        assert count > 0

        second = runner.invoke(args=["system", "seed-demo"])
        assert second.exit_code == 0
        assert "Created 0 demo product(s)" in second.output
        assert db_session.query(Product).count() == count


class TestStockCommands:
    def test_low_lists_products(self, app, db_session, make_product):
        make_product(name="Cable ties", reference="CT-200", current_stock=2, min_stock=10)

        result = app.test_cli_runner().invoke(args=["stock", "low"])

        assert result.exit_code == 0
        assert "Cable ties" in result.output

    def test_reconcile_passes_after_activity(self, app, db_session, product):
        sales_service.create_sale([{"product_id": product.id, "quantity": 2}])

        result = app.test_cli_runner().invoke(args=["stock", "reconcile"])

        assert result.exit_code == 0
        assert "All products consistent." in result.output

    def test_reconcile_unknown_product(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["stock", "reconcile", "--product-id", "999"])
        assert result.exit_code != 0


class TestQuotationCommands:
    def test_expire(self, app, db_session, product):
        stale = quotation_service.create_quotation(
            [{"product_id": product.id, "quantity": 1}], as_of=datetime(2020, 5, 1)
        )

        result = app.test_cli_runner().invoke(args=["quotations", "expire"])

        assert result.exit_code == 0
        assert "Expired 1 quotation(s)." in result.output
        db_session.expire_all()
        assert db_session.get(Quotation, stale.id).status == "expired"
