"""Tests for the inventory ledger."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from orderflow import create_app
from orderflow.extensions import db
from orderflow.models import InventoryLogEntry, Product, Variant
from orderflow.services import inventory_service
from orderflow.services.concurrency import begin_write_transaction, run_with_retry
from orderflow.services.inventory_service import InsufficientStock
from orderflow.validation import ValidationError, NotFoundError


class TestDecrementIncrement:
    def test_decrement_writes_one_log_entry(self, db_session, make_variant):
        v = make_variant(quantity=10)
        entry = inventory_service.decrement(v.id, 3, reason="sale", reference_id=42, actor_id=7)
        db_session.commit()

        assert db_session.get(Variant, v.id).quantity == 7
        assert (entry.previous_quantity, entry.quantity_change, entry.new_quantity) == (10, -3, 7)
        assert entry.reference_id == "42"
        assert entry.created_by == 7
        assert db_session.query(InventoryLogEntry).count() == 1

    def test_decrement_to_exactly_zero_is_allowed(self, db_session, make_variant):
        v = make_variant(quantity=4)
        inventory_service.decrement(v.id, 4, reason="sale")
        db_session.commit()
        assert db_session.get(Variant, v.id).quantity == 0

    def test_insufficient_stock_writes_nothing(self, db_session, make_variant):
        v = make_variant(quantity=5)
        with pytest.raises(InsufficientStock) as exc:
            inventory_service.decrement(v.id, 6, reason="sale")
        db_session.rollback()

        assert exc.value.details == {"variant_id": v.id, "requested_quantity": 6, "on_hand": 5}
        assert db_session.get(Variant, v.id).quantity == 5
        assert db_session.query(InventoryLogEntry).count() == 0

    def test_increment_records_return(self, db_session, make_variant):
        v = make_variant(quantity=0)
        entry = inventory_service.increment(v.id, 2, reason="return", reference_id="r-1")
        db_session.commit()
        assert db_session.get(Variant, v.id).quantity == 2
        assert entry.reason == "return"

    @pytest.mark.parametrize("qty", [0, -2, True, 1.0])
    def test_rejects_non_positive_quantity(self, db_session, variant, qty):
        with pytest.raises(ValidationError):
            inventory_service.decrement(variant.id, qty, reason="sale")

    def test_rejects_unknown_reason(self, db_session, variant):
        with pytest.raises(ValidationError):
            inventory_service.increment(variant.id, 1, reason="shrinkage")

    def test_unknown_variant(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.decrement(123456, 1, reason="sale")


class TestLedgerAudit:
    def test_successful_decrements_never_exceed_starting_stock(self, db_session, make_variant):
        v = make_variant(quantity=10)
        succeeded = 0
        for qty in [3, 4, 5, 2, 1, 6, 1]:
            try:
                inventory_service.decrement(v.id, qty, reason="sale")
                db_session.commit()
                succeeded += qty
            except InsufficientStock:
                db_session.rollback()

        assert succeeded <= 10
        assert db_session.get(Variant, v.id).quantity == 10 - succeeded
        assert db_session.get(Variant, v.id).quantity >= 0

    def test_log_chain_replays_to_current_quantity(self, db_session, make_variant):
        v = make_variant(quantity=20)
        inventory_service.decrement(v.id, 5, reason="sale")
        inventory_service.increment(v.id, 2, reason="return")
        inventory_service.decrement(v.id, 10, reason="sale")
        inventory_service.increment(v.id, 1, reason="manual", notes="recount")
        db_session.commit()

        entries = inventory_service.get_history(v.id)
        assert all(e.new_quantity == e.previous_quantity + e.quantity_change for e in entries)
        assert inventory_service.replay_quantity(v.id) == db_session.get(Variant, v.id).quantity == 8
        assert inventory_service.verify_variant(v.id)["ok"] is True

    def test_verify_detects_out_of_band_quantity_change(self, db_session, make_variant):
        v = make_variant(quantity=5)
        inventory_service.decrement(v.id, 1, reason="sale")
        db_session.commit()

        db.session.execute(Variant.__table__.update().where(Variant.id == v.id).values(quantity=99))
        db_session.commit()

        result = inventory_service.verify_variant(v.id)
        assert result["ok"] is False
        assert result["replayed"] == 4

    def test_replay_without_entries_is_none(self, db_session, variant):
        assert inventory_service.replay_quantity(variant.id) is None
        assert inventory_service.verify_variant(variant.id)["ok"] is True


class TestConcurrentDecrements:
    @pytest.fixture
    def file_app(self, tmp_path):
        """App on a file-backed database so worker threads get real connections."""
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'stock.db'}",
            'SQLITE_IMMEDIATE_TRANSACTIONS': True,
            'CARRIER_DISPATCH': 'inline',
        })
        with app.app_context():
            db.create_all()
        yield app
        with app.app_context():
            db.session.remove()
            db.engine.dispose()

    def test_parallel_buyers_never_oversell(self, file_app):
        with file_app.app_context():
            product = Product(name="Washer", slug="washer", is_active=True)
            db.session.add(product)
            db.session.flush()
            v = Variant(product_id=product.id, sku="WSH-01", price=Decimal("5.00"), quantity=10, is_active=True)
            db.session.add(v)
            db.session.commit()
            variant_id = v.id

        def buy(qty):
            with file_app.app_context():
                def _op():
                    begin_write_transaction()
                    inventory_service.decrement(variant_id, qty, reason="sale")
                    db.session.commit()

                try:
                    run_with_retry(_op, attempts=10, backoff_base=0.01)
                except InsufficientStock:
                    return 0
                return qty

        with ThreadPoolExecutor(max_workers=8) as pool:
            sold = list(pool.map(buy, [3] * 8))

        assert sum(sold) == 9
        assert sold.count(3) == 3

        with file_app.app_context():
            assert db.session.get(Variant, variant_id).quantity == 1
            entries = inventory_service.get_history(variant_id)
            assert len(entries) == 3
            assert all(e.new_quantity >= 0 for e in entries)
            assert inventory_service.verify_variant(variant_id)["ok"] is True
