"""Tests for subscription/cancellation persistence and the payment stub."""

import asyncio
from unittest.mock import patch

import pytest

from cancel_flow.tests.conftest import make_cancellation, make_subscription


class TestGetUserSubscription:
    def test_returns_active_subscription(self, fake_db):
        from cancel_flow.services.cancellations import get_user_subscription

        fake_db.store["subscriptions"].extend([
            make_subscription(status="cancelled", monthly_price=1000),
            make_subscription(status="active", monthly_price=2900),
        ])
        assert get_user_subscription("user-1")["monthly_price"] == 2900

    def test_none_when_no_active_subscription(self, fake_db):
        from cancel_flow.services.cancellations import get_user_subscription

        assert get_user_subscription("user-1") is None

    def test_mock_on_failure(self, fake_db, rejected_error):
        from cancel_flow.services.cancellations import get_user_subscription

        fake_db.fail("subscriptions", rejected_error)
        sub = get_user_subscription("user-1")
        assert sub["id"] == "mock-subscription-id"
        assert sub["monthly_price"] == 2500
        assert sub["user_id"] == "user-1"


class TestUpdateSubscriptionStatus:
    def test_updates_only_active_rows(self, fake_db):
        from cancel_flow.services.cancellations import update_subscription_status

        fake_db.store["subscriptions"].extend([
            make_subscription(id="old", status="cancelled"),
            make_subscription(id="current", status="active"),
        ])
        assert update_subscription_status("user-1", "pending_cancellation") is True

        by_id = {r["id"]: r for r in fake_db.store["subscriptions"]}
        assert by_id["current"]["status"] == "pending_cancellation"
        assert by_id["old"]["status"] == "cancelled"
        assert "updated_at" in by_id["current"]

    def test_true_even_when_write_fails(self, fake_db, offline_error):
        from cancel_flow.services.cancellations import update_subscription_status

        fake_db.fail("subscriptions", offline_error)
        assert update_subscription_status("user-1", "pending_cancellation") is True

    def test_unknown_status_rejected(self, fake_db):
        from cancel_flow.services.cancellations import update_subscription_status

        with pytest.raises(ValueError):
            update_subscription_status("user-1", "paused")


class TestCreateCancellationRecord:
    def test_upserts_single_row_per_user(self, fake_db):
        from cancel_flow.services.cancellations import create_cancellation_record

        fake_db.store["cancellations"].append(make_cancellation(downsell_variant="B"))

        create_cancellation_record("user-1", "B", accepted_downsell=False,
                                   reason="other", feedback="x" * 30)
        rows = fake_db.store["cancellations"]
        assert len(rows) == 1
        assert rows[0]["reason"] == "other"
        assert rows[0]["feedback"] == "x" * 30

    def test_creates_row_when_absent(self, fake_db):
        from cancel_flow.services.cancellations import create_cancellation_record

        create_cancellation_record("user-2", "A", accepted_downsell=True)
        row = fake_db.store["cancellations"][0]
        assert row["user_id"] == "user-2"
        assert row["accepted_downsell"] is True

    def test_true_even_when_write_fails(self, fake_db, rejected_error):
        from cancel_flow.services.cancellations import create_cancellation_record

        fake_db.fail("cancellations", rejected_error)
        assert create_cancellation_record("user-1", "A", accepted_downsell=False) is True


class TestHandleDownsellAcceptance:
    def test_payment_failure_returns_result_untouched(self, fake_db, declined):
        from cancel_flow.services.cancellations import handle_downsell_acceptance

        fake_db.store["subscriptions"].append(make_subscription())
        result = asyncio.run(handle_downsell_acceptance("user-1", "B", payment=declined))

        assert result["success"] is False
        assert result["error"] == "Payment processing failed (stub simulation)"
        assert fake_db.store["cancellations"] == []

    def test_uses_mock_subscription_when_offline(self, fake_db, offline_error, paid):
        from cancel_flow.services.cancellations import handle_downsell_acceptance

        fake_db.fail("subscriptions", offline_error)
        result = asyncio.run(handle_downsell_acceptance("user-1", "B", payment=paid))

        assert result["success"] is True
        assert paid.calls == [("user-1", 2500, 1500)]

    def test_no_subscription(self, fake_db, paid):
        from cancel_flow.services.cancellations import handle_downsell_acceptance

        result = asyncio.run(handle_downsell_acceptance("user-1", "B", payment=paid))
        assert result["success"] is False
        assert paid.calls == []


class TestHandleCancellationCompletion:
    def test_sets_pending_and_records_reason(self, fake_db):
        from cancel_flow.services.cancellations import handle_cancellation_completion

        fake_db.store["subscriptions"].append(make_subscription())
        ok = asyncio.run(handle_cancellation_completion(
            "user-1", "A", "too-expensive", amount="15.00"))

        assert ok is True
        assert fake_db.store["subscriptions"][0]["status"] == "pending_cancellation"
        assert fake_db.store["cancellations"][0]["amount"] == "15.00"

    def test_never_raises(self, fake_db):
        from cancel_flow.services.cancellations import handle_cancellation_completion

        with patch("cancel_flow.services.cancellations.update_subscription_status",
                   side_effect=RuntimeError("boom")):
            assert asyncio.run(handle_cancellation_completion("user-1", "A", "other")) is True


class TestPaymentStub:
    def test_success(self):
        from cancel_flow.services.payment_stub import process_downsell_payment

        result = asyncio.run(process_downsell_payment("user-1", 2500, 1500,
                                                      delay=0, success_rate=1.0))
        assert result["success"] is True
        assert result["error"] is None
        prefix, millis, suffix = result["transaction_id"].split("_")
        assert prefix == "txn"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_failure(self):
        from cancel_flow.services.payment_stub import process_downsell_payment

        result = asyncio.run(process_downsell_payment("user-1", 2500, 1500,
                                                      delay=0, success_rate=0.0))
        assert result == {"success": False, "transaction_id": None,
                          "error": "Payment processing failed (stub simulation)"}

    def test_price_update_stub(self):
        from cancel_flow.services.payment_stub import update_subscription_price

        assert update_subscription_price("user-1", 1500) is True


class TestErrorMapping:
    def test_transport_error_is_unavailable(self, fake_db, offline_error):
        from cancel_flow import supabase_client as db

        fake_db.fail("subscriptions", offline_error)
        with pytest.raises(db.DatabaseUnavailable):
            db.get_active_subscription("user-1")

    def test_api_error_is_query_failed(self, fake_db, rejected_error):
        from cancel_flow import supabase_client as db

        fake_db.fail("subscriptions", rejected_error)
        with pytest.raises(db.QueryFailed) as exc:
            db.get_active_subscription("user-1")
        assert "row-level security" in str(exc.value)

    def test_insert_if_absent_leaves_existing_row(self, fake_db):
        from cancel_flow import supabase_client as db

        fake_db.store["cancellations"].append(make_cancellation(downsell_variant="B"))
        assert db.insert_cancellation_if_absent("user-1", "A") == {}
        assert fake_db.store["cancellations"][0]["downsell_variant"] == "B"

    def test_cancellation_writes_conflict_on_user_id(self, fake_db):
        from cancel_flow import supabase_client as db

        with patch.object(db, "upsert", wraps=db.upsert) as upsert:
            db.insert_cancellation_if_absent("user-1", "A")
            db.upsert_cancellation({"user_id": "user-1", "downsell_variant": "A"})

        assert [c.kwargs["on_conflict"] for c in upsert.call_args_list] == ["user_id", "user_id"]
        assert upsert.call_args_list[0].kwargs["ignore_duplicates"] is True
        assert len(fake_db.store["cancellations"]) == 1
