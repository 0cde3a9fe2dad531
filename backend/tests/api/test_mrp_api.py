"""
API tests for MRP endpoints

Sync and background runs, progress polling, cancellation and
recommendation transitions.
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal

from tests.factories import (
    create_test_bom,
    create_test_mrp_run,
    create_test_product,
    create_test_recommendation,
    create_test_sales_order,
)

BASE_URL = "/api/v1/mrp"
TODAY = date.today()


@pytest.fixture
def demand(db_session):
    """10 x BIKE due in 5 days; BIKE is built from 2 x CHAIN."""
    chain = create_test_product(db_session, sku="CHAIN")
    bike = create_test_product(db_session, sku="BIKE", procurement_type="make")
    create_test_bom(db_session, bike, lines=[{"component": chain, "quantity": 2}])
    create_test_sales_order(db_session, bike, Decimal("10"), due_date=TODAY + timedelta(days=5))
    db_session.commit()
    return {"bike": bike, "chain": chain}


class TestRuns:
    def test_sync_run(self, client, demand):
        response = client.post(f"{BASE_URL}/runs", json={"run_async": False})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "completed"
        assert data["recommendations_generated"] == 2
        assert data["progress_percentage"] == 100.0

        recs = client.get(f"{BASE_URL}/recommendations", params={"run_id": data["id"]}).json()
        assert recs["total"] == 2
        by_product = {r["product_id"]: r for r in recs["items"]}
        assert Decimal(by_product[demand["chain"].id]["suggested_quantity"]) == Decimal("20")

    def test_background_run_and_progress(self, client, demand):
        response = client.post(f"{BASE_URL}/runs", json={"run_async": True, "name": "Nightly"})

        assert response.status_code == 202
        run_id = response.json()["id"]

        progress = client.get(f"{BASE_URL}/runs/{run_id}/progress")
        assert progress.status_code == 200
        data = progress.json()
        assert data["status"] == "completed"
        assert data["products_processed"] == data["products_total"] == 2

    def test_reversed_horizon(self, client):
        response = client.post(f"{BASE_URL}/runs", json={
            "planning_horizon_start": TODAY.isoformat(),
            "planning_horizon_end": (TODAY - timedelta(days=1)).isoformat(),
            "run_async": False,
        })

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_unknown_make_or_buy(self, client):
        response = client.post(f"{BASE_URL}/runs", json={"make_or_buy": "both"})
        assert response.status_code == 422

    def test_progress_of_unknown_run(self, client):
        response = client.get(f"{BASE_URL}/runs/999/progress")

        assert response.status_code == 404
        assert response.json()["error"] == "MRP_RUN_NOT_FOUND"

    def test_cancel_pending_run(self, client, db_session):
        run = create_test_mrp_run(db_session, status="pending")
        db_session.commit()

        response = client.post(f"{BASE_URL}/runs/{run.id}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_completed_run(self, client, db_session):
        run = create_test_mrp_run(db_session, status="completed")
        db_session.commit()

        response = client.post(f"{BASE_URL}/runs/{run.id}/cancel")

        assert response.status_code == 409

    def test_list_runs(self, client, db_session):
        create_test_mrp_run(db_session, status="completed")
        create_test_mrp_run(db_session, status="failed")
        db_session.commit()

        data = client.get(f"{BASE_URL}/runs", params={"status": "failed"}).json()

        assert data["total"] == 1
        assert data["items"][0]["status"] == "failed"

    def test_statistics(self, client, demand):
        client.post(f"{BASE_URL}/runs", json={"run_async": False})

        stats = client.get(f"{BASE_URL}/statistics").json()

        assert stats["total_runs"] == 1
        assert stats["pending_recommendations"] == 2


class TestRecommendations:
    @pytest.fixture
    def rec(self, db_session):
        run = create_test_mrp_run(db_session)
        product = create_test_product(db_session, sku="BOLT")
        rec = create_test_recommendation(db_session, run, product)
        db_session.commit()
        return rec

    def test_approve(self, client, rec):
        response = client.post(f"{BASE_URL}/recommendations/{rec.id}/approve")

        data = response.json()
        assert data["success"] is True
        assert data["recommendation"]["status"] == "approved"

    def test_invalid_transition_is_reported(self, client, rec):
        client.post(f"{BASE_URL}/recommendations/{rec.id}/reject", json={"notes": "Not needed"})

        response = client.post(f"{BASE_URL}/recommendations/{rec.id}/approve")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "Cannot approve recommendation in status rejected"

    def test_action_after_approval(self, client, rec):
        client.post(f"{BASE_URL}/recommendations/{rec.id}/approve")

        response = client.post(f"{BASE_URL}/recommendations/{rec.id}/action", json={
            "reference_type": "purchase_order",
            "reference_id": 77,
        })

        data = response.json()
        assert data["success"] is True
        assert data["recommendation"]["action_reference_id"] == 77
        assert data["recommendation"]["actioned_at"] is not None

    def test_action_refused_for_inactive_product(self, client, db_session, rec):
        client.post(f"{BASE_URL}/recommendations/{rec.id}/approve")
        rec.product.active = False
        db_session.commit()

        response = client.post(f"{BASE_URL}/recommendations/{rec.id}/action", json={
            "reference_type": "purchase_order",
            "reference_id": 77,
        })

        data = response.json()
        assert data["success"] is False
        assert data["message"] == "Cannot action recommendation: Product is no longer active"
        assert data["recommendation"]["status"] == "approved"

    def test_unknown_recommendation(self, client):
        response = client.post(f"{BASE_URL}/recommendations/999/approve")
        assert response.status_code == 404

    def test_bulk_approve(self, client, db_session, rec):
        rejected = create_test_recommendation(db_session, rec.mrp_run, rec.product, status="rejected")
        db_session.commit()

        response = client.post(f"{BASE_URL}/recommendations/bulk-approve", json={
            "ids": [rec.id, rejected.id, rec.id, 999],
        })

        assert response.json() == {"requested": 3, "updated": 1, "skipped": 2}

    def test_expire_stale(self, client, db_session, rec):
        stale = create_test_recommendation(
            db_session, rec.mrp_run, rec.product, required_date=TODAY - timedelta(days=3)
        )
        db_session.commit()

        response = client.post(f"{BASE_URL}/recommendations/expire-stale", json={})

        assert response.json()["updated"] == 1
        assert client.get(f"{BASE_URL}/recommendations/{stale.id}").json()["status"] == "expired"
