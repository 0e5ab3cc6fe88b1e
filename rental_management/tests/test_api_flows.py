import os
import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient


os.environ.setdefault("RENTAL_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("RENTAL_TRANSIENT_BACKOFF_SECONDS", "0.01")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import RentalMan as app_module
from services.errors import TransientStoreError
from tests.fixtures import TempDatabase

STAFF = {"X-User-ID": "staff-1", "X-User-Role": "STAFF"}
ADMIN = {"X-User-ID": "admin-1", "X-User-Role": "ADMIN"}


class ApiFlowTests(unittest.TestCase):
    def setUp(self):
        self.database = TempDatabase()

        def _override():
            db = self.database.session()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[app_module.get_rental_db] = _override
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        self.database.close()

    def _customer(self):
        response = self.client.post(
            "/api/customers",
            json={"name": "John Doe", "phone": "+1234567890", "email": "john@example.com"},
            headers=STAFF,
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["customerID"]

    def _item(self, quantity=10, price=105):
        response = self.client.post(
            "/api/inventory",
            json={"name": "White Event Canopy 10x10", "category": "CANOPY", "quantity": quantity, "pricePerDay": price},
            headers=STAFF,
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["itemID"]

    def _rental(self, customer_id, item_id, quantity, status=None):
        body = {
            "customerId": customer_id,
            "startDate": "2024-03-01T00:00:00",
            "endDate": "2024-03-03T00:00:00",
            "items": [{"itemId": item_id, "quantity": quantity}],
        }
        if status:
            body["status"] = status
        return self.client.post("/api/rentals", json=body, headers=STAFF)

    def test_identity_headers_are_required(self):
        self.assertEqual(self.client.get("/healthz").status_code, 200)
        self.assertEqual(self.client.get("/api/customers").status_code, 401)
        self.assertEqual(self.client.get("/api/customers", headers={"X-User-Role": "ADMIN"}).status_code, 401)
        self.assertEqual(self.client.get("/api/customers", headers={"X-User-ID": "staff-1"}).status_code, 200)

    def test_admin_only_routes(self):
        for path in ("/api/payments", "/api/finance/summary"):
            self.assertEqual(self.client.get(path, headers=STAFF).status_code, 403)
            self.assertEqual(self.client.get(path, headers=ADMIN).status_code, 200)

        item_id = self._item()
        denied = self.client.post(
            f"/api/inventory/{item_id}/stock-adjustments", json={"quantity": 12, "reason": "Delivery"}, headers=STAFF
        )
        self.assertEqual(denied.status_code, 403)

    def test_rental_lifecycle_over_http(self):
        customer_id = self._customer()
        item_id = self._item(quantity=10)

        created = self._rental(customer_id, item_id, 4, status="ACTIVE")
        self.assertEqual(created.status_code, 200)
        rental = created.json()
        self.assertEqual(rental["status"], "ACTIVE")
        self.assertEqual(rental["createdByID"], "staff-1")
        self.assertEqual(float(rental["totalAmount"]), 420.0)
        self.assertEqual(len(rental["rentalItems"]), 1)
        self.assertEqual(self.client.get(f"/api/inventory/{item_id}", headers=STAFF).json()["availableQty"], 6)

        completed = self.client.put(
            f"/api/rentals/{rental['rentalID']}",
            json={"status": "COMPLETED", "returnItems": True},
            headers=STAFF,
        )
        self.assertEqual(completed.status_code, 200)
        self.assertTrue(completed.json()["inventoryReleased"])
        item = self.client.get(f"/api/inventory/{item_id}", headers=STAFF).json()
        self.assertEqual(item["availableQty"], 10)
        self.assertEqual(item["heldQty"], 0)

        listed = self.client.get("/api/rentals", headers=STAFF)
        self.assertEqual([row["rentalID"] for row in listed.json()], [rental["rentalID"]])

    def test_domain_errors_map_to_stable_codes(self):
        customer_id = self._customer()
        item_id = self._item(quantity=2)

        short = self._rental(customer_id, item_id, 3)
        self.assertEqual(short.status_code, 409)
        self.assertEqual(short.json()["error"], "InsufficientStock")
        self.assertEqual(short.json()["itemID"], item_id)
        self.assertEqual(short.json()["available"], 2)

        unknown_customer = self._rental("ghost", item_id, 1)
        self.assertEqual(unknown_customer.status_code, 404)
        self.assertEqual(unknown_customer.json()["error"], "UnknownCustomer")

        unknown_item = self._rental(customer_id, "ghost", 1)
        self.assertEqual(unknown_item.status_code, 404)
        self.assertEqual(unknown_item.json()["error"], "UnknownItem")

        missing = self.client.get("/api/rentals/missing", headers=STAFF)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"], "UnknownRental")

        rental_id = self._rental(customer_id, item_id, 1).json()["rentalID"]
        illegal = self.client.put(f"/api/rentals/{rental_id}", json={"status": "COMPLETED"}, headers=STAFF)
        self.assertEqual(illegal.status_code, 409)
        self.assertEqual(illegal.json()["error"], "IllegalTransition")
        self.assertEqual(illegal.json()["current"], "PENDING")

        early_return = self.client.put(f"/api/rentals/{rental_id}", json={"returnItems": True}, headers=STAFF)
        self.assertEqual(early_return.status_code, 422)
        self.assertEqual(early_return.json()["error"], "ValidationError")

    def test_rental_update_rejects_immutable_fields(self):
        customer_id = self._customer()
        item_id = self._item()
        rental_id = self._rental(customer_id, item_id, 1).json()["rentalID"]

        for body in ({"customerId": "someone-else"}, {"totalAmount": 1}, {"items": []}):
            response = self.client.put(f"/api/rentals/{rental_id}", json=body, headers=STAFF)
            self.assertEqual(response.status_code, 422, body)
            self.assertEqual(response.json()["error"], "ValidationError")

        self.assertEqual(self.client.get(f"/api/inventory/{item_id}", headers=STAFF).json()["availableQty"], 9)

    def test_delete_guards(self):
        customer_id = self._customer()
        item_id = self._item()
        rental_id = self._rental(customer_id, item_id, 2).json()["rentalID"]

        customer_delete = self.client.delete(f"/api/customers/{customer_id}", headers=STAFF)
        self.assertEqual(customer_delete.status_code, 409)
        self.assertEqual(customer_delete.json()["error"], "ReferencedByRental")

        item_delete = self.client.delete(f"/api/inventory/{item_id}", headers=STAFF)
        self.assertEqual(item_delete.status_code, 409)
        self.assertEqual(item_delete.json()["error"], "ReferencedByRental")

        paid = self.client.post(
            "/api/payments",
            json={"rentalId": rental_id, "amount": 50, "paymentMethod": "CASH"},
            headers=STAFF,
        )
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.json()["paymentStatus"], "PAID")
        self.assertEqual(paid.json()["recordedByID"], "staff-1")

        rental_delete = self.client.delete(f"/api/rentals/{rental_id}", headers=STAFF)
        self.assertEqual(rental_delete.status_code, 409)
        self.assertEqual(rental_delete.json()["error"], "RentalHasPayments")

        rental = self.client.get(f"/api/rentals/{rental_id}", headers=STAFF).json()
        self.assertEqual(float(rental["paidToDate"]), 50.0)
        self.assertEqual(float(rental["balance"]), 160.0)

    def test_delete_rental_without_payments_restores_stock(self):
        customer_id = self._customer()
        item_id = self._item()
        rental_id = self._rental(customer_id, item_id, 7).json()["rentalID"]

        response = self.client.delete(f"/api/rentals/{rental_id}", headers=STAFF)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(f"/api/rentals/{rental_id}", headers=STAFF).status_code, 404)
        self.assertEqual(self.client.get(f"/api/inventory/{item_id}", headers=STAFF).json()["availableQty"], 10)

    def test_item_edit_moves_stock_through_ledger(self):
        customer_id = self._customer()
        item_id = self._item(quantity=10)
        self._rental(customer_id, item_id, 4)

        grown = self.client.put(
            f"/api/inventory/{item_id}", json={"quantity": 15, "name": "Canopy 10x10"}, headers=STAFF
        )
        self.assertEqual(grown.status_code, 200)
        self.assertEqual(grown.json()["name"], "Canopy 10x10")
        self.assertEqual(grown.json()["availableQty"], 11)

        too_small = self.client.put(f"/api/inventory/{item_id}", json={"quantity": 3}, headers=STAFF)
        self.assertEqual(too_small.status_code, 422)

        over = self.client.put(f"/api/inventory/{item_id}", json={"availableQty": 16}, headers=STAFF)
        self.assertEqual(over.status_code, 422)

        freed = self.client.post(
            f"/api/inventory/{item_id}/stock-adjustments",
            json={"availableQty": 12, "reason": "Recount"},
            headers=ADMIN,
        )
        self.assertEqual(freed.status_code, 422)
        self.assertEqual(freed.json()["rented"], 4)

        adjusted = self.client.post(
            f"/api/inventory/{item_id}/stock-adjustments",
            json={"availableQty": 11, "reason": "Recount"},
            headers=ADMIN,
        )
        self.assertEqual(adjusted.status_code, 200)
        self.assertEqual(adjusted.json()["availableQty"], 11)
        self.assertEqual(adjusted.json()["heldQty"], 4)

    def test_item_edit_cannot_free_rented_units(self):
        customer_id = self._customer()
        item_id = self._item(quantity=10)
        rental_id = self._rental(customer_id, item_id, 4, status="ACTIVE").json()["rentalID"]

        freed = self.client.put(f"/api/inventory/{item_id}", json={"availableQty": 10}, headers=STAFF)
        self.assertEqual(freed.status_code, 422)
        self.assertEqual(freed.json()["error"], "ValidationError")
        self.assertEqual(self.client.get(f"/api/inventory/{item_id}", headers=STAFF).json()["availableQty"], 6)

        # Withdrawing a damaged unit is still allowed.
        withdrawn = self.client.put(f"/api/inventory/{item_id}", json={"availableQty": 5}, headers=STAFF)
        self.assertEqual(withdrawn.status_code, 200)

        completed = self.client.put(
            f"/api/rentals/{rental_id}",
            json={"status": "COMPLETED", "returnItems": True},
            headers=STAFF,
        )
        self.assertEqual(completed.status_code, 200)
        self.assertEqual(self.client.get(f"/api/inventory/{item_id}", headers=STAFF).json()["availableQty"], 9)

        deleted = self.client.delete(f"/api/rentals/{rental_id}", headers=STAFF)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.get(f"/api/inventory/{item_id}", headers=STAFF).json()["availableQty"], 9)

    def test_item_edit_rejects_null_required_fields(self):
        item_id = self._item()
        for body in ({"name": None}, {"pricePerDay": None}, {"category": None}, {"status": None}):
            response = self.client.put(f"/api/inventory/{item_id}", json=body, headers=STAFF)
            self.assertEqual(response.status_code, 422, body)
            self.assertEqual(response.json()["error"], "ValidationError")

        cleared = self.client.put(f"/api/inventory/{item_id}", json={"description": None}, headers=STAFF)
        self.assertEqual(cleared.status_code, 200)
        item = self.client.get(f"/api/inventory/{item_id}", headers=STAFF).json()
        self.assertEqual(item["name"], "White Event Canopy 10x10")
        self.assertEqual(float(item["pricePerDay"]), 105.0)

    def test_rental_dates_with_and_without_offsets(self):
        customer_id = self._customer()
        item_id = self._item()
        body = {
            "customerId": customer_id,
            "startDate": "2024-03-01T00:00:00Z",
            "endDate": "2024-03-02T00:00:00",
            "items": [{"itemId": item_id, "quantity": 1}],
        }
        created = self.client.post("/api/rentals", json=body, headers=STAFF)
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()["startDate"], "2024-03-01T00:00:00")

        shifted = dict(body, startDate="2024-03-02T00:00:00+02:00", endDate="2024-03-01T23:00:00")
        self.assertEqual(self.client.post("/api/rentals", json=shifted, headers=STAFF).status_code, 200)

        backwards = dict(body, startDate="2024-03-02T00:00:00Z", endDate="2024-03-01T00:00:00")
        rejected = self.client.post("/api/rentals", json=backwards, headers=STAFF)
        self.assertEqual(rejected.status_code, 422)
        self.assertEqual(rejected.json()["error"], "ValidationError")

        returned = self.client.put(
            f"/api/rentals/{created.json()['rentalID']}",
            json={"returnDate": "2024-03-02T10:00:00-05:00"},
            headers=STAFF,
        )
        self.assertEqual(returned.status_code, 200)
        self.assertEqual(returned.json()["returnDate"], "2024-03-02T15:00:00")

    def test_finance_summary_for_admin(self):
        customer_id = self._customer()
        item_id = self._item(quantity=10, price=105)
        rental_id = self._rental(customer_id, item_id, 3, status="ACTIVE").json()["rentalID"]
        self.client.post(
            "/api/payments",
            json={"rentalId": rental_id, "amount": 315, "paymentMethod": "CARD"},
            headers=STAFF,
        )
        self.client.post(
            "/api/payments",
            json={"rentalId": rental_id, "amount": 50, "paymentMethod": "CARD"},
            headers=STAFF,
        )

        summary = self.client.get("/api/finance/summary", headers=ADMIN).json()
        self.assertEqual(float(summary["totalRevenue"]), 365.0)
        self.assertEqual(float(summary["pendingAmount"]), -50.0)
        self.assertEqual(summary["activeRentalsCount"], 1)

        payments = self.client.get("/api/payments", headers=ADMIN).json()
        self.assertEqual(len(payments), 2)
        self.assertEqual(payments[0]["rental"]["customerName"], "John Doe")

    def test_payment_for_unknown_rental(self):
        response = self.client.post(
            "/api/payments",
            json={"rentalId": "missing", "amount": 10, "paymentMethod": "CASH"},
            headers=STAFF,
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "UnknownRental")

    def test_transient_store_error_maps_to_503(self):
        original = app_module.update_rental_status

        def _busy(*args, **kwargs):
            raise TransientStoreError("update_rental_status could not complete: the store is busy, retry later.")

        app_module.update_rental_status = _busy
        try:
            response = self.client.put("/api/rentals/any", json={"status": "ACTIVE"}, headers=STAFF)
        finally:
            app_module.update_rental_status = original
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "TransientStoreError")


if __name__ == "__main__":
    unittest.main()
