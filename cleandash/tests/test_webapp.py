import datetime as dt
import unittest

from cleandash.dashboard.system import CleaningSystem
from cleandash.webapp import DRAFT_KEY, create_app

NOW = dt.datetime(2025, 3, 10, 7, 0)
DAY = "2025-03-11"


class WebAppTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.system = CleaningSystem(clock=lambda: NOW)
        self.app = create_app(system=self.system, TESTING=True)
        self.client = self.app.test_client()

    def create_admin(self) -> None:
        response = self.client.post(
            "/setup",
            data={
                "full_name": "Nadia Admin",
                "email": "admin@example.com",
                "password": "secret-pass",
            },
        )
        self.assertEqual(response.status_code, 302)

    def login_as_staff(self) -> dict:
        staff = self.system.register_user(
            email="staff@example.com", password="staff-pass", full_name="Omar Staff"
        )
        self.client.post("/logout")
        response = self.client.post(
            "/login", data={"email": "staff@example.com", "password": "staff-pass"}
        )
        self.assertEqual(response.status_code, 302)
        return staff

    def book(self, **overrides) -> dict:
        params = {
            "cleaner_name": "Amina",
            "booking_date": DAY,
            "start_time": "09:00",
            "hours": 3,
            "client_name": "Layla Hassan",
            "client_mobile": "33001122",
            "client_area": "West Bay",
        }
        params.update(overrides)
        return self.system.create_booking(**params)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def test_first_visit_redirects_to_setup(self) -> None:
        response = self.client.get("/dashboard")
        self.assertEqual(response.status_code, 302)
        self.assertTrue(response.headers["Location"].endswith("/setup"))
        self.assertEqual(self.client.get("/setup").status_code, 200)

    def test_setup_creates_admin_and_signs_in(self) -> None:
        self.create_admin()
        users = self.system.list_users()
        self.assertEqual([user["role"] for user in users], ["admin"])
        page = self.client.get("/dashboard")
        self.assertEqual(page.status_code, 200)
        self.assertIn(b"Nadia Admin", page.data)
        self.assertTrue(self.client.get("/setup").headers["Location"].endswith("/login"))

    def test_login_rejects_bad_credentials(self) -> None:
        self.create_admin()
        self.client.post("/logout")
        response = self.client.post(
            "/login", data={"email": "admin@example.com", "password": "wrong-pass"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn(b"Invalid credentials", response.data)
        self.assertEqual(self.client.get("/dashboard").status_code, 302)

    def test_logout_is_recorded(self) -> None:
        self.create_admin()
        self.client.post("/logout")
        actions = [entry["action"] for entry in self.system.list_activity()]
        self.assertIn("logout", actions)

    def test_staff_cannot_reach_admin_pages(self) -> None:
        self.create_admin()
        self.login_as_staff()
        for path in ("/users", "/settings"):
            response = self.client.get(path)
            self.assertEqual(response.status_code, 302)
            self.assertTrue(response.headers["Location"].endswith("/dashboard"))
        self.assertEqual(self.client.get("/profile").status_code, 200)

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    def test_booking_wizard_creates_booking(self) -> None:
        self.create_admin()
        self.system.create_cleaner(name="Amina")

        page = self.client.get(f"/bookings/new?cleaner_name=Amina&booking_date={DAY}&hours=3")
        self.assertEqual(page.status_code, 200)
        self.assertIn(b"09:00 - 12:00", page.data)

        response = self.client.post(
            "/bookings/new",
            data={
                "step": "1",
                "booking_date": DAY,
                "cleaner_name": "Amina",
                "hours": "3",
                "number_of_cleaners": "1",
                "start_time": "09:00:00",
            },
        )
        self.assertIn("step=2", response.headers["Location"])

        lookup = self.client.get("/bookings/new?step=2&lookup=33001122")
        self.assertIn(b"New client", lookup.data)

        response = self.client.post(
            "/bookings/new",
            data={
                "step": "2",
                "client_mobile": "33001122",
                "client_name": "Layla Hassan",
                "client_area": "West Bay",
                "pricing_mode": "auto",
                "discount_amount": "5",
                "payment_mode": "cash",
            },
        )
        self.assertIn("step=3", response.headers["Location"])

        review = self.client.get("/bookings/new?step=3")
        self.assertEqual(review.status_code, 200)
        self.assertIn(b"QAR 105.00", review.data)
        self.assertIn(b"QAR 100.00", review.data)

        response = self.client.post("/bookings/new", data={"step": "3"})
        self.assertEqual(response.status_code, 302)
        bookings = self.system.list_day_bookings(DAY)
        self.assertEqual(len(bookings), 1)
        self.assertEqual(bookings[0]["final_price"], 100.0)
        self.assertEqual(bookings[0]["booked_by_name"], "Nadia Admin")
        with self.client.session_transaction() as session:
            self.assertNotIn(DRAFT_KEY, session)

    def test_wizard_requires_a_slot(self) -> None:
        self.create_admin()
        self.system.create_cleaner(name="Amina")
        response = self.client.post(
            "/bookings/new",
            data={"step": "1", "booking_date": DAY, "cleaner_name": "Amina", "hours": "3"},
        )
        self.assertIn("step=1", response.headers["Location"])
        response = self.client.get("/bookings/new?step=3")
        self.assertIn("step=2", response.headers["Location"])

    def test_wizard_reports_malformed_date(self) -> None:
        self.create_admin()
        self.system.create_cleaner(name="Amina")
        for booking_date in ("not-a-date", "2025-02-30"):
            page = self.client.get(
                f"/bookings/new?step=1&booking_date={booking_date}&cleaner_name=Amina&hours=3"
            )
            self.assertEqual(page.status_code, 200)
            self.assertIn(b"Invalid date or time", page.data)

    def test_cancel_takes_two_steps(self) -> None:
        self.create_admin()
        self.system.create_cleaner(name="Amina")
        booking = self.book()
        path = f"/bookings/{booking['id']}/cancel"

        self.assertIn(b"Are you sure", self.client.get(path).data)
        second = self.client.post(path, data={"stage": "confirm"})
        self.assertIn(b"Reason", second.data)
        missing = self.client.post(path, data={"stage": "final", "reason": ""})
        self.assertIn(b"A cancellation reason is required", missing.data)
        self.assertEqual(self.system.get_booking_details(booking["id"])["status"], "confirmed")

        done = self.client.post(path, data={"stage": "final", "reason": "Client travelling"})
        self.assertEqual(done.status_code, 302)
        cancelled = self.system.get_booking_details(booking["id"])
        self.assertEqual(cancelled["status"], "cancelled")
        self.assertEqual(cancelled["cancelled_by"], "Nadia Admin")

    def test_booking_views_render(self) -> None:
        self.create_admin()
        self.system.create_cleaner(name="Amina")
        booking = self.book()
        for view in ("grid", "list", "timeline"):
            page = self.client.get(f"/bookings?date={DAY}&view={view}")
            self.assertEqual(page.status_code, 200)
            self.assertIn(b"Layla Hassan", page.data)
        self.assertEqual(self.client.get(f"/bookings/{booking['id']}/edit").status_code, 200)
        self.assertIn(booking["booking_number"].encode(), self.client.get("/orders").data)

    def test_edit_booking_moves_time(self) -> None:
        self.create_admin()
        self.system.create_cleaner(name="Amina")
        booking = self.book()
        response = self.client.post(
            f"/bookings/{booking['id']}/edit",
            data={"booking_date": DAY, "start_time": "14:00", "hours": "3", "cleaner_name": "Amina"},
        )
        self.assertEqual(response.status_code, 302)
        self.assertEqual(self.system.get_booking_details(booking["id"])["start_time"], "14:00:00")

    def test_client_lookup_api(self) -> None:
        self.create_admin()
        self.assertEqual(self.client.get("/api/clients/lookup?mobile=000").get_json(), {"found": False})
        self.system.create_cleaner(name="Amina")
        self.book()
        found = self.client.get("/api/clients/lookup?mobile=33001122").get_json()
        self.assertTrue(found["found"])
        self.assertEqual(found["default_area"], "West Bay")

    # ------------------------------------------------------------------
    # Directory & logistics
    # ------------------------------------------------------------------
    def test_driver_delete_requires_typed_confirmation(self) -> None:
        self.create_admin()
        driver = self.system.create_driver(name="Ravi")
        path = f"/drivers/{driver['id']}/delete"
        self.assertIn(b"DELETE", self.client.get(path).data)

        wrong = self.client.post(path, data={"confirm_text": "delete"})
        self.assertEqual(wrong.status_code, 200)
        self.assertIn(b"Type DELETE to confirm", wrong.data)
        self.assertEqual(len(self.system.list_drivers()), 1)

        right = self.client.post(path, data={"confirm_text": "DELETE"})
        self.assertEqual(right.status_code, 302)
        self.assertEqual(self.system.list_drivers(), [])

    def test_driver_with_remittances_is_kept(self) -> None:
        self.create_admin()
        driver = self.system.create_driver(name="Ravi")
        self.system.record_remittance(driver_id=driver["id"], amount=40, received_by="Nadia")
        response = self.client.post(
            f"/drivers/{driver['id']}/delete", data={"confirm_text": "DELETE"}
        )
        self.assertEqual(response.status_code, 302)
        self.assertEqual(len(self.system.list_drivers()), 1)
        self.assertIn(b"remittance history", self.client.get("/drivers").data)

    def test_directory_pages(self) -> None:
        self.create_admin()
        self.client.post("/cleaners", data={"name": "Amina", "nationality": "Kenya"})
        self.client.post("/clients", data={"name": "Fatima", "mobile": "44556677", "default_area": "Lusail"})
        self.client.post("/drivers", data={"name": "Ravi"})
        self.assertIn(b"Amina", self.client.get("/cleaners").data)
        self.assertIn(b"Lusail", self.client.get("/clients").data)
        self.assertIn(b"Ravi", self.client.get("/drivers").data)

    def test_logistics_saves_transport(self) -> None:
        self.create_admin()
        self.system.create_cleaner(name="Amina")
        driver = self.system.create_driver(name="Ravi")
        booking = self.book()
        page = self.client.get("/logistics?day=tomorrow")
        self.assertEqual(page.status_code, 200)
        self.assertIn(b"Layla Hassan", page.data)

        response = self.client.post(
            "/logistics",
            data={
                "booking_ids": str(booking["id"]),
                f"pickup_driver_{booking['id']}": str(driver["id"]),
                f"pickup_done_{booking['id']}": "1",
            },
        )
        self.assertEqual(response.status_code, 302)
        details = self.system.get_booking_details(booking["id"])
        self.assertEqual(details["pickup_driver_id"], driver["id"])
        self.assertEqual(details["pickup_completed"], 1)
        self.assertEqual(details["dropoff_completed"], 0)

        collections = self.client.get(f"/collections?filter=custom&start={DAY}&end={DAY}")
        self.assertIn(b"QAR 105.00", collections.data)

    def test_remittance_flow(self) -> None:
        self.create_admin()
        driver = self.system.create_driver(name="Ravi")
        response = self.client.post(
            "/remittances", data={"driver_id": str(driver["id"]), "amount": "80"}
        )
        self.assertEqual(response.status_code, 302)
        remittance = self.system.list_remittances()[0]
        self.assertEqual(remittance["received_by_name"], "Nadia Admin")
        self.client.post(f"/remittances/{remittance['id']}/verify")
        self.assertEqual(self.system.list_remittances()[0]["verified"], 1)
        self.assertIn(b"QAR 80.00", self.client.get("/remittances").data)

    # ------------------------------------------------------------------
    # Settings & users
    # ------------------------------------------------------------------
    def test_settings_update_pricing(self) -> None:
        self.create_admin()
        self.assertEqual(self.client.get("/settings").status_code, 200)
        config = self.system.list_pricing_configs()[0]
        self.client.post(
            f"/settings/pricing/{config['id']}",
            data={"hourly_rate": "45", "materials_price": "10", "tax_rate": "0", "is_active": "1"},
        )
        self.assertEqual(self.system.list_pricing_configs()[0]["hourly_rate_per_cleaner"], 45.0)

        self.client.post("/settings/areas", data={"code": "pearl", "name": "The Pearl", "keywords": "Porto Arabia"})
        area = self.system.list_special_areas()[0]
        self.assertEqual(area["search_keywords"], ["Porto Arabia"])
        self.client.post(f"/settings/areas/{area['id']}", data={"action": "delete"})
        self.assertEqual(self.system.list_special_areas(), [])

    def test_admin_manages_users(self) -> None:
        self.create_admin()
        self.client.post(
            "/users",
            data={"full_name": "Omar", "email": "omar@example.com", "password": "omar-pass", "role": "manager"},
        )
        omar = [user for user in self.system.list_users() if user["email"] == "omar@example.com"][0]
        self.assertEqual(omar["role"], "manager")
        self.client.post(f"/users/{omar['id']}/status", data={"status": "inactive"})
        self.assertEqual(self.system.get_user(omar["id"])["status"], "inactive")
        activity = self.client.get(f"/users/{omar['id']}/activity")
        self.assertEqual(activity.status_code, 200)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def test_report_pages_render(self) -> None:
        self.create_admin()
        self.system.create_cleaner(name="Amina")
        self.book(discount_amount=5, is_credit_sale=True)
        query = f"?filter=custom&start={DAY}&end={DAY}"
        for path in ("/reports", "/reports/sales", "/reports/financial", "/reports/hours", "/reports/customers"):
            page = self.client.get(path + query)
            self.assertEqual(page.status_code, 200, path)
        self.assertIn(b"QAR 100.00", self.client.get("/reports/sales" + query).data)
        self.assertIn(b"Layla Hassan", self.client.get("/reports/customers" + query + "&search=layla").data)
        self.assertEqual(self.client.get("/reports?filter=lastMonth").status_code, 200)

    def test_bad_custom_range_falls_back_to_default(self) -> None:
        self.create_admin()
        query = "?filter=custom&start=2025-13-01&end=2025-03-01"
        for path in ("/reports", "/reports/sales", "/reports/customers", "/collections"):
            page = self.client.get(path + query)
            self.assertEqual(page.status_code, 200, path)
            self.assertIn(b"Invalid date range", page.data)


if __name__ == "__main__":
    unittest.main()
