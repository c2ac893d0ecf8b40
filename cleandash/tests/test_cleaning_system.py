import datetime as dt
import threading
import unittest

from cleandash.dashboard.system import (
    AuthorizationError,
    CleaningSystem,
    ValidationError,
    full_address,
)

NOW = dt.datetime(2025, 3, 10, 7, 0)
DAY = "2025-03-11"


class CleaningSystemTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.system = CleaningSystem(clock=lambda: NOW)
        self.admin = self.system.register_user(
            email="Admin@Example.com",
            password="secret-pass",
            full_name="Nadia Admin",
            role="admin",
        )
        self.staff = self.system.register_user(
            email="staff@example.com",
            password="staff-pass",
            full_name="Omar Staff",
        )
        self.cleaner = self.system.create_cleaner(name="Amina", mobile="5550001", nationality="Kenya")
        self.other_cleaner = self.system.create_cleaner(name="Grace")
        self.driver = self.system.create_driver(name="Ravi", mobile="5550100")

    def book(self, **overrides) -> dict:
        params = {
            "cleaner_name": "Amina",
            "booking_date": DAY,
            "start_time": "09:00",
            "hours": 3,
            "client_name": "Layla Hassan",
            "client_mobile": "33001122",
            "client_area": "West Bay",
            "user": self.staff,
        }
        params.update(overrides)
        return self.system.create_booking(**params)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def test_login_normalises_email_and_logs_activity(self) -> None:
        user = self.system.login(email="ADMIN@example.com", password="secret-pass")
        self.assertEqual(user["id"], self.admin["id"])
        self.assertEqual(user["last_login_at"], "2025-03-10T07:00:00")
        activity = self.system.list_activity(user_id=self.admin["id"])
        self.assertEqual(activity[0]["action"], "login")

    def test_login_rejects_bad_password_and_inactive_user(self) -> None:
        with self.assertRaises(AuthorizationError):
            self.system.login(email="admin@example.com", password="wrong")
        self.system.update_user_status(actor_id=self.admin["id"], user_id=self.staff["id"], status="inactive")
        with self.assertRaises(AuthorizationError):
            self.system.login(email="staff@example.com", password="staff-pass")

    def test_register_validates_input(self) -> None:
        with self.assertRaises(ValidationError):
            self.system.register_user(email="admin@example.com", password="another", full_name="Dup")
        with self.assertRaises(ValidationError):
            self.system.register_user(email="short@example.com", password="123", full_name="Short")
        with self.assertRaises(ValidationError):
            self.system.register_user(email="x@example.com", password="123456", full_name="X", role="owner")

    def test_only_admin_changes_roles(self) -> None:
        with self.assertRaises(AuthorizationError):
            self.system.update_user_role(actor_id=self.staff["id"], user_id=self.admin["id"], role="staff")
        with self.assertRaises(ValidationError):
            self.system.update_user_role(actor_id=self.admin["id"], user_id=self.admin["id"], role="staff")
        updated = self.system.update_user_role(
            actor_id=self.admin["id"], user_id=self.staff["id"], role="manager"
        )
        self.assertEqual(updated["role"], "manager")

    def test_update_profile_changes_password(self) -> None:
        self.system.update_profile(
            user_id=self.staff["id"], full_name="Omar S.", phone="555", password="new-pass"
        )
        user = self.system.login(email="staff@example.com", password="new-pass")
        self.assertEqual(user["full_name"], "Omar S.")

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------
    def test_cleaner_directory(self) -> None:
        self.assertEqual([c["name"] for c in self.system.list_cleaners(search="ken")], ["Amina"])
        with self.assertRaises(ValidationError):
            self.system.create_cleaner(name="Amina")
        toggled = self.system.toggle_cleaner_status(self.other_cleaner["id"])
        self.assertEqual(toggled["status"], "inactive")
        self.assertEqual([c["name"] for c in self.system.list_active_cleaners()], ["Amina"])

    def test_cleaner_with_bookings_cannot_be_deleted(self) -> None:
        self.book()
        with self.assertRaises(ValidationError):
            self.system.delete_cleaner(self.cleaner["id"])
        self.system.delete_cleaner(self.other_cleaner["id"])
        with self.assertRaises(ValidationError):
            self.system.get_cleaner(self.other_cleaner["id"])

    def test_client_directory_and_address(self) -> None:
        client = self.system.create_client(
            name="Fatima",
            mobile="44556677",
            default_address="Villa 3",
            default_zone="66",
            default_area="The Pearl",
        )
        self.assertEqual(client["full_address"], "Villa 3, Zone 66, The Pearl")
        with self.assertRaises(ValidationError):
            self.system.create_client(name="Other", mobile="44556677")
        updated = self.system.update_client(client["id"], default_street="850")
        self.assertEqual(updated["full_address"], "Villa 3, Zone 66, Street 850, The Pearl")
        self.assertTrue(self.system.find_client_by_mobile("44556677")["found"])
        self.system.delete_client(client["id"])
        self.assertEqual(self.system.list_clients(search="Fatima"), [])

    def test_full_address_skips_blank_parts(self) -> None:
        self.assertEqual(
            full_address({"client_address": "Tower 1", "client_building": "12", "client_area": ""}),
            "Tower 1, Building 12",
        )

    def test_drivers(self) -> None:
        self.system.create_driver(name="Idle", status="inactive")
        self.assertEqual([d["name"] for d in self.system.list_drivers(active_only=True)], ["Ravi"])
        self.system.update_driver(self.driver["id"], mobile="999")
        self.assertEqual(self.system.get_driver(self.driver["id"])["mobile"], "999")
        self.system.delete_driver(self.driver["id"])
        with self.assertRaises(ValidationError):
            self.system.get_driver(self.driver["id"])

    def test_driver_with_remittances_cannot_be_deleted(self) -> None:
        self.system.record_remittance(driver_id=self.driver["id"], amount=40, received_by="Nadia")
        with self.assertRaises(ValidationError):
            self.system.delete_driver(self.driver["id"])
        rows = self.system.list_remittances(driver_id=self.driver["id"])
        self.assertEqual(rows[0]["submitted_amount"], 40)

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    def test_create_booking_applies_discount_and_credit_terms(self) -> None:
        booking = self.book(
            discount_amount=15,
            is_credit_sale=True,
            driver_id=self.driver["id"],
            notes="Bring ladder",
        )
        self.assertEqual(booking["total_price"], 105.0)
        self.assertEqual(booking["final_price"], 90.0)
        self.assertEqual(booking["payment_mode"], "credit")
        self.assertEqual(booking["credit_due_date"], "2025-04-10")
        self.assertEqual(booking["driver_name"], "Ravi")
        self.assertEqual(booking["booked_by_name"], "Omar Staff")
        self.assertEqual(booking["full_address"], "West Bay")
        client = self.system.find_client_by_mobile("33001122")
        self.assertEqual(client["total_bookings"], 1)
        actions = [entry["action"] for entry in self.system.list_activity(user_id=self.staff["id"])]
        self.assertIn("create_booking", actions)

    def test_discount_cannot_exceed_total(self) -> None:
        with self.assertRaises(ValidationError):
            self.book(discount_amount=500)
        self.assertEqual(self.system.list_orders(), [])

    def test_rejected_slot_surfaces_as_validation_error(self) -> None:
        self.book()
        with self.assertRaises(ValidationError):
            self.book(start_time="10:00", client_mobile="33009999")

    def test_malformed_dates_and_times_raise_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            self.system.available_slots(cleaner_name="Amina", booking_date="2025-02-30", hours=3)
        with self.assertRaises(ValidationError):
            self.book(start_time="nine")
        with self.assertRaises(ValidationError):
            self.book(booking_date="not-a-date")
        with self.assertRaises(ValidationError):
            self.book(is_credit_sale=True, credit_due_date="soon")
        with self.assertRaises(ValidationError):
            self.system.logistics_date("custom", "2025-13-01")
        self.assertEqual(self.system.list_orders(), [])

    def test_writes_wait_for_the_system_lock(self) -> None:
        results = []
        worker = threading.Thread(target=lambda: results.append(self.book()))
        with self.system.lock:
            worker.start()
            worker.join(timeout=0.2)
            self.assertTrue(worker.is_alive())
            self.assertEqual(results, [])
        worker.join(timeout=10)
        self.assertFalse(worker.is_alive())
        self.assertEqual(results[0]["cleaner_name"], "Amina")

    def test_concurrent_bookings_cannot_share_a_slot(self) -> None:
        outcomes = []

        def attempt(mobile: str) -> None:
            try:
                outcomes.append(self.book(client_mobile=mobile)["booking_number"])
            except ValidationError as exc:
                outcomes.append(str(exc))

        workers = [threading.Thread(target=attempt, args=(mobile,)) for mobile in ("33001122", "33009999")]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)
        self.assertEqual(len(outcomes), 2)
        self.assertEqual(len(self.system.list_orders()), 1)

    def test_capacity_follows_the_system_channel(self) -> None:
        online = CleaningSystem(clock=lambda: NOW, channel_code="online")
        cleaner = online.create_cleaner(name="Amina")
        online.update_channel_rules(online.channel_rules()["id"], max_shifts_per_day_per_cleaner=2)
        online.create_booking(
            cleaner_name="Amina",
            booking_date=DAY,
            start_time="09:00",
            hours=3,
            client_name="Layla Hassan",
            client_mobile="33001122",
        )
        capacity = online.cleaner_capacity(DAY)[cleaner["id"]]
        self.assertEqual(capacity["max_shifts"], 2)
        self.assertEqual(capacity["shifts_remaining"], 1)
        preview = online.overtime_preview(cleaner_name="Amina", booking_date=DAY, hours=2)
        self.assertEqual(preview["existing_hours"], 3)

    def test_capacity_defaults_for_cleaners_without_bookings(self) -> None:
        self.book()
        capacity = self.system.cleaner_capacity(DAY)
        self.assertEqual(capacity[self.cleaner["id"]]["hours_remaining"], 7)
        self.assertEqual(capacity[self.cleaner["id"]]["shifts_remaining"], 3)
        self.assertEqual(capacity[self.other_cleaner["id"]]["hours_remaining"], 10)
        self.assertEqual(capacity[self.other_cleaner["id"]]["shifts_remaining"], 4)

    def test_overtime_preview(self) -> None:
        self.book(start_time="08:00", hours=6)
        preview = self.system.overtime_preview(cleaner_name="Amina", booking_date=DAY, hours=3)
        self.assertEqual(preview["existing_hours"], 6)
        self.assertEqual(preview["overtime_hours"], 1)

    def test_schedule_board_filters(self) -> None:
        self.book()
        everyone = self.system.schedule_board(booking_date=DAY)
        booked = self.system.schedule_board(booking_date=DAY, view_filter="booked")
        available = self.system.schedule_board(booking_date=DAY, view_filter="available")
        self.assertEqual(len(everyone), 2)
        self.assertEqual([row["cleaner"]["name"] for row in booked], ["Amina"])
        self.assertEqual(len(available), 2)
        with self.assertRaises(ValidationError):
            self.system.schedule_board(booking_date=DAY, view_filter="busy")

    def test_timeline_positions(self) -> None:
        self.book(start_time="11:00", hours=3)
        rows = {row["cleaner"]["name"]: row for row in self.system.timeline(DAY)}
        block = rows["Amina"]["blocks"][0]
        self.assertEqual(block["left"], 25.0)
        self.assertEqual(block["width"], 25.0)
        self.assertEqual(rows["Grace"]["blocks"], [])

    def test_update_and_cancel_booking(self) -> None:
        booking = self.book()
        moved = self.system.update_booking(
            booking_id=booking["id"], user=self.staff, cleaner_name="Grace", start_time="13:00", hours=4
        )
        self.assertEqual(moved["cleaner_name"], "Grace")
        self.assertEqual(moved["start_time"], "13:00:00")
        self.assertEqual(moved["end_time"], "17:00:00")
        self.assertEqual(moved["final_price"], 140.0)
        self.assertEqual(moved["updated_by"], "Omar Staff")

        with self.assertRaises(ValidationError):
            self.system.cancel_booking(booking_id=booking["id"], reason=" ", user=self.staff)
        cancelled = self.system.cancel_booking(booking_id=booking["id"], reason="Sick", user=self.staff)
        self.assertEqual(cancelled["status"], "cancelled")
        self.assertEqual(cancelled["cancelled_by"], "Omar Staff")
        self.assertEqual(self.system.list_day_bookings(DAY), [])
        with self.assertRaises(ValidationError):
            self.system.cancel_booking(booking_id=booking["id"], reason="Again", user=self.staff)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def test_order_filters(self) -> None:
        first = self.book()
        self.book(cleaner_name="Grace", client_mobile="33005555", client_name="Yusuf")
        self.assertEqual(len(self.system.list_orders(search="yusuf")), 1)
        self.assertEqual(len(self.system.list_orders(search=first["booking_number"])), 1)
        self.assertEqual(len(self.system.list_orders(month="3", year="2025")), 2)
        self.assertEqual(self.system.list_orders(month="4"), [])
        self.assertEqual(len(self.system.list_orders(date=DAY, payment="unpaid")), 2)

    def test_mark_paid_requires_manager(self) -> None:
        booking = self.book()
        with self.assertRaises(AuthorizationError):
            self.system.mark_paid(booking_id=booking["id"], user_id=self.staff["id"])
        paid = self.system.mark_paid(booking_id=booking["id"], user_id=self.admin["id"])
        self.assertEqual(paid["payment_status"], "paid")
        completed = self.system.mark_completed(booking_id=booking["id"], user_id=self.staff["id"])
        self.assertEqual(completed["status"], "completed")
        with self.assertRaises(ValidationError):
            self.system.mark_completed(booking_id=booking["id"], user_id=self.staff["id"])
        self.assertEqual(self.system.dashboard_summary()["completed_revenue"], 105.0)

    # ------------------------------------------------------------------
    # Logistics, collections & remittances
    # ------------------------------------------------------------------
    def test_logistics_board_splits_morning_and_afternoon(self) -> None:
        self.book(start_time="08:00", hours=2)
        self.book(cleaner_name="Grace", start_time="12:00", hours=2, client_mobile="33005555", client_name="Yusuf")
        board = self.system.logistics_board(booking_date=DAY)
        self.assertEqual(len(board["morning"]), 1)
        self.assertEqual(len(board["afternoon"]), 1)
        searched = self.system.logistics_board(booking_date=DAY, search="grace")
        self.assertEqual(searched["morning"], [])
        self.assertEqual(self.system.logistics_date("tomorrow"), DAY)
        with self.assertRaises(ValidationError):
            self.system.logistics_date("custom")

    def test_collections_follow_completed_pickups_and_remittances(self) -> None:
        cash = self.book()
        credit = self.book(
            cleaner_name="Grace", client_mobile="33005555", client_name="Yusuf", is_credit_sale=True
        )
        saved = self.system.save_transport_changes(
            [
                {"booking_id": cash["id"], "pickup_driver_id": self.driver["id"], "pickup_completed": True},
                {"booking_id": credit["id"], "pickup_driver_id": self.driver["id"], "pickup_completed": True},
            ]
        )
        self.assertEqual(saved, 2)
        details = self.system.get_booking_details(cash["id"])
        self.assertEqual(details["pickup_driver_id"], self.driver["id"])

        rows = self.system.driver_collections(start=DAY, end=DAY)
        self.assertEqual(rows[0]["expected_amount"], 105.0)
        self.assertEqual(rows[0]["status"], "pending")

        self.system.record_remittance(
            driver_id=self.driver["id"], amount=50, received_by="Nadia", remittance_date=f"{DAY} 18:00:00"
        )
        rows = self.system.driver_collections(start=DAY, end=DAY)
        self.assertEqual(rows[0]["actual_amount"], 50.0)
        self.assertEqual(rows[0]["difference"], -55.0)
        self.assertEqual(rows[0]["status"], "partial")

    def test_remittance_validation_and_verification(self) -> None:
        with self.assertRaises(ValidationError):
            self.system.record_remittance(driver_id=None, amount=10, received_by="Nadia")
        with self.assertRaises(ValidationError):
            self.system.record_remittance(driver_id=self.driver["id"], amount=0, received_by="Nadia")
        with self.assertRaises(ValidationError):
            self.system.record_remittance(driver_id=self.driver["id"], amount=10, received_by="")
        remittance = self.system.record_remittance(driver_id=self.driver["id"], amount=75.5, received_by="Nadia")
        self.system.verify_remittance(remittance["id"])
        rows = self.system.list_remittances(driver_id=self.driver["id"])
        totals = self.system.remittance_totals(rows)
        self.assertEqual(totals, {"count": 1, "total_submitted": 75.5, "verified_count": 1})

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def test_pricing_change_affects_quotes(self) -> None:
        config = self.system.list_pricing_configs()[0]
        self.system.update_pricing_config(config["id"], hourly_rate=40, materials_price=12, tax_rate=5)
        quote = self.system.quote_price(booking_date=DAY, hours=2, with_materials=True)
        self.assertEqual(quote["subtotal"], 104.0)
        self.assertEqual(quote["tax_amount"], 5.2)
        self.assertEqual(quote["total"], 109.2)
        with self.assertRaises(ValidationError):
            self.system.update_pricing_config(config["id"], hourly_rate=0, materials_price=0, tax_rate=0)

    def test_special_area_pricing(self) -> None:
        area = self.system.create_special_area(code="Pearl", name="The Pearl", keywords=["Porto Arabia", " "])
        self.assertEqual(self.system.list_special_areas()[0]["search_keywords"], ["Porto Arabia"])
        self.system.set_special_area_pricing(area_id=area["id"], hourly_rate=50)
        self.system.set_special_area_pricing(area_id=area["id"], hourly_rate=55, materials_price=15)
        self.assertEqual(len(self.system.list_special_area_pricing()), 1)
        quote = self.system.quote_price(booking_date=DAY, hours=2, with_materials=True, area="the pearl")
        self.assertEqual(quote["total"], 140.0)

    def test_gap_rule_changes_availability(self) -> None:
        self.book()
        for rule in self.system.list_gap_rules():
            if rule["channel_code"] == "staff":
                self.system.update_gap_rule(rule["id"], gap_minutes=0)
        slots = self.system.available_slots(cleaner_name="Grace", booking_date=DAY, hours=2)
        self.assertTrue(all(slot["is_available"] for slot in slots))
        amina = {s["slot_start"]: s for s in self.system.available_slots(cleaner_name="Amina", booking_date=DAY, hours=2)}
        self.assertTrue(amina["12:00:00"]["is_available"])
        with self.assertRaises(ValidationError):
            self.system.add_gap_rule(channel_id=1, min_booking_hours=4, max_booking_hours=2, gap_minutes=15)

    def test_channel_rules_and_time_periods(self) -> None:
        rules = self.system.channel_rules()
        self.system.update_channel_rules(rules["id"], max_shifts_per_day_per_cleaner=1)
        self.book()
        with self.assertRaises(ValidationError):
            self.book(start_time="15:00", client_mobile="33005555")
        with self.assertRaises(ValidationError):
            self.system.update_channel_rules(rules["id"], work_start_time="18:00:00", work_end_time="08:00:00")

        period = self.system.list_time_periods()[0]
        self.system.update_time_period(period["id"], name="Early", start_time="07:00", end_time="11:00")
        self.assertEqual(self.system.list_time_periods()[0]["start_time"], "07:00:00")

    def test_reminder_rules(self) -> None:
        kind = self.system.list_reminder_types()[1]
        with self.assertRaises(ValidationError):
            self.system.add_reminder_rule(reminder_type_id=kind["id"])
        self.system.add_reminder_rule(reminder_type_id=kind["id"], hours_before=24)
        rule = self.system.list_reminder_rules()[0]
        self.assertEqual(rule["channel_code"], None)
        self.system.update_reminder_rule(rule["id"], is_active=0)
        self.assertEqual(self.system.list_reminder_rules()[0]["is_active"], 0)
        self.system.delete_reminder_rule(rule["id"])
        self.assertEqual(self.system.list_reminder_rules(), [])

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def test_report_rows_exclude_cancelled(self) -> None:
        kept = self.book()
        dropped = self.book(cleaner_name="Grace", client_mobile="33005555", client_name="Yusuf")
        self.system.cancel_booking(booking_id=dropped["id"], reason="Duplicate", user=self.staff)
        rows = self.system.report_rows(start=DAY, end=DAY)
        self.assertEqual([row["id"] for row in rows], [kept["id"]])
        self.assertEqual(rows[0]["cleaner_name"], "Amina")
        self.assertEqual(rows[0]["debt_age_days"], 0)
        daily = self.system.daily_sales(start=DAY, end=DAY)
        self.assertEqual(daily[0]["total_sales"], 105.0)

    def test_debt_age_follows_the_system_clock(self) -> None:
        self.book(is_credit_sale=True, credit_due_date="2025-02-08")
        self.book(
            cleaner_name="Grace",
            start_time="13:00",
            client_mobile="33005555",
            is_credit_sale=True,
            credit_due_date="2025-03-20",
        )
        rows = self.system.report_rows(start=DAY, end=DAY)
        self.assertEqual([row["debt_age_days"] for row in rows], [30, 0])


if __name__ == "__main__":
    unittest.main()
