"""Core orchestration logic for the cleaning operations dashboard."""

from __future__ import annotations

import datetime as dt
import functools
import hashlib
import json
import logging
import secrets
import sqlite3
import threading
from typing import Any, Callable, Iterable, Sequence

from cleandash.backend.database import get_connection, initialize_database
from cleandash.backend.procedures import BackendError, call_procedure
from cleandash.config import SETTINGS

logger = logging.getLogger(__name__)

ROLES = ("admin", "manager", "staff")
USER_STATUSES = ("active", "inactive")
BOOKING_STATUSES = ("confirmed", "completed", "cancelled")
PAYMENT_MODES = ("cash", "card", "bank_transfer", "credit")
VIEW_FILTERS = ("all", "available", "booked")
TIMELINE_START = 8 * 60
TIMELINE_END = 20 * 60
CREDIT_TERM_DAYS = 30


class AuthorizationError(RuntimeError):
    """Raised when a user action is not permitted."""


class ValidationError(RuntimeError):
    """Raised when incoming data fails validation."""


def _minutes(value: str) -> int:
    try:
        hours, minutes = str(value).split(":")[:2]
        return int(hours) * 60 + int(minutes)
    except ValueError as exc:
        raise ValidationError(f"Invalid time: {value}") from exc


def _iso_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value}") from exc


def _clock_time(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}:00"


def _serialized(method: Callable) -> Callable:
    """Run ``method`` while holding the system lock.

    Every request thread shares one connection, so a booking's slot check,
    insert and follow-up updates must not interleave with another writer.
    """

    @functools.wraps(method)
    def wrapper(self: CleaningSystem, *args: Any, **kwargs: Any) -> Any:
        with self.lock:
            return method(self, *args, **kwargs)

    return wrapper


def full_address(record: dict, prefix: str = "client_") -> str:
    """Join the address parts of a booking or client into a single line."""

    parts = [
        record.get(f"{prefix}address"),
        record.get(f"{prefix}address2"),
        f"Zone {record[prefix + 'zone']}" if record.get(f"{prefix}zone") else None,
        f"Street {record[prefix + 'street']}" if record.get(f"{prefix}street") else None,
        f"Building {record[prefix + 'building']}" if record.get(f"{prefix}building") else None,
        record.get(f"{prefix}area"),
    ]
    return ", ".join(str(part) for part in parts if part)


class CleaningSystem:
    """High level façade that exposes dashboard behaviours."""

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        channel_code: str | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.lock = threading.RLock()
        self.conn = get_connection(db_path)
        initialize_database(self.conn)
        self.channel_code = channel_code or SETTINGS["channel_code"]
        self._clock = clock or dt.datetime.now

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def now(self) -> dt.datetime:
        return self._clock()

    def today(self) -> dt.date:
        return self.now().date()

    def _hash_password(self, password: str) -> str:
        salt = secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 390000)
        return f"pbkdf2_sha256${salt}${digest.hex()}"

    def _verify_password(self, stored: str, provided: str) -> bool:
        algorithm, salt, hex_digest = stored.split("$")
        candidate = hashlib.pbkdf2_hmac("sha256", provided.encode(), salt.encode(), 390000)
        return secrets.compare_digest(candidate.hex(), hex_digest)

    def _require_role(self, user_id: int | None, allowed: Sequence[str]) -> dict:
        user = self.conn.execute(
            "SELECT * FROM users WHERE id = ? AND status = 'active'", (user_id,)
        ).fetchone()
        if not user or user["role"] not in allowed:
            raise AuthorizationError("User does not have permission to perform this action")
        return user

    @_serialized
    def _call(self, name: str, **params: Any) -> Any:
        """Invoke a backend procedure, turning rejections into ``ValidationError``."""

        result = call_procedure(self.conn, name, params, now=self.now())
        if isinstance(result, dict) and result.get("success") is False:
            raise ValidationError(result.get("error") or f"{name} failed")
        return result

    @_serialized
    def _update_fields(self, table: str, row_id: int, fields: dict, allowed: Iterable[str]) -> None:
        updates = {key: value for key, value in fields.items() if key in allowed}
        if not updates:
            return
        assignments = ", ".join(f"{column} = ?" for column in updates)
        try:
            cur = self.conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?", (*updates.values(), row_id)
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Could not update record: {exc}") from exc
        if cur.rowcount == 0:
            raise ValidationError("Record not found")
        self.conn.commit()

    @_serialized
    def log_activity(
        self,
        *,
        user_id: int | None,
        action: str,
        entity_type: str,
        entity_id: Any = None,
        details: dict | None = None,
    ) -> None:
        call_procedure(
            self.conn,
            "log_activity",
            {
                "user_id": user_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "details": details,
            },
            now=self.now(),
        )

    # ------------------------------------------------------------------
    # Authentication & users
    # ------------------------------------------------------------------
    def has_users(self) -> bool:
        return self.conn.execute("SELECT COUNT(*) AS total FROM users").fetchone()["total"] > 0

    @_serialized
    def register_user(
        self,
        *,
        email: str,
        password: str,
        full_name: str,
        role: str = "staff",
        phone: str | None = None,
    ) -> dict:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email is required")
        if len(password or "") < 6:
            raise ValidationError("Password must be at least 6 characters")
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        if not (full_name or "").strip():
            raise ValidationError("Full name is required")
        try:
            cur = self.conn.execute(
                """
                INSERT INTO users(email, password_hash, full_name, role, phone)
                VALUES (?, ?, ?, ?, ?)
                """,
                (email, self._hash_password(password), full_name.strip(), role, phone),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("A user with this email already exists") from exc
        self.conn.commit()
        logger.info("Registered %s user %s", role, email)
        return self.get_user(cur.lastrowid)

    def get_user(self, user_id: int) -> dict:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise ValidationError("User not found")
        return row

    @_serialized
    def login(self, *, email: str, password: str) -> dict:
        row = self.conn.execute(
            "SELECT * FROM users WHERE email = ?", ((email or "").strip().lower(),)
        ).fetchone()
        if not row or not self._verify_password(row["password_hash"], password or ""):
            logger.warning("Failed login for %s", email)
            raise AuthorizationError("Invalid credentials")
        if row["status"] != "active":
            raise AuthorizationError("This account is inactive")
        self.conn.execute(
            "UPDATE users SET last_login_at = ? WHERE id = ?",
            (self.now().isoformat(timespec="seconds"), row["id"]),
        )
        self.conn.commit()
        self.log_activity(user_id=row["id"], action="login", entity_type="user", entity_id=row["id"])
        return self.get_user(row["id"])

    def record_logout(self, user_id: int) -> None:
        self.log_activity(user_id=user_id, action="logout", entity_type="user", entity_id=user_id)

    def list_users(self) -> list[dict]:
        return self.conn.execute("SELECT * FROM users ORDER BY role, full_name").fetchall()

    def update_user_role(self, *, actor_id: int, user_id: int, role: str) -> dict:
        self._require_role(actor_id, ("admin",))
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        if actor_id == user_id:
            raise ValidationError("You cannot change your own role")
        self._update_fields("users", user_id, {"role": role}, ("role",))
        self.log_activity(
            user_id=actor_id, action="update_role", entity_type="user", entity_id=user_id,
            details={"role": role},
        )
        return self.get_user(user_id)

    def update_user_status(self, *, actor_id: int, user_id: int, status: str) -> dict:
        self._require_role(actor_id, ("admin",))
        if status not in USER_STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        if actor_id == user_id:
            raise ValidationError("You cannot change your own status")
        self._update_fields("users", user_id, {"status": status}, ("status",))
        self.log_activity(
            user_id=actor_id, action="update_status", entity_type="user", entity_id=user_id,
            details={"status": status},
        )
        return self.get_user(user_id)

    def update_profile(
        self,
        *,
        user_id: int,
        full_name: str,
        phone: str | None = None,
        password: str | None = None,
    ) -> dict:
        if not (full_name or "").strip():
            raise ValidationError("Full name is required")
        fields: dict[str, Any] = {"full_name": full_name.strip(), "phone": phone}
        if password:
            if len(password) < 6:
                raise ValidationError("Password must be at least 6 characters")
            fields["password_hash"] = self._hash_password(password)
        self._update_fields("users", user_id, fields, ("full_name", "phone", "password_hash"))
        self.log_activity(user_id=user_id, action="update_profile", entity_type="user", entity_id=user_id)
        return self.get_user(user_id)

    def list_activity(self, *, user_id: int | None = None, limit: int = 50) -> list[dict]:
        params: list[Any] = []
        where = ""
        if user_id is not None:
            where = " WHERE activity_logs.user_id = ?"
            params.append(user_id)
        rows = self.conn.execute(
            """
            SELECT activity_logs.*, users.full_name AS user_name
            FROM activity_logs LEFT JOIN users ON users.id = activity_logs.user_id
            """
            + where
            + " ORDER BY activity_logs.id DESC LIMIT ?",
            (*params, limit),
        ).fetchall()
        for row in rows:
            row["details"] = json.loads(row["details"]) if row["details"] else {}
        return rows

    # ------------------------------------------------------------------
    # Cleaners
    # ------------------------------------------------------------------
    def list_cleaners(self, *, search: str | None = None, status: str | None = None) -> list[dict]:
        clauses: list[str] = []
        params: list[Any] = []
        if search:
            clauses.append("(name LIKE ? OR mobile LIKE ? OR nationality LIKE ?)")
            params.extend([f"%{search.strip()}%"] * 3)
        if status:
            clauses.append("status = ?")
            params.append(status)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return self.conn.execute("SELECT * FROM cleaners" + where + " ORDER BY name", params).fetchall()

    def list_active_cleaners(self) -> list[dict]:
        return self.list_cleaners(status="active")

    def get_cleaner(self, cleaner_id: int) -> dict:
        row = self.conn.execute("SELECT * FROM cleaners WHERE id = ?", (cleaner_id,)).fetchone()
        if not row:
            raise ValidationError("Cleaner not found")
        return row

    @_serialized
    def create_cleaner(
        self,
        *,
        name: str,
        mobile: str | None = None,
        residence_id: str | None = None,
        nationality: str | None = None,
        date_of_birth: str | None = None,
    ) -> dict:
        if not (name or "").strip():
            raise ValidationError("Cleaner name is required")
        try:
            cur = self.conn.execute(
                """
                INSERT INTO cleaners(name, mobile, residence_id, nationality, date_of_birth)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name.strip(), mobile, residence_id, nationality, date_of_birth),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("A cleaner with this name already exists") from exc
        self.conn.commit()
        return self.get_cleaner(cur.lastrowid)

    def update_cleaner(self, cleaner_id: int, **fields: Any) -> dict:
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Cleaner name is required")
        fields["updated_at"] = self.now().isoformat(timespec="seconds")
        self._update_fields(
            "cleaners",
            cleaner_id,
            fields,
            ("name", "mobile", "residence_id", "nationality", "date_of_birth", "status", "updated_at"),
        )
        return self.get_cleaner(cleaner_id)

    def toggle_cleaner_status(self, cleaner_id: int) -> dict:
        cleaner = self.get_cleaner(cleaner_id)
        status = "inactive" if cleaner["status"] == "active" else "active"
        return self.update_cleaner(cleaner_id, status=status)

    @_serialized
    def delete_cleaner(self, cleaner_id: int) -> None:
        self.get_cleaner(cleaner_id)
        used = self.conn.execute(
            "SELECT COUNT(*) AS total FROM bookings WHERE cleaner_id = ?", (cleaner_id,)
        ).fetchone()["total"]
        if used:
            raise ValidationError("Cleaner has bookings; deactivate instead of deleting")
        self.conn.execute("DELETE FROM cleaners WHERE id = ?", (cleaner_id,))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------
    def list_drivers(self, *, active_only: bool = False) -> list[dict]:
        where = " WHERE status = 'active'" if active_only else ""
        return self.conn.execute("SELECT * FROM drivers" + where + " ORDER BY name").fetchall()

    def get_driver(self, driver_id: int) -> dict:
        row = self.conn.execute("SELECT * FROM drivers WHERE id = ?", (driver_id,)).fetchone()
        if not row:
            raise ValidationError("Driver not found")
        return row

    @_serialized
    def create_driver(
        self,
        *,
        name: str,
        mobile: str | None = None,
        status: str = "active",
        notes: str | None = None,
    ) -> dict:
        if not (name or "").strip():
            raise ValidationError("Driver name is required")
        cur = self.conn.execute(
            "INSERT INTO drivers(name, mobile, status, notes) VALUES (?, ?, ?, ?)",
            (name.strip(), mobile, status, notes),
        )
        self.conn.commit()
        return self.get_driver(cur.lastrowid)

    def update_driver(self, driver_id: int, **fields: Any) -> dict:
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Driver name is required")
        self._update_fields("drivers", driver_id, fields, ("name", "mobile", "status", "notes"))
        return self.get_driver(driver_id)

    @_serialized
    def delete_driver(self, driver_id: int) -> None:
        self.get_driver(driver_id)
        remitted = self.conn.execute(
            "SELECT COUNT(*) AS total FROM driver_remittances WHERE driver_id = ?", (driver_id,)
        ).fetchone()["total"]
        if remitted:
            raise ValidationError("Driver has remittance history; deactivate instead of deleting")
        self.conn.execute("DELETE FROM drivers WHERE id = ?", (driver_id,))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------
    def list_clients(self, *, search: str | None = None) -> list[dict]:
        params: list[Any] = []
        where = ""
        if search:
            where = " WHERE name LIKE ? OR mobile LIKE ? OR default_area LIKE ?"
            params.extend([f"%{search.strip()}%"] * 3)
        rows = self.conn.execute(
            "SELECT * FROM clients" + where + " ORDER BY name", params
        ).fetchall()
        for row in rows:
            row["full_address"] = full_address(row, "default_")
        return rows

    def get_client(self, client_id: int) -> dict:
        row = self.conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
        if not row:
            raise ValidationError("Client not found")
        row["full_address"] = full_address(row, "default_")
        return row

    @_serialized
    def create_client(self, *, name: str, mobile: str, **defaults: Any) -> dict:
        if not (name or "").strip() or not (mobile or "").strip():
            raise ValidationError("Client name and mobile are required")
        columns = [column for column in CLIENT_FIELDS if column in defaults]
        try:
            cur = self.conn.execute(
                f"INSERT INTO clients(name, mobile{''.join(', ' + c for c in columns)})"
                f" VALUES (?, ?{', ?' * len(columns)})",
                (name.strip(), mobile.strip(), *(defaults[column] for column in columns)),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("A client with this mobile already exists") from exc
        self.conn.commit()
        return self.get_client(cur.lastrowid)

    def update_client(self, client_id: int, **fields: Any) -> dict:
        if "mobile" in fields and not (fields["mobile"] or "").strip():
            raise ValidationError("Client mobile is required")
        self._update_fields("clients", client_id, fields, ("name", "mobile", *CLIENT_FIELDS))
        return self.get_client(client_id)

    @_serialized
    def delete_client(self, client_id: int) -> None:
        self.get_client(client_id)
        self.conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
        self.conn.commit()

    def find_client_by_mobile(self, mobile: str) -> dict:
        return self._call("find_client_by_mobile", mobile=mobile)

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    def cleaner_capacity(self, booking_date: str) -> dict[int, dict]:
        """Remaining hours and shifts for every active cleaner on a date."""

        rows = self.conn.execute(
            "SELECT * FROM vw_cleaner_daily_capacity WHERE booking_date = ? AND channel_code = ?",
            (booking_date, self.channel_code),
        ).fetchall()
        by_cleaner = {row["cleaner_id"]: row for row in rows}
        rules = self.channel_rules(self.channel_code)
        capacity: dict[int, dict] = {}
        for cleaner in self.list_active_cleaners():
            capacity[cleaner["id"]] = by_cleaner.get(cleaner["id"]) or {
                "cleaner_id": cleaner["id"],
                "cleaner_name": cleaner["name"],
                "booking_date": booking_date,
                "shifts_booked": 0,
                "hours_booked": 0,
                "overtime_hours": 0,
                "max_hours": rules["max_daily_hours_per_cleaner"],
                "max_shifts": rules["max_shifts_per_day_per_cleaner"],
                "hours_remaining": rules["max_daily_hours_per_cleaner"],
                "shifts_remaining": rules["max_shifts_per_day_per_cleaner"],
            }
        return capacity

    def available_slots(self, *, cleaner_name: str, booking_date: str, hours: float) -> list[dict]:
        return self._call(
            "get_available_slots",
            cleaner_name=cleaner_name,
            booking_date=booking_date,
            requested_hours=hours,
            channel_code=self.channel_code,
        )

    def quote_price(
        self,
        *,
        booking_date: str,
        hours: float,
        number_of_cleaners: int = 1,
        with_materials: bool = False,
        area: str | None = None,
    ) -> dict:
        return self._call(
            "calculate_booking_price",
            channel_code=self.channel_code,
            booking_date=booking_date,
            duration_hours=hours,
            number_of_cleaners=number_of_cleaners,
            with_materials=with_materials,
            area_text=area,
        )

    def overtime_preview(self, *, cleaner_name: str, booking_date: str, hours: float) -> dict:
        row = self.conn.execute(
            """
            SELECT COALESCE(SUM(hours_booked), 0) AS hours
            FROM vw_cleaner_daily_capacity
            WHERE cleaner_name = ? AND booking_date = ? AND channel_code = ?
            """,
            (cleaner_name, booking_date, self.channel_code),
        ).fetchone()
        existing = row["hours"]
        regular = SETTINGS["regular_daily_hours"]
        overtime = max(0.0, existing + hours - regular) - max(0.0, existing - regular)
        return {
            "existing_hours": existing,
            "total_hours": existing + hours,
            "overtime_hours": round(overtime, 2),
        }

    @_serialized
    def create_booking(
        self,
        *,
        cleaner_name: str,
        booking_date: str,
        start_time: str,
        hours: float,
        client_name: str,
        client_mobile: str,
        user: dict | None = None,
        client_address: str | None = None,
        client_address2: str | None = None,
        client_zone: str | None = None,
        client_street: str | None = None,
        client_building: str | None = None,
        client_area: str | None = None,
        client_location_url: str | None = None,
        client_notes: str | None = None,
        number_of_cleaners: int = 1,
        with_materials: bool = False,
        pricing_mode: str = "auto",
        manual_price: float | None = None,
        manual_price_reason: str | None = None,
        discount_amount: float = 0.0,
        driver_id: int | None = None,
        payment_mode: str = "cash",
        is_credit_sale: bool = False,
        credit_due_date: str | None = None,
        notes: str | None = None,
    ) -> dict:
        if not hours or hours <= 0:
            raise ValidationError("Duration must be positive")
        if payment_mode not in PAYMENT_MODES:
            raise ValidationError(f"Unknown payment mode: {payment_mode}")
        discount_amount = float(discount_amount or 0)
        if discount_amount < 0:
            raise ValidationError("Discount cannot be negative")
        if is_credit_sale and credit_due_date:
            credit_due_date = _iso_date(credit_due_date).isoformat()
        if pricing_mode == "manual":
            expected_total = float(manual_price or 0)
        else:
            expected_total = self.quote_price(
                booking_date=booking_date,
                hours=hours,
                number_of_cleaners=number_of_cleaners,
                with_materials=with_materials,
                area=client_area,
            )["total"]
        if discount_amount > expected_total:
            raise ValidationError("Discount cannot exceed the booking total")

        start = _minutes(start_time)
        result = self._call(
            "create_booking",
            channel_code=self.channel_code,
            cleaner_name=cleaner_name,
            booking_date=booking_date,
            start_time=_clock_time(start),
            end_time=_clock_time(start + int(round(hours * 60))),
            client_mobile=client_mobile,
            client_name=client_name,
            client_address=client_address,
            client_address2=client_address2,
            client_zone=client_zone,
            client_street=client_street,
            client_building=client_building,
            client_area=client_area,
            client_location_url=client_location_url,
            client_notes=client_notes,
            number_of_cleaners=number_of_cleaners,
            with_materials=with_materials,
            booked_by_name=(user or {}).get("full_name"),
            booked_by_user_id=(user or {}).get("id"),
            pricing_mode=pricing_mode,
            manual_price=manual_price,
            manual_price_reason=manual_price_reason,
        )

        if is_credit_sale and not credit_due_date:
            credit_due_date = (
                _iso_date(booking_date) + dt.timedelta(days=CREDIT_TERM_DAYS)
            ).isoformat()
        self.conn.execute(
            """
            UPDATE bookings SET driver_id = ?, discount_amount = ?,
                final_price = total_price - ?, payment_mode = ?, is_credit_sale = ?,
                credit_due_date = ?, notes = ?
            WHERE id = ?
            """,
            (
                driver_id,
                discount_amount,
                discount_amount,
                "credit" if is_credit_sale else payment_mode,
                int(is_credit_sale),
                credit_due_date if is_credit_sale else None,
                notes,
                result["booking_id"],
            ),
        )
        if discount_amount:
            self.conn.execute(
                """
                UPDATE clients SET total_spent = total_spent - ?
                WHERE id = (SELECT client_id FROM bookings WHERE id = ?)
                """,
                (discount_amount, result["booking_id"]),
            )
        self.conn.commit()
        self.log_activity(
            user_id=(user or {}).get("id"),
            action="create_booking",
            entity_type="booking",
            entity_id=result["booking_id"],
            details={"booking_number": result["booking_number"], "cleaner": cleaner_name},
        )
        return self.get_booking_details(result["booking_id"])

    def get_booking_details(self, booking_id: int) -> dict:
        row = self.conn.execute(
            "SELECT * FROM vw_booking_details WHERE id = ?", (booking_id,)
        ).fetchone()
        if not row:
            raise ValidationError("Booking not found")
        row["full_address"] = full_address(row)
        return row

    @_serialized
    def update_booking(
        self,
        *,
        booking_id: int,
        user: dict | None = None,
        booking_date: str | None = None,
        start_time: str | None = None,
        hours: float | None = None,
        cleaner_name: str | None = None,
        client_notes: str | None = None,
    ) -> dict:
        booking = self.get_booking_details(booking_id)
        start = _minutes(start_time or booking["start_time"])
        duration = hours if hours else booking["duration_hours"]
        self._call(
            "update_booking",
            booking_id=booking_id,
            new_start_time=_clock_time(start),
            new_end_time=_clock_time(start + int(round(duration * 60))),
            new_date=booking_date,
            new_cleaner_name=cleaner_name,
            new_client_notes=client_notes,
            updated_by=(user or {}).get("full_name"),
        )
        self.log_activity(
            user_id=(user or {}).get("id"),
            action="update_booking",
            entity_type="booking",
            entity_id=booking_id,
            details={"booking_number": booking["booking_number"]},
        )
        return self.get_booking_details(booking_id)

    @_serialized
    def cancel_booking(self, *, booking_id: int, reason: str, user: dict | None = None) -> dict:
        if not (reason or "").strip():
            raise ValidationError("A cancellation reason is required")
        result = self._call(
            "cancel_booking",
            booking_id=booking_id,
            cancellation_reason=reason.strip(),
            cancelled_by=(user or {}).get("full_name"),
        )
        self.log_activity(
            user_id=(user or {}).get("id"),
            action="cancel_booking",
            entity_type="booking",
            entity_id=booking_id,
            details={"booking_number": result["booking_number"], "reason": reason.strip()},
        )
        return self.get_booking_details(booking_id)

    def list_day_bookings(self, booking_date: str) -> list[dict]:
        rows = self.conn.execute(
            """
            SELECT * FROM vw_booking_details
            WHERE booking_date = ? AND status != 'cancelled'
            ORDER BY start_time, cleaner_name
            """,
            (booking_date,),
        ).fetchall()
        for row in rows:
            row["full_address"] = full_address(row)
        return rows

    def schedule_board(self, *, booking_date: str, view_filter: str = "all") -> list[dict]:
        """Return one row per active cleaner with their bookings and capacity."""

        if view_filter not in VIEW_FILTERS:
            raise ValidationError(f"Unknown view filter: {view_filter}")
        capacity = self.cleaner_capacity(booking_date)
        bookings = self.list_day_bookings(booking_date)
        board = []
        for cleaner in self.list_active_cleaners():
            own = [booking for booking in bookings if booking["cleaner_id"] == cleaner["id"]]
            cap = capacity[cleaner["id"]]
            if view_filter == "available" and cap["shifts_remaining"] <= 0:
                continue
            if view_filter == "booked" and not own:
                continue
            board.append({"cleaner": cleaner, "bookings": own, "capacity": cap})
        return board

    def timeline(self, booking_date: str) -> list[dict]:
        """Position each booking as a percentage of the 08:00-20:00 window."""

        span = TIMELINE_END - TIMELINE_START
        rows = []
        for entry in self.schedule_board(booking_date=booking_date):
            blocks = []
            for booking in entry["bookings"]:
                start = max(_minutes(booking["start_time"]), TIMELINE_START)
                end = min(_minutes(booking["end_time"]), TIMELINE_END)
                if end <= start:
                    continue
                blocks.append(
                    {
                        "booking": booking,
                        "left": round((start - TIMELINE_START) / span * 100, 2),
                        "width": round((end - start) / span * 100, 2),
                    }
                )
            rows.append({"cleaner": entry["cleaner"], "blocks": blocks})
        return rows

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def list_orders(
        self,
        *,
        search: str | None = None,
        status: str | None = None,
        payment: str | None = None,
        date: str | None = None,
        month: str | None = None,
        year: str | None = None,
    ) -> list[dict]:
        clauses: list[str] = []
        params: list[Any] = []
        if search:
            clauses.append("(booking_number LIKE ? OR client_name LIKE ? OR client_mobile LIKE ?)")
            params.extend([f"%{search.strip()}%"] * 3)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if payment:
            clauses.append("payment_status = ?")
            params.append(payment)
        if date:
            clauses.append("booking_date = ?")
            params.append(date)
        if month:
            clauses.append("strftime('%m', booking_date) = ?")
            params.append(f"{int(month):02d}")
        if year:
            clauses.append("strftime('%Y', booking_date) = ?")
            params.append(str(year))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return self.conn.execute(
            "SELECT * FROM vw_booking_details" + where + " ORDER BY booking_date DESC, start_time DESC",
            params,
        ).fetchall()

    @_serialized
    def mark_paid(self, *, booking_id: int, user_id: int) -> dict:
        self._require_role(user_id, ("admin", "manager"))
        booking = self.get_booking_details(booking_id)
        if booking["status"] == "cancelled":
            raise ValidationError("Cancelled bookings cannot be paid")
        self.conn.execute(
            "UPDATE bookings SET payment_status = 'paid', updated_at = ? WHERE id = ?",
            (self.now().isoformat(timespec="seconds"), booking_id),
        )
        self.conn.commit()
        self.log_activity(
            user_id=user_id, action="mark_paid", entity_type="booking", entity_id=booking_id,
            details={"booking_number": booking["booking_number"]},
        )
        return self.get_booking_details(booking_id)

    @_serialized
    def mark_completed(self, *, booking_id: int, user_id: int) -> dict:
        booking = self.get_booking_details(booking_id)
        if booking["status"] != "confirmed":
            raise ValidationError("Only confirmed bookings can be completed")
        self.conn.execute(
            "UPDATE bookings SET status = 'completed', updated_at = ? WHERE id = ?",
            (self.now().isoformat(timespec="seconds"), booking_id),
        )
        self.conn.commit()
        self.log_activity(
            user_id=user_id, action="mark_completed", entity_type="booking", entity_id=booking_id,
        )
        return self.get_booking_details(booking_id)

    # ------------------------------------------------------------------
    # Logistics, collections & remittances
    # ------------------------------------------------------------------
    def logistics_date(self, choice: str, custom: str | None = None) -> str:
        offsets = {"today": 0, "tomorrow": 1, "dayAfter": 2}
        if choice == "custom":
            if not custom:
                raise ValidationError("Choose a date")
            return _iso_date(custom).isoformat()
        return (self.today() + dt.timedelta(days=offsets.get(choice, 0))).isoformat()

    def logistics_board(self, *, booking_date: str, search: str | None = None) -> dict:
        rows = self.list_day_bookings(booking_date)
        if search:
            term = search.strip().lower()
            rows = [
                row
                for row in rows
                if any(
                    term in str(row.get(key) or "").lower()
                    for key in ("client_name", "client_mobile", "client_area", "cleaner_name")
                )
            ]
        board: dict[str, list[dict]] = {"morning": [], "afternoon": []}
        for row in rows:
            hour = _minutes(row["start_time"]) // 60
            board["morning" if 6 <= hour < 12 else "afternoon"].append(row)
        return board

    @_serialized
    def save_transport_changes(self, changes: list[dict]) -> int:
        stamp = self.now().isoformat(timespec="seconds")
        for change in changes:
            self.conn.execute(
                """
                INSERT INTO booking_transport(
                    booking_id, pickup_driver_id, pickup_completed, dropoff_driver_id,
                    dropoff_completed, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(booking_id) DO UPDATE SET
                    pickup_driver_id = excluded.pickup_driver_id,
                    pickup_completed = excluded.pickup_completed,
                    dropoff_driver_id = excluded.dropoff_driver_id,
                    dropoff_completed = excluded.dropoff_completed,
                    updated_at = excluded.updated_at
                """,
                (
                    change["booking_id"],
                    change.get("pickup_driver_id"),
                    int(bool(change.get("pickup_completed"))),
                    change.get("dropoff_driver_id"),
                    int(bool(change.get("dropoff_completed"))),
                    stamp,
                ),
            )
        self.conn.commit()
        return len(changes)

    def driver_collections(self, *, start: str, end: str) -> list[dict]:
        """Cash each active driver should hand in for completed pickups."""

        collections = []
        for driver in self.list_drivers(active_only=True):
            bookings = self.conn.execute(
                """
                SELECT bookings.id, bookings.booking_number, bookings.client_name,
                       bookings.booking_date, bookings.final_price
                FROM bookings
                JOIN booking_transport ON booking_transport.booking_id = bookings.id
                WHERE booking_transport.pickup_driver_id = ?
                  AND booking_transport.pickup_completed = 1
                  AND bookings.is_credit_sale = 0
                  AND bookings.status != 'cancelled'
                  AND bookings.booking_date BETWEEN ? AND ?
                ORDER BY bookings.booking_date
                """,
                (driver["id"], start, end),
            ).fetchall()
            expected = round(sum(row["final_price"] for row in bookings), 2)
            remitted = self.conn.execute(
                """
                SELECT COALESCE(SUM(submitted_amount), 0) AS total FROM driver_remittances
                WHERE driver_id = ? AND date(remittance_date) BETWEEN ? AND ?
                """,
                (driver["id"], start, end),
            ).fetchone()["total"]
            if remitted <= 0 and expected > 0:
                status = "pending"
            elif remitted < expected:
                status = "partial"
            else:
                status = "settled"
            collections.append(
                {
                    "driver_id": driver["id"],
                    "driver_name": driver["name"],
                    "bookings": bookings,
                    "booking_count": len(bookings),
                    "expected_amount": expected,
                    "actual_amount": round(remitted, 2),
                    "difference": round(remitted - expected, 2),
                    "status": status,
                }
            )
        collections.sort(key=lambda item: item["expected_amount"], reverse=True)
        return collections

    def list_remittances(
        self,
        *,
        driver_id: int | None = None,
        start: str | None = None,
        end: str | None = None,
    ) -> list[dict]:
        clauses: list[str] = []
        params: list[Any] = []
        if driver_id:
            clauses.append("driver_remittances.driver_id = ?")
            params.append(driver_id)
        if start:
            clauses.append("date(driver_remittances.remittance_date) >= ?")
            params.append(start)
        if end:
            clauses.append("date(driver_remittances.remittance_date) <= ?")
            params.append(end)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return self.conn.execute(
            """
            SELECT driver_remittances.*, drivers.name AS driver_name
            FROM driver_remittances JOIN drivers ON drivers.id = driver_remittances.driver_id
            """
            + where
            + " ORDER BY driver_remittances.remittance_date DESC, driver_remittances.id DESC",
            params,
        ).fetchall()

    @staticmethod
    def remittance_totals(rows: list[dict]) -> dict:
        return {
            "count": len(rows),
            "total_submitted": round(sum(row["submitted_amount"] for row in rows), 2),
            "verified_count": sum(1 for row in rows if row["verified"]),
        }

    @_serialized
    def record_remittance(
        self,
        *,
        driver_id: int | None,
        amount: float | None,
        received_by: str,
        payment_method: str = "cash",
        receipt_number: str | None = None,
        notes: str | None = None,
        remittance_date: str | None = None,
    ) -> dict:
        if not driver_id:
            raise ValidationError("Select a driver")
        self.get_driver(driver_id)
        if not amount or amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        if not (received_by or "").strip():
            raise ValidationError("Received by is required")
        cur = self.conn.execute(
            """
            INSERT INTO driver_remittances(
                driver_id, remittance_date, submitted_amount, received_by_name, payment_method,
                receipt_number, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                driver_id,
                remittance_date or self.now().isoformat(sep=" ", timespec="seconds"),
                amount,
                received_by.strip(),
                payment_method,
                receipt_number,
                notes,
            ),
        )
        self.conn.commit()
        return self.conn.execute(
            "SELECT * FROM driver_remittances WHERE id = ?", (cur.lastrowid,)
        ).fetchone()

    @_serialized
    def verify_remittance(self, remittance_id: int) -> None:
        self._update_fields("driver_remittances", remittance_id, {"verified": 1}, ("verified",))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def list_channels(self) -> list[dict]:
        return self.conn.execute("SELECT * FROM channels ORDER BY id").fetchall()

    def list_time_periods(self) -> list[dict]:
        return self.conn.execute("SELECT * FROM time_periods ORDER BY display_order").fetchall()

    @_serialized
    def update_time_period(self, period_id: int, *, name: str, start_time: str, end_time: str) -> None:
        if _minutes(end_time) <= _minutes(start_time):
            raise ValidationError("End time must be after start time")
        self._update_fields(
            "time_periods",
            period_id,
            {"name": name, "start_time": _clock_time(_minutes(start_time)), "end_time": _clock_time(_minutes(end_time))},
            ("name", "start_time", "end_time"),
        )

    def list_pricing_configs(self) -> list[dict]:
        return self.conn.execute(
            """
            SELECT channel_pricing_config.*, channels.code AS channel_code
            FROM channel_pricing_config JOIN channels ON channels.id = channel_pricing_config.channel_id
            ORDER BY channels.id, effective_from DESC
            """
        ).fetchall()

    @_serialized
    def update_pricing_config(
        self,
        config_id: int,
        *,
        hourly_rate: float,
        materials_price: float,
        tax_rate: float,
        is_active: bool = True,
    ) -> None:
        if hourly_rate is None or hourly_rate <= 0:
            raise ValidationError("Hourly rate must be greater than zero")
        if (materials_price or 0) < 0 or (tax_rate or 0) < 0:
            raise ValidationError("Prices and tax cannot be negative")
        self._update_fields(
            "channel_pricing_config",
            config_id,
            {
                "hourly_rate_per_cleaner": hourly_rate,
                "materials_price_per_cleaner": materials_price or 0,
                "tax_rate": tax_rate or 0,
                "is_active": int(is_active),
            },
            ("hourly_rate_per_cleaner", "materials_price_per_cleaner", "tax_rate", "is_active"),
        )

    def list_special_areas(self) -> list[dict]:
        rows = self.conn.execute("SELECT * FROM special_areas ORDER BY name").fetchall()
        for row in rows:
            row["search_keywords"] = json.loads(row["search_keywords"] or "[]")
        return rows

    @_serialized
    def create_special_area(self, *, code: str, name: str, keywords: Iterable[str] = ()) -> dict:
        if not (code or "").strip() or not (name or "").strip():
            raise ValidationError("Area code and name are required")
        try:
            cur = self.conn.execute(
                "INSERT INTO special_areas(code, name, search_keywords) VALUES (?, ?, ?)",
                (code.strip().lower(), name.strip(), json.dumps([k.strip() for k in keywords if k.strip()])),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("An area with this code already exists") from exc
        self.conn.commit()
        return self.conn.execute("SELECT * FROM special_areas WHERE id = ?", (cur.lastrowid,)).fetchone()

    @_serialized
    def update_special_area(
        self,
        area_id: int,
        *,
        name: str,
        keywords: Iterable[str] = (),
        is_active: bool = True,
    ) -> None:
        self._update_fields(
            "special_areas",
            area_id,
            {
                "name": name,
                "search_keywords": json.dumps([k.strip() for k in keywords if k.strip()]),
                "is_active": int(is_active),
            },
            ("name", "search_keywords", "is_active"),
        )

    @_serialized
    def delete_special_area(self, area_id: int) -> None:
        self.conn.execute("DELETE FROM special_areas WHERE id = ?", (area_id,))
        self.conn.commit()

    def list_special_area_pricing(self) -> list[dict]:
        return self.conn.execute(
            """
            SELECT special_area_pricing.*, special_areas.name AS area_name, channels.code AS channel_code
            FROM special_area_pricing
            JOIN special_areas ON special_areas.id = special_area_pricing.area_id
            JOIN channels ON channels.id = special_area_pricing.channel_id
            ORDER BY special_areas.name, channels.id
            """
        ).fetchall()

    @_serialized
    def set_special_area_pricing(
        self,
        *,
        area_id: int,
        hourly_rate: float,
        materials_price: float | None = None,
        channel_code: str | None = None,
    ) -> None:
        if hourly_rate is None or hourly_rate <= 0:
            raise ValidationError("Hourly rate must be greater than zero")
        channel = self.conn.execute(
            "SELECT id FROM channels WHERE code = ?", (channel_code or self.channel_code,)
        ).fetchone()
        if not channel:
            raise ValidationError("Unknown channel")
        existing = self.conn.execute(
            "SELECT id FROM special_area_pricing WHERE area_id = ? AND channel_id = ?",
            (area_id, channel["id"]),
        ).fetchone()
        if existing:
            self.conn.execute(
                """
                UPDATE special_area_pricing SET hourly_rate_per_cleaner = ?,
                    materials_price_per_cleaner = ?, is_active = 1
                WHERE id = ?
                """,
                (hourly_rate, materials_price, existing["id"]),
            )
        else:
            self.conn.execute(
                """
                INSERT INTO special_area_pricing(
                    channel_id, area_id, hourly_rate_per_cleaner, materials_price_per_cleaner
                ) VALUES (?, ?, ?, ?)
                """,
                (channel["id"], area_id, hourly_rate, materials_price),
            )
        self.conn.commit()

    @_serialized
    def delete_special_area_pricing(self, pricing_id: int) -> None:
        self.conn.execute("DELETE FROM special_area_pricing WHERE id = ?", (pricing_id,))
        self.conn.commit()

    def channel_rules(self, channel_code: str | None = None) -> dict:
        row = self.conn.execute(
            """
            SELECT channel_business_rules.* FROM channel_business_rules
            JOIN channels ON channels.id = channel_business_rules.channel_id
            WHERE channels.code = ?
            """,
            (channel_code or self.channel_code,),
        ).fetchone()
        if not row:
            raise ValidationError("No business rules for this channel")
        return row

    def list_channel_rules(self) -> list[dict]:
        return self.conn.execute(
            """
            SELECT channel_business_rules.*, channels.code AS channel_code, channels.name AS channel_name
            FROM channel_business_rules JOIN channels ON channels.id = channel_business_rules.channel_id
            ORDER BY channels.id
            """
        ).fetchall()

    def update_channel_rules(self, rule_id: int, **fields: Any) -> None:
        if "work_start_time" in fields and "work_end_time" in fields:
            if _minutes(fields["work_end_time"]) <= _minutes(fields["work_start_time"]):
                raise ValidationError("Work end time must be after work start time")
        if fields.get("min_shift_hours") and fields.get("max_shift_hours"):
            if fields["min_shift_hours"] > fields["max_shift_hours"]:
                raise ValidationError("Minimum shift hours cannot exceed the maximum")
        self._update_fields("channel_business_rules", rule_id, fields, CHANNEL_RULE_FIELDS)

    def list_gap_rules(self) -> list[dict]:
        return self.conn.execute(
            """
            SELECT channel_gap_rules.*, channels.code AS channel_code
            FROM channel_gap_rules JOIN channels ON channels.id = channel_gap_rules.channel_id
            ORDER BY channels.id, priority
            """
        ).fetchall()

    @_serialized
    def add_gap_rule(
        self,
        *,
        channel_id: int,
        min_booking_hours: float,
        max_booking_hours: float | None,
        gap_minutes: int,
        priority: int = 0,
    ) -> None:
        self._check_gap_rule(min_booking_hours, max_booking_hours, gap_minutes)
        self.conn.execute(
            """
            INSERT INTO channel_gap_rules(
                channel_id, min_booking_hours, max_booking_hours, gap_minutes, priority
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (channel_id, min_booking_hours, max_booking_hours, gap_minutes, priority),
        )
        self.conn.commit()

    @_serialized
    def update_gap_rule(self, rule_id: int, **fields: Any) -> None:
        if "gap_minutes" in fields:
            self._check_gap_rule(
                fields.get("min_booking_hours", 0),
                fields.get("max_booking_hours"),
                fields["gap_minutes"],
            )
        self._update_fields(
            "channel_gap_rules",
            rule_id,
            fields,
            ("min_booking_hours", "max_booking_hours", "gap_minutes", "priority", "is_active"),
        )

    @_serialized
    def delete_gap_rule(self, rule_id: int) -> None:
        self.conn.execute("DELETE FROM channel_gap_rules WHERE id = ?", (rule_id,))
        self.conn.commit()

    @staticmethod
    def _check_gap_rule(min_hours: float, max_hours: float | None, gap_minutes: int) -> None:
        if gap_minutes is None or gap_minutes < 0:
            raise ValidationError("Gap minutes cannot be negative")
        if max_hours is not None and max_hours <= (min_hours or 0):
            raise ValidationError("Maximum hours must exceed minimum hours")

    def list_reminder_types(self) -> list[dict]:
        return self.conn.execute("SELECT * FROM reminder_types ORDER BY id").fetchall()

    def list_reminder_rules(self) -> list[dict]:
        return self.conn.execute(
            """
            SELECT reminder_rules.*, reminder_types.name AS type_name, channels.code AS channel_code
            FROM reminder_rules
            JOIN reminder_types ON reminder_types.id = reminder_rules.reminder_type_id
            LEFT JOIN channels ON channels.id = reminder_rules.channel_id
            ORDER BY reminder_types.id, reminder_rules.id
            """
        ).fetchall()

    @_serialized
    def add_reminder_rule(
        self,
        *,
        reminder_type_id: int,
        channel_id: int | None = None,
        trigger_type: str = "before_booking",
        hours_before: float | None = None,
        hours_after: float | None = None,
        send_whatsapp: bool = True,
        send_email: bool = False,
        whatsapp_template_name: str | None = None,
        email_subject: str | None = None,
    ) -> None:
        if trigger_type == "before_booking" and not hours_before:
            raise ValidationError("Hours before is required for this trigger")
        if trigger_type == "after_booking" and not hours_after:
            raise ValidationError("Hours after is required for this trigger")
        self.conn.execute(
            """
            INSERT INTO reminder_rules(
                reminder_type_id, channel_id, trigger_type, hours_before, hours_after,
                send_whatsapp, send_email, whatsapp_template_name, email_subject
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                reminder_type_id,
                channel_id,
                trigger_type,
                hours_before,
                hours_after,
                int(send_whatsapp),
                int(send_email),
                whatsapp_template_name,
                email_subject,
            ),
        )
        self.conn.commit()

    @_serialized
    def update_reminder_rule(self, rule_id: int, **fields: Any) -> None:
        self._update_fields("reminder_rules", rule_id, fields, REMINDER_RULE_FIELDS)

    @_serialized
    def delete_reminder_rule(self, rule_id: int) -> None:
        self.conn.execute("DELETE FROM reminder_rules WHERE id = ?", (rule_id,))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Dashboard & reporting
    # ------------------------------------------------------------------
    def dashboard_summary(self) -> dict:
        today = self.today().isoformat()
        totals = self.conn.execute(
            """
            SELECT COUNT(*) AS total_bookings,
                   COALESCE(SUM(CASE WHEN status = 'completed' THEN final_price END), 0) AS completed_revenue
            FROM bookings
            """
        ).fetchone()
        active = self.conn.execute(
            "SELECT COUNT(*) AS total FROM cleaners WHERE status = 'active'"
        ).fetchone()["total"]
        return {
            "total_bookings": totals["total_bookings"],
            "completed_revenue": totals["completed_revenue"],
            "active_cleaners": active,
            "today_bookings": self.list_day_bookings(today),
        }

    def report_rows(self, *, start: str, end: str) -> list[dict]:
        """Report rows in the range, with unpaid credit aged against today."""

        today = self.today().isoformat()
        return self.conn.execute(
            """
            SELECT vw_reports_base.*,
                   CASE
                       WHEN is_credit_sale = 1
                            AND payment_status != 'paid'
                            AND credit_due_date IS NOT NULL
                            AND credit_due_date < ?
                       THEN CAST(julianday(?) - julianday(credit_due_date) AS INTEGER)
                       ELSE 0
                   END AS debt_age_days
            FROM vw_reports_base WHERE booking_date BETWEEN ? AND ?
            ORDER BY booking_date, start_time
            """,
            (today, today, start, end),
        ).fetchall()

    def daily_sales(self, *, start: str, end: str) -> list[dict]:
        return self.conn.execute(
            """
            SELECT * FROM vw_report_daily_sales WHERE booking_date BETWEEN ? AND ?
            ORDER BY booking_date
            """,
            (start, end),
        ).fetchall()


CLIENT_FIELDS = (
    "default_address",
    "default_address2",
    "default_zone",
    "default_street",
    "default_building",
    "default_area",
    "default_location_url",
    "notes",
)

CHANNEL_RULE_FIELDS = (
    "work_start_time",
    "work_end_time",
    "min_advance_hours",
    "max_advance_days",
    "min_shift_hours",
    "max_shift_hours",
    "max_daily_hours_per_cleaner",
    "max_shifts_per_day_per_cleaner",
    "allow_past_booking",
    "allow_same_day_booking",
    "require_payment_upfront",
    "require_manual_confirmation",
    "is_active",
)

REMINDER_RULE_FIELDS = (
    "hours_before",
    "hours_after",
    "can_repeat",
    "repeat_after_minutes",
    "max_repeat_count",
    "send_whatsapp",
    "send_email",
    "whatsapp_template_name",
    "email_subject",
    "is_active",
)


__all__ = [
    "AuthorizationError",
    "BackendError",
    "CleaningSystem",
    "ValidationError",
    "full_address",
]
