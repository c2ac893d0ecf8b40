"""Named backend procedures for booking, pricing and availability rules.

Each procedure takes a connection, a parameter dictionary and the current
time, and answers with a plain result: a dictionary carrying a ``success``
flag, or a list of rows. Callers reach them through :func:`call_procedure`
only, so the rules stay behind a single opaque entry point.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
from typing import Any, Callable

from cleandash.config import SETTINGS

from .database import next_sequence

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 30


class BackendError(RuntimeError):
    """Raised when a procedure cannot be executed."""


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _to_minutes(value: str) -> int:
    parts = [int(part) for part in str(value).split(":")]
    hours, minutes = parts[0], parts[1] if len(parts) > 1 else 0
    return hours * 60 + minutes


def _format_minutes(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}:00"


def _parse_date(value: str | dt.date) -> dt.date:
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value)[:10])


def _failure(message: str) -> dict:
    return {"success": False, "error": message}


def _get_channel(conn: sqlite3.Connection, code: str | None) -> dict | None:
    return conn.execute(
        "SELECT * FROM channels WHERE code = ?", (code or SETTINGS["channel_code"],)
    ).fetchone()


def _get_rules(conn: sqlite3.Connection, channel_id: int) -> dict | None:
    return conn.execute(
        "SELECT * FROM channel_business_rules WHERE channel_id = ? AND is_active = 1",
        (channel_id,),
    ).fetchone()


def _gap_minutes(conn: sqlite3.Connection, channel_id: int, duration_hours: float) -> int:
    """Gap of the highest priority (lowest number) rule covering the duration."""

    row = conn.execute(
        """
        SELECT gap_minutes FROM channel_gap_rules
        WHERE channel_id = ? AND is_active = 1
          AND min_booking_hours <= ?
          AND (max_booking_hours IS NULL OR ? < max_booking_hours)
        ORDER BY priority, min_booking_hours DESC
        LIMIT 1
        """,
        (channel_id, duration_hours, duration_hours),
    ).fetchone()
    return int(row["gap_minutes"]) if row else 0


def _get_cleaner(conn: sqlite3.Connection, name: str | None) -> dict | None:
    if not name:
        return None
    return conn.execute(
        "SELECT * FROM cleaners WHERE name = ? AND status = 'active'", (name.strip(),)
    ).fetchone()


def _day_bookings(
    conn: sqlite3.Connection,
    cleaner_id: int,
    booking_date: str,
    exclude_booking_id: int | None = None,
) -> list[dict]:
    return conn.execute(
        """
        SELECT * FROM bookings
        WHERE cleaner_id = ? AND booking_date = ? AND status != 'cancelled' AND id != ?
        ORDER BY start_time
        """,
        (cleaner_id, booking_date, exclude_booking_id or 0),
    ).fetchall()


def _overtime_hours(existing_hours: float, duration_hours: float) -> float:
    regular = SETTINGS["regular_daily_hours"]
    before = max(0.0, existing_hours - regular)
    after = max(0.0, existing_hours + duration_hours - regular)
    return round(after - before, 2)


def _renumber_shifts(conn: sqlite3.Connection, cleaner_id: int, booking_date: str) -> None:
    rows = _day_bookings(conn, cleaner_id, booking_date)
    for index, row in enumerate(rows, start=1):
        conn.execute("UPDATE bookings SET shift_number = ? WHERE id = ?", (index, row["id"]))


def _match_special_area(
    conn: sqlite3.Connection, channel_id: int, area_text: str | None
) -> dict | None:
    if not area_text or not area_text.strip():
        return None
    needle = area_text.strip().lower()
    rows = conn.execute(
        """
        SELECT special_areas.id AS area_id, special_areas.code, special_areas.name,
               special_areas.search_keywords, special_area_pricing.hourly_rate_per_cleaner,
               special_area_pricing.materials_price_per_cleaner
        FROM special_areas
        JOIN special_area_pricing ON special_area_pricing.area_id = special_areas.id
        WHERE special_areas.is_active = 1
          AND special_area_pricing.is_active = 1
          AND special_area_pricing.channel_id = ?
        ORDER BY special_areas.id
        """,
        (channel_id,),
    ).fetchall()
    for row in rows:
        candidates = [row["name"], row["code"]] + json.loads(row["search_keywords"] or "[]")
        for candidate in candidates:
            if candidate and str(candidate).strip().lower() in needle:
                return row
    return None


def _price(
    conn: sqlite3.Connection,
    channel: dict,
    booking_date: str,
    duration_hours: float,
    number_of_cleaners: int,
    with_materials: bool,
    area_text: str | None,
) -> dict:
    config = conn.execute(
        """
        SELECT * FROM channel_pricing_config
        WHERE channel_id = ? AND is_active = 1
          AND effective_from <= ?
          AND (effective_to IS NULL OR effective_to >= ?)
        ORDER BY effective_from DESC, id DESC
        LIMIT 1
        """,
        (channel["id"], booking_date, booking_date),
    ).fetchone()
    if not config:
        return _failure(f"No pricing configured for channel {channel['code']}")

    hourly_rate = config["hourly_rate_per_cleaner"]
    materials_rate = config["materials_price_per_cleaner"]
    special = _match_special_area(conn, channel["id"], area_text)
    if special:
        hourly_rate = special["hourly_rate_per_cleaner"]
        if special["materials_price_per_cleaner"] is not None:
            materials_rate = special["materials_price_per_cleaner"]

    base_price = round(hourly_rate * duration_hours * number_of_cleaners, 2)
    materials_price = (
        round(materials_rate * duration_hours * number_of_cleaners, 2) if with_materials else 0.0
    )
    subtotal = round(base_price + materials_price, 2)
    tax_amount = round(subtotal * config["tax_rate"] / 100, 2)
    return {
        "success": True,
        "hourly_rate": hourly_rate,
        "base_price": base_price,
        "materials_price": materials_price,
        "subtotal": subtotal,
        "tax_rate": config["tax_rate"],
        "tax_amount": tax_amount,
        "total": round(subtotal + tax_amount, 2),
        "currency": config["currency"],
        "special_area": special["name"] if special else None,
    }


def _slots(
    conn: sqlite3.Connection,
    *,
    channel: dict,
    cleaner: dict,
    booking_date: str,
    requested_hours: float,
    now: dt.datetime,
    exclude_booking_id: int | None = None,
) -> list[dict]:
    rules = _get_rules(conn, channel["id"])
    if not rules:
        return []
    day = _parse_date(booking_date)
    existing = _day_bookings(conn, cleaner["id"], day.isoformat(), exclude_booking_id)
    booked_hours = sum(row["duration_hours"] for row in existing)
    duration = int(round(requested_hours * 60))

    day_reason = None
    if day < now.date() and not rules["allow_past_booking"]:
        day_reason = "Date is in the past"
    elif day == now.date() and not rules["allow_same_day_booking"]:
        day_reason = "Same-day bookings are not allowed"
    elif day > now.date() + dt.timedelta(days=rules["max_advance_days"]):
        day_reason = f"Bookings open {rules['max_advance_days']} days ahead"
    elif not rules["min_shift_hours"] <= requested_hours <= rules["max_shift_hours"]:
        day_reason = (
            f"Duration must be between {rules['min_shift_hours']:g} and "
            f"{rules['max_shift_hours']:g} hours"
        )
    elif len(existing) >= rules["max_shifts_per_day_per_cleaner"]:
        day_reason = "Maximum shifts reached for this day"
    elif booked_hours + requested_hours > rules["max_daily_hours_per_cleaner"]:
        day_reason = "Exceeds daily hour capacity"

    requested_gap = _gap_minutes(conn, channel["id"], requested_hours)
    blocked = [
        (
            _to_minutes(row["start_time"]),
            _to_minutes(row["end_time"]),
            max(requested_gap, _gap_minutes(conn, channel["id"], row["duration_hours"])),
            row["booking_number"],
        )
        for row in existing
    ]
    earliest = now + dt.timedelta(hours=rules["min_advance_hours"])

    slots = []
    start = _to_minutes(rules["work_start_time"])
    last_start = _to_minutes(rules["work_end_time"]) - duration
    while duration > 0 and start <= last_start:
        end = start + duration
        reason = day_reason
        if reason is None:
            slot_at = dt.datetime.combine(day, dt.time(start // 60, start % 60))
            if slot_at < earliest:
                reason = "Too close to the current time"
        if reason is None:
            for booked_start, booked_end, gap, number in blocked:
                if start < booked_end + gap and end + gap > booked_start:
                    reason = f"Conflicts with booking {number}"
                    break
        slots.append(
            {
                "slot_start": _format_minutes(start),
                "slot_end": _format_minutes(end),
                "is_available": reason is None,
                "reason": reason,
            }
        )
        start += SLOT_STEP_MINUTES
    return slots


def _check_slot(slots: list[dict], start_time: str) -> str | None:
    start = _format_minutes(_to_minutes(start_time))
    for slot in slots:
        if slot["slot_start"] == start:
            return None if slot["is_available"] else slot["reason"]
    return "Selected time is outside working hours"


# ----------------------------------------------------------------------
# Procedures
# ----------------------------------------------------------------------
def calculate_booking_price(conn: sqlite3.Connection, params: dict, now: dt.datetime) -> dict:
    channel = _get_channel(conn, params.get("channel_code"))
    if not channel:
        return _failure("Unknown booking channel")
    duration = float(params.get("duration_hours") or 0)
    cleaners = int(params.get("number_of_cleaners") or 1)
    if duration <= 0 or cleaners < 1:
        return _failure("Duration and number of cleaners must be positive")
    booking_date = _parse_date(params.get("booking_date") or now.date()).isoformat()
    return _price(
        conn,
        channel,
        booking_date,
        duration,
        cleaners,
        bool(params.get("with_materials")),
        params.get("area_text"),
    )


def get_available_slots(conn: sqlite3.Connection, params: dict, now: dt.datetime) -> list[dict]:
    channel = _get_channel(conn, params.get("channel_code"))
    cleaner = _get_cleaner(conn, params.get("cleaner_name"))
    if not channel or not cleaner:
        logger.warning("Slots requested for unknown channel or cleaner %s", params.get("cleaner_name"))
        return []
    return _slots(
        conn,
        channel=channel,
        cleaner=cleaner,
        booking_date=params["booking_date"],
        requested_hours=float(params.get("requested_hours") or 0),
        now=now,
        exclude_booking_id=params.get("exclude_booking_id"),
    )


def find_client_by_mobile(conn: sqlite3.Connection, params: dict, now: dt.datetime) -> dict:
    mobile = (params.get("mobile") or "").strip()
    row = conn.execute("SELECT * FROM clients WHERE mobile = ?", (mobile,)).fetchone() if mobile else None
    if not row:
        return {"found": False}
    return {
        "found": True,
        "id": row["id"],
        "name": row["name"],
        "default_address": row["default_address"],
        "default_address2": row["default_address2"],
        "default_location_url": row["default_location_url"],
        "default_zone": row["default_zone"],
        "default_street": row["default_street"],
        "default_building": row["default_building"],
        "default_area": row["default_area"],
        "total_bookings": row["total_bookings"],
    }


def _save_client(conn: sqlite3.Connection, params: dict) -> dict:
    mobile = params["client_mobile"].strip()
    defaults = {
        "default_address": params.get("client_address"),
        "default_address2": params.get("client_address2"),
        "default_zone": params.get("client_zone"),
        "default_street": params.get("client_street"),
        "default_building": params.get("client_building"),
        "default_area": params.get("client_area"),
        "default_location_url": params.get("client_location_url"),
    }
    existing = conn.execute("SELECT * FROM clients WHERE mobile = ?", (mobile,)).fetchone()
    if existing:
        updates = {key: value for key, value in defaults.items() if value}
        updates["name"] = params["client_name"].strip()
        assignments = ", ".join(f"{column} = ?" for column in updates)
        conn.execute(
            f"UPDATE clients SET {assignments} WHERE id = ?",
            (*updates.values(), existing["id"]),
        )
        return existing
    cur = conn.execute(
        """
        INSERT INTO clients(
            name, mobile, default_address, default_address2, default_zone, default_street,
            default_building, default_area, default_location_url
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (params["client_name"].strip(), mobile, *defaults.values()),
    )
    return conn.execute("SELECT * FROM clients WHERE id = ?", (cur.lastrowid,)).fetchone()


def create_booking(conn: sqlite3.Connection, params: dict, now: dt.datetime) -> dict:
    channel = _get_channel(conn, params.get("channel_code"))
    if not channel:
        return _failure("Unknown booking channel")
    cleaner = _get_cleaner(conn, params.get("cleaner_name"))
    if not cleaner:
        return _failure("Cleaner not found or inactive")
    if not (params.get("client_mobile") or "").strip() or not (params.get("client_name") or "").strip():
        return _failure("Client name and mobile are required")
    number_of_cleaners = int(params.get("number_of_cleaners") or 1)
    if number_of_cleaners < 1:
        return _failure("At least one cleaner is required")

    booking_date = _parse_date(params["booking_date"]).isoformat()
    start = _to_minutes(params["start_time"])
    end = _to_minutes(params["end_time"])
    if end <= start:
        return _failure("End time must be after start time")
    duration = (end - start) / 60

    slots = _slots(
        conn,
        channel=channel,
        cleaner=cleaner,
        booking_date=booking_date,
        requested_hours=duration,
        now=now,
    )
    problem = _check_slot(slots, params["start_time"])
    if problem:
        logger.warning("Booking rejected for %s on %s: %s", cleaner["name"], booking_date, problem)
        return _failure(problem)

    with_materials = bool(params.get("with_materials"))
    pricing_mode = params.get("pricing_mode") or "auto"
    if pricing_mode == "manual":
        manual_price = params.get("manual_price")
        if manual_price is None or float(manual_price) <= 0:
            return _failure("Manual price must be greater than zero")
        if not (params.get("manual_price_reason") or "").strip():
            return _failure("A reason is required for manual pricing")
        price = {
            "base_price": float(manual_price),
            "materials_price": 0.0,
            "tax_amount": 0.0,
            "total": float(manual_price),
        }
    else:
        price = _price(
            conn,
            channel,
            booking_date,
            duration,
            number_of_cleaners,
            with_materials,
            params.get("client_area"),
        )
        if not price["success"]:
            return price

    client = _save_client(conn, params)
    prior = conn.execute(
        "SELECT COUNT(*) AS total FROM bookings WHERE client_id = ? AND status != 'cancelled'",
        (client["id"],),
    ).fetchone()["total"]
    existing_hours = sum(
        row["duration_hours"] for row in _day_bookings(conn, cleaner["id"], booking_date)
    )
    overtime = _overtime_hours(existing_hours, duration)
    sequence = next_sequence(conn, "booking")
    booking_number = f"BK-{booking_date.replace('-', '')}-{sequence:04d}"

    cur = conn.execute(
        """
        INSERT INTO bookings(
            booking_number, channel_id, cleaner_id, client_id, booking_date, start_time,
            end_time, duration_hours, number_of_cleaners, with_materials, client_name,
            client_mobile, client_address, client_address2, client_zone, client_street,
            client_building, client_area, client_location_url, client_notes, base_price,
            materials_price, tax_amount, total_price, final_price, pricing_mode,
            manual_price_reason, overtime_hours, customer_type, booked_by_name,
            booked_by_user_id
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            booking_number,
            channel["id"],
            cleaner["id"],
            client["id"],
            booking_date,
            _format_minutes(start),
            _format_minutes(end),
            duration,
            number_of_cleaners,
            int(with_materials),
            params["client_name"].strip(),
            params["client_mobile"].strip(),
            params.get("client_address"),
            params.get("client_address2"),
            params.get("client_zone"),
            params.get("client_street"),
            params.get("client_building"),
            params.get("client_area"),
            params.get("client_location_url"),
            params.get("client_notes"),
            price["base_price"],
            price["materials_price"],
            price["tax_amount"],
            price["total"],
            price["total"],
            pricing_mode,
            params.get("manual_price_reason"),
            overtime,
            "regular" if prior else "new",
            params.get("booked_by_name"),
            params.get("booked_by_user_id"),
        ),
    )
    booking_id = cur.lastrowid
    _renumber_shifts(conn, cleaner["id"], booking_date)
    conn.execute(
        """
        UPDATE clients SET total_bookings = total_bookings + 1, total_spent = total_spent + ?
        WHERE id = ?
        """,
        (price["total"], client["id"]),
    )
    conn.commit()
    shift = conn.execute(
        "SELECT shift_number FROM bookings WHERE id = ?", (booking_id,)
    ).fetchone()["shift_number"]
    logger.info("Created booking %s for %s on %s", booking_number, cleaner["name"], booking_date)
    return {
        "success": True,
        "booking_id": booking_id,
        "booking_number": booking_number,
        "final_price": price["total"],
        "shift_number": shift,
        "overtime_hours": overtime,
        "customer_type": "regular" if prior else "new",
    }


def update_booking(conn: sqlite3.Connection, params: dict, now: dt.datetime) -> dict:
    booking = conn.execute(
        """
        SELECT bookings.*, channels.code AS channel_code, cleaners.name AS cleaner_name
        FROM bookings
        JOIN cleaners ON cleaners.id = bookings.cleaner_id
        LEFT JOIN channels ON channels.id = bookings.channel_id
        WHERE bookings.id = ?
        """,
        (params.get("booking_id"),),
    ).fetchone()
    if not booking:
        return _failure("Booking not found")
    if booking["status"] == "cancelled":
        return _failure("Cancelled bookings cannot be changed")

    channel = _get_channel(conn, booking["channel_code"])
    cleaner = _get_cleaner(conn, params.get("new_cleaner_name") or booking["cleaner_name"])
    if not cleaner:
        return _failure("Cleaner not found or inactive")
    booking_date = _parse_date(params.get("new_date") or booking["booking_date"]).isoformat()
    start = _to_minutes(params.get("new_start_time") or booking["start_time"])
    end = _to_minutes(params.get("new_end_time") or booking["end_time"])
    if end <= start:
        return _failure("End time must be after start time")
    duration = (end - start) / 60

    slots = _slots(
        conn,
        channel=channel,
        cleaner=cleaner,
        booking_date=booking_date,
        requested_hours=duration,
        now=now,
        exclude_booking_id=booking["id"],
    )
    problem = _check_slot(slots, _format_minutes(start))
    if problem:
        logger.warning("Update rejected for %s: %s", booking["booking_number"], problem)
        return _failure(problem)

    base_price = booking["base_price"]
    materials_price = booking["materials_price"]
    tax_amount = booking["tax_amount"]
    total_price = booking["total_price"]
    if booking["pricing_mode"] == "auto":
        price = _price(
            conn,
            channel,
            booking_date,
            duration,
            booking["number_of_cleaners"],
            bool(booking["with_materials"]),
            booking["client_area"],
        )
        if not price["success"]:
            return price
        base_price = price["base_price"]
        materials_price = price["materials_price"]
        tax_amount = price["tax_amount"]
        total_price = price["total"]
    final_price = round(max(total_price - booking["discount_amount"], 0), 2)

    existing_hours = sum(
        row["duration_hours"]
        for row in _day_bookings(conn, cleaner["id"], booking_date, booking["id"])
    )
    client_notes = params.get("new_client_notes")
    conn.execute(
        """
        UPDATE bookings SET
            cleaner_id = ?, booking_date = ?, start_time = ?, end_time = ?, duration_hours = ?,
            base_price = ?, materials_price = ?, tax_amount = ?, total_price = ?,
            final_price = ?, overtime_hours = ?, client_notes = ?, updated_by = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            cleaner["id"],
            booking_date,
            _format_minutes(start),
            _format_minutes(end),
            duration,
            base_price,
            materials_price,
            tax_amount,
            total_price,
            final_price,
            _overtime_hours(existing_hours, duration),
            booking["client_notes"] if client_notes is None else client_notes,
            params.get("updated_by"),
            now.isoformat(timespec="seconds"),
            booking["id"],
        ),
    )
    if booking["client_id"]:
        conn.execute(
            "UPDATE clients SET total_spent = total_spent + ? WHERE id = ?",
            (final_price - booking["final_price"], booking["client_id"]),
        )
    _renumber_shifts(conn, booking["cleaner_id"], booking["booking_date"])
    _renumber_shifts(conn, cleaner["id"], booking_date)
    conn.commit()
    logger.info("Updated booking %s", booking["booking_number"])
    return {
        "success": True,
        "booking_id": booking["id"],
        "booking_number": booking["booking_number"],
        "final_price": final_price,
    }


def cancel_booking(conn: sqlite3.Connection, params: dict, now: dt.datetime) -> dict:
    booking = conn.execute(
        "SELECT * FROM bookings WHERE id = ?", (params.get("booking_id"),)
    ).fetchone()
    if not booking:
        return _failure("Booking not found")
    if booking["status"] == "cancelled":
        return _failure("Booking is already cancelled")
    conn.execute(
        """
        UPDATE bookings SET status = 'cancelled', cancellation_reason = ?, cancelled_by = ?,
            cancelled_at = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            params.get("cancellation_reason"),
            params.get("cancelled_by"),
            now.isoformat(timespec="seconds"),
            now.isoformat(timespec="seconds"),
            booking["id"],
        ),
    )
    if booking["client_id"]:
        conn.execute(
            """
            UPDATE clients SET total_bookings = MAX(total_bookings - 1, 0),
                total_spent = MAX(total_spent - ?, 0)
            WHERE id = ?
            """,
            (booking["final_price"], booking["client_id"]),
        )
    _renumber_shifts(conn, booking["cleaner_id"], booking["booking_date"])
    conn.commit()
    logger.info("Cancelled booking %s", booking["booking_number"])
    return {"success": True, "booking_id": booking["id"], "booking_number": booking["booking_number"]}


def log_activity(conn: sqlite3.Connection, params: dict, now: dt.datetime) -> dict:
    details = params.get("details")
    cur = conn.execute(
        """
        INSERT INTO activity_logs(user_id, action, entity_type, entity_id, details, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            params.get("user_id"),
            params["action"],
            params["entity_type"],
            None if params.get("entity_id") is None else str(params["entity_id"]),
            json.dumps(details) if details is not None else None,
            now.isoformat(timespec="seconds"),
        ),
    )
    conn.commit()
    return {"success": True, "id": cur.lastrowid}


PROCEDURES: dict[str, Callable[[sqlite3.Connection, dict, dt.datetime], Any]] = {
    "calculate_booking_price": calculate_booking_price,
    "get_available_slots": get_available_slots,
    "create_booking": create_booking,
    "update_booking": update_booking,
    "cancel_booking": cancel_booking,
    "find_client_by_mobile": find_client_by_mobile,
    "log_activity": log_activity,
}


def call_procedure(
    conn: sqlite3.Connection,
    name: str,
    params: dict | None = None,
    *,
    now: dt.datetime | None = None,
) -> Any:
    """Run the named procedure and return its result."""

    procedure = PROCEDURES.get(name)
    if procedure is None:
        raise BackendError(f"Unknown procedure: {name}")
    try:
        return procedure(conn, dict(params or {}), now or dt.datetime.now())
    except ValueError as exc:
        # Malformed dates and times in the parameters.
        conn.rollback()
        logger.warning("Procedure %s rejected bad input: %s", name, exc)
        return _failure(f"Invalid date or time: {exc}")
    except sqlite3.Error as exc:
        conn.rollback()
        logger.exception("Procedure %s failed", name)
        raise BackendError(f"Procedure {name} failed: {exc}") from exc


__all__ = ["BackendError", "PROCEDURES", "call_procedure"]
