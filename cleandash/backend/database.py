"""Database utilities for the cleaning operations backend."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Iterable


SCHEMA_VERSION = 1


def dict_factory(cursor: sqlite3.Cursor, row: sqlite3.Row) -> dict:
    """Return rows as dictionaries rather than tuples."""

    return {description[0]: row[idx] for idx, description in enumerate(cursor.description)}


def get_connection(path: str | Path) -> sqlite3.Connection:
    """Return a SQLite connection with sensible defaults."""

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = dict_factory
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_database(conn: sqlite3.Connection) -> None:
    """Create the schema and reporting views if they do not yet exist."""

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            full_name TEXT,
            phone TEXT,
            role TEXT NOT NULL DEFAULT 'staff',
            status TEXT NOT NULL DEFAULT 'active',
            last_login_at TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS activity_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            action TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id TEXT,
            details TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE SET NULL
        );

        CREATE TABLE IF NOT EXISTS channels (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            code TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS channel_business_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            channel_id INTEGER NOT NULL UNIQUE,
            work_start_time TEXT NOT NULL DEFAULT '08:00:00',
            work_end_time TEXT NOT NULL DEFAULT '22:00:00',
            min_advance_hours REAL NOT NULL DEFAULT 0,
            max_advance_days INTEGER NOT NULL DEFAULT 60,
            min_shift_hours REAL NOT NULL DEFAULT 2,
            max_shift_hours REAL NOT NULL DEFAULT 12,
            max_daily_hours_per_cleaner REAL NOT NULL DEFAULT 10,
            max_shifts_per_day_per_cleaner INTEGER NOT NULL DEFAULT 4,
            allow_past_booking INTEGER NOT NULL DEFAULT 0,
            allow_same_day_booking INTEGER NOT NULL DEFAULT 1,
            require_payment_upfront INTEGER NOT NULL DEFAULT 0,
            require_manual_confirmation INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(channel_id) REFERENCES channels(id)
        );

        CREATE TABLE IF NOT EXISTS channel_gap_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            channel_id INTEGER NOT NULL,
            min_booking_hours REAL NOT NULL DEFAULT 0,
            max_booking_hours REAL,
            gap_minutes INTEGER NOT NULL DEFAULT 30,
            priority INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            FOREIGN KEY(channel_id) REFERENCES channels(id)
        );

        CREATE TABLE IF NOT EXISTS channel_pricing_config (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            channel_id INTEGER NOT NULL,
            hourly_rate_per_cleaner REAL NOT NULL,
            materials_price_per_cleaner REAL NOT NULL DEFAULT 0,
            tax_rate REAL NOT NULL DEFAULT 0,
            currency TEXT NOT NULL DEFAULT 'QAR',
            is_active INTEGER NOT NULL DEFAULT 1,
            effective_from TEXT NOT NULL,
            effective_to TEXT,
            FOREIGN KEY(channel_id) REFERENCES channels(id)
        );

        CREATE TABLE IF NOT EXISTS special_areas (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            code TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            search_keywords TEXT NOT NULL DEFAULT '[]',
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS special_area_pricing (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            channel_id INTEGER NOT NULL,
            area_id INTEGER NOT NULL,
            hourly_rate_per_cleaner REAL NOT NULL,
            materials_price_per_cleaner REAL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(channel_id) REFERENCES channels(id),
            FOREIGN KEY(area_id) REFERENCES special_areas(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS time_periods (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            code TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            display_order INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS reminder_types (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            code TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS reminder_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            reminder_type_id INTEGER NOT NULL,
            channel_id INTEGER,
            trigger_type TEXT NOT NULL DEFAULT 'before_booking',
            hours_before REAL,
            hours_after REAL,
            can_repeat INTEGER NOT NULL DEFAULT 0,
            repeat_after_minutes INTEGER,
            max_repeat_count INTEGER NOT NULL DEFAULT 1,
            send_whatsapp INTEGER NOT NULL DEFAULT 1,
            send_email INTEGER NOT NULL DEFAULT 0,
            whatsapp_template_name TEXT,
            email_subject TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(reminder_type_id) REFERENCES reminder_types(id),
            FOREIGN KEY(channel_id) REFERENCES channels(id)
        );

        CREATE TABLE IF NOT EXISTS cleaners (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            mobile TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            residence_id TEXT,
            nationality TEXT,
            date_of_birth TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS drivers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            mobile TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            notes TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS clients (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            mobile TEXT UNIQUE NOT NULL,
            default_address TEXT,
            default_address2 TEXT,
            default_zone TEXT,
            default_street TEXT,
            default_building TEXT,
            default_area TEXT,
            default_location_url TEXT,
            notes TEXT,
            total_bookings INTEGER NOT NULL DEFAULT 0,
            total_spent REAL NOT NULL DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS bookings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            booking_number TEXT UNIQUE NOT NULL,
            channel_id INTEGER,
            cleaner_id INTEGER NOT NULL,
            client_id INTEGER,
            booking_date TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            duration_hours REAL NOT NULL,
            shift_number INTEGER NOT NULL DEFAULT 1,
            number_of_cleaners INTEGER NOT NULL DEFAULT 1,
            with_materials INTEGER NOT NULL DEFAULT 0,
            client_name TEXT NOT NULL,
            client_mobile TEXT NOT NULL,
            client_address TEXT,
            client_address2 TEXT,
            client_zone TEXT,
            client_street TEXT,
            client_building TEXT,
            client_area TEXT,
            client_location_url TEXT,
            client_notes TEXT,
            base_price REAL NOT NULL DEFAULT 0,
            materials_price REAL NOT NULL DEFAULT 0,
            tax_amount REAL NOT NULL DEFAULT 0,
            total_price REAL NOT NULL DEFAULT 0,
            discount_amount REAL NOT NULL DEFAULT 0,
            final_price REAL NOT NULL DEFAULT 0,
            pricing_mode TEXT NOT NULL DEFAULT 'auto',
            manual_price_reason TEXT,
            overtime_hours REAL NOT NULL DEFAULT 0,
            driver_id INTEGER,
            payment_mode TEXT NOT NULL DEFAULT 'cash',
            payment_status TEXT NOT NULL DEFAULT 'unpaid',
            is_credit_sale INTEGER NOT NULL DEFAULT 0,
            credit_due_date TEXT,
            customer_type TEXT NOT NULL DEFAULT 'regular',
            notes TEXT,
            status TEXT NOT NULL DEFAULT 'confirmed',
            cancellation_reason TEXT,
            cancelled_by TEXT,
            cancelled_at TEXT,
            booked_by_name TEXT,
            booked_by_user_id INTEGER,
            updated_by TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(channel_id) REFERENCES channels(id),
            FOREIGN KEY(cleaner_id) REFERENCES cleaners(id),
            FOREIGN KEY(client_id) REFERENCES clients(id) ON DELETE SET NULL,
            FOREIGN KEY(driver_id) REFERENCES drivers(id) ON DELETE SET NULL
        );

        CREATE INDEX IF NOT EXISTS idx_bookings_date ON bookings(booking_date);
        CREATE INDEX IF NOT EXISTS idx_bookings_cleaner_date ON bookings(cleaner_id, booking_date);

        CREATE TABLE IF NOT EXISTS booking_transport (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            booking_id INTEGER NOT NULL UNIQUE,
            pickup_driver_id INTEGER,
            pickup_completed INTEGER NOT NULL DEFAULT 0,
            dropoff_driver_id INTEGER,
            dropoff_completed INTEGER NOT NULL DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(booking_id) REFERENCES bookings(id) ON DELETE CASCADE,
            FOREIGN KEY(pickup_driver_id) REFERENCES drivers(id) ON DELETE SET NULL,
            FOREIGN KEY(dropoff_driver_id) REFERENCES drivers(id) ON DELETE SET NULL
        );

        CREATE TABLE IF NOT EXISTS driver_remittances (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            driver_id INTEGER NOT NULL,
            remittance_date TEXT DEFAULT CURRENT_TIMESTAMP,
            submitted_amount REAL NOT NULL,
            received_by_name TEXT NOT NULL,
            payment_method TEXT NOT NULL DEFAULT 'cash',
            receipt_number TEXT,
            notes TEXT,
            verified INTEGER NOT NULL DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(driver_id) REFERENCES drivers(id)
        );

        DROP VIEW IF EXISTS vw_booking_details;
        CREATE VIEW vw_booking_details AS
        SELECT
            bookings.*,
            cleaners.name AS cleaner_name,
            channels.code AS channel_code,
            drivers.name AS driver_name,
            booking_transport.id AS transport_id,
            booking_transport.pickup_driver_id,
            booking_transport.pickup_completed,
            booking_transport.dropoff_driver_id,
            booking_transport.dropoff_completed
        FROM bookings
        JOIN cleaners ON cleaners.id = bookings.cleaner_id
        LEFT JOIN channels ON channels.id = bookings.channel_id
        LEFT JOIN drivers ON drivers.id = bookings.driver_id
        LEFT JOIN booking_transport ON booking_transport.booking_id = bookings.id;

        DROP VIEW IF EXISTS vw_cleaner_daily_capacity;
        CREATE VIEW vw_cleaner_daily_capacity AS
        SELECT
            cleaners.id AS cleaner_id,
            cleaners.name AS cleaner_name,
            bookings.booking_date,
            rules.channel_code,
            COUNT(bookings.id) AS shifts_booked,
            COALESCE(SUM(bookings.duration_hours), 0) AS hours_booked,
            COALESCE(SUM(bookings.overtime_hours), 0) AS overtime_hours,
            rules.max_daily_hours_per_cleaner AS max_hours,
            rules.max_shifts_per_day_per_cleaner AS max_shifts,
            MAX(rules.max_daily_hours_per_cleaner - COALESCE(SUM(bookings.duration_hours), 0), 0)
                AS hours_remaining,
            MAX(rules.max_shifts_per_day_per_cleaner - COUNT(bookings.id), 0) AS shifts_remaining
        FROM bookings
        JOIN cleaners ON cleaners.id = bookings.cleaner_id
        CROSS JOIN (
            SELECT channels.code AS channel_code,
                   channel_business_rules.max_daily_hours_per_cleaner,
                   channel_business_rules.max_shifts_per_day_per_cleaner
            FROM channel_business_rules
            JOIN channels ON channels.id = channel_business_rules.channel_id
        ) AS rules
        WHERE bookings.status != 'cancelled'
        GROUP BY cleaners.id, bookings.booking_date, rules.channel_code;

        DROP VIEW IF EXISTS vw_reports_base;
        CREATE VIEW vw_reports_base AS
        SELECT
            bookings.id,
            bookings.booking_number,
            bookings.booking_date,
            bookings.start_time,
            bookings.end_time,
            bookings.duration_hours,
            bookings.overtime_hours,
            bookings.number_of_cleaners,
            cleaners.name AS cleaner_name,
            channels.code AS channel_code,
            bookings.client_name,
            bookings.client_mobile,
            bookings.client_area,
            bookings.with_materials,
            bookings.total_price,
            bookings.discount_amount,
            bookings.final_price,
            bookings.customer_type,
            bookings.is_credit_sale,
            bookings.payment_mode,
            bookings.payment_status,
            bookings.credit_due_date,
            bookings.status
        FROM bookings
        JOIN cleaners ON cleaners.id = bookings.cleaner_id
        LEFT JOIN channels ON channels.id = bookings.channel_id
        WHERE bookings.status != 'cancelled';

        DROP VIEW IF EXISTS vw_report_daily_sales;
        CREATE VIEW vw_report_daily_sales AS
        SELECT
            booking_date,
            COALESCE(SUM(final_price), 0) AS total_sales,
            COUNT(id) AS total_bookings,
            COALESCE(SUM(duration_hours), 0) AS total_hours
        FROM vw_reports_base
        GROUP BY booking_date;
        """
    )

    if get_metadata(conn, "schema_version") is None:
        seed_reference_data(conn)
    set_metadata(conn, "schema_version", SCHEMA_VERSION)


def seed_reference_data(conn: sqlite3.Connection) -> None:
    """Insert the channels, rules and lookup rows a fresh backend starts with."""

    for code, name in (("staff", "Staff Dashboard"), ("online", "Online Booking")):
        conn.execute(
            "INSERT OR IGNORE INTO channels(code, name) VALUES (?, ?)", (code, name)
        )
    channel_ids = {
        row["code"]: row["id"] for row in conn.execute("SELECT id, code FROM channels").fetchall()
    }

    conn.execute(
        """
        INSERT OR IGNORE INTO channel_business_rules(
            channel_id, min_advance_hours, max_advance_days, allow_same_day_booking
        ) VALUES (?, 0, 60, 1)
        """,
        (channel_ids["staff"],),
    )
    conn.execute(
        """
        INSERT OR IGNORE INTO channel_business_rules(
            channel_id, min_advance_hours, max_advance_days, allow_same_day_booking,
            require_payment_upfront
        ) VALUES (?, 4, 30, 0, 1)
        """,
        (channel_ids["online"],),
    )

    execute_many(
        conn,
        """
        INSERT INTO channel_gap_rules(
            channel_id, min_booking_hours, max_booking_hours, gap_minutes, priority
        ) VALUES (?, ?, ?, ?, ?)
        """,
        [
            (channel_ids["staff"], 0, 4, 30, 1),
            (channel_ids["staff"], 4, None, 60, 2),
            (channel_ids["online"], 0, None, 60, 1),
        ],
    )
    execute_many(
        conn,
        """
        INSERT INTO channel_pricing_config(
            channel_id, hourly_rate_per_cleaner, materials_price_per_cleaner, tax_rate,
            currency, effective_from
        ) VALUES (?, ?, ?, ?, 'QAR', '2024-01-01')
        """,
        [
            (channel_ids["staff"], 35.0, 10.0, 0.0),
            (channel_ids["online"], 40.0, 10.0, 0.0),
        ],
    )
    execute_many(
        conn,
        """
        INSERT OR IGNORE INTO time_periods(code, name, start_time, end_time, display_order)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            ("morning", "Morning", "08:00:00", "12:00:00", 1),
            ("afternoon", "Afternoon", "12:00:00", "16:00:00", 2),
            ("evening", "Evening", "16:00:00", "20:00:00", 3),
            ("night", "Night", "20:00:00", "22:00:00", 4),
        ],
    )
    execute_many(
        conn,
        "INSERT OR IGNORE INTO reminder_types(code, name) VALUES (?, ?)",
        [
            ("booking_confirmation", "Booking Confirmation"),
            ("booking_reminder", "Booking Reminder"),
            ("payment_reminder", "Payment Reminder"),
            ("feedback_request", "Feedback Request"),
        ],
    )


def set_metadata(conn: sqlite3.Connection, key: str, value: int | str | dict | list) -> None:
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    conn.execute(
        "INSERT INTO metadata(key, value) VALUES (?, ?)\n         ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, str(value)),
    )
    conn.commit()


def get_metadata(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default


def next_sequence(conn: sqlite3.Connection, name: str) -> int:
    """Increment and return a named counter kept in the metadata table.

    The caller owns the transaction; nothing is committed here.
    """

    key = f"seq_{name}"
    current = int(get_metadata(conn, key, "0"))
    conn.execute(
        "INSERT INTO metadata(key, value) VALUES(?, ?)\n         ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, str(current + 1)),
    )
    return current + 1


def execute_many(conn: sqlite3.Connection, sql: str, parameters: Iterable[tuple]) -> None:
    conn.executemany(sql, parameters)
    conn.commit()
