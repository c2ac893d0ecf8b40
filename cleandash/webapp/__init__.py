"""Flask application providing the staff dashboard for the cleaning service."""

from __future__ import annotations

import datetime as dt
import functools
import logging
from typing import Any, Callable

from flask import (
    Flask,
    flash,
    g,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from cleandash.config import SETTINGS
from cleandash.dashboard import reports
from cleandash.dashboard.system import (
    BOOKING_STATUSES,
    PAYMENT_MODES,
    ROLES,
    AuthorizationError,
    BackendError,
    CleaningSystem,
    ValidationError,
)

logger = logging.getLogger(__name__)

OPEN_ENDPOINTS = {"setup", "login", "static"}
DURATION_OPTIONS = [2, 2.5, 3, 3.5, 4, 4.5, 5, 5.5, 6, 7, 8, 9, 10, 11, 12]
DRAFT_KEY = "booking_draft"


def create_app(
    database_path: str | None = None,
    *,
    system: CleaningSystem | None = None,
    **config: Any,
) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(
        __name__,
        template_folder="templates",
        static_folder="static",
    )
    app.config["SECRET_KEY"] = SETTINGS["secret_key"]
    app.config.update(config)

    system = system or CleaningSystem(database_path or SETTINGS["database_path"])
    app.extensions["cleaning_system"] = system

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def role_required(*roles: str) -> Callable:
        def decorator(view: Callable) -> Callable:
            @functools.wraps(view)
            def wrapped(*args: Any, **kwargs: Any) -> Any:
                if g.user is None:
                    return redirect(url_for("login", next=request.path))
                if roles and g.user["role"] not in roles:
                    flash("You do not have access to that page", "error")
                    return redirect(url_for("dashboard"))
                return view(*args, **kwargs)

            return wrapped

        return decorator

    login_required = role_required()
    admin_required = role_required("admin")
    manager_required = role_required("admin", "manager")

    def form_float(name: str, default: float | None = None) -> float | None:
        value = request.form.get(name, type=float)
        return default if value is None else value

    def form_bool(name: str) -> bool:
        return request.form.get(name) not in (None, "", "0", "false")

    def report_range(default: str) -> tuple[dt.date, dt.date, str]:
        quick = request.args.get("filter") or default
        start = request.args.get("start")
        end = request.args.get("end")
        if quick == "custom" and start and end:
            try:
                first = dt.date.fromisoformat(start)
                last = dt.date.fromisoformat(end)
            except ValueError:
                flash(f"Invalid date range: {start} to {end}", "error")
                quick = default
            else:
                if last < first:
                    first, last = last, first
                return first, last, quick
        if quick not in reports.QUICK_FILTERS:
            quick = default
        first, last = reports.resolve_quick_filter(quick, system.today())
        return first, last, quick

    def load_rows(first: dt.date, last: dt.date) -> list[dict]:
        return system.report_rows(start=first.isoformat(), end=last.isoformat())

    @app.before_request
    def load_user() -> Any:
        g.user = None
        user_id = session.get("user_id")
        if user_id:
            try:
                user = system.get_user(user_id)
            except ValidationError:
                session.clear()
            else:
                if user["status"] == "active":
                    g.user = user
                else:
                    session.clear()
        if request.endpoint not in OPEN_ENDPOINTS and not system.has_users():
            return redirect(url_for("setup"))
        return None

    @app.context_processor
    def inject_navigation() -> dict[str, Any]:
        return {
            "current_user": g.get("user"),
            "currency": SETTINGS["currency"],
            "quick_filters": reports.QUICK_FILTERS,
            "today": system.today().isoformat(),
            "current_year": system.today().year,
        }

    @app.template_filter("money")
    def money(value: Any) -> str:
        return f"{SETTINGS['currency']} {float(value or 0):,.2f}"

    @app.template_filter("hm")
    def hour_minute(value: Any) -> str:
        return str(value or "")[:5]

    @app.errorhandler(BackendError)
    def backend_failure(exc: BackendError) -> Any:
        logger.error("Backend failure on %s: %s", request.path, exc)
        flash("The backend could not complete the request", "error")
        return redirect(url_for("dashboard"))

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.route("/setup", methods=["GET", "POST"])
    def setup() -> Any:
        if system.has_users():
            return redirect(url_for("login"))
        if request.method == "POST":
            try:
                user = system.register_user(
                    email=request.form.get("email", ""),
                    password=request.form.get("password", ""),
                    full_name=request.form.get("full_name", ""),
                    phone=request.form.get("phone") or None,
                    role="admin",
                )
                session["user_id"] = user["id"]
                flash("Administrator account created", "success")
                return redirect(url_for("dashboard"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("setup.html")

    @app.route("/login", methods=["GET", "POST"])
    def login() -> Any:
        if request.method == "POST":
            try:
                user = system.login(
                    email=request.form.get("email", ""),
                    password=request.form.get("password", ""),
                )
                session.clear()
                session["user_id"] = user["id"]
                next_url = request.args.get("next")
                if next_url and next_url.startswith("/"):
                    return redirect(next_url)
                return redirect(url_for("dashboard"))
            except AuthorizationError as exc:
                flash(str(exc), "error")
        return render_template("login.html")

    @app.post("/logout")
    def logout() -> Any:
        if g.user:
            system.record_logout(g.user["id"])
        session.clear()
        flash("Signed out", "success")
        return redirect(url_for("login"))

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    @app.get("/")
    def index() -> Any:
        return redirect(url_for("dashboard"))

    @app.route("/dashboard")
    @login_required
    def dashboard() -> Any:
        today = system.today()
        return render_template(
            "dashboard.html",
            summary=system.dashboard_summary(),
            stats=reports.dashboard_stats(load_rows(today, today)),
        )

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    @app.route("/bookings")
    @login_required
    def bookings() -> Any:
        date = request.args.get("date") or system.today().isoformat()
        view = request.args.get("view", "grid")
        view_filter = request.args.get("filter", "all")
        try:
            board = system.schedule_board(booking_date=date, view_filter=view_filter)
        except ValidationError as exc:
            flash(str(exc), "error")
            view_filter = "all"
            board = system.schedule_board(booking_date=date)
        day_bookings = reports.search_rows(
            system.list_day_bookings(date),
            request.args.get("search"),
            ("booking_number", "client_name", "client_mobile", "cleaner_name", "client_area"),
        )
        return render_template(
            "bookings.html",
            date=date,
            view=view,
            view_filter=view_filter,
            board=board,
            bookings=day_bookings,
            timeline=system.timeline(date) if view == "timeline" else [],
            search=request.args.get("search", ""),
        )

    @app.route("/bookings/new", methods=["GET", "POST"])
    @login_required
    def new_booking() -> Any:
        draft: dict[str, Any] = session.get(DRAFT_KEY, {})
        step = request.values.get("step", type=int) or 1

        if request.method == "POST" and step == 1:
            draft.update(
                booking_date=request.form.get("booking_date", ""),
                cleaner_name=request.form.get("cleaner_name", ""),
                hours=form_float("hours", 0.0),
                number_of_cleaners=request.form.get("number_of_cleaners", type=int) or 1,
                with_materials=form_bool("with_materials"),
                start_time=request.form.get("start_time", ""),
            )
            session[DRAFT_KEY] = draft
            if not draft["start_time"]:
                flash("Choose an available time slot", "error")
                return redirect(url_for("new_booking", step=1))
            return redirect(url_for("new_booking", step=2))

        if request.method == "POST" and step == 2:
            if not draft.get("start_time"):
                return redirect(url_for("new_booking", step=1))
            draft.update(
                {
                    key: (request.form.get(key) or "").strip()
                    for key in (
                        "client_mobile",
                        "client_name",
                        "client_address",
                        "client_address2",
                        "client_zone",
                        "client_street",
                        "client_building",
                        "client_area",
                        "client_location_url",
                        "client_notes",
                        "notes",
                        "manual_price_reason",
                    )
                }
            )
            draft.update(
                pricing_mode=request.form.get("pricing_mode", "auto"),
                manual_price=form_float("manual_price"),
                discount_amount=form_float("discount_amount", 0.0),
                driver_id=request.form.get("driver_id", type=int),
                payment_mode=request.form.get("payment_mode", "cash"),
                is_credit_sale=form_bool("is_credit_sale"),
                credit_due_date=request.form.get("credit_due_date") or None,
            )
            session[DRAFT_KEY] = draft
            if not draft["client_mobile"] or not draft["client_name"]:
                flash("Client name and mobile are required", "error")
                return redirect(url_for("new_booking", step=2))
            return redirect(url_for("new_booking", step=3))

        if request.method == "POST" and step == 3:
            if not draft.get("start_time") or not draft.get("client_mobile"):
                flash("The booking form is incomplete", "error")
                return redirect(url_for("new_booking", step=1))
            try:
                booking = system.create_booking(user=g.user, **draft)
                session.pop(DRAFT_KEY, None)
                flash(f"Booking {booking['booking_number']} created", "success")
                return redirect(url_for("bookings", date=booking["booking_date"]))
            except ValidationError as exc:
                flash(str(exc), "error")
                return redirect(url_for("new_booking", step=3))

        context: dict[str, Any] = {"step": step, "draft": draft}
        if step == 1:
            booking_date = request.args.get("booking_date") or draft.get("booking_date") or system.today().isoformat()
            cleaner_name = request.args.get("cleaner_name") or draft.get("cleaner_name") or ""
            hours = request.args.get("hours", type=float) or draft.get("hours") or 2
            slots: list[dict] = []
            overtime = None
            if cleaner_name:
                try:
                    slots = system.available_slots(
                        cleaner_name=cleaner_name, booking_date=booking_date, hours=hours
                    )
                except ValidationError as exc:
                    flash(str(exc), "error")
                    booking_date = system.today().isoformat()
                else:
                    overtime = system.overtime_preview(
                        cleaner_name=cleaner_name, booking_date=booking_date, hours=hours
                    )
            context.update(
                booking_date=booking_date,
                cleaner_name=cleaner_name,
                hours=hours,
                slots=slots,
                overtime=overtime,
                cleaners=system.list_active_cleaners(),
                capacity=system.cleaner_capacity(booking_date),
                durations=DURATION_OPTIONS,
            )
        elif step == 2:
            if not draft.get("start_time"):
                return redirect(url_for("new_booking", step=1))
            lookup = request.args.get("lookup")
            if lookup:
                found = system.find_client_by_mobile(lookup)
                if found["found"]:
                    draft.update(
                        client_mobile=lookup,
                        client_name=found["name"],
                        client_address=found["default_address"],
                        client_address2=found["default_address2"],
                        client_zone=found["default_zone"],
                        client_street=found["default_street"],
                        client_building=found["default_building"],
                        client_area=found["default_area"],
                        client_location_url=found["default_location_url"],
                    )
                    flash("Existing client found", "success")
                else:
                    draft["client_mobile"] = lookup
                    flash("New client", "warning")
                session[DRAFT_KEY] = draft
            context.update(drivers=system.list_drivers(active_only=True), payment_modes=PAYMENT_MODES)
        else:
            if not draft.get("client_mobile"):
                return redirect(url_for("new_booking", step=2))
            quote = None
            try:
                if draft.get("pricing_mode") != "manual":
                    quote = system.quote_price(
                        booking_date=draft["booking_date"],
                        hours=draft["hours"],
                        number_of_cleaners=draft["number_of_cleaners"],
                        with_materials=draft["with_materials"],
                        area=draft.get("client_area"),
                    )
            except ValidationError as exc:
                flash(str(exc), "error")
            total = quote["total"] if quote else float(draft.get("manual_price") or 0)
            context.update(
                quote=quote,
                total=total,
                final_price=total - float(draft.get("discount_amount") or 0),
                overtime=system.overtime_preview(
                    cleaner_name=draft["cleaner_name"],
                    booking_date=draft["booking_date"],
                    hours=draft["hours"],
                ),
            )
        return render_template("booking_new.html", **context)

    @app.post("/bookings/new/reset")
    @login_required
    def reset_booking() -> Any:
        session.pop(DRAFT_KEY, None)
        return redirect(url_for("new_booking"))

    @app.get("/api/clients/lookup")
    @login_required
    def client_lookup() -> Any:
        mobile = request.args.get("mobile", "")
        return jsonify(system.find_client_by_mobile(mobile))

    @app.route("/bookings/<int:booking_id>/edit", methods=["GET", "POST"])
    @login_required
    def edit_booking(booking_id: int) -> Any:
        try:
            booking = system.get_booking_details(booking_id)
        except ValidationError as exc:
            flash(str(exc), "error")
            return redirect(url_for("bookings"))
        if request.method == "POST":
            try:
                booking = system.update_booking(
                    booking_id=booking_id,
                    user=g.user,
                    booking_date=request.form.get("booking_date") or None,
                    start_time=request.form.get("start_time") or None,
                    hours=form_float("hours"),
                    cleaner_name=request.form.get("cleaner_name") or None,
                    client_notes=request.form.get("client_notes"),
                )
                flash("Booking updated", "success")
                return redirect(url_for("bookings", date=booking["booking_date"]))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template(
            "booking_edit.html",
            booking=booking,
            cleaners=system.list_active_cleaners(),
            durations=DURATION_OPTIONS,
        )

    @app.route("/bookings/<int:booking_id>/cancel", methods=["GET", "POST"])
    @login_required
    def cancel_booking(booking_id: int) -> Any:
        try:
            booking = system.get_booking_details(booking_id)
        except ValidationError as exc:
            flash(str(exc), "error")
            return redirect(url_for("bookings"))
        stage = "confirm"
        if request.method == "POST":
            if request.form.get("stage") == "final":
                try:
                    system.cancel_booking(
                        booking_id=booking_id,
                        reason=request.form.get("reason", ""),
                        user=g.user,
                    )
                    flash(f"Booking {booking['booking_number']} cancelled", "success")
                    return redirect(url_for("bookings", date=booking["booking_date"]))
                except ValidationError as exc:
                    flash(str(exc), "error")
            stage = "reason"
        return render_template("booking_cancel.html", booking=booking, stage=stage)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    @app.route("/orders")
    @login_required
    def orders() -> Any:
        filters = {
            key: request.args.get(key) or None
            for key in ("search", "status", "payment", "date", "month", "year")
        }
        rows = system.list_orders(**filters)
        return render_template(
            "orders.html",
            orders=rows,
            filters=filters,
            statuses=BOOKING_STATUSES,
            total=sum(row["final_price"] for row in rows),
        )

    @app.post("/orders/<int:booking_id>/paid")
    @login_required
    def mark_paid(booking_id: int) -> Any:
        try:
            system.mark_paid(booking_id=booking_id, user_id=g.user["id"])
            flash("Payment recorded", "success")
        except (ValidationError, AuthorizationError) as exc:
            flash(str(exc), "error")
        return redirect(request.referrer or url_for("orders"))

    @app.post("/orders/<int:booking_id>/complete")
    @login_required
    def mark_completed(booking_id: int) -> Any:
        try:
            system.mark_completed(booking_id=booking_id, user_id=g.user["id"])
            flash("Booking completed", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(request.referrer or url_for("orders"))

    # ------------------------------------------------------------------
    # Cleaners, clients & drivers
    # ------------------------------------------------------------------
    @app.route("/cleaners", methods=["GET", "POST"])
    @login_required
    def cleaners() -> Any:
        if request.method == "POST":
            try:
                system.create_cleaner(
                    name=request.form.get("name", ""),
                    mobile=request.form.get("mobile") or None,
                    residence_id=request.form.get("residence_id") or None,
                    nationality=request.form.get("nationality") or None,
                    date_of_birth=request.form.get("date_of_birth") or None,
                )
                flash("Cleaner added", "success")
                return redirect(url_for("cleaners"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template(
            "cleaners.html",
            cleaners=system.list_cleaners(
                search=request.args.get("search"), status=request.args.get("status") or None
            ),
            search=request.args.get("search", ""),
        )

    @app.post("/cleaners/<int:cleaner_id>")
    @login_required
    def update_cleaner(cleaner_id: int) -> Any:
        try:
            system.update_cleaner(
                cleaner_id,
                name=request.form.get("name", ""),
                mobile=request.form.get("mobile") or None,
                residence_id=request.form.get("residence_id") or None,
                nationality=request.form.get("nationality") or None,
                date_of_birth=request.form.get("date_of_birth") or None,
            )
            flash("Cleaner updated", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("cleaners"))

    @app.post("/cleaners/<int:cleaner_id>/toggle")
    @login_required
    def toggle_cleaner(cleaner_id: int) -> Any:
        try:
            cleaner = system.toggle_cleaner_status(cleaner_id)
            flash(f"{cleaner['name']} is now {cleaner['status']}", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("cleaners"))

    @app.post("/cleaners/<int:cleaner_id>/delete")
    @manager_required
    def delete_cleaner(cleaner_id: int) -> Any:
        try:
            system.delete_cleaner(cleaner_id)
            flash("Cleaner deleted", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("cleaners"))

    @app.route("/clients", methods=["GET", "POST"])
    @login_required
    def clients() -> Any:
        if request.method == "POST":
            try:
                system.create_client(
                    name=request.form.get("name", ""),
                    mobile=request.form.get("mobile", ""),
                    **client_defaults_from_form(),
                )
                flash("Client added", "success")
                return redirect(url_for("clients"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template(
            "clients.html",
            clients=system.list_clients(search=request.args.get("search")),
            search=request.args.get("search", ""),
        )

    def client_defaults_from_form() -> dict[str, Any]:
        return {
            key: request.form.get(key) or None
            for key in (
                "default_address",
                "default_address2",
                "default_zone",
                "default_street",
                "default_building",
                "default_area",
                "default_location_url",
                "notes",
            )
        }

    @app.post("/clients/<int:client_id>")
    @login_required
    def update_client(client_id: int) -> Any:
        try:
            system.update_client(
                client_id,
                name=request.form.get("name", ""),
                mobile=request.form.get("mobile", ""),
                **client_defaults_from_form(),
            )
            flash("Client updated", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("clients"))

    @app.post("/clients/<int:client_id>/delete")
    @manager_required
    def delete_client(client_id: int) -> Any:
        try:
            system.delete_client(client_id)
            flash("Client deleted", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("clients"))

    @app.route("/drivers", methods=["GET", "POST"])
    @login_required
    def drivers() -> Any:
        if request.method == "POST":
            try:
                system.create_driver(
                    name=request.form.get("name", ""),
                    mobile=request.form.get("mobile") or None,
                    status=request.form.get("status", "active"),
                    notes=request.form.get("notes") or None,
                )
                flash("Driver added", "success")
                return redirect(url_for("drivers"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("drivers.html", drivers=system.list_drivers())

    @app.post("/drivers/<int:driver_id>")
    @login_required
    def update_driver(driver_id: int) -> Any:
        try:
            system.update_driver(
                driver_id,
                name=request.form.get("name", ""),
                mobile=request.form.get("mobile") or None,
                status=request.form.get("status", "active"),
                notes=request.form.get("notes") or None,
            )
            flash("Driver updated", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("drivers"))

    @app.route("/drivers/<int:driver_id>/delete", methods=["GET", "POST"])
    @manager_required
    def delete_driver(driver_id: int) -> Any:
        try:
            driver = system.get_driver(driver_id)
        except ValidationError as exc:
            flash(str(exc), "error")
            return redirect(url_for("drivers"))
        if request.method == "POST":
            if request.form.get("confirm_text") != "DELETE":
                flash("Type DELETE to confirm", "error")
            else:
                try:
                    system.delete_driver(driver_id)
                except ValidationError as exc:
                    flash(str(exc), "error")
                    return redirect(url_for("drivers"))
                flash(f"Driver {driver['name']} deleted", "success")
                return redirect(url_for("drivers"))
        return render_template("confirm_delete.html", driver=driver)

    # ------------------------------------------------------------------
    # Logistics, collections & remittances
    # ------------------------------------------------------------------
    @app.route("/logistics", methods=["GET", "POST"])
    @login_required
    def logistics() -> Any:
        if request.method == "POST":
            changes = []
            for booking_id in request.form.getlist("booking_ids", type=int):
                changes.append(
                    {
                        "booking_id": booking_id,
                        "pickup_driver_id": request.form.get(f"pickup_driver_{booking_id}", type=int),
                        "pickup_completed": form_bool(f"pickup_done_{booking_id}"),
                        "dropoff_driver_id": request.form.get(f"dropoff_driver_{booking_id}", type=int),
                        "dropoff_completed": form_bool(f"dropoff_done_{booking_id}"),
                    }
                )
            saved = system.save_transport_changes(changes)
            flash(f"Saved transport for {saved} bookings", "success")
            return redirect(request.referrer or url_for("logistics"))
        day = request.args.get("day", "today")
        try:
            date = system.logistics_date(day, request.args.get("date"))
        except ValidationError as exc:
            flash(str(exc), "error")
            day, date = "today", system.today().isoformat()
        return render_template(
            "logistics.html",
            day=day,
            date=date,
            board=system.logistics_board(booking_date=date, search=request.args.get("search")),
            drivers=system.list_drivers(active_only=True),
            search=request.args.get("search", ""),
        )

    @app.route("/collections")
    @login_required
    def collections() -> Any:
        first, last, quick = report_range("today")
        rows = system.driver_collections(start=first.isoformat(), end=last.isoformat())
        return render_template(
            "collections.html",
            collections=rows,
            start=first,
            end=last,
            quick=quick,
            total_expected=sum(row["expected_amount"] for row in rows),
            total_actual=sum(row["actual_amount"] for row in rows),
        )

    @app.route("/remittances", methods=["GET", "POST"])
    @login_required
    def remittances() -> Any:
        if request.method == "POST":
            try:
                system.record_remittance(
                    driver_id=request.form.get("driver_id", type=int),
                    amount=form_float("amount"),
                    received_by=request.form.get("received_by") or g.user["full_name"],
                    payment_method=request.form.get("payment_method", "cash"),
                    receipt_number=request.form.get("receipt_number") or None,
                    notes=request.form.get("notes") or None,
                    remittance_date=request.form.get("remittance_date") or None,
                )
                flash("Remittance recorded", "success")
                return redirect(url_for("remittances"))
            except ValidationError as exc:
                flash(str(exc), "error")
        rows = system.list_remittances(
            driver_id=request.args.get("driver_id", type=int),
            start=request.args.get("start") or None,
            end=request.args.get("end") or None,
        )
        return render_template(
            "remittances.html",
            remittances=rows,
            totals=system.remittance_totals(rows),
            drivers=system.list_drivers(active_only=True),
        )

    @app.post("/remittances/<int:remittance_id>/verify")
    @manager_required
    def verify_remittance(remittance_id: int) -> Any:
        try:
            system.verify_remittance(remittance_id)
            flash("Remittance verified", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("remittances"))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    @app.route("/settings")
    @manager_required
    def settings() -> Any:
        return render_template(
            "settings.html",
            channels=system.list_channels(),
            time_periods=system.list_time_periods(),
            pricing=system.list_pricing_configs(),
            areas=system.list_special_areas(),
            area_pricing=system.list_special_area_pricing(),
            channel_rules=system.list_channel_rules(),
            gap_rules=system.list_gap_rules(),
            reminder_types=system.list_reminder_types(),
            reminder_rules=system.list_reminder_rules(),
        )

    @app.post("/settings/<section>")
    @app.post("/settings/<section>/<int:item_id>")
    @manager_required
    def update_settings(section: str, item_id: int | None = None) -> Any:
        action = request.form.get("action", "save")
        keywords = [k for k in request.form.get("keywords", "").split(",") if k.strip()]
        try:
            if section == "time-periods":
                system.update_time_period(
                    item_id,
                    name=request.form.get("name", ""),
                    start_time=request.form.get("start_time", ""),
                    end_time=request.form.get("end_time", ""),
                )
            elif section == "pricing":
                system.update_pricing_config(
                    item_id,
                    hourly_rate=form_float("hourly_rate"),
                    materials_price=form_float("materials_price", 0.0),
                    tax_rate=form_float("tax_rate", 0.0),
                    is_active=form_bool("is_active"),
                )
            elif section == "areas" and action == "delete":
                system.delete_special_area(item_id)
            elif section == "areas" and item_id:
                system.update_special_area(
                    item_id,
                    name=request.form.get("name", ""),
                    keywords=keywords,
                    is_active=form_bool("is_active"),
                )
            elif section == "areas":
                system.create_special_area(
                    code=request.form.get("code", ""),
                    name=request.form.get("name", ""),
                    keywords=keywords,
                )
            elif section == "area-pricing" and action == "delete":
                system.delete_special_area_pricing(item_id)
            elif section == "area-pricing":
                system.set_special_area_pricing(
                    area_id=request.form.get("area_id", type=int),
                    hourly_rate=form_float("hourly_rate"),
                    materials_price=form_float("materials_price"),
                    channel_code=request.form.get("channel_code") or None,
                )
            elif section == "channel-rules":
                system.update_channel_rules(
                    item_id,
                    work_start_time=request.form.get("work_start_time", "08:00") + ":00",
                    work_end_time=request.form.get("work_end_time", "22:00") + ":00",
                    min_advance_hours=form_float("min_advance_hours", 0.0),
                    max_advance_days=request.form.get("max_advance_days", type=int) or 0,
                    min_shift_hours=form_float("min_shift_hours", 0.0),
                    max_shift_hours=form_float("max_shift_hours", 0.0),
                    max_daily_hours_per_cleaner=form_float("max_daily_hours_per_cleaner", 0.0),
                    max_shifts_per_day_per_cleaner=request.form.get(
                        "max_shifts_per_day_per_cleaner", type=int
                    )
                    or 0,
                    allow_same_day_booking=int(form_bool("allow_same_day_booking")),
                    allow_past_booking=int(form_bool("allow_past_booking")),
                    require_payment_upfront=int(form_bool("require_payment_upfront")),
                    require_manual_confirmation=int(form_bool("require_manual_confirmation")),
                )
            elif section == "gap-rules" and action == "delete":
                system.delete_gap_rule(item_id)
            elif section == "gap-rules" and item_id:
                system.update_gap_rule(
                    item_id,
                    min_booking_hours=form_float("min_booking_hours", 0.0),
                    max_booking_hours=form_float("max_booking_hours"),
                    gap_minutes=request.form.get("gap_minutes", type=int),
                    priority=request.form.get("priority", type=int) or 0,
                    is_active=int(form_bool("is_active")),
                )
            elif section == "gap-rules":
                system.add_gap_rule(
                    channel_id=request.form.get("channel_id", type=int),
                    min_booking_hours=form_float("min_booking_hours", 0.0),
                    max_booking_hours=form_float("max_booking_hours"),
                    gap_minutes=request.form.get("gap_minutes", type=int),
                    priority=request.form.get("priority", type=int) or 0,
                )
            elif section == "reminder-rules" and action == "delete":
                system.delete_reminder_rule(item_id)
            elif section == "reminder-rules" and item_id:
                system.update_reminder_rule(
                    item_id,
                    hours_before=form_float("hours_before"),
                    hours_after=form_float("hours_after"),
                    send_whatsapp=int(form_bool("send_whatsapp")),
                    send_email=int(form_bool("send_email")),
                    whatsapp_template_name=request.form.get("whatsapp_template_name") or None,
                    email_subject=request.form.get("email_subject") or None,
                    is_active=int(form_bool("is_active")),
                )
            elif section == "reminder-rules":
                system.add_reminder_rule(
                    reminder_type_id=request.form.get("reminder_type_id", type=int),
                    channel_id=request.form.get("channel_id", type=int),
                    trigger_type=request.form.get("trigger_type", "before_booking"),
                    hours_before=form_float("hours_before"),
                    hours_after=form_float("hours_after"),
                    send_whatsapp=form_bool("send_whatsapp"),
                    send_email=form_bool("send_email"),
                    whatsapp_template_name=request.form.get("whatsapp_template_name") or None,
                    email_subject=request.form.get("email_subject") or None,
                )
            else:
                flash("Unknown settings section", "error")
                return redirect(url_for("settings"))
            flash("Settings saved", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("settings"))

    # ------------------------------------------------------------------
    # Users & profile
    # ------------------------------------------------------------------
    @app.route("/users", methods=["GET", "POST"])
    @admin_required
    def users() -> Any:
        if request.method == "POST":
            try:
                user = system.register_user(
                    email=request.form.get("email", ""),
                    password=request.form.get("password", ""),
                    full_name=request.form.get("full_name", ""),
                    role=request.form.get("role", "staff"),
                    phone=request.form.get("phone") or None,
                )
                system.log_activity(
                    user_id=g.user["id"], action="create_user", entity_type="user",
                    entity_id=user["id"], details={"email": user["email"], "role": user["role"]},
                )
                flash("User created", "success")
                return redirect(url_for("users"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("users.html", users=system.list_users(), roles=ROLES)

    @app.post("/users/<int:user_id>/role")
    @admin_required
    def update_user_role(user_id: int) -> Any:
        try:
            system.update_user_role(
                actor_id=g.user["id"], user_id=user_id, role=request.form.get("role", "")
            )
            flash("Role updated", "success")
        except (ValidationError, AuthorizationError) as exc:
            flash(str(exc), "error")
        return redirect(url_for("users"))

    @app.post("/users/<int:user_id>/status")
    @admin_required
    def update_user_status(user_id: int) -> Any:
        try:
            system.update_user_status(
                actor_id=g.user["id"], user_id=user_id, status=request.form.get("status", "")
            )
            flash("Status updated", "success")
        except (ValidationError, AuthorizationError) as exc:
            flash(str(exc), "error")
        return redirect(url_for("users"))

    @app.get("/users/<int:user_id>/activity")
    @admin_required
    def user_activity(user_id: int) -> Any:
        try:
            user = system.get_user(user_id)
        except ValidationError as exc:
            flash(str(exc), "error")
            return redirect(url_for("users"))
        return render_template(
            "activity.html", user=user, activity=system.list_activity(user_id=user_id)
        )

    @app.route("/profile", methods=["GET", "POST"])
    @login_required
    def profile() -> Any:
        if request.method == "POST":
            password = request.form.get("password") or None
            if password and password != request.form.get("confirm_password"):
                flash("Passwords do not match", "error")
                return redirect(url_for("profile"))
            try:
                system.update_profile(
                    user_id=g.user["id"],
                    full_name=request.form.get("full_name", ""),
                    phone=request.form.get("phone") or None,
                    password=password,
                )
                flash("Profile updated", "success")
                return redirect(url_for("profile"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template(
            "profile.html", activity=system.list_activity(user_id=g.user["id"], limit=20)
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    @app.route("/reports")
    @login_required
    def reports_overview() -> Any:
        first, last, quick = report_range("today")
        rows = load_rows(first, last)
        overview = reports.overview_report(rows)
        area = request.args.get("area")
        return render_template(
            "reports_overview.html",
            start=first,
            end=last,
            quick=quick,
            stats=reports.dashboard_stats(rows),
            overview=overview,
            area=area,
            area_stats=reports.area_stats(rows, area) if area else None,
        )

    @app.route("/reports/sales")
    @login_required
    def reports_sales() -> Any:
        first, last, quick = report_range("thisMonth")
        return render_template(
            "reports_sales.html",
            start=first,
            end=last,
            quick=quick,
            report=reports.sales_report(load_rows(first, last), first, last),
        )

    @app.route("/reports/financial")
    @login_required
    def reports_financial() -> Any:
        first, last, quick = report_range("thisMonth")
        return render_template(
            "reports_financial.html",
            start=first,
            end=last,
            quick=quick,
            report=reports.financial_report(load_rows(first, last)),
        )

    @app.route("/reports/hours")
    @login_required
    def reports_hours() -> Any:
        first, last, quick = report_range("thisMonth")
        return render_template(
            "reports_hours.html",
            start=first,
            end=last,
            quick=quick,
            report=reports.hours_report(load_rows(first, last)),
        )

    @app.route("/reports/customers")
    @login_required
    def reports_customers() -> Any:
        first, last, quick = report_range("thisMonth")
        report = reports.customer_report(load_rows(first, last))
        report["customers"] = reports.search_rows(
            report["customers"], request.args.get("search"), ("name", "mobile", "area")
        )
        return render_template(
            "reports_customers.html",
            start=first,
            end=last,
            quick=quick,
            report=report,
            search=request.args.get("search", ""),
        )

    return app


__all__ = ["create_app"]
