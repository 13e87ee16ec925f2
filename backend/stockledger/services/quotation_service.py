"""
Quotation Service - customer quotations (devis)

LIFECYCLE:
    draft -> sent -> accepted -> converted
    draft/sent -> rejected | expired
    accepted -> expired

Quotations never move stock. Conversion runs the sale workflow inside the
same unit of work, so either the sale (with its 'out' movements) exists and
the quotation is 'converted', or neither changed.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Quotation, QuotationItem, Sale, QUOTATION_STATUSES
from stockledger.time_utils import normalize_datetime, utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .document_service import assert_transition, build_document, replace_document_items
from .sales_service import create_sale_locked


EXPIRABLE_STATUSES = ("draft", "sent")
MAX_VALIDITY_DAYS = 3650

# Header fields a draft quotation accepts on update, besides items/discount/tax
EDITABLE_FIELDS = frozenset({"customer_id", "notes", "terms_conditions", "validity_days"})


def _check_validity_days(validity_days: int) -> int:
    if validity_days <= 0:
        raise ValidationError("validity_days must be > 0")
    if validity_days > MAX_VALIDITY_DAYS:
        raise ValidationError(f"validity_days cannot exceed {MAX_VALIDITY_DAYS}")
    return validity_days


def create_quotation(
    items: list[dict],
    *,
    customer_id: int | None = None,
    user_id: int | None = None,
    validity_days: int | None = None,
    notes: str | None = None,
    terms_conditions: str | None = None,
    discount_cents: int = 0,
    tax_cents: int = 0,
    as_of=None,
) -> Quotation:
    """Create a draft quotation valid for validity_days from its date."""
    if validity_days is None:
        validity_days = current_app.config.get("QUOTATION_VALIDITY_DAYS", 30)
    _check_validity_days(validity_days)

    quotation_date = normalize_datetime(as_of) or utcnow()

    def _op():
        begin_write_transaction()
        quotation = build_document(
            "quotation",
            QuotationItem,
            header={
                "customer_id": customer_id,
                "user_id": user_id,
                "status": "draft",
                "validity_days": validity_days,
                "valid_until": quotation_date + timedelta(days=validity_days),
                "notes": notes,
                "terms_conditions": terms_conditions,
            },
            items=items,
            as_of=quotation_date,
            item_fields=("description",),
            discount_cents=discount_cents,
            tax_cents=tax_cents,
        )
        db.session.commit()
        return quotation

    quotation = run_with_retry(_op)
    current_app.logger.info(
        "Quotation %s created: %d item(s), valid until %s",
        quotation.quotation_number, len(quotation.items), quotation.valid_until,
    )
    return quotation


def _get_locked_quotation(quotation_id: int) -> Quotation:
    quotation = (
        lock_for_update(db.session.query(Quotation).filter_by(id=quotation_id))
        .populate_existing()
        .first()
    )
    if not quotation:
        raise NotFoundError(f"Quotation {quotation_id} not found", details={"quotation_id": quotation_id})
    return quotation


def update_quotation(quotation_id: int, changes: dict, *, items: list[dict] | None = None) -> Quotation:
    """
    Edit a draft quotation.

    A new validity_days moves valid_until relative to the quotation date.
    items, when given, replaces every line; totals are recomputed either way.
    """
    unknown = set(changes) - EDITABLE_FIELDS - {"discount_cents", "tax_cents"}
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    if changes.get("validity_days") is not None:
        _check_validity_days(changes["validity_days"])

    def _op():
        begin_write_transaction()
        quotation = _get_locked_quotation(quotation_id)
        if quotation.status != "draft":
            raise ValidationError(
                "Only draft quotations can be modified",
                details={"status": quotation.status},
            )

        for name in EDITABLE_FIELDS & set(changes):
            if name == "validity_days" and changes[name] is None:
                continue
            setattr(quotation, name, changes[name])
        quotation.valid_until = quotation.quotation_date + timedelta(days=quotation.validity_days)

        replace_document_items(
            quotation,
            QuotationItem,
            items,
            item_fields=("description",),
            discount_cents=changes.get("discount_cents"),
            tax_cents=changes.get("tax_cents"),
        )
        db.session.commit()
        return quotation

    quotation = run_with_retry(_op)
    current_app.logger.info("Quotation %s updated", quotation.quotation_number)
    return quotation


def update_quotation_status(quotation_id: int, new_status: str) -> Quotation:
    """Manual status change. 'converted' is only reachable through conversion."""
    if new_status == "converted":
        raise ValidationError("Use the conversion endpoint to convert a quotation into a sale")

    def _op():
        begin_write_transaction()
        quotation = _get_locked_quotation(quotation_id)
        assert_transition("quotation", quotation.status, new_status)
        quotation.status = new_status
        db.session.commit()
        return quotation

    quotation = run_with_retry(_op)
    current_app.logger.info("Quotation %s -> %s", quotation.quotation_number, new_status)
    return quotation


def convert_quotation_to_sale(
    quotation_id: int,
    *,
    payment_method: str = "cash",
    payment_status: str = "paid",
    user_id: int | None = None,
    as_of=None,
) -> tuple[Quotation, Sale]:
    """
    Turn a sent or accepted quotation into a sale.

    Insufficient stock on any line aborts the sale and leaves the quotation
    in its previous status.
    """
    def _op():
        begin_write_transaction()
        quotation = _get_locked_quotation(quotation_id)
        assert_transition("quotation", quotation.status, "converted")

        sale = create_sale_locked(
            [
                {
                    "product_id": item.product_id,
                    "product_name": item.product_name,
                    "quantity": item.quantity,
                    "unit_price_cents": item.unit_price_cents,
                }
                for item in quotation.items
            ],
            customer_id=quotation.customer_id,
            user_id=user_id if user_id is not None else quotation.user_id,
            payment_method=payment_method,
            payment_status=payment_status,
            discount_cents=quotation.discount_cents,
            tax_cents=quotation.tax_cents,
            notes=f"Converted from quotation {quotation.quotation_number}",
            as_of=as_of,
        )

        quotation.status = "converted"
        quotation.converted_to_sale_id = sale.id
        db.session.commit()
        return quotation, sale

    quotation, sale = run_with_retry(_op)
    current_app.logger.info("Quotation %s converted to sale %s", quotation.quotation_number, sale.sale_number)
    return quotation, sale


def mark_expired_quotations(now=None) -> int:
    """Expire draft/sent quotations whose valid_until has passed. Returns the count."""
    cutoff = normalize_datetime(now) or utcnow()

    def _op():
        begin_write_transaction()
        count = (
            db.session.query(Quotation)
            .filter(
                Quotation.status.in_(EXPIRABLE_STATUSES),
                Quotation.valid_until.isnot(None),
                Quotation.valid_until < cutoff,
            )
            .update({"status": "expired"}, synchronize_session=False)
        )
        db.session.commit()
        return count

    count = run_with_retry(_op)
    if count:
        current_app.logger.info("Expired %d quotation(s)", count)
    return count


def delete_quotation(quotation_id: int) -> None:
    """Only drafts can be deleted."""
    def _op():
        begin_write_transaction()
        quotation = _get_locked_quotation(quotation_id)
        if quotation.status != "draft":
            raise ValidationError(
                "Only draft quotations can be deleted",
                details={"status": quotation.status},
            )
        number = quotation.quotation_number
        db.session.delete(quotation)
        db.session.commit()
        return number

    number = run_with_retry(_op)
    current_app.logger.info("Quotation %s deleted", number)


def get_quotation(quotation_id: int) -> Quotation:
    quotation = db.session.get(Quotation, quotation_id)
    if not quotation:
        raise NotFoundError(f"Quotation {quotation_id} not found")
    return quotation


def list_quotations(*, status: str | None = None, customer_id: int | None = None, limit: int = 100) -> list[Quotation]:
    query = db.session.query(Quotation)
    if status is not None:
        query = query.filter(Quotation.status == status)
    if customer_id is not None:
        query = query.filter(Quotation.customer_id == customer_id)
    return query.order_by(Quotation.quotation_date.desc(), Quotation.id.desc()).limit(limit).all()


def get_quotation_stats(start_date=None, end_date=None) -> dict:
    """
    Quotation count and value, a count per status, converted value and the
    conversion rate in percent (two decimals). Bounds are inclusive.
    """
    columns = [
        func.count(Quotation.id).label("total_quotations"),
        func.coalesce(func.sum(Quotation.net_amount_cents), 0).label("total_value_cents"),
        func.coalesce(
            func.sum(case((Quotation.status == "converted", Quotation.net_amount_cents), else_=0)), 0
        ).label("converted_value_cents"),
    ]
    for status in QUOTATION_STATUSES:
        columns.append(
            func.coalesce(func.sum(case((Quotation.status == status, 1), else_=0)), 0).label(f"{status}_count")
        )

    query = db.session.query(*columns)
    if start_date is not None:
        query = query.filter(Quotation.quotation_date >= start_date)
    if end_date is not None:
        query = query.filter(Quotation.quotation_date <= end_date)

    stats = {key: int(value or 0) for key, value in query.one()._asdict().items()}
    total = stats["total_quotations"]
    stats["conversion_rate"] = round(stats["converted_count"] * 100 / total, 2) if total else 0.0
    return stats
