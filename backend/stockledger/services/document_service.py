# Overview: Document numbering, transition tables and the generic "document + stock effect" builder.

"""
Every stock-affecting workflow has the same shape:

    open write transaction -> allocate number -> insert header + items
    -> apply one ledger delta per product line -> commit

build_document() owns the middle of that shape so each workflow only states
its document type, its header fields and which ledger effect a line has.
Nothing in this module commits; the calling workflow does.

NUMBER FORMAT:
    {PREFIX}{YYYYMMDD}-{NNN}, e.g. VEN20240315-001
    NNN is zero-padded to three digits and restarts at 001 every calendar
    day (UTC). Past 999 the counter simply grows a fourth digit.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InvalidTransitionError, NotFoundError, SequenceCollisionError, ValidationError
from ..models import (
    DocumentSequence,
    Product,
    PurchaseOrder,
    Quotation,
    Return,
    Sale,
)
from stockledger.time_utils import normalize_datetime, utcnow
from stockledger.validation import enforce_positive_quantity, enforce_price


# document kind -> (prefix, header model, number column)
DOCUMENT_KINDS = {
    "sale": ("VEN", Sale, "sale_number"),
    "return": ("AV", Return, "return_number"),
    "purchase_order": ("PO", PurchaseOrder, "po_number"),
    "quotation": ("DEVIS", Quotation, "quotation_number"),
}

NUMBER_PATTERN = re.compile(r"^(?P<prefix>[A-Z]+)(?P<day>\d{8})-(?P<seq>\d{3,})$")


TRANSITIONS = {
    "purchase_order": {
        "draft": {"sent", "cancelled"},
        "sent": {"partial", "received", "cancelled"},
        "partial": {"partial", "received"},
        "received": set(),
        "cancelled": set(),
    },
    "quotation": {
        "draft": {"sent", "accepted", "rejected", "expired"},
        "sent": {"accepted", "rejected", "expired", "converted"},
        "accepted": {"converted", "expired"},
        "rejected": set(),
        "expired": set(),
        "converted": set(),
    },
    "return": {
        "pending": {"completed", "cancelled"},
        "completed": {"cancelled"},
        "cancelled": set(),
    },
}


def can_transition(document: str, current: str, requested: str) -> bool:
    return requested in TRANSITIONS[document].get(current, set())


def assert_transition(document: str, current: str, requested: str) -> None:
    if requested not in TRANSITIONS[document]:
        raise ValidationError(f"Unknown {document} status: {requested}")
    if not can_transition(document, current, requested):
        raise InvalidTransitionError(document, current, requested)


# =============================================================================
# Document numbers
# =============================================================================

def _sequence_day(as_of) -> date:
    if as_of is None:
        return utcnow().date()
    if isinstance(as_of, datetime):
        return normalize_datetime(as_of).date()
    if isinstance(as_of, date):
        return as_of
    return normalize_datetime(as_of).date()


def format_document_number(prefix: str, day: date, number: int) -> str:
    return f"{prefix}{day:%Y%m%d}-{number:03d}"


def parse_document_number(value: str) -> tuple[str, date, int]:
    """Split 'VEN20240315-007' into ('VEN', date(2024, 3, 15), 7)."""
    match = NUMBER_PATTERN.match(value or "")
    if not match:
        raise ValidationError(f"Invalid document number: {value!r}")
    try:
        day = datetime.strptime(match.group("day"), "%Y%m%d").date()
    except ValueError:
        raise ValidationError(f"Invalid document number date: {value!r}")
    return match.group("prefix"), day, int(match.group("seq"))


def _highest_existing_number(document_kind: str, day: date) -> int:
    """Largest counter already issued for this kind and day (0 if none)."""
    prefix, model, column_name = DOCUMENT_KINDS[document_kind]
    column = getattr(model, column_name)
    day_prefix = f"{prefix}{day:%Y%m%d}-"

    highest = 0
    for (number,) in db.session.query(column).filter(column.like(f"{day_prefix}%")).all():
        try:
            _, _, seq = parse_document_number(number)
        except ValidationError:
            continue
        highest = max(highest, seq)
    return highest


def next_document_number(document_kind: str, as_of_date=None) -> str:
    """
    Allocate the next number for a document kind on a given day.

    Must run inside the caller's write transaction: the counter UPDATE is
    rolled back together with the document if the workflow fails, which is
    what keeps the sequence gap-tolerant rather than gap-free.
    """
    if document_kind not in DOCUMENT_KINDS:
        raise ValidationError(f"Unknown document kind: {document_kind}")

    prefix = DOCUMENT_KINDS[document_kind][0]
    day = _sequence_day(as_of_date)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_kind,
            DocumentSequence.sequence_date == day,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _bumped_number() -> int:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_kind, sequence_date=day)
            .scalar()
        )
        return current - 1

    result = db.session.execute(stmt)
    if result.rowcount:
        return format_document_number(prefix, day, _bumped_number())

    # First document of this kind today: seed the counter past anything
    # already issued so imported or legacy numbers are never reused.
    number = _highest_existing_number(document_kind, day) + 1
    try:
        with db.session.begin_nested():
            db.session.add(
                DocumentSequence(document_type=document_kind, sequence_date=day, next_number=number + 1)
            )
    except IntegrityError:
        # Someone else seeded the row first; use it.
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise SequenceCollisionError(f"Could not allocate a {document_kind} number")
        number = _bumped_number()

    return format_document_number(prefix, day, number)


# =============================================================================
# Generic document builder
# =============================================================================

def compute_totals(subtotals: list[int], discount_cents: int = 0, tax_cents: int = 0) -> dict:
    """total = sum(subtotals); net = total - discount + tax."""
    discount_cents = discount_cents or 0
    tax_cents = tax_cents or 0
    if discount_cents < 0:
        raise ValidationError("discount_cents must be >= 0")
    if tax_cents < 0:
        raise ValidationError("tax_cents must be >= 0")
    total = sum(subtotals)
    return {
        "total_cents": total,
        "discount_cents": discount_cents,
        "tax_cents": tax_cents,
        "net_amount_cents": total - discount_cents + tax_cents,
    }


def is_number_collision(exc: IntegrityError, table: str, column: str) -> bool:
    """
    True when an IntegrityError comes from the unique document-number
    constraint. SQLite names the column ("UNIQUE constraint failed:
    sales.sale_number"); PostgreSQL names the constraint (uq_sales_sale_number).
    """
    message = str(exc.orig)
    return f"{table}.{column}" in message or f"uq_{table}_{column}" in message


def _resolve_line(line: dict, *, quantity_key: str, price_source: str | None) -> dict:
    """Validate one input line and fill product_name / unit price from the catalog."""
    quantity = enforce_positive_quantity(line.get(quantity_key), quantity_key)

    product = None
    product_id = line.get("product_id")
    if product_id is not None:
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

    product_name = line.get("product_name") or (product.name if product else None)
    if not product_name:
        raise ValidationError("product_name is required for lines without a product")

    unit_price = line.get("unit_price_cents")
    if unit_price is None and product is not None and price_source:
        unit_price = getattr(product, price_source)
    if unit_price is None:
        raise ValidationError("unit_price_cents is required")
    if isinstance(unit_price, bool) or not isinstance(unit_price, int):
        raise ValidationError("unit_price_cents must be an integer")
    enforce_price(unit_price, "unit_price_cents")

    resolved = dict(line)
    resolved.update(
        product_id=product_id,
        product_name=product_name,
        unit_price_cents=unit_price,
        subtotal_cents=quantity * unit_price,
    )
    resolved[quantity_key] = quantity
    return resolved


def _item_columns(line: dict, quantity_key: str, item_fields: tuple[str, ...]) -> dict:
    fields = {
        "product_id": line["product_id"],
        "product_name": line["product_name"],
        quantity_key: line[quantity_key],
        "unit_price_cents": line["unit_price_cents"],
        "subtotal_cents": line["subtotal_cents"],
    }
    for name in item_fields:
        if name in line:
            fields[name] = line[name]
    return fields


def build_document(
    document_kind: str,
    item_model,
    *,
    header: dict,
    items: list[dict],
    as_of=None,
    quantity_key: str = "quantity",
    price_source: str | None = "selling_price_cents",
    item_fields: tuple[str, ...] = (),
    discount_cents: int = 0,
    tax_cents: int = 0,
    line_effect: Callable | None = None,
):
    """
    Insert a numbered document with its items and apply its stock effects.

    - header: column values for the header model (number/date/totals are filled here)
    - items: raw line dicts (product_id?, product_name?, quantity, unit_price_cents?)
    - item_fields: extra per-line columns copied from the line dicts
    - line_effect(document, item): called once per persisted line, in order;
      typically a call into the stock ledger

    Raises before anything is inserted on invalid input; any later failure
    (insufficient stock, number collision) propagates so the caller's unit of
    work is rolled back as a whole.
    """
    if not items:
        raise ValidationError("At least one item is required")

    _, model, number_column = DOCUMENT_KINDS[document_kind]
    lines = [_resolve_line(line, quantity_key=quantity_key, price_source=price_source) for line in items]

    document_date = normalize_datetime(as_of) or utcnow()
    number = next_document_number(document_kind, document_date)

    totals = compute_totals([line["subtotal_cents"] for line in lines], discount_cents, tax_cents)
    if not hasattr(model, "net_amount_cents"):
        totals = {"total_cents": totals["total_cents"]}

    date_column = {
        "sale": "sale_date",
        "return": "return_date",
        "purchase_order": "po_date",
        "quotation": "quotation_date",
    }[document_kind]

    document = model(**header, **totals)
    setattr(document, number_column, number)
    setattr(document, date_column, document_date)
    for line in lines:
        document.items.append(item_model(**_item_columns(line, quantity_key, item_fields)))

    db.session.add(document)
    try:
        db.session.flush()
    except IntegrityError as exc:
        if not is_number_collision(exc, model.__tablename__, number_column):
            raise
        raise SequenceCollisionError(
            f"Document number {number} already exists",
            details={"number": number},
        ) from exc

    if line_effect is not None:
        for item in document.items:
            line_effect(document, item)

    return document


def replace_document_items(
    document,
    item_model,
    items: list[dict] | None,
    *,
    quantity_key: str = "quantity",
    price_source: str | None = "selling_price_cents",
    item_fields: tuple[str, ...] = (),
    discount_cents: int | None = None,
    tax_cents: int | None = None,
) -> None:
    """
    Rewrite the lines of a draft document and recompute its totals.

    items=None keeps the current lines; totals are still recomputed so a new
    discount or tax is reflected. No stock effect, no new number.
    """
    if items is not None:
        if not items:
            raise ValidationError("At least one item is required")
        lines = [_resolve_line(line, quantity_key=quantity_key, price_source=price_source) for line in items]
        document.items.clear()
        for line in lines:
            document.items.append(item_model(**_item_columns(line, quantity_key, item_fields)))

    totals = compute_totals(
        [item.subtotal_cents for item in document.items],
        document.discount_cents if discount_cents is None else discount_cents,
        document.tax_cents if tax_cents is None else tax_cents,
    )
    for name, value in totals.items():
        setattr(document, name, value)
