"""
Delimited-file ingestion formats.

Uploaded exports are split with a quote-aware scanner (commas inside double
quotes are literal, "" is an escaped quote) and mapped to canonical rows
through explicit column tables, either by position or by header name.
"""
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from storesync.exceptions import ValidationError
from storesync.services.normalizers import (
    NormalizeResult,
    normalize_batch,
    parse_iso_date,
    parse_timestamp,
    to_float,
    to_int,
    to_text,
)
from storesync.services.rows import AdPerformanceRow, DailyAnalyticsRow, OrderRow, ProductRow
from storesync.utils.helpers import round_money

SENTINELS = ("", "-", "TBC")


# ── Splitting ──────────────────────────────────────────


def split_line(line: str) -> List[str]:
    """
    Split one delimited line into fields.

    >>> split_line('a,"b,c","d""e",f')
    ['a', 'b,c', 'd"e', 'f']
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    length = len(line)
    while i < length:
        ch = line[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < length and line[i + 1] == '"':
                    current.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                current.append(ch)
        elif ch == '"':
            in_quotes = True
        elif ch == ",":
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def split_records(text: str) -> List[str]:
    """
    Split file text into record lines.

    Newlines inside a quoted field stay part of the record. Carriage returns
    and a leading byte-order mark are dropped; blank lines are skipped.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    records: List[str] = []
    current: List[str] = []
    in_quotes = False
    for ch in text:
        if ch == '"':
            in_quotes = not in_quotes
        if ch == "\r" and not in_quotes:
            continue
        if ch == "\n" and not in_quotes:
            records.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        records.append("".join(current))
    return [r for r in records if r.strip()]


@dataclass
class DelimitedFile:
    header: List[str]
    rows: List[List[str]]


def read_delimited(text: str) -> DelimitedFile:
    """Parse text into a header row and data rows; rejects files without data."""
    records = split_records(text or "")
    if len(records) < 2:
        raise ValidationError("CSV must have a header row and at least one data row")
    return DelimitedFile(
        header=[h.strip() for h in split_line(records[0])],
        rows=[split_line(r) for r in records[1:]],
    )


def _col(cols: Sequence[str], index: int) -> str:
    return cols[index].strip() if index < len(cols) else ""


# ── Sentinel-aware converters (catalog exports) ────────


def optional_text(value: str) -> Optional[str]:
    text = (value or "").strip()
    return None if text in SENTINELS else text


def optional_decimal(value: str) -> Optional[float]:
    """Strip currency symbols and thousands separators; sentinels and garbage -> None."""
    text = optional_text(value)
    if text is None:
        return None
    cleaned = text.replace("£", "").replace("$", "").replace(",", "")
    try:
        return float(cleaned)
    except ValueError:
        return None


def optional_int(value: str) -> Optional[int]:
    text = optional_text(value)
    if text is None:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def barcode_text(value: str) -> Optional[str]:
    """Spreadsheet exports turn long barcodes into 6.46681E+11; restore integer text."""
    text = optional_text(value)
    if text is None:
        return None
    if "e+" in text.lower():
        try:
            return f"{float(text):.0f}"
        except ValueError:
            return text
    return text


# ── Facebook Ads Manager export (positional) ───────────

# column index -> (field, converter)
FACEBOOK_COLUMNS: List[Tuple[int, str, Callable[[str], Any]]] = [
    (0, "campaign", lambda v: v),
    (2, "adset", lambda v: v),
    (3, "ad", lambda v: v),
    (4, "utm_campaign", to_text),
    (7, "reach", to_int),
    (8, "impressions", to_int),
    (9, "frequency", to_float),
    (12, "purchases", to_int),
    (13, "spend", to_float),
    (14, "cost_per_purchase", to_float),
    (17, "clicks", to_int),
    (18, "cpc", to_float),
    (19, "cpm", to_float),
    (20, "ctr", to_float),
    (22, "roas", to_float),
]
FACEBOOK_DATE_COLUMN = 1


def facebook_row(cols: Sequence[str]) -> Optional[AdPerformanceRow]:
    raw_date = _col(cols, FACEBOOK_DATE_COLUMN)
    if not raw_date:
        # Spacer rows in the export have every field empty
        if not any(c.strip() for c in cols):
            return None
        raise ValidationError("Missing date", field="date")
    values: Dict[str, Any] = {
        field_name: convert(_col(cols, index)) for index, field_name, convert in FACEBOOK_COLUMNS
    }
    spend = values["spend"]
    # The export carries ROAS, not conversion value
    values["purchase_value"] = round_money(values["roas"] * spend)
    return AdPerformanceRow(platform="facebook", date=parse_iso_date(raw_date), **values)


# ── PostHog daily export (header based) ────────────────

POSTHOG_FIELDS: Dict[str, Callable[[str], Any]] = {
    "unique_visitors": to_int,
    "total_sessions": to_int,
    "pageviews": to_int,
    "bounce_rate": to_float,
    "avg_session_duration": to_float,
    "mobile_sessions": to_int,
    "desktop_sessions": to_int,
    "top_country": to_text,
    "direct_sessions": to_int,
    "organic_sessions": to_int,
    "paid_sessions": to_int,
    "social_sessions": to_int,
    "product_views": to_int,
    "add_to_cart": to_int,
    "checkout_started": to_int,
    "purchases": to_int,
    "conversion_rate": to_float,
}


def header_index(header: Sequence[str], known: Sequence[str]) -> Dict[str, int]:
    """Map recognised header names to column positions; unknown headers are ignored."""
    wanted = set(known)
    positions: Dict[str, int] = {}
    for position, name in enumerate(header):
        key = name.strip().lower()
        if key in wanted and key not in positions:
            positions[key] = position
    return positions


def posthog_row_factory(header: Sequence[str]) -> Callable[[Sequence[str]], DailyAnalyticsRow]:
    positions = header_index(header, ["date", *POSTHOG_FIELDS])
    if "date" not in positions:
        raise ValidationError("CSV must have a 'date' column")

    def build(cols: Sequence[str]) -> DailyAnalyticsRow:
        values = {
            name: POSTHOG_FIELDS[name](_col(cols, position))
            for name, position in positions.items() if name != "date"
        }
        return DailyAnalyticsRow(date=parse_iso_date(_col(cols, positions["date"])), **values)

    return build


# ── Product catalog (positional, 30 columns) ───────────

PRODUCT_COLUMNS: List[Tuple[int, str, Callable[[str], Any]]] = [
    (1, "product_name", optional_text),
    (2, "brand", optional_text),
    (3, "unit_barcode", barcode_text),
    (4, "asin", optional_text),
    (5, "shippo_sku", optional_text),
    (6, "pieces_per_pack", optional_int),
    (7, "pack_weight_kg", optional_decimal),
    (8, "pack_length_cm", optional_decimal),
    (9, "pack_width_cm", optional_decimal),
    (10, "pack_height_cm", optional_decimal),
    (11, "unit_cbm", optional_decimal),
    (12, "dimensional_weight", optional_decimal),
    (13, "unit_price_usd", optional_decimal),
    (14, "unit_price_gbp", optional_decimal),
    (15, "pack_cost_gbp", optional_decimal),
    (16, "landed_cost", optional_decimal),
    (17, "unit_lcogs", optional_decimal),
    (18, "dtc_rrp", optional_decimal),
    (19, "pp_unit", optional_decimal),
    (20, "carton_barcode", barcode_text),
    (21, "units_per_master_carton", optional_int),
    (22, "pieces_per_master_carton", optional_int),
    (23, "gross_weight_kg", optional_decimal),
    (24, "carton_width_cm", optional_decimal),
    (25, "carton_length_cm", optional_decimal),
    (26, "carton_height_cm", optional_decimal),
    (27, "carton_cbm", optional_decimal),
    (29, "dtc_rrp_ex_vat", optional_decimal),
]
PRODUCT_FIELDS: Tuple[str, ...] = tuple(name for _, name, _ in PRODUCT_COLUMNS)


def product_row(cols: Sequence[str]) -> ProductRow:
    sku = _col(cols, 0)
    if not sku:
        raise ValidationError("Missing SKU", field="sku")
    values = {field_name: convert(_col(cols, index)) for index, field_name, convert in PRODUCT_COLUMNS}
    return ProductRow(sku=sku, **values)


# ── Shopify order export (header based, one row per line item) ──

SHOPIFY_ORDER_HEADERS = (
    "id", "name", "email", "billing name", "shipping name", "phone", "created at",
    "fulfillment status", "currency", "subtotal", "shipping", "taxes", "total",
    "discount code", "tags", "lineitem sku", "lineitem name", "lineitem quantity",
)


def _shopify_created_at(value: str) -> datetime:
    text = value.strip()
    # Validates the leading YYYY-MM-DD; the rest is the export's local time + offset
    parse_iso_date(text[:10], field_name="created_at")
    parsed = parse_timestamp(text)
    if parsed is None:
        raise ValidationError(f"Invalid created_at: {text}", field="created_at", value=text)
    return parsed


def normalize_shopify_order_export(data: DelimitedFile) -> NormalizeResult:
    """
    Group line-item rows by order Id and build one OrderRow per order.

    Order-level columns are read from the first row of each group; later rows
    contribute only their line item.
    """
    positions = header_index(data.header, SHOPIFY_ORDER_HEADERS)
    if "id" not in positions:
        raise ValidationError("CSV must have an 'Id' column")

    def get(cols: Sequence[str], name: str) -> str:
        position = positions.get(name)
        return _col(cols, position) if position is not None else ""

    groups: "OrderedDict[str, List[Tuple[int, Sequence[str]]]]" = OrderedDict()
    result = NormalizeResult()
    for line_number, cols in enumerate(data.rows, start=2):
        order_id = get(cols, "id")
        if not order_id:
            result.total += 1
            result.record_error(line_number, "Missing order Id")
            continue
        groups.setdefault(order_id, []).append((line_number, cols))

    def build(group: List[Tuple[int, Sequence[str]]]) -> OrderRow:
        line_number, first = group[0]
        try:
            created_at = _shopify_created_at(get(first, "created at"))
        except ValidationError as e:
            raise ValidationError(e.message, row=line_number, field="created_at")
        skus = [get(cols, "lineitem sku") or get(cols, "lineitem name") for _, cols in group]
        return OrderRow(
            shopify_id=get(first, "id"),
            order_number=to_text(get(first, "name")),
            email=(to_text(get(first, "email")) or "").lower() or None,
            customer_name=to_text(get(first, "billing name")) or to_text(get(first, "shipping name")),
            phone=to_text(get(first, "phone")),
            created_at=created_at,
            fulfillment_status=to_text(get(first, "fulfillment status")) or "unfulfilled",
            currency=to_text(get(first, "currency")),
            subtotal=round_money(to_float(get(first, "subtotal"))),
            shipping=round_money(to_float(get(first, "shipping"))),
            tax=round_money(to_float(get(first, "taxes"))),
            total=round_money(to_float(get(first, "total"))),
            discount_codes=to_text(get(first, "discount code")),
            skus=", ".join(s for s in skus if s) or None,
            quantity=sum(to_int(get(cols, "lineitem quantity")) for _, cols in group),
            tags=to_text(get(first, "tags")),
        )

    for group in groups.values():
        result.total += 1
        try:
            result.rows.append(build(group))
        except ValidationError as e:
            result.record_error(e.row or group[0][0], e.message)
    return result


# ── Format registry ────────────────────────────────────


def normalize_file(provider: str, data: DelimitedFile) -> NormalizeResult:
    """Normalize a parsed file for `provider`; data rows are numbered from line 2."""
    if provider == "facebook":
        return normalize_batch(data.rows, facebook_row, first_row=2)
    if provider == "posthog":
        return normalize_batch(data.rows, posthog_row_factory(data.header), first_row=2)
    if provider == "products":
        return normalize_batch(data.rows, product_row, first_row=2)
    if provider == "shopify_orders":
        return normalize_shopify_order_export(data)
    raise ValidationError(f"Unsupported upload format: {provider}")


UPLOAD_FORMATS = ("facebook", "posthog", "products", "shopify_orders")
