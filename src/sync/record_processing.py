"""
Per-table record processing applied before data reaches the cache.

Order for each table: transformer, record filter, then sanitizer.
Sanitization always runs; sensitive fields never reach storage.
"""
from typing import Any, Callable, Dict, FrozenSet, List

Record = Dict[str, Any]
Transformer = Callable[[List[Record]], List[Record]]

ATTENDEE_CONFIDENTIAL_FIELDS: FrozenSet[str] = frozenset({
    # Contact
    'business_phone', 'mobile_phone', 'email',
    # Travel
    'check_in_date', 'check_out_date', 'hotel_selection', 'custom_hotel', 'room_type',
    # Personal
    'has_spouse', 'dietary_requirements', 'is_spouse', 'spouse_details',
    # Address
    'address1', 'address2', 'postal_code', 'city', 'state', 'country', 'country_code',
    # Assistant and system
    'assistant_name', 'assistant_email', 'idloom_id',
    # Credentials
    'access_code',
})

COMPANY_INTERNAL_FIELDS: FrozenSet[str] = frozenset({
    'seating_notes', 'priority_companies', 'priority_networking_attendees',
})

SENSITIVE_FIELDS: Dict[str, FrozenSet[str]] = {
    'attendees': ATTENDEE_CONFIDENTIAL_FIELDS,
    'attendee_profile': ATTENDEE_CONFIDENTIAL_FIELDS,
    'standardized_companies': COMPANY_INTERNAL_FIELDS,
}


def strip_fields(records: List[Record], fields: FrozenSet[str]) -> List[Record]:
    return [{k: v for k, v in record.items() if k not in fields} for record in records]


def sanitize(resource: str, records: List[Record]) -> List[Record]:
    """Remove the resource's sensitive fields from every record."""
    fields = SENSITIVE_FIELDS.get(resource)
    if not fields:
        return records
    return strip_fields(records, fields)


def is_active(record: Record) -> bool:
    # Missing flag means active
    return record.get('is_active') is not False


def is_confirmed_and_active(record: Record) -> bool:
    return is_active(record) and record.get('registration_status') == 'confirmed'


def _sort_key_schedule(record: Record):
    return (str(record.get('date') or ''), str(record.get('start_time') or ''))


def _sort_key_display_order(record: Record):
    order = record.get('display_order')
    return (order is None, order if order is not None else 0)


def transform_schedule(records: List[Record]) -> List[Record]:
    """Active items ordered by date, then start time."""
    return sorted((r for r in records if is_active(r)), key=_sort_key_schedule)


def transform_display_ordered(records: List[Record]) -> List[Record]:
    """Active items ordered by display order; unordered items last."""
    return sorted((r for r in records if is_active(r)), key=_sort_key_display_order)


TRANSFORMERS: Dict[str, Transformer] = {
    'agenda_items': transform_schedule,
    'sponsors': transform_display_ordered,
    'hotels': transform_display_ordered,
}

RECORD_FILTERS: Dict[str, Callable[[Record], bool]] = {
    'attendees': is_confirmed_and_active,
}


def process_records(resource: str, records: List[Record]) -> List[Record]:
    """Transform, filter and sanitize a table's records."""
    transformer = TRANSFORMERS.get(resource)
    if transformer is not None:
        records = transformer(records)

    record_filter = RECORD_FILTERS.get(resource)
    if record_filter is not None:
        records = [r for r in records if record_filter(r)]

    return sanitize(resource, records)
