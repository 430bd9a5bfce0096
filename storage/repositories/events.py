"""
Events Repository.

Responsibilities:
- Store already-normalized event records as one upload batch.
- List the events of a set of uploads in occurrence order.

Non-Responsibilities:
- No CSV parsing, column mapping or field cleaning.

Invariant:
Stored events are never modified afterwards.
"""

from typing import Any, Dict, Iterable, List, Tuple

from leadstitch.database import NormalizedEvent, Upload
from leadstitch.normalize import parse_timestamp
from leadstitch.schema import EVENT_STR_FIELDS, validate_event_record


def store_upload(
    session,
    account_id: int,
    filename: str,
    records: Iterable[Dict[str, Any]],
    source_type: str | None = None,
) -> Tuple[Upload, List[str]]:
    """
    Persist records as a normalized upload.

    Records failing the shape check are skipped and reported.

    Returns:
        (upload, errors) where errors are "record N: message" strings
    """
    upload = Upload(account_id=account_id, filename=filename, source_type=source_type, status="normalized")
    session.add(upload)
    session.flush()

    errors: List[str] = []
    for index, record in enumerate(records):
        if source_type and "source_type" not in record:
            record = {**record, "source_type": source_type}
        problems = validate_event_record(record)
        if problems:
            errors.extend(f"record {index}: {p}" for p in problems)
            continue

        fields = {f: record.get(f) for f in EVENT_STR_FIELDS}
        session.add(
            NormalizedEvent(
                account_id=account_id,
                upload_id=upload.id,
                source_type=record["source_type"],
                occurred_at=parse_timestamp(record["occurred_at"]),
                duration_sec=record.get("duration_sec"),
                amount=record.get("amount"),
                original=record.get("original", record),
                **fields,
            )
        )
    session.flush()
    return upload, errors


def ordered_event_ids(session, account_id: int, upload_ids: List[int]) -> List[int]:
    """Event ids across uploads, merged by occurred_at (id breaks ties)."""
    return [
        event_id
        for (event_id,) in session.query(NormalizedEvent.id)
        .filter(
            NormalizedEvent.account_id == account_id,
            NormalizedEvent.upload_id.in_(upload_ids),
        )
        .order_by(NormalizedEvent.occurred_at, NormalizedEvent.id)
        .all()
    ]


def set_upload_status(session, account_id: int, upload_ids: List[int], status: str) -> int:
    return (
        session.query(Upload)
        .filter(Upload.account_id == account_id, Upload.id.in_(upload_ids))
        .update({Upload.status: status}, synchronize_session=False)
    )
