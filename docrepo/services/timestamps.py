"""
Timestamp normalization for documents read from the store.

Store-native timestamps are replaced with timezone-aware ``datetime`` values.
Nested mappings are always walked. Sequences are passed through untouched
unless ``convert_sequences`` is set: timestamps inside list fields stay in
their store-native form by default.
"""

from typing import Any, Dict, Mapping

from ..constants import ID_FIELD
from ..infrastructure.store.exceptions import StoreOperationException
from ..infrastructure.store.interfaces import StoreDocument, StoreTimestamp


def _convert(value: Any, convert_sequences: bool) -> Any:
    if isinstance(value, StoreTimestamp):
        return value.to_datetime()
    if isinstance(value, Mapping):
        return normalize_timestamps(value, convert_sequences=convert_sequences)
    if convert_sequences and isinstance(value, (list, tuple)):
        return type(value)(_convert(item, convert_sequences) for item in value)
    return value


def normalize_timestamps(
    payload: Mapping[str, Any], *, convert_sequences: bool = False
) -> Dict[str, Any]:
    """
    Return a copy of ``payload`` with store timestamps converted to datetimes.

    Args:
        payload: Document field mapping as returned by the store
        convert_sequences: Also walk list and tuple values

    Returns:
        New mapping; the input is not modified
    """
    return {key: _convert(value, convert_sequences) for key, value in payload.items()}


def process_document(
    document: StoreDocument, *, convert_sequences: bool = False
) -> Dict[str, Any]:
    """Flatten a snapshot into ``{"id": ..., **fields}`` with normalized timestamps."""
    if document.data is None:
        raise StoreOperationException(
            f"Document {document.id} has no data",
            code="data-loss",
            document_id=document.id,
        )
    return {
        ID_FIELD: document.id,
        **normalize_timestamps(document.data, convert_sequences=convert_sequences),
    }
