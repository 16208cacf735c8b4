import hashlib
import json
from datetime import datetime
from typing import Iterable, Mapping


def hash_document(content: str) -> str:
    """SHA-256 of the document text as it stands now."""
    return hashlib.sha256((content or "").encode("utf-8")).hexdigest()


def _canonical(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {k: _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def canonical_json(value) -> str:
    return json.dumps(_canonical(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_integrity_digest(request_id: int, document_id: int,
                             entries: Iterable[Mapping], completed_at: datetime) -> str:
    """
    Digest over one completed signing episode.

    ``entries`` must already be in chronological order. The result depends
    only on its arguments, so anyone holding the recorded signatures can
    recompute it.
    """
    material = {
        "request_id": request_id,
        "document_id": document_id,
        "signatures": list(entries),
        "completed_at": completed_at,
    }
    return hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()
