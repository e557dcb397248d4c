# Overview: Flask API routes for document sequence allocation and administrative resets.

from flask import Blueprint

from ..decorators import mutation
from ..services import sequence_service
from ..validation import get_json_body, parse_date_field, parse_int


sequences_bp = Blueprint("sequences", __name__, url_prefix="/api/sequences")


def _scope(data: dict) -> dict:
    return {
        "business_id": parse_int(data.get("business_id"), "business_id"),
        "location_id": parse_int(data.get("location_id"), "location_id"),
        "scope_date": parse_date_field(data.get("scope_date"), "scope_date"),
        "sequence_type": data.get("sequence_type") or sequence_service.SEQUENCE_INVOICE,
    }


@sequences_bp.post("/next")
@mutation("sequences.next")
def next_sequence_route():
    """
    Request body:
    {
        "business_id": int,
        "location_id": int,
        "scope_date": "YYYY-MM-DD" (optional, defaults to today UTC),
        "sequence_type": "invoice" | "transfer" | "receipt" | "return" (optional)
    }
    """
    scope = _scope(get_json_body())
    value = sequence_service.next_sequence(
        scope["business_id"], scope["location_id"], scope["scope_date"], scope["sequence_type"]
    )
    return {"value": value, "sequence_type": scope["sequence_type"]}


@sequences_bp.post("/reset")
@mutation("sequences.reset")
def reset_sequence_route():
    data = get_json_body()
    scope = _scope(data)
    counter = sequence_service.reset_sequence(
        scope["business_id"],
        scope["location_id"],
        scope["scope_date"],
        scope["sequence_type"],
        value=parse_int(data.get("value"), "value", required=False, minimum=0) or 0,
    )
    return {"counter": counter.to_dict()}
