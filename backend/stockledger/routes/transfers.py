# backend/stockledger/routes/transfers.py
"""
Inter-location transfer API routes.

Every mutating route accepts an optional Idempotency-Key header and an
optional "user_id" in the body for attribution.
"""
from flask import Blueprint, request, jsonify

from ..decorators import json_errors, mutation
from ..services import transfer_service
from ..validation import get_json_body, parse_int, parse_quantity, parse_serials


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _user_id(data: dict):
    return parse_int(data.get("user_id"), "user_id", required=False)


@transfers_bp.route("", methods=["POST"])
@mutation("transfers.create", status=201)
def create_transfer():
    """
    Create a draft transfer.

    Request body:
    {
        "business_id": int,
        "from_location_id": int,
        "to_location_id": int,
        "notes": str (optional),
        "items": [{"product_variation_id": int, "quantity": "5", "serial_numbers": [...]}] (optional)
    }

    Returns:
        201: Transfer created
        400: Invalid request
        404: Unknown location or variation
    """
    data = get_json_body()
    items = [
        {
            "product_variation_id": parse_int(raw.get("product_variation_id"), "product_variation_id"),
            "quantity": parse_quantity(raw.get("quantity"), "quantity"),
            "serial_numbers": parse_serials(raw.get("serial_numbers"), "serial_numbers"),
        }
        for raw in data.get("items") or []
    ]
    transfer = transfer_service.create_transfer(
        parse_int(data.get("business_id"), "business_id"),
        parse_int(data.get("from_location_id"), "from_location_id"),
        parse_int(data.get("to_location_id"), "to_location_id"),
        user_id=_user_id(data),
        notes=data.get("notes"),
        items=items,
    )
    return {"transfer": transfer.to_dict(include_items=True)}


@transfers_bp.route("", methods=["GET"])
@json_errors
def list_transfers():
    rows = transfer_service.list_transfers(
        business_id=parse_int(request.args.get("business_id"), "business_id", required=False),
        status=request.args.get("status") or None,
        from_location_id=parse_int(request.args.get("from_location_id"), "from_location_id", required=False),
        to_location_id=parse_int(request.args.get("to_location_id"), "to_location_id", required=False),
        location_id=parse_int(request.args.get("location_id"), "location_id", required=False),
        limit=parse_int(request.args.get("limit"), "limit", required=False, minimum=1) or 100,
        offset=parse_int(request.args.get("offset"), "offset", required=False, minimum=0) or 0,
    )
    return jsonify({"items": [t.to_dict() for t in rows]}), 200


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@json_errors
def get_transfer(transfer_id: int):
    return jsonify(transfer_service.get_transfer_summary(transfer_id)), 200


@transfers_bp.route("/<int:transfer_id>/items", methods=["POST"])
@mutation("transfers.add_item", status=201)
def add_transfer_item(transfer_id: int):
    """
    Request body:
    {
        "product_variation_id": int,
        "quantity": "5",
        "serial_numbers": [str] (serialized products only)
    }
    """
    data = get_json_body()
    item = transfer_service.add_transfer_item(
        transfer_id,
        parse_int(data.get("product_variation_id"), "product_variation_id"),
        parse_quantity(data.get("quantity"), "quantity"),
        serial_numbers=parse_serials(data.get("serial_numbers"), "serial_numbers"),
    )
    return {"item": item.to_dict()}


@transfers_bp.route("/<int:transfer_id>/items/<int:item_id>", methods=["DELETE"])
@mutation("transfers.remove_item")
def remove_transfer_item(transfer_id: int, item_id: int):
    transfer_service.remove_transfer_item(transfer_id, item_id)
    return {"removed_item_id": item_id}


@transfers_bp.route("/<int:transfer_id>/items/<int:item_id>/verify", methods=["POST"])
@mutation("transfers.verify_item")
def verify_transfer_item(transfer_id: int, item_id: int):
    """
    Request body:
    {
        "received_quantity": "4",
        "received_serial_numbers": [str] (serialized products only)
    }
    """
    data = get_json_body()
    item = transfer_service.verify_item(
        transfer_id,
        item_id,
        parse_quantity(data.get("received_quantity"), "received_quantity"),
        parse_serials(data.get("received_serial_numbers"), "received_serial_numbers"),
        user_id=_user_id(data),
    )
    return {"item": item.to_dict()}


@transfers_bp.route("/<int:transfer_id>/send", methods=["POST"])
@mutation("transfers.send")
def send_transfer(transfer_id: int):
    """
    Send a transfer: debits the source location for every item.

    Returns:
        200: Transfer sent
        409: Insufficient stock (all short items listed) or invalid state
    """
    data = get_json_body()
    transfer = transfer_service.send_transfer(transfer_id, user_id=_user_id(data))
    return {"transfer": transfer.to_dict(include_items=True)}


@transfers_bp.route("/<int:transfer_id>/dispatch", methods=["POST"])
@mutation("transfers.dispatch")
def dispatch_transfer(transfer_id: int):
    data = get_json_body()
    transfer = transfer_service.dispatch_transfer(transfer_id, user_id=_user_id(data))
    return {"transfer": transfer.to_dict()}


@transfers_bp.route("/<int:transfer_id>/arrive", methods=["POST"])
@mutation("transfers.arrive")
def arrive_transfer(transfer_id: int):
    data = get_json_body()
    transfer = transfer_service.mark_arrived(transfer_id, user_id=_user_id(data))
    return {"transfer": transfer.to_dict()}


@transfers_bp.route("/<int:transfer_id>/verify", methods=["POST"])
@mutation("transfers.verify")
def verify_transfer(transfer_id: int):
    """
    Verify a transfer: credits the destination with received quantities.

    Returns:
        200: Transfer verified
        409: Items not yet verified, or invalid state
    """
    data = get_json_body()
    transfer = transfer_service.verify_transfer(transfer_id, user_id=_user_id(data))
    return {"transfer": transfer.to_dict(include_items=True)}


@transfers_bp.route("/<int:transfer_id>/complete", methods=["POST"])
@mutation("transfers.complete")
def complete_transfer(transfer_id: int):
    data = get_json_body()
    transfer = transfer_service.complete_transfer(transfer_id, user_id=_user_id(data))
    return {"transfer": transfer.to_dict()}


@transfers_bp.route("/<int:transfer_id>/cancel", methods=["POST"])
@mutation("transfers.cancel")
def cancel_transfer(transfer_id: int):
    """
    Request body:
    {
        "reason": str (optional)
    }
    """
    data = get_json_body()
    transfer = transfer_service.cancel_transfer(
        transfer_id,
        user_id=_user_id(data),
        reason=data.get("reason"),
    )
    return {"transfer": transfer.to_dict(include_items=True)}
