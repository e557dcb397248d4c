# Overview: Flask API routes for balances and ledger history; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..decorators import json_errors, mutation
from ..quantities import quantity_to_str
from ..services import balance_service, ledger_service
from ..validation import get_json_body, parse_datetime_field, parse_int, parse_quantity

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- as_of filtering is inclusive: occurred_at <= as_of.
"""

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/balances/<int:variation_id>/<int:location_id>")
@json_errors
def get_balance_route(variation_id: int, location_id: int):
    """
    Cached balance, or the ledger-derived balance as of a point in time.

    Query: as_of (optional ISO-8601)
    """
    as_of = parse_datetime_field(request.args.get("as_of"), "as_of")
    body = {
        "product_variation_id": variation_id,
        "location_id": location_id,
    }
    if as_of is None:
        body["qty_available"] = quantity_to_str(balance_service.get_balance(variation_id, location_id))
        body["source"] = "cache"
    else:
        body["qty_available"] = quantity_to_str(
            balance_service.reconstruct_balance(variation_id, location_id, as_of)
        )
        body["source"] = "ledger"
        body["as_of"] = request.args.get("as_of")
    return jsonify(body), 200


@stock_bp.get("/locations/<int:location_id>/balances")
@json_errors
def location_balances_route(location_id: int):
    include_zero = request.args.get("include_zero", "true").lower() != "false"
    rows = balance_service.get_location_balances(location_id, include_zero=include_zero)
    return jsonify({"items": [r.to_dict() for r in rows]}), 200


@stock_bp.get("/ledger")
@json_errors
def list_ledger_route():
    rows, next_cursor = ledger_service.list_entries(
        business_id=parse_int(request.args.get("business_id"), "business_id", required=False),
        variation_id=parse_int(request.args.get("variation_id"), "variation_id", required=False),
        location_id=parse_int(request.args.get("location_id"), "location_id", required=False),
        transaction_type=request.args.get("transaction_type") or None,
        start=parse_datetime_field(request.args.get("start_date"), "start_date"),
        end=parse_datetime_field(request.args.get("end_date"), "end_date"),
        cursor=request.args.get("cursor") or None,
        limit=parse_int(request.args.get("limit"), "limit", required=False, minimum=1) or 100,
    )
    return jsonify({"items": [r.to_dict() for r in rows], "next_cursor": next_cursor}), 200


@stock_bp.get("/history/<int:variation_id>/<int:location_id>")
@json_errors
def balance_history_route(variation_id: int, location_id: int):
    points = balance_service.balance_history(
        variation_id,
        location_id,
        start=parse_datetime_field(request.args.get("start_date"), "start_date"),
        end=parse_datetime_field(request.args.get("end_date"), "end_date"),
    )
    return jsonify({"items": points}), 200


@stock_bp.get("/low-stock")
@json_errors
def low_stock_route():
    business_id = parse_int(request.args.get("business_id"), "business_id")
    location_id = parse_int(request.args.get("location_id"), "location_id", required=False)
    threshold = parse_quantity(request.args.get("threshold"), "threshold", required=False)
    rows = balance_service.list_low_stock(business_id, threshold, location_id)
    return jsonify({"items": [r.to_dict() for r in rows]}), 200


@stock_bp.post("/availability")
@json_errors
def availability_route():
    """
    Request body:
    {
        "location_id": int,
        "items": [{"product_variation_id": int, "quantity": "2.5"}]
    }
    """
    data = get_json_body()
    location_id = parse_int(data.get("location_id"), "location_id")
    items = [
        (
            parse_int(raw.get("product_variation_id"), "product_variation_id"),
            parse_quantity(raw.get("quantity"), "quantity"),
        )
        for raw in data.get("items") or []
    ]
    results = balance_service.check_availability(items, location_id)
    return jsonify({
        "all_available": all(r.available for r in results),
        "items": [r.to_dict() for r in results],
    }), 200


@stock_bp.post("/opening")
@mutation("stock.opening", status=201)
def opening_stock_route():
    """
    Request body:
    {
        "business_id": int,
        "product_variation_id": int,
        "location_id": int,
        "quantity": "10",
        "unit_cost_cents": int (optional),
        "occurred_at": ISO-8601 (optional),
        "note": str (optional),
        "user_id": int (optional)
    }
    """
    data = get_json_body()
    entry = ledger_service.set_opening_stock(
        business_id=parse_int(data.get("business_id"), "business_id"),
        variation_id=parse_int(data.get("product_variation_id"), "product_variation_id"),
        location_id=parse_int(data.get("location_id"), "location_id"),
        quantity=parse_quantity(data.get("quantity"), "quantity"),
        unit_cost_cents=parse_int(data.get("unit_cost_cents"), "unit_cost_cents", required=False, minimum=0),
        occurred_at=parse_datetime_field(data.get("occurred_at"), "occurred_at"),
        user_id=parse_int(data.get("user_id"), "user_id", required=False),
        note=data.get("note"),
    )
    return {"entry": entry.to_dict()}
