# Overview: Flask API routes for balance reconciliation and operator corrections.

from flask import Blueprint, request, jsonify

from ..decorators import json_errors, mutation
from ..services import reconciliation_service
from ..validation import get_json_body, parse_int, parse_quantity


reconciliation_bp = Blueprint("reconciliation", __name__, url_prefix="/api/reconciliation")


def _drifted_only() -> bool:
    return request.args.get("drifted_only", "false").lower() == "true"


@reconciliation_bp.get("/<int:variation_id>/<int:location_id>")
@json_errors
def reconcile_key_route(variation_id: int, location_id: int):
    result = reconciliation_service.reconcile(variation_id, location_id)
    return jsonify(result.to_dict()), 200


@reconciliation_bp.get("/locations/<int:location_id>")
@json_errors
def reconcile_location_route(location_id: int):
    report = reconciliation_service.reconcile_location(location_id)
    return jsonify(report.to_dict(drifted_only=_drifted_only())), 200


@reconciliation_bp.get("/businesses/<int:business_id>")
@json_errors
def reconcile_business_route(business_id: int):
    report = reconciliation_service.reconcile_business(business_id)
    return jsonify(report.to_dict(drifted_only=_drifted_only())), 200


@reconciliation_bp.post("/<int:variation_id>/<int:location_id>/correct")
@mutation("reconciliation.correct", status=201)
def correct_route(variation_id: int, location_id: int):
    """
    Request body:
    {
        "reason": str,
        "target_quantity": "12" (optional; defaults to the ledger-derived balance),
        "user_id": int (optional)
    }
    """
    data = get_json_body()
    correction = reconciliation_service.correct_drift(
        variation_id,
        location_id,
        user_id=parse_int(data.get("user_id"), "user_id", required=False),
        reason=data.get("reason"),
        target_quantity=parse_quantity(data.get("target_quantity"), "target_quantity", required=False),
    )
    after = reconciliation_service.reconcile(variation_id, location_id)
    return {"correction": correction.to_dict(), "reconciliation": after.to_dict()}
