from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from homecheff.extensions import db
from homecheff.services.errors import ServiceError
from homecheff.services.review_service import (
    get_review_by_token,
    list_product_reviews,
    submit_product_review,
    submit_review_with_token,
)
from homecheff.utils.jwt_utils import get_current_user

reviews_bp = Blueprint("reviews_bp", __name__, url_prefix="/api")

_REVIEWS_INIT_DONE = False


@reviews_bp.before_app_request
def _ensure_tables_once():
    global _REVIEWS_INIT_DONE
    if _REVIEWS_INIT_DONE:
        return
    try:
        db.create_all()
    except Exception:
        current_app.logger.exception("reviews_create_all_failed")
    _REVIEWS_INIT_DONE = True


def _error(e: ServiceError):
    body, status = e.to_response()
    return jsonify(body), status


@reviews_bp.get("/reviews/token/<token>")
def review_by_token(token: str):
    try:
        return jsonify(get_review_by_token(token)), 200
    except ServiceError as e:
        return _error(e)


@reviews_bp.post("/reviews/create")
def create_review_with_token():
    payload = request.get_json(silent=True) or {}
    try:
        review = submit_review_with_token(
            payload.get("token") or payload.get("reviewToken") or "",
            rating=payload.get("rating"),
            title=payload.get("title"),
            comment=payload.get("comment"),
            images=payload.get("images"),
        )
    except ServiceError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("review_token_submit_failed")
        return jsonify({"error": "Er is een fout opgetreden bij het plaatsen van de review"}), 500
    return jsonify({"success": True, "review": review.to_dict()}), 201


@reviews_bp.get("/products/<int:product_id>/reviews")
def product_reviews(product_id: int):
    sort_by = request.args.get("sortBy") or request.args.get("sort_by") or "newest"
    filter_by = request.args.get("filterBy") or request.args.get("filter_by") or "all"
    try:
        reviews = list_product_reviews(product_id, sort_by=sort_by, filter_by=filter_by)
    except ServiceError as e:
        return _error(e)
    return jsonify({"reviews": [r.to_dict() for r in reviews]}), 200


@reviews_bp.post("/products/<int:product_id>/reviews")
def create_product_review(product_id: int):
    u = get_current_user()
    if not u:
        return jsonify({"error": "Not authenticated"}), 401
    try:
        review = submit_product_review(u, product_id, request.get_json(silent=True) or {})
    except ServiceError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("product_review_submit_failed product_id=%s", product_id)
        return jsonify({"error": "Er is een fout opgetreden bij het plaatsen van de review"}), 500
    return jsonify({"review": review.to_dict()}), 201
