"""Calendar mapping API: the wizard's candidates, rules, ignores and sync."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required
from pydantic import ValidationError as PydanticValidationError

from homestay.core.utils.decorators import can_access_child, require_roles, visible_child_ids
from homestay.domains.calendar.errors import (
    ConflictError,
    NotFoundError,
    UpstreamImportError,
    ValidationError,
)
from homestay.domains.calendar.mappers import (
    calendar_source_to_response,
    ignore_entry_to_response,
    mapping_rule_to_response,
)
from homestay.domains.calendar.models import CalendarSource, MappingRule
from homestay.domains.calendar.schemas import (
    ConfirmStaysRequest,
    ConnectIcsSourceRequest,
    IgnoreCandidatesRequest,
    ImportResultResponse,
    MappingRuleCreate,
    MappingRuleListParams,
    ReplaceFeedUrlRequest,
    SaveGoogleSourcesRequest,
)
from homestay.domains.calendar.services import (
    confirm_proposed_stays,
    connect_ics_source,
    create_mapping_rule,
    delete_mapping_rule,
    disconnect_source,
    get_home_stay_candidates,
    ignore_candidates_by_title,
    import_calendar_source,
    list_calendar_sources,
    list_google_calendars,
    list_mapping_rules,
    replace_ics_url,
    save_google_sources,
)
from homestay.extensions import db, limiter

calendar_api_bp = Blueprint("calendar_api", __name__)


def _source_forbidden(calendar_source_id: str) -> bool:
    source = db.session.get(CalendarSource, calendar_source_id)
    return source is not None and not can_access_child(source.child_id)


def _error(exc: Exception):
    """Translate a service exception to the JSON error envelope."""
    if isinstance(exc, NotFoundError):
        return jsonify({"ok": False, "error": exc.code}), 404
    if isinstance(exc, ValidationError):
        return jsonify({"ok": False, "error": exc.code, "detail": exc.detail}), 400
    if isinstance(exc, ConflictError):
        return jsonify({"ok": False, "error": "conflict"}), 409
    if isinstance(exc, UpstreamImportError):
        return jsonify({"ok": False, "error": "upstream_error", "detail": exc.message}), 502
    raise exc


@calendar_api_bp.get("/home-stays/candidates")
@jwt_required()
@limiter.limit("240/minute")
def list_candidates():
    """
    Group unclassified events for the onboarding wizard.

    Query Parameters:
    - child_id: restrict to one child (optional)
    """
    child_id = request.args.get("child_id") or None
    if child_id is not None and not can_access_child(child_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    groups = get_home_stay_candidates(child_id=child_id, visible_child_ids=visible_child_ids())
    return jsonify({"ok": True, "groups": [group.model_dump(mode="json") for group in groups]}), 200


@calendar_api_bp.get("/mappings")
@jwt_required()
@limiter.limit("240/minute")
def list_mappings():
    try:
        params = MappingRuleListParams.model_validate(request.args.to_dict())
    except PydanticValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    if params.child_id is not None and not can_access_child(params.child_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    visible = visible_child_ids()
    rules = list_mapping_rules(child_id=params.child_id, calendar_source_id=params.calendar_source_id)
    if visible is not None:
        rules = [rule for rule in rules if rule.child_id in visible]
    return jsonify({
        "ok": True,
        "mappings": [mapping_rule_to_response(rule).model_dump(mode="json") for rule in rules],
    }), 200


@calendar_api_bp.post("/mappings")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("60/minute")
def create_mapping():
    """Turn a candidate decision into a mapping rule and relabel matching events."""
    try:
        payload = MappingRuleCreate.model_validate(request.get_json(silent=True) or {})
    except PydanticValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    if not can_access_child(payload.child_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        result = create_mapping_rule(
            child_id=payload.child_id,
            calendar_source_id=payload.calendar_source_id,
            match_type=payload.match_type,
            match_value=payload.match_value,
            home_id=payload.home_id,
            resulting_event_type=payload.resulting_event_type,
            auto_confirm=payload.auto_confirm,
        )
    except (ValidationError, ConflictError) as exc:
        return _error(exc)

    return jsonify({
        "ok": True,
        "mapping": mapping_rule_to_response(result.rule).model_dump(mode="json"),
        "events_updated": result.events_updated,
    }), 201


@calendar_api_bp.delete("/mappings/<int:rule_id>")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("60/minute")
def delete_mapping(rule_id: int):
    """Delete a mapping rule; the events it labelled are relabelled without it."""
    rule = db.session.get(MappingRule, rule_id)
    if rule is not None and not can_access_child(rule.child_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        events_updated = delete_mapping_rule(rule_id)
    except (ValidationError, ConflictError) as exc:
        return _error(exc)

    return jsonify({"ok": True, "events_updated": events_updated}), 200


@calendar_api_bp.post("/candidates/ignore")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("60/minute")
def ignore_candidates():
    try:
        payload = IgnoreCandidatesRequest.model_validate(request.get_json(silent=True) or {})
    except PydanticValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    if not can_access_child(payload.child_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        result = ignore_candidates_by_title(
            title=payload.title,
            calendar_source_id=payload.calendar_source_id,
            child_id=payload.child_id,
        )
    except (ValidationError, ConflictError) as exc:
        return _error(exc)

    return jsonify({
        "ok": True,
        "ignore": ignore_entry_to_response(result.entry).model_dump(mode="json"),
        "ignored": result.ignored,
    }), 200


@calendar_api_bp.post("/home-stays/confirm")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("60/minute")
def confirm_stays():
    try:
        payload = ConfirmStaysRequest.model_validate(request.get_json(silent=True) or {})
    except PydanticValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    if _source_forbidden(payload.calendar_source_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        confirmed = confirm_proposed_stays(payload.calendar_source_id, event_ids=payload.event_ids)
    except (ValidationError, ConflictError) as exc:
        return _error(exc)

    return jsonify({"ok": True, "confirmed": confirmed}), 200


@calendar_api_bp.post("/sources/<source_id>/sync")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("10/minute")
def sync_source(source_id: str):
    """Import one calendar source now."""
    if _source_forbidden(source_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        result = import_calendar_source(source_id)
    except (ValidationError, UpstreamImportError) as exc:
        return _error(exc)

    response = ImportResultResponse(**result.to_dict())
    return jsonify({"ok": True, "result": response.model_dump(mode="json")}), 200


# ==================== Calendar sources ====================


@calendar_api_bp.get("/sources")
@jwt_required()
@limiter.limit("240/minute")
def list_sources():
    """
    List configured calendar sources. ICS links are masked.

    Query Parameters:
    - child_id: restrict to one child (optional)
    - include_inactive: also list disconnected sources (optional)
    """
    child_id = request.args.get("child_id") or None
    if child_id is not None and not can_access_child(child_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")

    sources = list_calendar_sources(child_id=child_id, include_inactive=include_inactive)
    sources = [source for source in sources if can_access_child(source.child_id)]
    return jsonify({
        "ok": True,
        "sources": [calendar_source_to_response(source).model_dump(mode="json") for source in sources],
    }), 200


@calendar_api_bp.post("/sources/ics")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("10/minute")
def connect_ics():
    """Connect a published iCalendar link (webcal://, https:// or http://) to a child."""
    try:
        payload = ConnectIcsSourceRequest.model_validate(request.get_json(silent=True) or {})
    except PydanticValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    if not can_access_child(payload.child_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        source = connect_ics_source(payload.child_id, payload.feed_url, name=payload.name)
    except (ValidationError, ConflictError, UpstreamImportError) as exc:
        return _error(exc)

    return jsonify({"ok": True, "source": calendar_source_to_response(source).model_dump(mode="json")}), 201


@calendar_api_bp.get("/connections/<connection_id>/calendars")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("30/minute")
def list_connection_calendars(connection_id: str):
    """List the calendars a Google connection offers, for the selection screen."""
    try:
        calendars = list_google_calendars(connection_id)
    except (ValidationError, UpstreamImportError) as exc:
        return _error(exc)

    return jsonify({"ok": True, "calendars": [calendar.model_dump(mode="json") for calendar in calendars]}), 200


@calendar_api_bp.post("/sources/google")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("10/minute")
def save_google_selection():
    try:
        payload = SaveGoogleSourcesRequest.model_validate(request.get_json(silent=True) or {})
    except PydanticValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    if not can_access_child(payload.child_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        sources = save_google_sources(payload.child_id, payload.connection_id, payload.calendar_ids)
    except (ValidationError, ConflictError, UpstreamImportError) as exc:
        return _error(exc)

    return jsonify({
        "ok": True,
        "sources": [calendar_source_to_response(source).model_dump(mode="json") for source in sources],
    }), 200


@calendar_api_bp.post("/sources/<source_id>/disconnect")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("30/minute")
def disconnect(source_id: str):
    """Stop syncing a source and hide its events. Rules are kept."""
    if _source_forbidden(source_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        removed = disconnect_source(source_id)
    except (ValidationError, ConflictError) as exc:
        return _error(exc)

    return jsonify({"ok": True, "events_removed": removed}), 200


@calendar_api_bp.put("/sources/<source_id>/feed-url")
@jwt_required()
@require_roles({"calendar:write"})
@limiter.limit("10/minute")
def replace_feed_url(source_id: str):
    """Replace the link of an ICS source, for when the old one expired."""
    try:
        payload = ReplaceFeedUrlRequest.model_validate(request.get_json(silent=True) or {})
    except PydanticValidationError:
        return jsonify({"ok": False, "error": "validation_error"}), 400

    if _source_forbidden(source_id):
        return jsonify({"ok": False, "error": "forbidden"}), 403

    try:
        source = replace_ics_url(source_id, payload.feed_url)
    except (ValidationError, ConflictError) as exc:
        return _error(exc)

    return jsonify({"ok": True, "source": calendar_source_to_response(source).model_dump(mode="json")}), 200
