"""Salesforce-backed API routes.

All routes sit behind the bearer-token gate and bind a CrmClient through
@require_crm_client (except the email route, which never talks to Salesforce).
"""
from flask import Blueprint, current_app, jsonify, request

from relay.api.decorators import get_crm_client, require_crm_client
from relay.core import attendance_service
from relay.core.errors import ValidationError
from relay.core.mailer import send_class_email
from relay.core.validators import clean_text

bp = Blueprint("crm", __name__)


def _schema_cache():
    return current_app.config.get("SCHEMA_CACHE")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


@bp.route("/sfdc/whoami")
@require_crm_client
def whoami():
    """Identity of the connected Salesforce user."""
    return jsonify(get_crm_client().identity())


@bp.route("/sfdc/query")
@require_crm_client
def query():
    """Raw SOQL passthrough."""
    soql = clean_text(request.args.get("soql"))
    if not soql:
        raise ValidationError("Missing soql")
    return jsonify(get_crm_client().query(soql))


@bp.route("/sfdc/teachers/by-year")
@require_crm_client
def teachers_by_year():
    """Classes within a date range grouped by teacher."""
    result = attendance_service.teachers_by_period(
        get_crm_client(),
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return jsonify(result)


@bp.route("/sfdc/attendance/by-meeting")
@require_crm_client
def attendance_by_meeting():
    """Attendance and supervision records for one class meeting."""
    cfg = current_app.config["APP_CONFIG"]
    result = attendance_service.resolve_meeting_attendance(
        get_crm_client(),
        meeting_id=request.args.get("meetingId"),
        class_id=request.args.get("classId"),
        start=request.args.get("start"),
        class_field=request.args.get("classField"),
        date_field=request.args.get("dateField"),
        cache=_schema_cache(),
        chunk_size=cfg.resolver_chunk_size,
    )
    return jsonify(result)


@bp.route("/sfdc/attendance/updates", methods=["POST"])
@require_crm_client
def attendance_updates():
    """Apply attendance and supervision updates for one meeting."""
    payload = _json_body()
    result = attendance_service.apply_meeting_updates(
        get_crm_client(),
        meeting_id=payload.get("meetingId"),
        attendance_items=payload.get("attendance"),
        supervision_items=payload.get("supervision"),
        cache=_schema_cache(),
    )
    current_app.logger.info(
        f"[Updates] meeting={result['meetingId']} "
        f"attendance={result['attendance']['updated']}/{result['attendance']['failed']} "
        f"supervision={result['supervision']['updated']}/{result['supervision']['failed']}"
    )
    return jsonify(result)


@bp.route("/email/class-add-request", methods=["POST"])
def class_add_request():
    """Email a request to add a student to a class."""
    cfg = current_app.config["APP_CONFIG"]
    payload = _json_body()
    result = send_class_email(
        cfg,
        to=payload.get("to"),
        class_name=payload.get("className"),
        teacher_name=payload.get("teacherName"),
        student_name=payload.get("studentName"),
    )
    return jsonify({"ok": True, "id": result.get("id"), "message": result.get("message")})
