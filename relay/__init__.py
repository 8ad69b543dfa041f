"""Attendance relay between a front-end and Salesforce.

To use the Flask app:
    from relay.flask_app import create_app

To use the CRM client and attendance operations without Flask:
    from relay.core.crm import CrmClient
    from relay.core.attendance_service import resolve_meeting_attendance
"""
