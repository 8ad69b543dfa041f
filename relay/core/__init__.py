"""Core Business Logic Module

This module provides the schema-discovery and reconciliation logic of the
relay, independent of Flask.

Module Structure:
    - crm/                  : Salesforce REST client and session credentials
    - identity.py           : Relationship-field parsing (id / anchor / name)
    - schema_discovery.py   : Field-role and object discovery from describe metadata
    - resolver.py           : Chunked display-name resolution
    - meetings.py           : Class-meeting lookup state machine
    - reconciler.py         : Attendance / supervision update ledgers
    - attendance_service.py : Request-facing operations built on the above
    - validators.py         : Date normalization, id checks, SOQL quoting
    - mailer.py             : Class-add-request email via Mailgun
    - errors.py             : Request-terminating error types

Usage Pattern:
    Import explicitly when needed:
        from relay.core.attendance_service import resolve_meeting_attendance
        from relay.core.crm import ensure_client
"""
