"""Tests for structured logging helpers."""

import uuid

from cabin_rotation.core.structured_logging import build_log_context


def test_build_log_context_includes_only_provided_fields():
    org_id = uuid.uuid4()
    context = build_log_context(
        user_id="user-1",
        org_id=org_id,
        rotation_year=2026,
        request_id="req-1",
        route="/rotation-years/2026/claims",
        method="POST",
    )

    assert context == {
        "user_id": "user-1",
        "org_id": str(org_id),
        "rotation_year": 2026,
        "request_id": "req-1",
        "route": "/rotation-years/2026/claims",
        "method": "POST",
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(
        user_id="",
        org_id=None,
        family_group_id=None,
        request_id="req-1",
    )

    assert context == {"request_id": "req-1"}
