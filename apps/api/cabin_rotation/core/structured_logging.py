"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any
from uuid import UUID


def build_log_context(
    *,
    user_id: str | UUID | None = None,
    org_id: str | UUID | None = None,
    rotation_year: int | None = None,
    family_group_id: str | UUID | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (ids only, never names or emails)."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if org_id:
        context["org_id"] = str(org_id)
    if rotation_year is not None:
        context["rotation_year"] = rotation_year
    if family_group_id:
        context["family_group_id"] = str(family_group_id)
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process and the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
