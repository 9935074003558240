"""Shared helpers for BillPy tests."""

import json
from typing import Any
from urllib.parse import parse_qs

import httpx


def decode_form(request: httpx.Request) -> dict[str, Any]:
    """Return the form fields of a request, with ``data`` JSON-decoded."""
    form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
    if "data" in form:
        form["data"] = json.loads(form["data"])
    return form


def envelope(data: Any) -> dict[str, Any]:
    """Wrap data in a Bill.com success envelope."""
    return {"response_status": 0, "response_message": "Success", "response_data": data}


def error_envelope(code: str, message: str) -> dict[str, Any]:
    """Build a Bill.com error envelope."""
    return {
        "response_status": 1,
        "response_message": "Error",
        "response_data": {"error_code": code, "error_message": message},
    }
