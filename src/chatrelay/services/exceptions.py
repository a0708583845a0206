# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Domain exception hierarchy for the service layer.

Purpose: Provide HTTP-agnostic domain exceptions that carry enough context for
the API layer (or the global exception handler) to translate them into JSON
error responses. Service code raises these instead of ``HTTPException`` so the
relay and feedback logic stays decoupled from the web framework.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base domain exception that carries an HTTP-equivalent status code.

    The global exception handler registered in ``main.py`` renders these as
    ``{"ok": false, "error": detail}``.
    """

    default_status_code: int = 500

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = (
            status_code if status_code is not None else self.default_status_code
        )


class BadRequestError(ServiceError):
    """Raised when the caller provides invalid or missing input (HTTP 400)."""

    default_status_code = 400


class UnauthorizedError(ServiceError):
    """Raised when an upstream rejects the configured credentials (HTTP 401)."""

    default_status_code = 401


class ConfigurationError(ServiceError):
    """Raised when required backend settings are missing (HTTP 500)."""

    default_status_code = 500


class PersistenceError(ServiceError):
    """Raised when a record store cannot be read or written (HTTP 500)."""

    default_status_code = 500


class UpstreamError(ServiceError):
    """Raised when a call to an external service / upstream API fails (HTTP 502)."""

    default_status_code = 502


class ServiceUnavailableError(ServiceError):
    """Raised when a local model server cannot be reached (HTTP 503)."""

    default_status_code = 503
