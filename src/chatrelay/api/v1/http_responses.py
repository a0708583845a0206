# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the http responses unit so this responsibility stays isolated, testable, and easy to evolve."""

from fastapi import Request
from fastapi.responses import JSONResponse

from chatrelay.services.exceptions import BadRequestError


def error_json(detail: str, status_code: int = 400, **extra: object) -> JSONResponse:
    # "error" is the key chat clients read the failure reason from.
    body: dict[str, object] = {"ok": False, "error": detail}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


async def read_json_body(request: Request) -> object:
    try:
        return await request.json()
    except ValueError:
        raise BadRequestError("Invalid JSON body")
