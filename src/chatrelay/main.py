# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the main unit so this responsibility stays isolated, testable, and easy to evolve.

Main application entry point for the chatrelay API server.
Includes global configuration setup, error handling, and router registration.
"""

from __future__ import annotations

import argparse
import os
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatrelay.api.v1.chat import router as chat_router
from chatrelay.api.v1.debug import router as debug_router
from chatrelay.api.v1.feedback import router as feedback_router
from chatrelay.api.v1.http_responses import error_json
from chatrelay.core.config import load_machine_config
from chatrelay.services.exceptions import ServiceError
from chatrelay.services.feedback.store import RecordStore, create_record_store


def create_app(
    feedback_store: Optional[RecordStore] = None,
    rating_store: Optional[RecordStore] = None,
) -> FastAPI:
    """Create the FastAPI app.

    Uvicorn's reload mode requires an import string; using an app factory keeps
    route registration consistent across reload subprocesses. Stores default to
    the backend configured under ``storage`` in machine.json.
    """

    app = FastAPI(title="chatrelay")

    machine = load_machine_config()
    app.state.feedback_store = feedback_store or create_record_store(
        "feedback", machine
    )
    app.state.rating_store = rating_store or create_record_store("ratings", machine)

    # Browser UIs are served from a separate dev server during development
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(chat_router)
    api_v1_router.include_router(feedback_router)
    api_v1_router.include_router(debug_router)
    api_v1_router.add_api_route(
        "/health", endpoint=lambda: {"status": "ok"}, methods=["GET"]
    )
    app.include_router(api_v1_router)

    # --------------- global exception handler ---------------
    @app.exception_handler(ServiceError)
    async def _service_error_handler(
        _request: Request, exc: ServiceError
    ) -> JSONResponse:
        return error_json(exc.detail, status_code=exc.status_code)

    return app


def build_arg_parser() -> argparse.ArgumentParser:
    """Build Arg Parser."""
    parser = argparse.ArgumentParser(
        prog="chatrelay",
        description="Run the chatrelay FastAPI server",
    )
    parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port", type=int, default=8000, help="Port to bind (default: 8000)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload (development only)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker processes (overrides reload)",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug", "trace"],
        help="Log level for the server (default: info)",
    )
    parser.add_argument(
        "--llm-dump",
        action="store_true",
        help="Dump raw upstream request/response data to a file",
    )
    parser.add_argument(
        "--llm-dump-path",
        default=None,
        help="Path for raw upstream dump file (overrides default)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entrypoint to run the server via a normal Python invocation.

    Examples:
      python -m chatrelay.main --help
      python -m chatrelay.main --host 0.0.0.0 --port 8000 --reload
    """
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if args.llm_dump:
        os.environ["CHATRELAY_LLM_DUMP"] = "1"
    if args.llm_dump_path:
        os.environ["CHATRELAY_LLM_DUMP_PATH"] = args.llm_dump_path

    # Import uvicorn lazily so that importing this module doesn't require it for tests/tools
    import uvicorn  # type: ignore

    # Reload and multi-worker modes need an import string; otherwise build in-process.
    use_import_string = bool(args.reload) or (
        isinstance(args.workers, int) and args.workers > 1
    )
    app_target = "chatrelay.main:create_app" if use_import_string else create_app()

    uvicorn.run(
        app_target,
        host=args.host,
        port=args.port,
        reload=bool(args.reload) if args.workers in (None, 0) else False,
        workers=args.workers,
        log_level=args.log_level,
        factory=use_import_string,
    )


if __name__ == "__main__":
    main()
