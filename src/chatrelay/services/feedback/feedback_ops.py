# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the feedback ops unit so this responsibility stays isolated, testable, and easy to evolve."""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Mapping

from pydantic import ValidationError

from chatrelay.models.chat import (
    FeedbackRecord,
    FeedbackRequest,
    RatingRecord,
    RatingRequest,
)
from chatrelay.services.exceptions import BadRequestError
from chatrelay.services.feedback.store import RecordStore

logger = logging.getLogger(__name__)


def client_ip(headers: Mapping[str, str]) -> str:
    """First address of X-Forwarded-For, or ``unknown``."""
    forwarded = headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    return first or "unknown"


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def record_rating(
    payload: Any, headers: Mapping[str, str], store: RecordStore
) -> Dict[str, Any]:
    try:
        req = RatingRequest.model_validate(payload)
    except ValidationError as e:
        raise BadRequestError("Invalid rating data") from e

    record = RatingRecord(
        message_index=req.message_index,
        rating=req.rating,
        provider=req.provider,
        ip_address=client_ip(headers),
        timestamp=_now(),
    ).model_dump(by_alias=True)
    store.append(record)
    logger.info("Received rating: %s", record)
    return record


def record_feedback(
    payload: Any, headers: Mapping[str, str], store: RecordStore
) -> Dict[str, Any]:
    try:
        req = FeedbackRequest.model_validate(payload)
    except ValidationError as e:
        raise BadRequestError("Invalid feedback data") from e

    record = FeedbackRecord(
        message=req.message,
        question=req.question or None,
        rating=req.rating,
        feedback_text=req.feedback_text or None,
        operating_system=req.operating_system or None,
        ip_address=client_ip(headers),
        timestamp=_now(),
    ).model_dump(by_alias=True)
    store.append(record)
    logger.info("Received feedback: %s", record)
    return record
