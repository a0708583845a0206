# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the feedback unit so this responsibility stays isolated, testable, and easy to evolve.

Thumbs-up/down ratings keyed by message index and free-text feedback keyed by
message content.
"""

from fastapi import APIRouter, Request

from chatrelay.api.v1.http_responses import read_json_body
from chatrelay.services.feedback.feedback_ops import record_feedback, record_rating

router = APIRouter(tags=["Feedback"])


@router.post("/rate")
async def api_rate(request: Request):
    payload = await read_json_body(request)
    rating = record_rating(payload, request.headers, request.app.state.rating_store)
    return {"message": "Rating received successfully", "rating": rating}


@router.get("/rate")
async def api_list_ratings(request: Request):
    ratings = request.app.state.rating_store.list_all()
    return {"ratings": ratings, "total": len(ratings)}


@router.post("/feedback")
async def api_feedback(request: Request):
    payload = await read_json_body(request)
    feedback = record_feedback(
        payload, request.headers, request.app.state.feedback_store
    )
    return {"message": "Feedback received successfully", "feedback": feedback}


@router.get("/feedback")
async def api_list_feedback(request: Request):
    feedbacks = request.app.state.feedback_store.list_all()
    return {"feedbacks": feedbacks, "total": len(feedbacks)}
