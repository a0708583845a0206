# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the chat unit so this responsibility stays isolated, testable, and easy to evolve.

Pydantic models for the chat, rating and feedback API bodies.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt

RatingValue = Literal["thumbs-up", "thumbs-down"]
ProviderName = Literal["ollama", "openai"]


class ChatInitialStateResponse(BaseModel):
    """Response body for ``GET /api/v1/chat``.

    Tells a UI which providers exist and which provider, model and endpoint it
    should start with, so it needs no configuration of its own.
    """

    providers: list[str]
    current_provider: str
    current_model: str
    ask_endpoint: str


class RatingRequest(BaseModel):
    message_index: StrictInt
    rating: RatingValue
    provider: ProviderName


class RatingRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_index: int
    rating: RatingValue
    provider: ProviderName
    ip_address: str = Field(alias="ipAddress")
    timestamp: str


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    question: Optional[str] = None
    rating: RatingValue
    feedback_text: Optional[str] = Field(default=None, alias="feedbackText")
    operating_system: Optional[str] = Field(default=None, alias="operatingSystem")


class FeedbackRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    question: Optional[str] = None
    rating: RatingValue
    feedback_text: Optional[str] = Field(default=None, alias="feedbackText")
    operating_system: Optional[str] = Field(default=None, alias="operatingSystem")
    ip_address: str = Field(alias="ipAddress")
    timestamp: str
