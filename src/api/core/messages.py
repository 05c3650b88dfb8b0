"""Centralized message codes and default messages for API responses."""

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel


class MessageCode(str, Enum):
    """Centralized message codes for API responses."""

    # Success codes
    SUCCESS = "SUCCESS"
    CREATED = "CREATED"

    # Authentication
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Points & billing
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    PACKAGE_NOT_FOUND = "PACKAGE_NOT_FOUND"
    CHECKOUT_FAILED = "CHECKOUT_FAILED"

    # AI response errors
    AI_EMPTY_RESPONSE = "AI_EMPTY_RESPONSE"
    AI_INVALID_FORMAT = "AI_INVALID_FORMAT"
    AI_JSON_PARSE_ERROR = "AI_JSON_PARSE_ERROR"
    AI_INCOMPLETE_RESPONSE = "AI_INCOMPLETE_RESPONSE"
    AI_GENERATION_FAILED = "AI_GENERATION_FAILED"

    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Validation errors
    INVALID_INPUT = "INVALID_INPUT"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"


# Default messages for each message code
DEFAULT_MESSAGES = {
    # Success messages
    MessageCode.SUCCESS: "Operation completed successfully",
    MessageCode.CREATED: "Resource created successfully",
    # Authentication
    MessageCode.AUTH_REQUIRED: "Authentication required",
    MessageCode.INVALID_TOKEN: "Invalid authentication token",
    # Points & billing
    MessageCode.INSUFFICIENT_POINTS: "Insufficient points. Please top up your balance.",
    MessageCode.PACKAGE_NOT_FOUND: "Point package not found",
    MessageCode.CHECKOUT_FAILED: "Failed to create checkout session",
    # AI response errors
    MessageCode.AI_EMPTY_RESPONSE: "The AI returned an empty response. No points were charged.",
    MessageCode.AI_INVALID_FORMAT: "The AI returned an invalid format. No points were charged.",
    MessageCode.AI_JSON_PARSE_ERROR: "The AI response could not be parsed. No points were charged.",
    MessageCode.AI_INCOMPLETE_RESPONSE: "The AI response was incomplete. No points were charged.",
    MessageCode.AI_GENERATION_FAILED: "The AI request failed. No points were charged.",
    # Rate limiting
    MessageCode.RATE_LIMIT_EXCEEDED: "Too many requests. Please wait a moment.",
    # Validation errors
    MessageCode.INVALID_INPUT: "Invalid input provided",
    # Generic errors
    MessageCode.INTERNAL_ERROR: "Internal server error",
    MessageCode.BAD_REQUEST: "Bad request",
    MessageCode.NOT_FOUND: "Resource not found",
}

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Base API response model with consistent structure and proper typing."""

    message_code: MessageCode
    message: str
    data: T | None = None

    @classmethod
    def success(
        cls,
        message_code: MessageCode = MessageCode.SUCCESS,
        message: str | None = None,
        data: T | None = None,
    ) -> "APIResponse[T]":
        """Create a success response."""
        return cls(
            message_code=message_code,
            message=message or DEFAULT_MESSAGES.get(message_code, "Success"),
            data=data,
        )


def get_default_message(message_code: MessageCode) -> str:
    """Get default message for a message code."""
    return DEFAULT_MESSAGES.get(message_code, "Operation completed")
