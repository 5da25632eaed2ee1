"""
Custom exceptions for SQL Advisor
"""

from typing import Optional, Any


class SQLAdvisorError(Exception):
    """Base exception for all application errors"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(SQLAdvisorError):
    """Configuration related errors"""
    pass


# =============================================================================
# AI/LLM Errors
# =============================================================================


class AIError(SQLAdvisorError):
    """Base AI/LLM error"""
    pass


class LLMTimeoutError(AIError):
    """LLM response timed out"""
    pass


class GenerationAborted(AIError):
    """Raised inside a model worker when the consumer stopped listening"""
    pass


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(SQLAdvisorError):
    """Base validation error"""
    pass


class InvalidRequestError(ValidationError):
    """Recommendation request is missing required input"""
    pass


# =============================================================================
# Task Errors
# =============================================================================


class TaskError(SQLAdvisorError):
    """Async task errors"""
    pass


class TaskCancelledError(TaskError):
    """Task was cancelled"""
    pass


class RecommendationCancelledError(TaskCancelledError):
    """Recommendation request was cancelled by the caller"""

    def __init__(self, message: str = "Recommendation request canceled", stage: Optional[str] = None):
        super().__init__(message, {"stage": stage} if stage else None)
        self.stage = stage
