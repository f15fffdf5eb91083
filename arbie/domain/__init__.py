"""
Domain module - Business models

Contains pure business models without external dependencies.
All models are JSON-serializable through to_dict().
"""

from arbie.domain.models import (
    ArbitrageOpportunity,
    AttemptState,
    CycleReport,
    ExecutionAttempt,
    FailureCode,
    PriceQuote,
    PriceSnapshot,
    Token,
    Venue,
    format_price,
)

__all__ = [
    "ArbitrageOpportunity",
    "AttemptState",
    "CycleReport",
    "ExecutionAttempt",
    "FailureCode",
    "PriceQuote",
    "PriceSnapshot",
    "Token",
    "Venue",
    "format_price",
]
