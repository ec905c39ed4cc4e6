"""Gamma API client and lesson/page services."""

from lessondeck.services.backoff import BackoffPolicy, Verdict, compute_backoff_delay, parse_retry_after, with_backoff
from lessondeck.services.extractor import extract
from lessondeck.services.gamma import GammaClient, GammaResponse, send_request

__all__ = [
    "BackoffPolicy",
    "GammaClient",
    "GammaResponse",
    "Verdict",
    "compute_backoff_delay",
    "extract",
    "parse_retry_after",
    "send_request",
    "with_backoff",
]
