"""Async client for the tick-driven pet game backend."""

from tamaclient.utils.api_client import AsyncPetClient
from tamaclient.utils.config import ClientConfig
from tamaclient.utils.confirmation import ConfirmationResult, ConfirmationStatus
from tamaclient.utils.messages import Receipt, SubmissionRecord

__all__ = [
    "AsyncPetClient",
    "ClientConfig",
    "ConfirmationResult",
    "ConfirmationStatus",
    "Receipt",
    "SubmissionRecord",
]
