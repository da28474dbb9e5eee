"""Validation package."""

from finledger.validation.validator import TransactionValidator

__all__ = ["TransactionValidator"]
