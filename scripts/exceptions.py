#!/usr/bin/env python3
"""
Ryn Exceptions Module

Custom exception classes for the Ryn compliance scanner.
Centralized exception definitions for consistent error handling.
"""

__all__ = [
    "RynError",
    "DetectorError",
    "AnalyzerError",
    "ConfigurationError",
    "StorageError",
    "PatchApplyError",
    "ScanCancelledError",
    "ValidationError",
    "CostLimitExceededError",
]


class RynError(Exception):
    """Base exception for all Ryn-related errors"""
    pass


class DetectorError(RynError):
    """Raised when a rule detector cannot process a file"""

    def __init__(self, detector: str, file_path: str, message: str):
        self.detector = detector
        self.file_path = file_path
        super().__init__(f"{detector} failed on {file_path}: {message}")


class AnalyzerError(RynError):
    """Raised when AI analysis of a file fails after all retries"""

    def __init__(self, file_path: str, message: str, usage=None):
        self.file_path = file_path
        # Tokens spent on the failed attempts, still billable
        self.usage = usage
        super().__init__(f"AI analysis failed for {file_path}: {message}")


class ConfigurationError(RynError):
    """Raised when the scanner is configured inconsistently"""
    pass


class StorageError(RynError):
    """Raised when violations, fixes or costs cannot be persisted"""
    pass


class PatchApplyError(RynError):
    """Raised when a fix cannot be applied; the target file is left untouched"""

    def __init__(self, file_path: str, reason: str):
        self.file_path = file_path
        self.reason = reason
        super().__init__(f"Cannot apply fix to {file_path}: {reason}")


class ScanCancelledError(RynError):
    """Raised inside a scan when a cancellation request is observed"""
    pass


class ValidationError(RynError):
    """Raised when a reasoning-service response or record fails validation"""
    pass


class CostLimitExceededError(RynError):
    """Raised when spend is recorded against a scan whose cost ledger is closed"""
    pass
