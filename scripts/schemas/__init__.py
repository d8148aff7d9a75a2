"""
Pydantic schemas for Ryn storage validation

Strict schemas for every row written to the violation store. Schemas enforce
the detection-method contract at the persistence boundary.
"""

from .records import AuditEventRecord, FixRecord, ScanCostRecord, ScanRecord, ViolationRecord

__all__ = [
    "AuditEventRecord",
    "ViolationRecord",
    "FixRecord",
    "ScanCostRecord",
    "ScanRecord",
]
