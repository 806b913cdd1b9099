"""User record entity module.

- UserRecord: Domain entity
- UserRecordTable: Database persistence model
"""

from .entity import AccountClass, EmailVerification, UserRecord
from .table import UserRecordTable

__all__ = ["AccountClass", "EmailVerification", "UserRecord", "UserRecordTable"]
