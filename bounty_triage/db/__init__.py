"""
Database package for Bounty Triage.
"""

from .audit_models import AuditLogModel
from .audit_service import AuditService
from .base import Base, Database, get_database, get_database_url, get_db
from .models import IssueModel, ReporterModel

__all__ = [
    "Base",
    "Database",
    "get_database",
    "get_database_url",
    "get_db",
    "IssueModel",
    "ReporterModel",
    "AuditLogModel",
    "AuditService",
]
