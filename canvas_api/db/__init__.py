"""
Database module
"""

from .connection import Base, Database, close_database, get_database, normalize_database_url
from .models import (
    EXPECTED_TABLES,
    ApiUsageModel,
    CompanyModel,
    EvaluationModel,
    UserModel,
    WorkflowModel,
)

__all__ = [
    "Base",
    "Database",
    "close_database",
    "get_database",
    "normalize_database_url",
    "EXPECTED_TABLES",
    "ApiUsageModel",
    "CompanyModel",
    "EvaluationModel",
    "UserModel",
    "WorkflowModel",
]
