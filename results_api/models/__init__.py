"""Database models package."""

from results_api.models.audit import AuditAction, AuditLog
from results_api.models.classroom import Classroom, ClassroomStudent
from results_api.models.grading import GradingScale
from results_api.models.result import IMPORTABLE_STATUSES, BatchStatus, ResultBatch, StudentResult
from results_api.models.subject import Subject, SubjectCategory, SubjectGroup, SubjectGroupSubject
from results_api.models.user import User, UserRole

__all__ = [
    # User
    "User",
    "UserRole",
    # Classroom
    "Classroom",
    "ClassroomStudent",
    # Subjects
    "Subject",
    "SubjectCategory",
    "SubjectGroup",
    "SubjectGroupSubject",
    # Grading
    "GradingScale",
    # Results
    "ResultBatch",
    "BatchStatus",
    "IMPORTABLE_STATUSES",
    "StudentResult",
    # Audit
    "AuditLog",
    "AuditAction",
]
