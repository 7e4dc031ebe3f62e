"""Database package for the monitoring backend."""

from .database import DatabaseManager, ensure_database_directory
from .models import Base, QueueJob, FailedJob

__all__ = ['DatabaseManager', 'ensure_database_directory', 'Base', 'QueueJob', 'FailedJob']
