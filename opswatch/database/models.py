"""SQLAlchemy models for the queue tables the monitor inspects.

The content tables of the site are owned by the CRUD layer and are not
declared here. The queue tables are declared so the queue probe can count
them and so tests can create them on an in-memory database.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from sqlalchemy.orm import declarative_base


Base = declarative_base()


class QueueJob(Base):
    """Pending job in the database queue driver."""
    __tablename__ = 'jobs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue = Column(String(255), nullable=False, default='default', index=True)
    payload = Column(Text, nullable=False, default='{}')
    attempts = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<QueueJob(id={self.id}, queue='{self.queue}', attempts={self.attempts})>"


class FailedJob(Base):
    """Job that exhausted its retries."""
    __tablename__ = 'failed_jobs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection = Column(String(255), nullable=False, default='database')
    queue = Column(String(255), nullable=False, default='default')
    payload = Column(Text, nullable=False, default='{}')
    exception = Column(Text, nullable=True)
    failed_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_failed_jobs_failed_at', 'failed_at'),
    )

    def __repr__(self):
        return f"<FailedJob(id={self.id}, queue='{self.queue}')>"
