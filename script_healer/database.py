"""
SQLAlchemy archive for finished monitoring sessions
"""
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import create_engine, Column, Integer, String, Text, DateTime, Boolean, JSON, ForeignKey, Float, text
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from script_healer.config import Config
from script_healer.logger import get_logger
from script_healer.models import MonitoringSession

logger = get_logger('database')

Base = declarative_base()


class SessionRecord(Base):
    """A monitoring session that reached a terminal status"""
    __tablename__ = 'monitoring_sessions'

    id = Column(Integer, primary_key=True)
    session_id = Column(String(100), unique=True, nullable=False)
    status = Column(String(50), nullable=False)  # completed, stopped, error
    original_script = Column(Text, nullable=False)
    current_script = Column(Text)
    final_script = Column(Text)  # healed script, only set on success
    intent = Column(JSON)
    options = Column(JSON)
    attempt_count = Column(Integer, default=0)
    is_successful = Column(Boolean, default=False)
    last_diagnosis = Column(JSON)
    message = Column(Text)
    started_at = Column(DateTime)
    ended_at = Column(DateTime)
    archived_at = Column(DateTime, default=datetime.utcnow)

    modifications = relationship(
        'ModificationRecord',
        back_populates='session',
        cascade='all, delete-orphan',
        order_by='ModificationRecord.attempt_number',
    )

    def to_dict(self) -> Dict:
        return {
            "session_id": self.session_id,
            "status": self.status,
            "original_script": self.original_script,
            "current_script": self.current_script,
            "final_script": self.final_script,
            "intent": self.intent,
            "options": self.options,
            "attempt_count": self.attempt_count,
            "is_successful": self.is_successful,
            "last_diagnosis": self.last_diagnosis,
            "message": self.message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "modifications": [m.to_dict() for m in self.modifications],
        }

    def __repr__(self):
        return f"<SessionRecord(session_id='{self.session_id}', status='{self.status}')>"


class ModificationRecord(Base):
    """One audited script revision"""
    __tablename__ = 'script_modifications'

    id = Column(Integer, primary_key=True)
    session_pk = Column(Integer, ForeignKey('monitoring_sessions.id'), nullable=False)
    attempt_number = Column(Integer, nullable=False)
    script_before = Column(Text, nullable=False)
    script_after = Column(Text)  # null when no further attempt followed
    primary_cause = Column(String(200))
    suggested_fixes = Column(JSON)
    confidence = Column(Float)
    diagnosis_source = Column(String(20))  # rule_based, advisory
    explanation = Column(Text)
    created_at = Column(DateTime)

    session = relationship('SessionRecord', back_populates='modifications')

    def to_dict(self) -> Dict:
        return {
            "attempt_number": self.attempt_number,
            "script_before": self.script_before,
            "script_after": self.script_after,
            "diagnosis": {
                "primary_cause": self.primary_cause,
                "suggested_fixes": self.suggested_fixes,
                "confidence": self.confidence,
                "source": self.diagnosis_source,
                "explanation": self.explanation,
            },
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ModificationRecord(attempt={self.attempt_number}, cause='{self.primary_cause}')>"


class SessionArchive:
    """Database-backed history of finished sessions."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = create_engine(self.database_url, echo=False)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        """Create all tables"""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        """Drop all tables"""
        Base.metadata.drop_all(bind=self.engine)

    def test_connection(self) -> bool:
        """Test database connection"""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            return False

    def save_session(self, session: MonitoringSession) -> bool:
        """Insert or replace the archived copy of a session"""
        db = self.SessionLocal()
        try:
            existing = db.query(SessionRecord).filter_by(session_id=session.session_id).first()
            if existing:
                db.delete(existing)
                db.flush()

            record = SessionRecord(
                session_id=session.session_id,
                status=session.status.value,
                original_script=session.original_script,
                current_script=session.current_script,
                final_script=session.final_script,
                intent=session.intent.to_dict(),
                options=session.options.to_dict(),
                attempt_count=session.attempt_count,
                is_successful=session.is_successful,
                last_diagnosis=session.last_diagnosis.to_dict() if session.last_diagnosis else None,
                message=session.message,
                started_at=session.started_at,
                ended_at=session.ended_at,
            )
            for modification in session.modifications:
                record.modifications.append(ModificationRecord(
                    attempt_number=modification.attempt_number,
                    script_before=modification.script_before,
                    script_after=modification.script_after,
                    primary_cause=modification.diagnosis.primary_cause,
                    suggested_fixes=list(modification.diagnosis.suggested_fixes),
                    confidence=modification.diagnosis.confidence,
                    diagnosis_source=modification.diagnosis.source.value,
                    explanation=modification.diagnosis.explanation,
                    created_at=modification.timestamp,
                ))

            db.add(record)
            db.commit()
            logger.info(f"Archived session {session.session_id} ({session.status.value})")
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to archive session {session.session_id}: {e}")
            return False
        finally:
            db.close()

    def load_history(self, limit: int = 50) -> List[Dict]:
        """Most recently finished sessions first"""
        db = self.SessionLocal()
        try:
            records = db.query(SessionRecord).order_by(SessionRecord.id.desc()).limit(limit).all()
            return [record.to_dict() for record in records]
        finally:
            db.close()

    def get_record(self, session_id: str) -> Optional[Dict]:
        db = self.SessionLocal()
        try:
            record = db.query(SessionRecord).filter_by(session_id=session_id).first()
            return record.to_dict() if record else None
        finally:
            db.close()
