"""Logbook model definitions."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from labportal.database import Base


class LogBook(Base):
    """One student's lab record for one subject.

    The section columns hold plain JSON documents whose keys are the wire
    names (``experimentName``, ``rubric1``, ``studentSignature`` ...).
    """
    __tablename__ = "logbooks"
    __table_args__ = (
        Index("uq_logbooks_owner_subject", "rollno", "rgno", "subject", unique=True),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    rollno = Column(Integer, nullable=False)
    rgno = Column(Integer, nullable=False, index=True)
    subject = Column(String, nullable=False)
    code = Column(String, default="")
    semester = Column(Integer, nullable=True)
    experiments = Column(JSON, default=list)
    open_ended_project = Column(JSON, default=dict)
    lab_exams = Column(JSON, default=list)
    final_assessment = Column(JSON, default=dict)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    def to_document(self) -> dict:
        """The record in the shape the form parser and merge work with."""
        return {
            "name": self.name,
            "rollno": self.rollno,
            "rgno": self.rgno,
            "subject": self.subject,
            "code": self.code or "",
            "semester": self.semester,
            "experiments": list(self.experiments or []),
            "openEndedProject": dict(self.open_ended_project or {}),
            "labExams": list(self.lab_exams or []),
            "finalAssessment": dict(self.final_assessment or {}),
        }

    def apply_document(self, document: dict) -> None:
        # JSON columns only notice reassignment, never in-place edits.
        self.name = document["name"]
        self.rollno = document["rollno"]
        self.rgno = document["rgno"]
        self.subject = document["subject"]
        self.code = document.get("code") or ""
        self.semester = document.get("semester")
        self.experiments = [dict(entry) for entry in document.get("experiments") or []]
        self.open_ended_project = dict(document.get("openEndedProject") or {})
        self.lab_exams = [dict(entry) for entry in document.get("labExams") or []]
        self.final_assessment = dict(document.get("finalAssessment") or {})
