from __future__ import annotations
import json
import uuid
from datetime import datetime
from typing import List
from sqlalchemy import Column, String, DateTime, Integer, Text, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .db import Base


def _uuid() -> str:
	return str(uuid.uuid4())


class StudySession(Base):
	__tablename__ = "sessions"
	id = Column(String(36), primary_key=True, default=_uuid)
	email = Column(String(256), nullable=False, index=True)
	status = Column(String(16), default="in_progress", nullable=False)  # in_progress, completed
	current_passage_index = Column(Integer, default=0, nullable=False)
	passage_order = Column(Text, nullable=False)  # JSON list of passage ids
	total_passages = Column(Integer, default=10, nullable=False)
	total_time_ms = Column(Integer, default=0, nullable=False)
	# Sessions flagged dirty (test runs, bad data) are excluded from analytics
	is_dirty = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	completed_at = Column(DateTime, nullable=True)

	results = relationship("PassageResult", back_populates="session", cascade="all, delete-orphan")
	attempts = relationship("PassageAttempt", back_populates="session", cascade="all, delete-orphan")
	questionnaire_responses = relationship("QuestionnaireResponse", back_populates="session", cascade="all, delete-orphan")

	@property
	def passage_order_list(self) -> List[int]:
		return json.loads(self.passage_order or "[]")


class PassageResult(Base):
	__tablename__ = "passage_results"
	__table_args__ = (UniqueConstraint("session_id", "passage_index", name="uq_result_session_passage"),)
	id = Column(String(36), primary_key=True, default=_uuid)
	session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
	# passage_index is the position the participant saw it at; passage_id is the catalogue entry
	passage_index = Column(Integer, nullable=False)
	passage_id = Column(Integer, nullable=False)
	is_complete = Column(Boolean, default=False, nullable=False)
	wrong_attempts = Column(Integer, default=0, nullable=False)
	time_spent_ms = Column(Integer, default=0, nullable=False)
	final_selected_answer = Column(String(8), nullable=True)
	screenshot_key = Column(String(512), nullable=True)
	cursor_history_key = Column(String(512), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	session = relationship("StudySession", back_populates="results")


class PassageAttempt(Base):
	__tablename__ = "passage_attempts"
	id = Column(String(36), primary_key=True, default=_uuid)
	session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
	passage_index = Column(Integer, nullable=False)
	attempt_number = Column(Integer, nullable=False)
	selected_answer = Column(String(8), nullable=False)
	is_correct = Column(Boolean, default=False, nullable=False)
	gemini_response = Column(Text, nullable=True)
	screenshot_key = Column(String(512), nullable=True)
	reading_summary = Column(Text, nullable=True)  # JSON string snapshot
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	session = relationship("StudySession", back_populates="attempts")


class QuestionnaireResponse(Base):
	__tablename__ = "questionnaire_responses"
	id = Column(String(36), primary_key=True, default=_uuid)
	session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
	question_1_response = Column(Text, nullable=True)
	question_2_response = Column(Text, nullable=True)
	question_3_response = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	session = relationship("StudySession", back_populates="questionnaire_responses")
