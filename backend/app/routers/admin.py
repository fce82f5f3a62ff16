from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..analytics import aggregate_sentence_stats, answer_distribution, feedback_samples, passage_stats, trap_answer
from ..db import get_db
from ..models import PassageAttempt, PassageResult, StudySession
from ..passages import PASSAGES, find_passage_index
from ..storage import LocalBlobStore, encode_data_url_image, get_blob_store
from .auth import require_admin
from .sessions import SESSION_COLUMNS, row_dict, delete_session_and_blobs, session_payload


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class DirtyFlagRequest(BaseModel):
	is_dirty: bool


def _clean_sessions():
	return or_(StudySession.is_dirty.is_(False), StudySession.is_dirty.is_(None))


@router.get("/sessions")
async def list_sessions(status: Optional[str] = None, db: Session = Depends(get_db)):
	completed = (
		select(func.count(PassageResult.id))
		.where(PassageResult.session_id == StudySession.id, PassageResult.is_complete.is_(True))
		.correlate(StudySession)
		.scalar_subquery()
	)
	query = db.query(StudySession, completed.label("completed_passages"))
	if status:
		query = query.filter(StudySession.status == status)
	rows = query.order_by(StudySession.created_at.desc()).all()
	sessions = []
	for session, completed_passages in rows:
		item = row_dict(session, SESSION_COLUMNS)
		item["completed_passages"] = completed_passages or 0
		sessions.append(item)
	return {"sessions": sessions}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, db: Session = Depends(get_db), store: LocalBlobStore = Depends(get_blob_store)):
	session = db.get(StudySession, session_id)
	if not session:
		raise HTTPException(status_code=404, detail="Session not found")
	return session_payload(db, session, store, include_cursor_history=False)


@router.patch("/sessions/{session_id}")
async def set_dirty(session_id: str, req: DirtyFlagRequest, db: Session = Depends(get_db)):
	session = db.get(StudySession, session_id)
	if not session:
		raise HTTPException(status_code=404, detail="Session not found")
	session.is_dirty = req.is_dirty
	db.commit()
	return {"success": True, "is_dirty": session.is_dirty}


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, db: Session = Depends(get_db), store: LocalBlobStore = Depends(get_blob_store)):
	session = db.get(StudySession, session_id)
	if not session:
		raise HTTPException(status_code=404, detail="Session not found")
	delete_session_and_blobs(db, session, store)
	return {"success": True}


def _attempts_for_passage(db: Session, passage_id: int) -> List[PassageAttempt]:
	# passage_index is per-session display order, so join through results to the catalogue id
	return (
		db.query(PassageAttempt)
		.join(StudySession, PassageAttempt.session_id == StudySession.id)
		.join(
			PassageResult,
			(PassageAttempt.session_id == PassageResult.session_id)
			& (PassageAttempt.passage_index == PassageResult.passage_index),
		)
		.filter(PassageResult.passage_id == passage_id, _clean_sessions())
		.order_by(PassageAttempt.session_id, PassageAttempt.attempt_number)
		.all()
	)


def _results_for_passage(db: Session, passage_id: int) -> List[PassageResult]:
	return (
		db.query(PassageResult)
		.join(StudySession, PassageResult.session_id == StudySession.id)
		.filter(PassageResult.passage_id == passage_id, _clean_sessions())
		.order_by(PassageResult.created_at.desc())
		.all()
	)


@router.get("/analytics")
async def analytics(db: Session = Depends(get_db)):
	passages = []
	for passage_id in range(len(PASSAGES)):
		attempts = _attempts_for_passage(db, passage_id)
		completed = [r for r in _results_for_passage(db, passage_id) if r.is_complete]
		passages.append(passage_stats(passage_id, attempts, completed))
	return {"passages": passages}


@router.get("/passages/{passage_slug}")
async def passage_detail(passage_slug: str, db: Session = Depends(get_db), store: LocalBlobStore = Depends(get_blob_store)):
	passage_id = find_passage_index(passage_slug)
	if passage_id is None:
		raise HTTPException(status_code=404, detail="Passage not found")
	passage = PASSAGES[passage_id]
	results = _results_for_passage(db, passage_id)
	attempts = _attempts_for_passage(db, passage_id)

	participants: List[Dict[str, Any]] = []
	for result in results:
		session_attempts = [a for a in attempts if a.session_id == result.session_id]
		latest = session_attempts[-1] if session_attempts else None
		screenshot = None
		if latest is not None and latest.screenshot_key:
			data = store.get(latest.screenshot_key)
			screenshot = encode_data_url_image(data) if data is not None else None
		participants.append({
			"session_id": result.session_id,
			"email": result.session.email,
			"time_spent_ms": result.time_spent_ms or 0,
			"wrong_attempts": result.wrong_attempts or 0,
			"is_correct": any(a.is_correct for a in session_attempts),
			"latest_attempt_screenshot": screenshot,
			"latest_gemini_response": latest.gemini_response if latest is not None else None,
		})

	distribution = answer_distribution(attempts, int(passage["correct_answer"]))
	first_attempts = [a for a in attempts if a.attempt_number == 1]
	first_try_correct = sum(1 for a in first_attempts if a.is_correct)
	avg_time = round(sum(p["time_spent_ms"] for p in participants) / len(participants)) if participants else 0

	return {
		"passage": {"id": passage["id"], "title": passage["title"], "index": passage_id},
		"overview": {
			"total_participants": len(participants),
			"avg_time_ms": avg_time,
			"first_try_rate": round(first_try_correct / len(first_attempts) * 100) if first_attempts else 0,
			"total_attempts": len(attempts),
		},
		"participants": participants,
		"sentence_stats": aggregate_sentence_stats(a.reading_summary for a in attempts),
		"answer_distribution": distribution,
		"trap_answer": trap_answer(distribution),
		"ai_feedback_samples": feedback_samples(attempts),
	}
