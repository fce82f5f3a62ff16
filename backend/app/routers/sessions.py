from __future__ import annotations
import json
import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import PassageAttempt, PassageResult, QuestionnaireResponse, StudySession
from ..passages import ANSWER_CHOICES, PASSAGES, correct_choice
from ..reading_summary import CursorSample, SentenceRegion, dump_summary, parse_summary, summarize
from ..storage import (
    LocalBlobStore,
    attempt_screenshot_key,
    cursor_history_key,
    decode_data_url_image,
    encode_data_url_image,
    get_blob_store,
    result_screenshot_key,
)


router = APIRouter(prefix="/api", tags=["sessions"])

logger = logging.getLogger(__name__)


class CreateSessionRequest(BaseModel):
    email: str


class CheckSessionRequest(BaseModel):
    email: str


class CompleteSessionRequest(BaseModel):
    total_time_ms: int = Field(default=0, ge=0)


class PassageResultRequest(BaseModel):
    selected_answer: str
    time_spent_ms: int = Field(default=0, ge=0)
    wrong_attempts: int = Field(default=0, ge=0)
    screenshot: Optional[str] = None
    cursor_history: Optional[List[CursorSample]] = None


class AttemptRequest(BaseModel):
    selected_answer: str
    gemini_response: Optional[str] = None
    screenshot: Optional[str] = None
    # Either a summary serialized by the client, or the raw trace to summarize here
    reading_summary: Optional[str] = None
    cursor_history: Optional[List[CursorSample]] = None
    sentence_regions: Optional[List[SentenceRegion]] = None


class QuestionnaireRequest(BaseModel):
    question1: Optional[str] = None
    question2: Optional[str] = None
    question3: Optional[str] = None


def _get_session_or_404(db: Session, session_id: str) -> StudySession:
    session = db.get(StudySession, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _validate_passage_index(session: StudySession, passage_index: int) -> int:
    order = session.passage_order_list
    if passage_index < 0 or passage_index >= len(order):
        raise HTTPException(status_code=400, detail=f"passage_index must be 0..{len(order) - 1}")
    return order[passage_index]


def _normalize_answer(answer: str) -> str:
    choice = (answer or "").strip().upper()
    if choice not in ANSWER_CHOICES:
        raise HTTPException(status_code=400, detail=f"selected_answer must be one of {', '.join(ANSWER_CHOICES)}")
    return choice


def _store_screenshot(store: LocalBlobStore, key: str, data_url: str) -> str:
    try:
        return store.put(key, decode_data_url_image(data_url))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid screenshot: {e}")


def _load_screenshot(store: LocalBlobStore, key: Optional[str]) -> Optional[str]:
    if not key:
        return None
    data = store.get(key)
    return encode_data_url_image(data) if data is not None else None


def row_dict(row: Any, columns: List[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name in columns:
        value = getattr(row, name)
        out[name] = value.isoformat() if isinstance(value, datetime) else value
    return out


SESSION_COLUMNS = [
    "id", "email", "status", "current_passage_index", "total_passages",
    "total_time_ms", "is_dirty", "created_at", "completed_at",
]
RESULT_COLUMNS = [
    "id", "session_id", "passage_index", "passage_id", "is_complete", "wrong_attempts",
    "time_spent_ms", "final_selected_answer", "screenshot_key", "cursor_history_key",
]
ATTEMPT_COLUMNS = [
    "id", "session_id", "passage_index", "attempt_number", "selected_answer", "is_correct",
    "gemini_response", "screenshot_key", "reading_summary", "created_at",
]
QUESTIONNAIRE_COLUMNS = [
    "id", "session_id", "question_1_response", "question_2_response", "question_3_response", "created_at",
]


def session_payload(db: Session, session: StudySession, store: LocalBlobStore, *, include_cursor_history: bool = True) -> Dict[str, Any]:
    results = (
        db.query(PassageResult)
        .filter(PassageResult.session_id == session.id)
        .order_by(PassageResult.passage_index)
        .all()
    )
    attempts = (
        db.query(PassageAttempt)
        .filter(PassageAttempt.session_id == session.id)
        .order_by(PassageAttempt.passage_index, PassageAttempt.attempt_number)
        .all()
    )
    result_items = []
    for r in results:
        item = row_dict(r, RESULT_COLUMNS)
        item["screenshot"] = _load_screenshot(store, r.screenshot_key)
        if include_cursor_history:
            item["cursor_history"] = store.get_json(r.cursor_history_key) if r.cursor_history_key else None
        result_items.append(item)
    attempt_items = []
    for a in attempts:
        item = row_dict(a, ATTEMPT_COLUMNS)
        item["screenshot"] = _load_screenshot(store, a.screenshot_key)
        attempt_items.append(item)
    responses = (
        db.query(QuestionnaireResponse)
        .filter(QuestionnaireResponse.session_id == session.id)
        .order_by(QuestionnaireResponse.created_at)
        .all()
    )
    session_item = row_dict(session, SESSION_COLUMNS)
    session_item["passage_order"] = session.passage_order_list
    return {
        "session": session_item,
        "passage_results": result_items,
        "attempts": attempt_items,
        "questionnaire_responses": [row_dict(q, QUESTIONNAIRE_COLUMNS) for q in responses],
    }


def delete_session_and_blobs(db: Session, session: StudySession, store: LocalBlobStore) -> None:
    keys: List[str] = []
    for r in session.results:
        keys.extend(k for k in (r.screenshot_key, r.cursor_history_key) if k)
    for a in session.attempts:
        if a.screenshot_key:
            keys.append(a.screenshot_key)
    for key in keys:
        store.delete(key)
    db.delete(session)
    db.commit()


@router.post("/sessions")
async def create_session(req: CreateSessionRequest, db: Session = Depends(get_db)):
    email = (req.email or "").strip()
    if not email:
        raise HTTPException(status_code=400, detail="email is required")
    passage_order = random.sample(range(len(PASSAGES)), len(PASSAGES))
    session = StudySession(email=email, passage_order=json.dumps(passage_order), total_passages=len(PASSAGES))
    db.add(session)
    db.commit()
    return {
        "session_id": session.id,
        "passage_order": passage_order,
        "result_url": f"/results/{session.id}",
    }


@router.post("/sessions/check")
async def check_session(req: CheckSessionRequest, db: Session = Depends(get_db)):
    session = (
        db.query(StudySession)
        .filter(StudySession.email == req.email.strip())
        .order_by(StudySession.created_at.desc())
        .first()
    )
    if not session:
        return {"exists": False}
    if session.status != "completed":
        completed = (
            db.query(func.count(PassageResult.id))
            .filter(PassageResult.session_id == session.id, PassageResult.is_complete.is_(True))
            .scalar()
        )
        if completed >= session.total_passages:
            session.status = "completed"
            session.completed_at = datetime.utcnow()
            db.commit()
    return {
        "exists": True,
        "session_id": session.id,
        "status": session.status,
        "current_passage_index": session.current_passage_index,
        "passage_order": session.passage_order_list,
    }


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, db: Session = Depends(get_db), store: LocalBlobStore = Depends(get_blob_store)):
    session = _get_session_or_404(db, session_id)
    return session_payload(db, session, store)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, db: Session = Depends(get_db), store: LocalBlobStore = Depends(get_blob_store)):
    session = _get_session_or_404(db, session_id)
    delete_session_and_blobs(db, session, store)
    return {"success": True}


@router.post("/sessions/{session_id}/complete")
async def complete_session(session_id: str, req: CompleteSessionRequest, db: Session = Depends(get_db)):
    session = _get_session_or_404(db, session_id)
    session.status = "completed"
    session.completed_at = datetime.utcnow()
    session.total_time_ms = req.total_time_ms
    db.commit()
    return {"success": True}


@router.put("/passages/{session_id}/{passage_index}")
async def save_passage_result(
    session_id: str,
    passage_index: int,
    req: PassageResultRequest,
    db: Session = Depends(get_db),
    store: LocalBlobStore = Depends(get_blob_store),
):
    session = _get_session_or_404(db, session_id)
    passage_id = _validate_passage_index(session, passage_index)
    selected_answer = _normalize_answer(req.selected_answer)

    screenshot_key = None
    if req.screenshot:
        screenshot_key = _store_screenshot(store, result_screenshot_key(session_id, passage_index), req.screenshot)
    history_key = None
    if req.cursor_history is not None:
        history_key = store.put_json(
            cursor_history_key(session_id, passage_index),
            [s.model_dump() for s in req.cursor_history],
        )

    row = (
        db.query(PassageResult)
        .filter(PassageResult.session_id == session_id, PassageResult.passage_index == passage_index)
        .first()
    )
    if not row:
        row = PassageResult(session_id=session_id, passage_index=passage_index, passage_id=passage_id)
        db.add(row)
    row.is_complete = True
    row.wrong_attempts = req.wrong_attempts
    row.time_spent_ms = req.time_spent_ms
    row.final_selected_answer = selected_answer
    if screenshot_key:
        row.screenshot_key = screenshot_key
    if history_key:
        row.cursor_history_key = history_key

    session.current_passage_index = max(session.current_passage_index, passage_index + 1)
    db.commit()
    return {"success": True, "current_passage_index": session.current_passage_index}


@router.post("/passages/{session_id}/{passage_index}/attempts")
async def record_attempt(
    session_id: str,
    passage_index: int,
    req: AttemptRequest,
    db: Session = Depends(get_db),
    store: LocalBlobStore = Depends(get_blob_store),
):
    session = _get_session_or_404(db, session_id)
    passage_id = _validate_passage_index(session, passage_index)
    selected_answer = _normalize_answer(req.selected_answer)

    summary = None
    if req.reading_summary:
        try:
            summary = parse_summary(req.reading_summary)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid reading_summary: {e}")
    elif req.cursor_history is not None:
        summary = summarize(req.cursor_history, req.sentence_regions or [])

    count = (
        db.query(func.count(PassageAttempt.id))
        .filter(PassageAttempt.session_id == session_id, PassageAttempt.passage_index == passage_index)
        .scalar()
    )
    attempt_number = (count or 0) + 1
    is_correct = selected_answer == correct_choice(passage_id)

    screenshot_key = None
    if req.screenshot:
        screenshot_key = _store_screenshot(
            store, attempt_screenshot_key(session_id, passage_index, attempt_number), req.screenshot
        )

    db.add(
        PassageAttempt(
            session_id=session_id,
            passage_index=passage_index,
            attempt_number=attempt_number,
            selected_answer=selected_answer,
            is_correct=is_correct,
            gemini_response=req.gemini_response,
            screenshot_key=screenshot_key,
            reading_summary=dump_summary(summary) if summary is not None else None,
        )
    )

    # Track progress on incomplete passages so the overview shows attempts and time
    if not is_correct:
        row = (
            db.query(PassageResult)
            .filter(PassageResult.session_id == session_id, PassageResult.passage_index == passage_index)
            .first()
        )
        if not row:
            row = PassageResult(session_id=session_id, passage_index=passage_index, passage_id=passage_id, is_complete=False)
            db.add(row)
        row.wrong_attempts = attempt_number
        row.time_spent_ms = summary.total_time_ms if summary is not None else 0

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        # Don't leave a screenshot behind for an attempt that was never recorded
        if screenshot_key:
            store.delete(screenshot_key)
        raise
    logger.info("Recorded attempt %d for session %s passage %d", attempt_number, session_id, passage_index)
    return {
        "success": True,
        "attempt_number": attempt_number,
        "is_correct": is_correct,
        "reading_summary": summary,
    }


@router.post("/questionnaire/{session_id}")
async def submit_questionnaire(session_id: str, req: QuestionnaireRequest, db: Session = Depends(get_db)):
    _get_session_or_404(db, session_id)
    db.add(
        QuestionnaireResponse(
            session_id=session_id,
            question_1_response=req.question1 or None,
            question_2_response=req.question2 or None,
            question_3_response=req.question3 or None,
        )
    )
    db.commit()
    return {"success": True}
