from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..feedback import FeedbackResult, analyze_reading_behavior
from ..reading_summary import CursorSample, ReadingSummary, SentenceRegion, summarize


router = APIRouter(prefix="/api/reading", tags=["reading"])


class SummarizeRequest(BaseModel):
    samples: List[CursorSample] = Field(default_factory=list)
    regions: List[SentenceRegion] = Field(default_factory=list)


class FeedbackRequest(BaseModel):
    passage: str
    screenshot: Optional[str] = Field(default=None, description="Heatmap as a base64 data URL")
    samples: List[CursorSample] = Field(default_factory=list)
    regions: List[SentenceRegion] = Field(default_factory=list)


@router.post("/summarize", response_model=ReadingSummary)
async def summarize_trace(req: SummarizeRequest):
    return summarize(req.samples, req.regions)


@router.post("/feedback", response_model=FeedbackResult)
async def reading_feedback(req: FeedbackRequest):
    summary = summarize(req.samples, req.regions)
    return await analyze_reading_behavior(req.passage, req.screenshot, req.samples, summary)
