from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel

from .gemini_client import GeminiClient, inline_image_part, text_part
from .reading_summary import CursorSample, ReadingSummary, dump_summary
from .settings import settings
from .storage import parse_data_url

logger = logging.getLogger(__name__)


class FeedbackResult(BaseModel):
	tips: str = ""
	error: Optional[str] = None
	reading_summary: Optional[ReadingSummary] = None


def trace_overview(samples: Sequence[CursorSample]) -> Dict[str, Any]:
	ordered = sorted(samples, key=lambda s: s.timestamp)
	if not ordered:
		return {"total_points": 0, "duration_s": 0.0, "coordinate_range": None}
	xs = [s.x for s in ordered]
	ys = [s.y for s in ordered]
	return {
		"total_points": len(ordered),
		"duration_s": (ordered[-1].timestamp - ordered[0].timestamp) / 1000,
		"coordinate_range": {"min_x": min(xs), "max_x": max(xs), "min_y": min(ys), "max_y": max(ys)},
	}


def build_feedback_prompt(passage: str, samples: Sequence[CursorSample], summary: Optional[ReadingSummary] = None) -> str:
	overview = trace_overview(samples)
	rng = overview["coordinate_range"]
	range_text = (
		f"X: {rng['min_x']:.0f}-{rng['max_x']:.0f}, Y: {rng['min_y']:.0f}-{rng['max_y']:.0f}" if rng else "N/A"
	)
	summary_text = dump_summary(summary) if summary is not None else "N/A"
	return (
		"You are analyzing reading comprehension behavior based on:\n"
		"1. The reading passage text\n"
		"2. A heatmap screenshot showing where the reader focused their attention (cursor movements)\n"
		"3. A sentence-level reading summary derived from the cursor trace\n\n"
		"Tracking Data Summary:\n"
		f"- Total cursor points: {overview['total_points']}\n"
		f"- Reading duration: {overview['duration_s']:.1f} seconds\n"
		f"- Coordinate range: {range_text}\n\n"
		"Sentence Reading Summary (JSON; dwell_ms is time spent on each sentence, visits is how often "
		"the reader entered it, first_visit_order is the order sentences were first reached, null if never):\n"
		f"{summary_text}\n\n"
		f"Reading Passage:\n{passage}\n\n"
		"Please analyze the heatmap (if provided) and the reading summary to provide brief, actionable tips "
		"for improving reading comprehension. Focus on:\n"
		"- Sentences where the reader spent more/less time\n"
		"- Reading patterns and potential issues (skipped sentences, re-reading, out-of-order reading)\n"
		"- Specific suggestions for better comprehension\n\n"
		"Keep tips brief and to the point (2-4 bullet points or short paragraphs)."
	)


def _describe_error(err: Exception) -> str:
	message = str(err)
	if isinstance(err, httpx.HTTPStatusError):
		status = err.response.status_code
		if status == 429:
			return "Rate limit exceeded. Please try again in a minute."
		if status in (400, 401, 403) and "API_KEY" in err.response.text.upper():
			return "Invalid API key. Please check GEMINI_API_KEY."
	if "API_KEY" in message.upper():
		return "Invalid API key. Please check GEMINI_API_KEY."
	if "quota" in message.lower() or "rate limit" in message.lower():
		return "Rate limit exceeded. Please try again in a minute."
	if message:
		return f"Error: {message}"
	return "Failed to analyze reading behavior."


def build_parts(prompt: str, screenshot: Optional[str]) -> List[Dict[str, Any]]:
	parts = [text_part(prompt)]
	if screenshot:
		try:
			mime_type, data = parse_data_url(screenshot)
			parts.append(inline_image_part(mime_type, data))
		except ValueError as e:
			# Continue without the image
			logger.warning("Failed to process screenshot for Gemini: %s", e)
	return parts


async def analyze_reading_behavior(
	passage: str,
	screenshot: Optional[str],
	samples: Sequence[CursorSample],
	summary: Optional[ReadingSummary] = None,
	*,
	client: Optional[GeminiClient] = None,
) -> FeedbackResult:
	"""Ask Gemini for comprehension tips given the passage, an optional heatmap and the reading summary.

	Failures are reported in ``FeedbackResult.error`` rather than raised.
	"""
	if client is None and not settings.gemini_api_key:
		return FeedbackResult(error="Gemini API key is not configured. Please set GEMINI_API_KEY.", reading_summary=summary)
	if not passage:
		return FeedbackResult(error="Reading passage is required for analysis.", reading_summary=summary)
	if not samples:
		return FeedbackResult(
			error="No cursor tracking data available. Please start tracking your cursor movements.",
			reading_summary=summary,
		)

	parts = build_parts(build_feedback_prompt(passage, samples, summary), screenshot)
	owns_client = client is None
	if client is None:
		client = GeminiClient()
	try:
		tips = await client.generate_multimodal(parts)
		return FeedbackResult(tips=tips, reading_summary=summary)
	except (httpx.HTTPError, RuntimeError) as e:
		logger.error("Gemini API error: %s", e)
		return FeedbackResult(error=_describe_error(e), reading_summary=summary)
	finally:
		if owns_client:
			await client.aclose()
