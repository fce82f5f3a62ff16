from __future__ import annotations
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from .passages import ANSWER_CHOICES, PASSAGES
from .reading_summary import parse_summary

logger = logging.getLogger(__name__)

MAX_FEEDBACK_SAMPLES = 5


class SentenceAggregate(BaseModel):
	index: int
	text: str
	avg_dwell_ms: int
	avg_visits: float
	avg_reading_order: Optional[float] = None
	times_read: int  # number of stored summaries that included this sentence


class AnswerShare(BaseModel):
	choice: str
	count: int
	percentage: int
	is_correct: bool


class FeedbackSample(BaseModel):
	response: str
	was_correct: bool


@dataclass
class _SentenceTotals:
	text: str
	dwell_total: float = 0.0
	visits_total: float = 0.0
	order_total: float = 0.0
	order_count: int = 0
	count: int = 0


def _pct(part: int, whole: int) -> int:
	return round(part / whole * 100) if whole > 0 else 0


def _one_decimal(value: float) -> float:
	return round(value * 10) / 10


def aggregate_sentence_stats(raw_summaries: Iterable[Optional[str]]) -> List[SentenceAggregate]:
	"""Average per-sentence dwell, visits and reading order across stored summaries.

	Summaries are the JSON strings persisted with each attempt. Missing or
	malformed ones are skipped. Reading order is averaged only over summaries
	where the sentence was actually visited.
	"""
	totals: Dict[int, _SentenceTotals] = {}
	for raw in raw_summaries:
		if not raw:
			continue
		# Validate the whole summary before touching the totals
		try:
			summary = parse_summary(raw)
		except ValueError as e:
			logger.warning("Skipping malformed reading summary: %s", e)
			continue
		for sentence in summary.sentences:
			entry = totals.get(sentence.index)
			if entry is None:
				entry = _SentenceTotals(text=sentence.text)
				totals[sentence.index] = entry
			entry.dwell_total += sentence.dwell_ms
			entry.visits_total += sentence.visits
			if sentence.first_visit_order is not None:
				entry.order_total += sentence.first_visit_order
				entry.order_count += 1
			entry.count += 1
			entry.text = sentence.text or entry.text

	return [
		SentenceAggregate(
			index=index,
			text=entry.text,
			avg_dwell_ms=round(entry.dwell_total / entry.count) if entry.count else 0,
			avg_visits=_one_decimal(entry.visits_total / entry.count) if entry.count else 0.0,
			avg_reading_order=_one_decimal(entry.order_total / entry.order_count) if entry.order_count else None,
			times_read=entry.count,
		)
		for index, entry in sorted(totals.items())
	]


def answer_distribution(attempts: Iterable[Any], correct_answer: int) -> List[AnswerShare]:
	counts: Dict[str, int] = {}
	first_attempts = 0
	for attempt in attempts:
		if attempt.attempt_number != 1:
			continue
		answer = attempt.selected_answer or ""
		counts[answer] = counts.get(answer, 0) + 1
		first_attempts += 1
	return [
		AnswerShare(
			choice=choice,
			count=counts.get(choice, 0),
			percentage=_pct(counts.get(choice, 0), first_attempts),
			is_correct=idx == correct_answer,
		)
		for idx, choice in enumerate(ANSWER_CHOICES)
	]


def trap_answer(distribution: List[AnswerShare]) -> Optional[AnswerShare]:
	# Most common wrong choice; earliest choice wins ties
	wrong = [a for a in distribution if not a.is_correct]
	if not wrong:
		return None
	best = wrong[0]
	for share in wrong[1:]:
		if share.count > best.count:
			best = share
	return best


def feedback_samples(attempts: Iterable[Any], limit: int = MAX_FEEDBACK_SAMPLES) -> List[FeedbackSample]:
	samples: List[FeedbackSample] = []
	seen = set()
	for attempt in attempts:
		response = attempt.gemini_response
		if not response or response in seen:
			continue
		seen.add(response)
		samples.append(FeedbackSample(response=response, was_correct=bool(attempt.is_correct)))
		if len(samples) >= limit:
			break
	return samples


def passage_stats(passage_id: int, attempts: List[Any], results: List[Any]) -> Dict[str, Any]:
	"""Headline numbers for one catalogue passage.

	``attempts`` must already be restricted to this passage; ``results`` are
	completed passage results for it.
	"""
	passage = PASSAGES[passage_id]
	first_try = [a for a in attempts if a.attempt_number == 1]
	first_try_correct = sum(1 for a in first_try if a.is_correct)

	by_session: Dict[str, bool] = OrderedDict()
	for a in attempts:
		by_session[a.session_id] = by_session.get(a.session_id, False) or bool(a.is_correct)
	eventually_correct = sum(1 for ok in by_session.values() if ok)

	times = [r.time_spent_ms or 0 for r in results]
	return {
		"passage_id": passage["id"],
		"title": passage["title"],
		"total_attempts": len(attempts),
		"first_try_correct_pct": _pct(first_try_correct, len(first_try)),
		"eventually_correct_pct": _pct(eventually_correct, len(by_session)),
		"avg_time_ms": round(sum(times) / len(times)) if times else 0,
	}
