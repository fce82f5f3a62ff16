from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel


# Small margin so near-boundary points still count
HIT_MARGIN = 2.0
# Cap gaps so a long pause doesn't dominate one sentence
MAX_GAP_MS = 4000


class CursorSample(BaseModel):
	x: float
	y: float
	timestamp: int


class SentenceRegion(BaseModel):
	id: int
	text: str = ""
	left: float
	top: float
	right: float
	bottom: float

	def contains(self, x: float, y: float, margin: float = HIT_MARGIN) -> bool:
		return (
			self.left - margin <= x <= self.right + margin
			and self.top - margin <= y <= self.bottom + margin
		)


class SentenceStat(BaseModel):
	index: int
	text: str
	dwell_ms: int = 0
	visits: int = 0
	first_visit_order: Optional[int] = None


class ReadingSummary(BaseModel):
	total_time_ms: int = 0
	sentences: List[SentenceStat] = []


@dataclass
class _Accumulator:
	dwell_ms: float = 0.0
	visits: int = 0
	first_visit_order: Optional[int] = None


def find_region(x: float, y: float, regions: Sequence[SentenceRegion]) -> Optional[SentenceRegion]:
	"""Return the first region containing (x, y), or None when the point is off text.

	Non-finite coordinates never match.
	"""
	if not (math.isfinite(x) and math.isfinite(y)):
		return None
	for region in regions:
		if region.contains(x, y):
			return region
	return None


def _time_deltas(ordered: Sequence[CursorSample]) -> List[int]:
	# The last sample has no known successor interval
	deltas = [0] * len(ordered)
	for i in range(len(ordered) - 1):
		raw = ordered[i + 1].timestamp - ordered[i].timestamp
		deltas[i] = max(0, min(raw, MAX_GAP_MS))
	return deltas


def _untouched(regions: Sequence[SentenceRegion]) -> List[SentenceStat]:
	return [SentenceStat(index=r.id, text=r.text) for r in regions]


def summarize(samples: Sequence[CursorSample], regions: Sequence[SentenceRegion]) -> ReadingSummary:
	"""Summarize a cursor trace into per-sentence dwell, visits and first-visit order.

	Samples are sorted by timestamp (stable) before anything else, so input
	order never matters. Each sample is credited with the clamped time until
	the next sample and attributed to the first region that contains it.
	Samples outside every region count toward ``total_time_ms`` only.

	The output has one stat per region, in the order the regions were given.
	"""
	if not samples:
		return ReadingSummary(total_time_ms=0, sentences=_untouched(regions))

	ordered = sorted(samples, key=lambda s: s.timestamp)
	deltas = _time_deltas(ordered)

	stats: Dict[int, _Accumulator] = {}
	visited = 0
	prev_id: Optional[int] = None

	for sample, dt in zip(ordered, deltas):
		region = find_region(sample.x, sample.y, regions)
		if region is None:
			# Leaving the text ends the current visit
			prev_id = None
			continue

		acc = stats.setdefault(region.id, _Accumulator())
		acc.dwell_ms += dt

		if prev_id != region.id:
			acc.visits += 1
			if acc.first_visit_order is None:
				acc.first_visit_order = visited
				visited += 1
		prev_id = region.id

	total_time_ms = ordered[-1].timestamp - ordered[0].timestamp

	sentences: List[SentenceStat] = []
	for region in regions:
		acc = stats.get(region.id)
		if acc is None:
			sentences.append(SentenceStat(index=region.id, text=region.text))
			continue
		sentences.append(
			SentenceStat(
				index=region.id,
				text=region.text,
				dwell_ms=int(round(acc.dwell_ms)),
				visits=acc.visits,
				first_visit_order=acc.first_visit_order,
			)
		)
	return ReadingSummary(total_time_ms=total_time_ms, sentences=sentences)


def parse_summary(raw: str) -> ReadingSummary:
	return ReadingSummary.model_validate_json(raw)


def dump_summary(summary: ReadingSummary) -> str:
	return summary.model_dump_json()
