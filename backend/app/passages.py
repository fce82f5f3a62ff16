from __future__ import annotations
from typing import Dict, List, Optional


ANSWER_CHOICES: List[str] = ["A", "B", "C", "D"]

# Catalogue order is the passage_id stored on results
PASSAGES: List[Dict[str, object]] = [
	{"id": "the-great-lakes", "title": "The Great Lakes", "correct_answer": 3},
	{"id": "american-folk-music", "title": "American Folk Music", "correct_answer": 0},
	{"id": "new-scotland-yard", "title": "New Scotland Yard", "correct_answer": 1},
	{"id": "animal-life", "title": "Animal Life", "correct_answer": 2},
	{"id": "saying-it-with-flowers", "title": "Saying it with Flowers", "correct_answer": 0},
	{"id": "tryggve-lie", "title": "Tryggve Lie", "correct_answer": 1},
	{"id": "men-and-women", "title": "Men and Women", "correct_answer": 1},
	{"id": "the-mayas", "title": "The Mayas", "correct_answer": 2},
	{"id": "rock-posters", "title": "Rock Posters", "correct_answer": 2},
	{"id": "therapy", "title": "Therapy", "correct_answer": 3},
]


def find_passage_index(slug: str) -> Optional[int]:
	for i, passage in enumerate(PASSAGES):
		if passage["id"] == slug:
			return i
	return None


def correct_choice(passage_index: int) -> str:
	return ANSWER_CHOICES[int(PASSAGES[passage_index]["correct_answer"])]
