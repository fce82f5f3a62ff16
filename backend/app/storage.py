from __future__ import annotations
import base64
import binascii
import json
import logging
import re
from pathlib import Path
from typing import Any, Optional, Tuple

from .settings import settings

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


def parse_data_url(data_url: str) -> Tuple[str, str]:
	"""Split a base64 data URL into (mime_type, base64_payload)."""
	match = _DATA_URL_RE.match(data_url or "")
	if not match:
		raise ValueError("Invalid data URL format")
	return match.group(1), match.group(2)


def decode_data_url_image(data_url: str) -> bytes:
	_, payload = parse_data_url(data_url)
	try:
		return base64.b64decode(payload, validate=True)
	except (binascii.Error, ValueError) as e:
		raise ValueError(f"Invalid base64 payload: {e}") from e


def encode_data_url_image(data: bytes, mime_type: str = "image/jpeg") -> str:
	return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def attempt_screenshot_key(session_id: str, passage_index: int, attempt_number: int) -> str:
	return f"sessions/{session_id}/passage_{passage_index}_attempt_{attempt_number}_screenshot.jpg"


def result_screenshot_key(session_id: str, passage_index: int) -> str:
	return f"sessions/{session_id}/passage_{passage_index}_screenshot.jpg"


def cursor_history_key(session_id: str, passage_index: int) -> str:
	return f"sessions/{session_id}/passage_{passage_index}_cursor_history.json"


class LocalBlobStore:
	"""Object storage for screenshots and raw cursor histories, backed by a directory."""

	def __init__(self, root: Optional[str] = None) -> None:
		self.root = Path(root or settings.blob_storage_dir).resolve()

	def _path(self, key: str) -> Path:
		if not key or key.startswith("/") or ".." in key.split("/"):
			raise ValueError(f"Invalid blob key: {key!r}")
		return self.root / key

	def put(self, key: str, data: bytes) -> str:
		path = self._path(key)
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_bytes(data)
		return key

	def get(self, key: str) -> Optional[bytes]:
		path = self._path(key)
		if not path.is_file():
			logger.warning("Blob not found: %s", key)
			return None
		return path.read_bytes()

	def put_json(self, key: str, value: Any) -> str:
		return self.put(key, json.dumps(value).encode("utf-8"))

	def get_json(self, key: str) -> Any:
		raw = self.get(key)
		if raw is None:
			return None
		return json.loads(raw.decode("utf-8"))

	def delete(self, key: str) -> bool:
		path = self._path(key)
		if path.is_file():
			path.unlink()
			return True
		return False


_store: Optional[LocalBlobStore] = None


def get_blob_store() -> LocalBlobStore:
	global _store
	if _store is None:
		_store = LocalBlobStore()
	return _store
