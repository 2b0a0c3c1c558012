import copy
import threading
from typing import Dict, Any, List, Optional


class MemStorage:
    """Diagnostics kept in process memory, keyed by an increasing integer id."""

    def __init__(self):
        self._diagnostics: Dict[int, Dict[str, Any]] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def save(self, diagnostic: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            stored = dict(diagnostic)
            stored["id"] = self._next_id
            self._next_id += 1
            self._diagnostics[stored["id"]] = stored
            return copy.deepcopy(stored)

    def get(self, diagnostic_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            diagnostic = self._diagnostics.get(diagnostic_id)
            return copy.deepcopy(diagnostic) if diagnostic is not None else None

    def list(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            newest_first = sorted(self._diagnostics.values(), key=lambda d: d["id"], reverse=True)
            return [copy.deepcopy(d) for d in newest_first[:max(limit, 0)]]

    def __len__(self) -> int:
        with self._lock:
            return len(self._diagnostics)
