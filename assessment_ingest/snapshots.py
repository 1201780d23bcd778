from __future__ import annotations
import logging
import re
from pathlib import Path
from typing import Any, List, Optional

from .utils import load_json, save_json, snapshots_dir

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class SnapshotStore:
    """
    Keyed JSON snapshots on disk (one file per key under a namespace directory).

    Used for partially completed import settings and for operator-confirmed
    mapping profiles. Nothing is cached in memory: every load reads the file,
    and clear/clear_all remove files explicitly.
    """

    def __init__(self, namespace: str = "default", root: Optional[Path] = None):
        base = Path(root) if root is not None else snapshots_dir()
        self.namespace = namespace
        self.root = base / _KEY_RE.sub("_", namespace)

    def _path(self, key: str) -> Path:
        safe = _KEY_RE.sub("_", str(key)).strip("._") or "_"
        return self.root / f"{safe}.json"

    def save(self, key: str, data: Any) -> Path:
        path = self._path(key)
        save_json(path, {"key": str(key), "data": data})
        logger.debug("Snapshot saved: %s/%s", self.namespace, key)
        return path

    def load(self, key: str, default: Any = None) -> Any:
        obj = load_json(self._path(key), None)
        if not isinstance(obj, dict) or "data" not in obj:
            return default
        return obj["data"]

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def keys(self) -> List[str]:
        if not self.root.exists():
            return []
        out = []
        for p in sorted(self.root.glob("*.json")):
            obj = load_json(p, None)
            if isinstance(obj, dict) and "key" in obj:
                out.append(str(obj["key"]))
        return out

    def clear(self, key: str) -> bool:
        path = self._path(key)
        if path.exists():
            path.unlink()
            logger.debug("Snapshot cleared: %s/%s", self.namespace, key)
            return True
        return False

    def clear_all(self) -> int:
        if not self.root.exists():
            return 0
        n = 0
        for p in self.root.glob("*.json"):
            p.unlink()
            n += 1
        logger.debug("Cleared %d snapshots in %s", n, self.namespace)
        return n
