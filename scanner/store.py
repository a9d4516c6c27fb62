"""Scan record storage.

The workflow only needs two operations from a store, described by
``ScanStore``. ``JsonFileStore`` keeps records in a local JSON document.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from scanner.errors import StoreError
from scanner.models import PriorRecord, ScanResult, parse_datetime

logger = logging.getLogger(__name__)


class ScanStore(Protocol):
    def find_by_owner_and_name(self, owner: str, name: str) -> Optional[PriorRecord]:
        ...

    def upsert(self, record: PriorRecord) -> None:
        ...


def record_for(owner: str, name: str, result: ScanResult, scanned_by: str) -> PriorRecord:
    language = result.repo_metadata.language if result.repo_metadata else "Unknown"
    return PriorRecord(
        owner=owner,
        name=name,
        language=language or "Unknown",
        safety_score=result.safety_level.score,
        result=result,
        scanned_at=result.scanned_at or datetime.now(timezone.utc),
        scanned_by=scanned_by,
    )


def _to_json(record: PriorRecord) -> Dict[str, Any]:
    return {
        "repoOwner": record.owner,
        "repoName": record.name,
        "language": record.language,
        "safetyScore": record.safety_score,
        "findings": record.result.to_dict(),
        "scannedAt": record.scanned_at.isoformat(),
        "scannedBy": record.scanned_by,
    }


def _from_json(data: Dict[str, Any]) -> PriorRecord:
    return PriorRecord(
        owner=data["repoOwner"],
        name=data["repoName"],
        language=data.get("language") or "Unknown",
        safety_score=data.get("safetyScore") or "CAUTION",
        result=ScanResult.from_dict(data.get("findings") or {}),
        scanned_at=parse_datetime(data.get("scannedAt")),
        scanned_by=data.get("scannedBy") or "unknown",
    )


def _same_repo(data: Dict[str, Any], owner: str, name: str) -> bool:
    return (
        str(data.get("repoOwner", "")).lower() == owner.lower()
        and str(data.get("repoName", "")).lower() == name.lower()
    )


class JsonFileStore:
    """Scan records in one JSON file, one record per owner/name."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("⚠️ Unreadable scan store %s, treating as empty: %s", self.path, e)
            return []
        repos = data.get("repos") if isinstance(data, dict) else None
        return [r for r in repos if isinstance(r, dict)] if isinstance(repos, list) else []

    def _save(self, repos: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump({"repos": repos}, f, indent=2, ensure_ascii=False)
        tmp.replace(self.path)

    def find_by_owner_and_name(self, owner: str, name: str) -> Optional[PriorRecord]:
        with self._lock:
            repos = self._load()
        for data in repos:
            if _same_repo(data, owner, name):
                try:
                    return _from_json(data)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("⚠️ Ignoring malformed record for %s/%s: %s", owner, name, e)
                    return None
        return None

    def upsert(self, record: PriorRecord) -> None:
        with self._lock:
            repos = [r for r in self._load() if not _same_repo(r, record.owner, record.name)]
            repos.insert(0, _to_json(record))
            try:
                self._save(repos)
            except OSError as e:
                raise StoreError(f"Failed to write scan store {self.path}: {e}") from e
        logger.info("💾 Saved scan of %s/%s to %s", record.owner, record.name, self.path)
