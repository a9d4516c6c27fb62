"""Per-step JSON dumps of a scan, for debugging prompt and parsing changes."""

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ArtifactWriter:
    """Writes step outputs under ``<results_dir>/<timestamp>_<owner>-<repo>/``.

    Disabled when ``results_dir`` is empty. Write failures are logged only.
    """

    def __init__(self, results_dir: Optional[str], owner: str, name: str, now: Optional[datetime] = None):
        self.folder = None
        if not results_dir:
            return
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S")
        slug = re.sub(r"[^a-zA-Z0-9-]", "_", f"{owner}-{name}")
        self.folder = os.path.join(results_dir, f"{stamp}_{slug}")

    @property
    def enabled(self) -> bool:
        return self.folder is not None

    def write(self, filename: str, payload: Any) -> Optional[str]:
        if not self.enabled:
            return None
        path = os.path.join(self.folder, filename)
        try:
            os.makedirs(self.folder, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.warning("⚠️ Could not write scan artifact %s: %s", path, e)
            return None
        return path
