"""Repository safety scanner entry point.

Scans one GitHub repository for threats to people who clone, install or
contribute to it, prints a verdict and stores the result.

    python -m scanner.main https://github.com/owner/repo
"""

import json
import os
import sys
from typing import List, Optional

from scanner.config import ScanConfig
from scanner.errors import ScannerError
from scanner.logging_config import configure_logging
from scanner.models import CATEGORIES, SafetyLevel, ScanResult, Severity
from scanner.store import JsonFileStore
from scanner.workflow import ScanWorkflow

EXIT_OK = 0
EXIT_UNSAFE = 1
EXIT_ERROR = 2

LEVEL_ICONS = {
    SafetyLevel.SAFE: "🟢",
    SafetyLevel.CAUTION: "🟡",
    SafetyLevel.UNSAFE: "🔴",
}


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    repo_url = argv[0] if argv else os.environ.get("REPO_URL", "")
    output_path = os.environ.get("OUTPUT_PATH", "")

    if not repo_url:
        print("Error: pass a repository URL or set the REPO_URL environment variable.")
        return EXIT_ERROR

    try:
        config = ScanConfig.from_env()
    except ScannerError as e:
        print(f"Error: {e}")
        return EXIT_ERROR

    configure_logging(config.log_level)
    workflow = ScanWorkflow(config, store=JsonFileStore(config.store_path))

    print(f"🛡️ Scanning {repo_url}")
    try:
        result = workflow.scan(repo_url, scanned_by=os.environ.get("SCANNED_BY", "cli"))
    except ScannerError as e:
        print(f"❌ Scan failed: {e}")
        return EXIT_ERROR

    _print_summary(result)

    if output_path:
        _write_result(result, output_path)

    if result.safety_level == SafetyLevel.UNSAFE:
        print("\n⛔ Repository is UNSAFE to contribute to.")
        return EXIT_UNSAFE

    print("\n✅ Scan complete.")
    return EXIT_OK


def _print_summary(result: ScanResult) -> None:
    metadata = result.repo_metadata
    name = metadata.full_name if metadata else result.repo_url
    icon = LEVEL_ICONS.get(result.safety_level, "")

    print(f"\n{'='*50}")
    print(f"📊 Scan Summary for {name}")
    print(f"{'='*50}")
    print(f"  {icon} Safety level: {result.safety_level.value.upper()}")
    for attr, key in CATEGORIES:
        items = getattr(result.findings, attr)
        severe = sum(1 for f in items if f.severity == Severity.SEVERE)
        print(f"  {key + ':':<18} {len(items)} ({severe} severe)")
    print(f"  {'Total:':<18} {result.findings.total}")
    if result.trusted_by_star:
        print(f"  ⭐ Trusted by stars ({metadata.stars if metadata else '?'}), full scan skipped")
    if result.unchanged_since_last_scan:
        print("  ♻️ Unchanged since last scan, cached result")
    if result.corrections:
        print(f"  ✏️ Corrections: {len(result.corrections)}")
        for correction in result.corrections:
            print(f"     - {correction}")
    print(f"{'='*50}")
    print(result.ai_summary)


def _write_result(result: ScanResult, path: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)
    except OSError as e:
        print(f"⚠️ Could not write result to {path}: {e}")
        return
    print(f"💾 Result written to {path}")


if __name__ == "__main__":
    sys.exit(main())
