"""Unit tests for batched risk detection."""

from scanner.errors import InferenceRetryError, JsonExtractionError
from scanner.github_client import LOCK_FILE_MARKER
from scanner.steps import risk_detection
from scanner.steps.risk_detection import RISK_SCHEMA, build_prompt, make_batches


def _contents(n):
    return {f"scripts/file{i}.js": f"console.log({i})" for i in range(n)}


class TestMakeBatches:
    def test_splits_in_order(self):
        assert make_batches(["a", "b", "c", "d", "e", "f", "g"], 3) == [["a", "b", "c"], ["d", "e", "f"], ["g"]]

    def test_empty(self):
        assert make_batches([], 5) == []


class TestBuildPrompt:
    def test_formats_each_file(self, metadata):
        contents = {
            "package.json": '{"name": "x"}',
            "package-lock.json": LOCK_FILE_MARKER,
            ".env": None,
        }
        prompt = build_prompt(list(contents), 2, metadata, contents)

        assert "Analyze these 3 files from octo-dev/left-pad-ng" in prompt
        assert '\n=== package.json ===\n{"name": "x"}\n' in prompt
        assert f"package-lock.json: {LOCK_FILE_MARKER}" in prompt
        assert ".env: [Could not read]" in prompt
        assert '"batchId": 2' in prompt


class TestRun:
    def test_single_batch(self, metadata, scripted_client, make_findings, severe_finding):
        client = scripted_client({"findings": make_findings(maliciousCode=[severe_finding])})

        report = risk_detection.run(client, metadata, _contents(3), batch_size=5)

        assert report.batches_total == 1
        assert report.complete
        assert report.findings.malicious_code[0].item == "Remote script in postinstall"
        call = client.calls[0]
        assert call["temperature"] == 0.2
        assert call["max_output_tokens"] == 65536
        assert call["response_schema"] is RISK_SCHEMA

    def test_failed_batch_is_skipped(self, metadata, scripted_client, make_findings, moderate_finding):
        answers = []
        for batch_num in range(1, 5):
            if batch_num == 2:
                answers.append(InferenceRetryError("quota", attempts=3))
            else:
                answers.append({"findings": make_findings(dependencies=[dict(moderate_finding, batchId=batch_num)])})
        client = scripted_client(*answers)

        report = risk_detection.run(client, metadata, _contents(20), batch_size=5)

        assert len(client.calls) == 4
        assert report.batches_total == 4
        assert report.batches_failed == 1
        assert not report.complete
        assert [f.batch_id for f in report.findings.dependencies] == [1, 3, 4]

    def test_unparseable_batch_is_skipped(self, metadata, scripted_client):
        client = scripted_client(JsonExtractionError("no json"), {"findings": {}})
        report = risk_detection.run(client, metadata, _contents(2), batch_size=1)
        assert report.batches_failed == 1
        assert report.findings.is_empty()

    def test_non_object_answer_counts_as_failure(self, metadata, scripted_client):
        client = scripted_client([1, 2, 3])
        report = risk_detection.run(client, metadata, _contents(1))
        assert report.batches_failed == 1

    def test_low_findings_are_dropped(self, metadata, scripted_client, make_findings, low_finding, moderate_finding):
        client = scripted_client({"findings": make_findings(
            networkActivity=[low_finding],
            dependencies=[moderate_finding],
        )})
        report = risk_detection.run(client, metadata, _contents(1))
        assert report.findings.network_activity == []
        assert len(report.findings.dependencies) == 1

    def test_missing_batch_id_is_filled(self, metadata, scripted_client, make_findings, severe_finding):
        finding = dict(severe_finding)
        del finding["batchId"]
        client = scripted_client({}, {"findings": make_findings(credentialSafety=[finding])})
        report = risk_detection.run(client, metadata, _contents(2), batch_size=1)
        assert report.findings.credential_safety[0].batch_id == 2

    def test_no_files_makes_no_calls(self, metadata, scripted_client):
        client = scripted_client()
        report = risk_detection.run(client, metadata, {})
        assert client.calls == []
        assert report.batches_total == 0

    def test_non_finite_batch_id_is_filled(self, metadata, scripted_client, make_findings, moderate_finding):
        client = scripted_client(
            {"findings": make_findings(dependencies=[dict(moderate_finding, batchId=float("inf"))])},
            {"findings": make_findings(dependencies=[dict(moderate_finding, batchId=2)])},
        )

        report = risk_detection.run(client, metadata, _contents(2), batch_size=1)

        assert report.batches_failed == 0
        assert [f.batch_id for f in report.findings.dependencies] == [1, 2]
