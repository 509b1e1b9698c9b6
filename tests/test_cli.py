"""Tests for the command line interface."""

import json
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from medparse.cli import app
from medparse.errors import InvalidParserSelectionError
from medparse.models import MergedHealthRecord, PageProvenance, ParseResult, TestResultEntry

runner = CliRunner()


def parse_result():
    return ParseResult(
        data=[MergedHealthRecord(name="Jan", date="2024-01-02", test_result={"CRP": TestResultEntry(value="4.2", unit="mg/L")})],
        pages=[{"CRP": PageProvenance(page=1)}],
        ocr_results=[],
        fallback_used=True,
    )


class TestProcessCommand:
    """Tests for `medparse process`."""

    @patch("medparse.cli.setup_logging")
    @patch("medparse.cli.HealthDataPipeline.parse_bytes", new_callable=AsyncMock)
    def test_writes_output(self, mock_parse, mock_logging, tmp_path):
        mock_parse.return_value = parse_result()
        source = tmp_path / "scan.png"
        source.write_bytes(b"image")
        output = tmp_path / "result.json"

        result = runner.invoke(app, ["process", str(source), "--vision-model", "llava", "--output", str(output)])

        assert result.exit_code == 0, result.output
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["data"][0]["test_result"]["CRP"]["value"] == "4.2"
        assert data["pages"][0]["CRP"] == {"page": 1}
        assert mock_parse.await_args.kwargs["vision"].model == "llava"
        assert mock_parse.await_args.kwargs["document_parser"] is None

    @patch("medparse.cli.setup_logging")
    @patch("medparse.cli.HealthDataPipeline.parse_bytes", new_callable=AsyncMock)
    def test_selection_error_exit_code(self, mock_parse, mock_logging, tmp_path):
        mock_parse.side_effect = InvalidParserSelectionError("vision", "Gemini", ["Ollama"])
        source = tmp_path / "scan.png"
        source.write_bytes(b"image")

        result = runner.invoke(app, ["process", str(source), "--vision-parser", "Gemini"])

        assert result.exit_code == 1
        assert "Invalid vision parser" in result.output


class TestBatchCommand:
    """Tests for `medparse batch`."""

    @patch("medparse.cli.setup_logging")
    @patch("medparse.cli.HealthDataPipeline.parse_bytes", new_callable=AsyncMock)
    def test_processes_supported_files(self, mock_parse, mock_logging, tmp_path):
        mock_parse.return_value = parse_result()
        source_dir = tmp_path / "in"
        source_dir.mkdir()
        (source_dir / "a.pdf").write_bytes(b"%PDF-1.4")
        (source_dir / "b.png").write_bytes(b"image")
        (source_dir / "notes.txt").write_text("skip me")
        output_dir = tmp_path / "out"

        result = runner.invoke(app, ["batch", str(source_dir), "--output-dir", str(output_dir)])

        assert result.exit_code == 0, result.output
        assert sorted(path.name for path in output_dir.iterdir()) == ["a.json", "b.json"]
        assert mock_parse.await_count == 2
