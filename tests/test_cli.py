import json

from typer.testing import CliRunner

from callcheck.cli import app

runner = CliRunner()


class TestCli:
    def test_import_checklist_writes_normalized_json(self, tmp_path):
        source = tmp_path / "sales.md"
        source.write_text("# Sales\n## Mandatory\n- Greeting | Manager introduces self\n", encoding="utf-8")
        output = tmp_path / "out" / "sales.json"

        result = runner.invoke(app, ["import-checklist", str(source), "--out", str(output)])

        assert result.exit_code == 0
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["name"] == "Sales"
        assert data["items"][0]["type"] == "mandatory"
        assert data["items"][0]["criteria"]["llm_hint"] == "Manager introduces self"

    def test_import_missing_file(self, tmp_path):
        result = runner.invoke(app, ["import-checklist", str(tmp_path / "missing.md")])
        assert result.exit_code == 1

    def test_list_builtin_checklists(self):
        result = runner.invoke(app, ["checklists"])
        assert result.exit_code == 0

    def test_analyze_rejects_unknown_format(self, tmp_path):
        transcript = tmp_path / "call.txt"
        transcript.write_text("Hello", encoding="utf-8")

        result = runner.invoke(app, ["analyze", str(transcript), "-c", str(tmp_path / "list.md"), "--format", "docx"])

        assert result.exit_code == 1
