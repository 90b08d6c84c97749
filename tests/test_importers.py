import io
import json
import tempfile
from pathlib import Path

import openpyxl
import pytest

from callcheck.errors import ValidationError
from callcheck.importers.tabular import TabularChecklistImporter
from callcheck.importers.text import TextChecklistImporter, slugify
from callcheck.importers.uploads import parse_checklist_upload
from callcheck.schemas import AdvancedChecklist, Checklist


class TestTextChecklistImporter:
    def setup_method(self):
        self.importer = TextChecklistImporter()

    def test_parse_markdown_sections(self):
        content = """# Sales call

Use this for every outbound call.

## Mandatory
- Greeting | Manager introduces self and company
- Needs discovery

## Prohibited
- Promises without basis

- [recommended] Mention the case study
"""
        checklist = self.importer.parse_bytes(content.encode("utf-8"), "sales.md")

        assert isinstance(checklist, Checklist)
        assert checklist.name == "Sales call"
        assert [item.title for item in checklist.items] == [
            "Greeting", "Needs discovery", "Promises without basis", "Mention the case study"
        ]
        assert [item.type for item in checklist.items] == ["mandatory", "mandatory", "prohibited", "recommended"]
        assert checklist.items[0].criteria.llm_hint == "Manager introduces self and company"
        assert checklist.items[0].id == "greeting"

    def test_parse_plain_text_file(self):
        content = "Greeting\nAsk about budget\n\nAgree on next steps\n"
        with tempfile.NamedTemporaryFile(mode='w', suffix='.txt', delete=False, encoding='utf-8') as f:
            f.write(content)
            f.flush()

            checklist = self.importer.parse_file(Path(f.name))

            assert len(checklist.items) == 3
            assert checklist.name == Path(f.name).stem
            assert all(item.id and item.title for item in checklist.items)

        Path(f.name).unlink()

    def test_parse_cp1251_text(self):
        checklist = self.importer.parse_bytes("Приветствие\nВыявление потребностей\n".encode("cp1251"), "script.txt")
        assert [item.title for item in checklist.items] == ["Приветствие", "Выявление потребностей"]

    def test_parse_json_checklist(self):
        data = {"items": [{"id": "greet", "title": "Greeting", "type": "mandatory"}]}
        checklist = self.importer.parse_bytes(json.dumps(data).encode("utf-8"), "greet.json")

        assert checklist.name == "greet"
        assert checklist.items[0].id == "greet"

    def test_invalid_json_rejected(self):
        with pytest.raises(ValidationError):
            self.importer.parse_bytes(b"{not json", "broken.json")

    def test_markdown_without_items_rejected(self):
        with pytest.raises(ValidationError):
            self.importer.parse_bytes(b"# Title only\n\nJust a paragraph.\n", "empty.md")

    def test_empty_file_rejected(self):
        with pytest.raises(ValidationError):
            self.importer.parse_bytes(b"   \n", "empty.txt")

    def test_duplicate_titles_get_unique_ids(self):
        checklist = self.importer.parse_bytes(b"- Greeting\n- Greeting\n", "dup.md")
        assert [item.id for item in checklist.items] == ["greeting", "greeting-2"]

    def test_slugify(self):
        assert slugify("Ask about the budget!") == "ask-about-the-budget"


class TestTabularChecklistImporter:
    def setup_method(self):
        self.importer = TabularChecklistImporter()

    def test_parse_csv_with_header(self):
        content = (
            "id;title;type;hint;threshold\n"
            "greet;Greeting;mandatory;Introduces self;0.7\n"
            ";Needs discovery;recommended;;\n"
        )
        checklist = self.importer.parse_bytes(content.encode("utf-8"), "script.csv")

        assert checklist.name == "script"
        assert [item.id for item in checklist.items] == ["greet", "needs-discovery"]
        assert checklist.items[0].confidence_threshold == 0.7
        assert checklist.items[0].criteria.llm_hint == "Introduces self"
        assert checklist.items[1].criteria.llm_hint == "Needs discovery"

    def test_headerless_rows(self):
        checklist = self.importer.parse_rows([["Greeting", "Say hello"], ["Close the deal"]], "plain")

        assert [item.title for item in checklist.items] == ["Greeting", "Close the deal"]
        assert checklist.items[0].criteria.llm_hint == "Say hello"

    def test_staged_table_builds_advanced_checklist(self):
        rows = [
            ["stage", "number", "title", "weight", "max", "max_score", "binary"],
            ["Opening", "1.1", "Greeting", "10", "Full greeting", "10", ""],
            ["Opening", "1.2", "Introduction", "5", "", "", "yes"],
            ["Closing", "2.1", "Next step", "5", "", "", "yes"],
        ]
        checklist = self.importer.parse_rows(rows, "staged")

        assert isinstance(checklist, AdvancedChecklist)
        assert [stage.name for stage in checklist.stages] == ["Opening", "Closing"]
        assert checklist.total_score == 20
        assert checklist.stages[0].criteria[0].max.score == 10
        assert checklist.stages[0].criteria[1].binary is True

    def test_parse_xlsx(self):
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.append(["Title", "Type", "Hint"])
        sheet.append(["Greeting", "mandatory", "Introduces self"])
        sheet.append(["Rudeness", "prohibited", None])
        buffer = io.BytesIO()
        workbook.save(buffer)

        checklist = self.importer.parse_bytes(buffer.getvalue(), "support.xlsx")

        assert [item.title for item in checklist.items] == ["Greeting", "Rudeness"]
        assert [item.type for item in checklist.items] == ["mandatory", "prohibited"]

    def test_blank_table_rejected(self):
        with pytest.raises(ValidationError):
            self.importer.parse_bytes(b"\n\n", "blank.csv")

    def test_header_without_rows_rejected(self):
        with pytest.raises(ValidationError):
            self.importer.parse_rows([["id", "title"]], "header-only")


class TestParseChecklistUpload:
    def test_dispatches_by_extension(self):
        checklist = parse_checklist_upload("list.md", b"- Greeting\n- Closing\n")
        assert len(checklist.items) == 2

        checklist = parse_checklist_upload("list.csv", b"title\nGreeting\n")
        assert checklist.items[0].title == "Greeting"

    def test_unsupported_format_rejected(self):
        with pytest.raises(ValidationError) as exc:
            parse_checklist_upload("checklist.docx", b"whatever")
        assert "Unsupported checklist format" in exc.value.message
