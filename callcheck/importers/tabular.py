import csv
import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import openpyxl
import xlrd

from ..checklists import normalize_advanced_checklist, normalize_simple_checklist
from ..errors import ValidationError
from ..schemas import AnyChecklist
from .text import assign_ids, decode_text

logger = logging.getLogger(__name__)

HEADER_ALIASES = {
    "id": ("id", "key", "code"),
    "title": ("title", "item", "name", "criterion", "question"),
    "type": ("type", "kind"),
    "llm_hint": ("llm_hint", "hint", "prompt"),
    "description": ("description", "details"),
    "positive_patterns": ("positive_patterns", "positive", "positive_phrases"),
    "negative_patterns": ("negative_patterns", "negative", "negative_phrases"),
    "confidence_threshold": ("confidence_threshold", "threshold", "confidence"),
    "stage": ("stage", "stage_name", "section"),
    "number": ("number", "no", "num", "#"),
    "weight": ("weight", "points", "max_points"),
    "max": ("max", "max_description"),
    "max_score": ("max_score",),
    "mid": ("mid", "mid_description"),
    "mid_score": ("mid_score",),
    "min": ("min", "min_description"),
    "min_score": ("min_score",),
    "binary": ("binary", "is_binary", "isbinary"),
}

_ALIAS_LOOKUP = {alias: key for key, aliases in HEADER_ALIASES.items() for alias in aliases}


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _header_key(value: str) -> Optional[str]:
    normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
    return _ALIAS_LOOKUP.get(normalized)


class TabularChecklistImporter:
    """Parses .csv / .xlsx / .xls checklist tables.

    A header row maps columns by name (see HEADER_ALIASES). Tables with both
    ``stage`` and ``weight`` columns describe an advanced checklist, one row per
    criterion. Without a recognizable header the first column is the item title
    and the second its hint.
    """

    def parse_file(self, file_path: Path) -> AnyChecklist:
        with open(file_path, 'rb') as f:
            data = f.read()
        return self.parse_bytes(data, file_path.name)

    def parse_bytes(self, data: bytes, filename: str) -> AnyChecklist:
        path = Path(filename)
        suffix = path.suffix.lower()

        if suffix == '.csv':
            rows = self._read_csv(data)
        elif suffix == '.xlsx':
            rows = self._read_xlsx(data)
        elif suffix == '.xls':
            rows = self._read_xls(data)
        else:
            raise ValidationError(f"Unsupported table format '{suffix}'")

        rows = [row for row in rows if any(cell for cell in row)]
        if not rows:
            raise ValidationError("Checklist table is empty")

        return self.parse_rows(rows, path.stem)

    def _read_csv(self, data: bytes) -> List[List[str]]:
        content = decode_text(data)
        try:
            dialect = csv.Sniffer().sniff(content[:2048], delimiters=",;\t")
        except csv.Error:
            dialect = csv.excel
        reader = csv.reader(io.StringIO(content), dialect)
        return [[_cell_text(cell) for cell in row] for row in reader]

    def _read_xlsx(self, data: bytes) -> List[List[str]]:
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except Exception as e:
            raise ValidationError(f"Could not read Excel workbook: {e}")
        try:
            sheet = workbook.worksheets[0]
            return [[_cell_text(cell) for cell in row] for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()

    def _read_xls(self, data: bytes) -> List[List[str]]:
        try:
            book = xlrd.open_workbook(file_contents=data)
        except Exception as e:
            raise ValidationError(f"Could not read Excel workbook: {e}")
        sheet = book.sheet_by_index(0)
        return [[_cell_text(cell) for cell in sheet.row_values(i)] for i in range(sheet.nrows)]

    def parse_rows(self, rows: List[List[str]], default_name: str) -> AnyChecklist:
        columns = {}
        for index, value in enumerate(rows[0]):
            key = _header_key(value)
            if key and key not in columns:
                columns[key] = index

        if "title" not in columns and "id" not in columns:
            logger.info(f"No header row recognized in {default_name}, using first column as titles")
            return self._parse_headerless(rows, default_name)

        records = []
        for row in rows[1:]:
            records.append({key: row[i] if i < len(row) else "" for key, i in columns.items()})

        if not records:
            raise ValidationError("Checklist table has a header but no rows")

        if "stage" in columns and "weight" in columns:
            return self._advanced_from_records(records, default_name)
        return self._simple_from_records(records, default_name)

    def _parse_headerless(self, rows: List[List[str]], default_name: str) -> AnyChecklist:
        items = []
        for row in rows:
            title = row[0] if row else ""
            hint = row[1] if len(row) > 1 else ""
            items.append({"title": title, "criteria": {"llm_hint": hint}})
        assign_ids(items)
        return normalize_simple_checklist({"name": default_name, "items": items})

    def _simple_from_records(self, records: List[Dict[str, str]], default_name: str) -> AnyChecklist:
        items = []
        for record in records:
            items.append({
                "id": record.get("id", ""),
                "title": record.get("title", ""),
                "type": record.get("type", ""),
                "criteria": {
                    "llm_hint": record.get("llm_hint") or record.get("description", ""),
                    "positive_patterns": record.get("positive_patterns", ""),
                    "negative_patterns": record.get("negative_patterns", ""),
                },
                "confidence_threshold": record.get("confidence_threshold", ""),
            })
        assign_ids([item for item in items if item["title"]])
        return normalize_simple_checklist({"name": default_name, "items": items})

    def _advanced_from_records(self, records: List[Dict[str, str]], default_name: str) -> AnyChecklist:
        stages = {}
        for record in records:
            stage_name = record.get("stage") or "Stage 1"
            if stage_name not in stages:
                stages[stage_name] = {"name": stage_name, "order": len(stages) + 1, "criteria": []}

            criterion = {
                "id": record.get("id", ""),
                "number": record.get("number", ""),
                "title": record.get("title", ""),
                "description": record.get("description", ""),
                "weight": record.get("weight", ""),
            }
            for level in ("max", "mid", "min"):
                description = record.get(level, "")
                score = record.get(f"{level}_score", "")
                if description or score:
                    criterion[level] = {"description": description, "score": score}
            binary = record.get("binary", "").lower()
            if binary:
                criterion["isBinary"] = binary in ("1", "true", "yes", "y", "да")
            stages[stage_name]["criteria"].append(criterion)

        return normalize_advanced_checklist({"name": default_name, "stages": list(stages.values())})
