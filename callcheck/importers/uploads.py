from pathlib import Path

from ..errors import ValidationError
from ..schemas import AnyChecklist
from .tabular import TabularChecklistImporter
from .text import TextChecklistImporter

TEXT_EXTENSIONS = (".txt", ".md", ".json")
TABLE_EXTENSIONS = (".csv", ".xlsx", ".xls")
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS + TABLE_EXTENSIONS


def parse_checklist_upload(filename: str, data: bytes) -> AnyChecklist:
    """Parse an uploaded checklist file into a normalized checklist"""
    suffix = Path(filename or "").suffix.lower()

    if suffix in TEXT_EXTENSIONS:
        return TextChecklistImporter().parse_bytes(data, filename)
    if suffix in TABLE_EXTENSIONS:
        return TabularChecklistImporter().parse_bytes(data, filename)

    raise ValidationError(
        f"Unsupported checklist format '{suffix or filename}'. "
        f"Supported formats: {', '.join(SUPPORTED_EXTENSIONS)}"
    )
