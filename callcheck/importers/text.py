import re
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..checklists import normalize_checklist, normalize_simple_checklist
from ..errors import ValidationError
from ..schemas import AnyChecklist

# Heading / tag keywords that set the item type. Matched as prefixes so plural
# and inflected forms ("Mandatory items", "обязательные") also work.
TYPE_KEYWORDS = [
    ("mandatory", "mandatory"),
    ("required", "mandatory"),
    ("must", "mandatory"),
    ("обязательн", "mandatory"),
    ("recommended", "recommended"),
    ("optional", "recommended"),
    ("рекомендуем", "recommended"),
    ("prohibited", "prohibited"),
    ("forbidden", "prohibited"),
    ("запрещ", "prohibited"),
]


def decode_text(data: bytes) -> str:
    """Decode an uploaded text file, accepting UTF-8 (with or without BOM) and cp1251"""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass
    try:
        return data.decode("cp1251")
    except UnicodeDecodeError:
        raise ValidationError("Checklist file must be UTF-8 or cp1251 encoded text")


def keyword_type(text: str) -> Optional[str]:
    lowered = text.strip().lower()
    for keyword, item_type in TYPE_KEYWORDS:
        if lowered.startswith(keyword):
            return item_type
    return None


def slugify(text: str) -> str:
    slug = re.sub(r'[^\w]+', '-', text.lower(), flags=re.UNICODE).strip('-_')
    return slug[:48].rstrip('-')


def assign_ids(items: List[Dict[str, Any]]):
    """Give items without an explicit id a unique slug derived from the title"""
    used = {item["id"] for item in items if item.get("id")}
    for index, item in enumerate(items):
        if item.get("id"):
            continue
        base = slugify(item.get("title", "")) or f"item-{index + 1}"
        candidate = base
        suffix = 2
        while candidate in used:
            candidate = f"{base}-{suffix}"
            suffix += 1
        item["id"] = candidate
        used.add(candidate)


class TextChecklistImporter:
    """Parses .txt / .md / .json checklist files.

    JSON content is imported as-is. Otherwise every list line (and, for .txt,
    every plain line) becomes an item:

        # Sales call
        ## Mandatory
        - Greeting | Manager introduces self and company
        - [prohibited] Promises without basis
    """

    def __init__(self):
        self.heading_pattern = re.compile(r'^(#{1,6})\s+(.+?)\s*#*$')
        self.list_pattern = re.compile(r'^\s*(?:[-*+•]|\d+[.)])\s+(?:\[[ xX]\]\s+)?(.+)$')
        self.tag_pattern = re.compile(r'^\[([^\]]+)\]\s*(.+)$')

    def parse_file(self, file_path: Path) -> AnyChecklist:
        with open(file_path, 'rb') as f:
            data = f.read()
        return self.parse_bytes(data, file_path.name)

    def parse_bytes(self, data: bytes, filename: str) -> AnyChecklist:
        content = decode_text(data)
        path = Path(filename)
        if not content.strip():
            raise ValidationError("Checklist file is empty")

        stripped = content.strip()
        if path.suffix.lower() == '.json' or stripped.startswith('{'):
            return self._parse_json(stripped, path.stem)

        return self.parse_lines(content, path.stem, markdown=path.suffix.lower() == '.md')

    def _parse_json(self, content: str, default_name: str) -> AnyChecklist:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON checklist: {e.msg} (line {e.lineno})")
        if isinstance(data, dict) and not (data.get("name") or data.get("title")):
            data["name"] = default_name
        return normalize_checklist(data)

    def parse_lines(self, content: str, default_name: str, markdown: bool = False) -> AnyChecklist:
        name = None
        current_type = None
        items = []

        for line in content.splitlines():
            if not line.strip():
                continue

            heading = self.heading_pattern.match(line.strip())
            if heading:
                level = len(heading.group(1))
                text = heading.group(2).strip()
                if level == 1 and name is None and not items:
                    name = text
                else:
                    current_type = keyword_type(text)
                continue

            list_match = self.list_pattern.match(line)
            if list_match:
                text = list_match.group(1)
            elif markdown:
                # Plain paragraphs in Markdown are descriptions, not items
                continue
            else:
                text = line.strip()

            item = self._parse_item(text, current_type)
            if item:
                items.append(item)

        if not items:
            raise ValidationError("No checklist items found in file")

        assign_ids(items)
        return normalize_simple_checklist({"name": name or default_name, "items": items})

    def _parse_item(self, text: str, current_type: Optional[str]) -> Optional[Dict[str, Any]]:
        item_type = current_type
        tag = self.tag_pattern.match(text)
        if tag and keyword_type(tag.group(1)):
            item_type = keyword_type(tag.group(1))
            text = tag.group(2)

        title, _, hint = text.partition("|")
        title = title.strip()
        if not title:
            return None

        item = {"title": title, "criteria": {}}
        if item_type:
            item["type"] = item_type
        if hint.strip():
            item["criteria"]["llm_hint"] = hint.strip()
        return item
