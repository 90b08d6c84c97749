from typing import List, Optional

from ..schemas import Manager, StoredAnalysis
from .sections import Block, report_sections


def _cell(value: str) -> str:
    return (value or "").replace("|", "\\|").replace("\r", " ").replace("\n", " ").strip()


def _render_block(block: Block) -> str:
    if block.kind == "meta":
        return "\n".join(f"**{label}:** {value}  " for label, value in block.rows) + "\n\n"

    if block.kind == "paragraph":
        return f"{block.text}\n\n"

    if block.kind == "quote":
        lines = block.text.splitlines() or [""]
        return "\n".join(f"> {line}" for line in lines) + "\n\n"

    if block.kind == "subheading":
        return f"### {block.text}\n\n"

    if block.kind == "bullets":
        return "\n".join(f"- {item}" for item in block.items) + "\n\n"

    if block.kind == "table":
        md = "| " + " | ".join(_cell(h) for h in block.headers) + " |\n"
        md += "|" + "|".join("---" for _ in block.headers) + "|\n"
        for row in block.rows:
            md += "| " + " | ".join(_cell(value) for value in row) + " |\n"
        return md + "\n"

    raise ValueError(f"Unknown block kind: {block.kind}")


def render_markdown(analysis: StoredAnalysis, manager: Optional[Manager] = None) -> str:
    """Render a stored analysis as a Markdown document"""
    parts: List[str] = []

    for section in report_sections(analysis, manager):
        if section.key == "title":
            parts.append(f"# {section.title}\n\n")
        elif section.key == "footer":
            parts.append("---\n\n")
            parts.extend(f"*{block.text}*\n" for block in section.blocks)
            continue
        else:
            parts.append(f"## {section.title}\n\n")

        parts.extend(_render_block(block) for block in section.blocks)

    return "".join(parts)
