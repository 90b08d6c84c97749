import typer
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from rich.console import Console
from rich.table import Table
from rich.progress import track

from .analyzer import AnalysisRun, Analyzer
from .config import Settings
from .defaults import default_checklists
from .errors import CallCheckError
from .importers.uploads import SUPPORTED_EXTENSIONS, parse_checklist_upload
from .provider import OpenAIProvider
from .renderers.markdown import render_markdown
from .renderers.pdf import render_pdf
from .retry import RetryPolicy
from .schemas import AdvancedChecklist, AnyChecklist, StoredAnalysis, TranscriptPayload
from .storage.base import new_id
from .transcription import AUDIO_EXTENSIONS, Transcriber

app = typer.Typer(help="CallCheck - LLM-powered call and correspondence checklist analysis")
console = Console()

TEXT_TRANSCRIPT_EXTENSIONS = (".txt", ".md", ".json")
REPORT_FORMATS = ("md", "pdf", "json")


def _collect_transcripts(path: Path) -> List[Path]:
    supported = TEXT_TRANSCRIPT_EXTENSIONS + AUDIO_EXTENSIONS
    if path.is_dir():
        return sorted(p for p in path.iterdir() if p.suffix.lower() in supported)
    return [path]


def _load_checklist(path: Path) -> AnyChecklist:
    with open(path, 'rb') as f:
        return parse_checklist_upload(path.name, f.read())


def _load_transcript(path: Path, transcriber: Transcriber, language: str):
    """Read a text or JSON transcript, or transcribe an audio file"""
    suffix = path.suffix.lower()
    if suffix in AUDIO_EXTENSIONS:
        with open(path, 'rb') as f:
            transcript, _ = transcriber.transcribe_audio(f.read(), path.name, language=language)
        return TranscriptPayload(segments=transcript.segments, language=transcript.language, duration=transcript.duration)

    with open(path, 'r', encoding='utf-8') as f:
        content = f.read()
    if suffix == ".json":
        return TranscriptPayload.model_validate(json.loads(content))
    return content


def _write_report(analysis: StoredAnalysis, output_dir: Path, stem: str, fmt: str, font_path: Optional[str]) -> Path:
    output_path = output_dir / f"{stem}.{fmt}"
    if fmt == "md":
        output_path.write_text(render_markdown(analysis), encoding='utf-8')
    elif fmt == "pdf":
        output_path.write_bytes(render_pdf(analysis, font_path=font_path))
    else:
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(analysis.to_wire(), f, indent=2, ensure_ascii=False)
    return output_path


@app.command()
def analyze(
    transcript_path: Path = typer.Argument(..., help="Transcript file (.txt, .md, .json, audio) or a directory of them"),
    checklist_path: Path = typer.Option(..., "--checklist", "-c", help="Checklist file (.txt, .md, .json, .csv, .xlsx, .xls)"),
    source: str = typer.Option("call", "--source", help="call or correspondence"),
    language: Optional[str] = typer.Option(None, "--language", help="Conversation language code"),
    llm_model: Optional[str] = typer.Option(None, "--model", help="LLM model to use"),
    output_dir: Path = typer.Option(Path("out"), "--out", help="Output directory for reports"),
    fmt: str = typer.Option("md", "--format", help="Report format: md, pdf or json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output")
):
    """Analyze transcripts against a checklist and write reports."""

    if not transcript_path.exists():
        console.print(f"[red]Error: {transcript_path} does not exist[/red]")
        raise typer.Exit(1)
    if source not in ("call", "correspondence"):
        console.print(f"[red]Error: --source must be call or correspondence, got {source}[/red]")
        raise typer.Exit(1)
    if fmt not in REPORT_FORMATS:
        console.print(f"[red]Error: --format must be one of {', '.join(REPORT_FORMATS)}[/red]")
        raise typer.Exit(1)

    if verbose:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        checklist = _load_checklist(checklist_path)
    except (OSError, CallCheckError) as e:
        console.print(f"[red]Error loading checklist {checklist_path}: {e}[/red]")
        raise typer.Exit(1)

    files = _collect_transcripts(transcript_path)
    if not files:
        console.print(f"[red]Error: No transcript files found in {transcript_path}[/red]")
        raise typer.Exit(1)

    settings = Settings.from_env()
    if llm_model:
        settings = settings.model_copy(update={"llm_model": llm_model})
    if not settings.openai_api_key:
        console.print("[red]Error: OPENAI_API_KEY is not set[/red]")
        console.print("[yellow]Make sure OPENAI_API_KEY is set in .env file[/yellow]")
        raise typer.Exit(1)

    language = language or settings.default_language
    provider = OpenAIProvider.from_settings(settings)
    policy = RetryPolicy.from_settings(settings)
    analyzer = Analyzer(provider, policy)
    transcriber = Transcriber(provider, retry_policy=policy)
    output_dir.mkdir(parents=True, exist_ok=True)

    if verbose:
        model_info = provider.get_model_info()
        console.print(
            f"✓ {model_info['model']}: {model_info['config'].get('description', 'Unknown')} "
            f"(temperature {model_info['temperature']}, max tokens {model_info['max_tokens']})"
        )

    console.print(f"Analyzing {len(files)} transcripts against '{checklist.name}' ({settings.llm_model})...")
    files_processed = 0
    files_failed = 0

    for transcript_file in track(files, description="Analyzing transcripts..."):
        try:
            transcript = _load_transcript(transcript_file, transcriber, language)
            run = AnalysisRun(new_id("an"))
            if isinstance(checklist, AdvancedChecklist):
                report = analyzer.analyze_advanced(transcript, checklist, source, language, run=run)
                reports = {"advanced_report": report}
                analyzed_at = report.meta.analyzed_at
            else:
                result = analyzer.analyze(transcript, checklist, source, language, run=run)
                reports = {"checklist_report": result.checklist_report, "objections_report": result.objections_report}
                analyzed_at = result.checklist_report.meta.analyzed_at

            analysis = StoredAnalysis(
                id=run.id,
                kind="advanced" if isinstance(checklist, AdvancedChecklist) else "simple",
                checklist_name=checklist.name,
                source=source,
                language=language,
                transcript=transcriber.from_text(transcript, source, language).text,
                analyzed_at=datetime.fromisoformat(analyzed_at.replace("Z", "+00:00")),
                **reports,
            )
            output_path = _write_report(analysis, output_dir, transcript_file.stem, fmt, settings.pdf_font_path)
            files_processed += 1

            if verbose:
                console.print(f"[green]✓[/green] {transcript_file.name} -> {output_path.name}")

        except (OSError, ValueError, CallCheckError) as e:
            files_failed += 1
            console.print(f"[red]✗[/red] Failed to analyze {transcript_file.name}: {e}")

    # Summary
    console.print(f"\n[bold green]Analysis completed![/bold green]")
    console.print(f"Files processed: {files_processed}")
    console.print(f"Files failed: {files_failed}")
    console.print(f"Output directory: {output_dir}")

    if files_failed and not files_processed:
        raise typer.Exit(1)


@app.command("import-checklist")
def import_checklist(
    checklist_path: Path = typer.Argument(..., help=f"Checklist file ({', '.join(SUPPORTED_EXTENSIONS)})"),
    output_path: Optional[Path] = typer.Option(None, "--out", help="Write the normalized checklist JSON here")
):
    """Parse a checklist file and print or save the normalized checklist."""

    if not checklist_path.exists():
        console.print(f"[red]Error: {checklist_path} does not exist[/red]")
        raise typer.Exit(1)

    try:
        checklist = _load_checklist(checklist_path)
    except CallCheckError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    payload = json.dumps(checklist.to_wire(), indent=2, ensure_ascii=False)
    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(payload, encoding='utf-8')
        console.print(f"[green]✓[/green] Saved '{checklist.name}' to {output_path}")
    else:
        console.print_json(payload)


@app.command()
def checklists():
    """List the built-in checklists."""

    table = Table(title="Built-in checklists")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Items", justify="right")

    for checklist in default_checklists():
        if isinstance(checklist, AdvancedChecklist):
            count = sum(1 for _ in checklist.iter_criteria())
        else:
            count = len(checklist.items)
        table.add_row(checklist.id, checklist.name, checklist.type, str(count))

    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8080, "--port", envvar="PORT", help="Bind port")
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    console.print(f"Starting CallCheck API on {host}:{port}")
    uvicorn.run("main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    app()
