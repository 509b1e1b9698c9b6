"""Health Document Parser CLI."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from medparse.config import settings
from medparse.errors import ExtractionBackendError, MedParseError
from medparse.log import setup_logging
from medparse.models import ParseResult
from medparse.parsers import DoclingDocumentParser, build_registries
from medparse.pipeline.batch import process_batch
from medparse.pipeline.orchestrator import DocumentParserOptions, HealthDataPipeline, VisionParserOptions
from medparse.storage import LocalObjectStore

app = typer.Typer(
    name="medparse",
    help="Extract structured health checkup results from medical documents",
    add_completion=False,
)
console = Console()

SUPPORTED_SUFFIXES = {".pdf", ".png", ".jpg", ".jpeg", ".gif", ".webp", ".tif", ".tiff", ".bmp"}


def _build_pipeline() -> HealthDataPipeline:
    return HealthDataPipeline(build_registries(settings), LocalObjectStore())


def _options(
    vision_parser: Optional[str],
    vision_model: Optional[str],
    api_key: str,
    api_url: Optional[str],
    document_parser: Optional[str],
    document_model: Optional[str],
) -> tuple[VisionParserOptions, Optional[DocumentParserOptions]]:
    vision = VisionParserOptions(
        parser=vision_parser,
        model=vision_model,
        api_key=api_key,
        api_url=api_url,
    )
    document = None
    if document_parser:
        document = DocumentParserOptions(parser=document_parser, model=document_model)
    return vision, document


def _dump(result: ParseResult) -> str:
    return json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False)


def _print_record(result: ParseResult) -> None:
    record = result.record
    table = Table(title=f"{record.name or 'Unknown'} ({record.date or 'no date'})")
    table.add_column("Test")
    table.add_column("Value", justify="right")
    table.add_column("Unit")
    table.add_column("Reference")
    table.add_column("Page", justify="right")

    pages = result.pages[0] if result.pages else {}
    for name, entry in record.test_result.items():
        page = pages.get(name)
        table.add_row(name, entry.value, entry.unit, entry.reference, str(page.page) if page else "")

    console.print(table)
    if result.fallback_used:
        console.print("[yellow]Vision-only fallback was used[/yellow]")


@app.command()
def process(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="PDF or image to process"),
    vision_parser: Optional[str] = typer.Option(None, help="Vision parser name"),
    vision_model: Optional[str] = typer.Option(None, help="Vision model id"),
    api_key: str = typer.Option("", envvar="MEDPARSE_VISION_API_KEY", help="Vision parser API key"),
    api_url: Optional[str] = typer.Option(None, help="Vision parser base URL"),
    document_parser: Optional[str] = typer.Option(None, help="Document parser name"),
    document_model: Optional[str] = typer.Option(None, help="Document parser model id"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write result JSON to this file"),
    log_level: Optional[str] = typer.Option(None, help="Logging level"),
) -> None:
    """Process a single document."""
    setup_logging(log_level)
    console.print(f"[bold blue]Processing:[/bold blue] {file_path}")

    vision, document = _options(vision_parser, vision_model, api_key, api_url, document_parser, document_model)
    pipeline = _build_pipeline()

    try:
        result = asyncio.run(
            pipeline.parse_bytes(
                file_path.read_bytes(),
                filename=file_path.name,
                vision=vision,
                document_parser=document,
            )
        )
    except MedParseError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1) from e

    _print_record(result)
    if output:
        output.write_text(_dump(result), encoding="utf-8")
        console.print(f"[dim]Result written to {output}[/dim]")


@app.command()
def batch(
    directory: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory containing documents"),
    output_dir: Path = typer.Option(Path("./output"), help="Output directory"),
    workers: int = typer.Option(2, min=1, help="Number of documents processed in parallel"),
    vision_parser: Optional[str] = typer.Option(None, help="Vision parser name"),
    vision_model: Optional[str] = typer.Option(None, help="Vision model id"),
    document_parser: Optional[str] = typer.Option(None, help="Document parser name"),
    document_model: Optional[str] = typer.Option(None, help="Document parser model id"),
    log_level: Optional[str] = typer.Option(None, help="Logging level"),
) -> None:
    """Batch process all documents in a directory."""
    setup_logging(log_level)

    files = sorted(p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES)
    if not files:
        console.print(f"[yellow]No documents found in {directory}[/yellow]")
        raise typer.Exit()

    console.print(f"[bold blue]Batch processing:[/bold blue] {len(files)} document(s) from {directory}")
    console.print(f"[dim]Workers: {workers}, Output: {output_dir}[/dim]")
    output_dir.mkdir(parents=True, exist_ok=True)

    vision, document = _options(vision_parser, vision_model, "", None, document_parser, document_model)
    pipeline = _build_pipeline()

    async def run_one(path: Path) -> tuple[Path, Optional[str]]:
        try:
            result = await pipeline.parse_bytes(
                path.read_bytes(),
                filename=path.name,
                vision=vision,
                document_parser=document,
            )
        except MedParseError as e:
            return path, str(e)
        (output_dir / f"{path.stem}.json").write_text(_dump(result), encoding="utf-8")
        return path, None

    outcomes = asyncio.run(process_batch(files, run_one, workers))

    failed = 0
    for path, error in outcomes:
        if error:
            failed += 1
            console.print(f"[red]✗[/red] {path.name}: {escape(error)}")
        else:
            console.print(f"[green]✓[/green] {path.name}")

    console.print(f"\n{len(files) - failed} succeeded, {failed} failed")
    if failed:
        raise typer.Exit(code=1)


@app.command()
def models(
    api_key: str = typer.Option("", envvar="MEDPARSE_VISION_API_KEY", help="Vision parser API key"),
) -> None:
    """List enabled parsers and their models."""
    setup_logging()
    registries = build_registries(settings)

    async def collect():
        rows = []
        for parser in registries.document.available():
            rows.append((parser.describe(), await _model_ids(parser.list_models())))
        for parser in registries.vision.available():
            rows.append((parser.describe(), await _model_ids(parser.list_models(api_key=api_key))))
        return rows

    table = Table(title="Parsers")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("API key")
    table.add_column("Models")
    for descriptor, model_ids in asyncio.run(collect()):
        table.add_row(
            descriptor.kind,
            descriptor.name,
            "required" if descriptor.api_key_required else "",
            model_ids,
        )
    console.print(table)


async def _model_ids(listing) -> str:
    try:
        return ", ".join(model.id for model in await listing) or "[dim]none[/dim]"
    except ExtractionBackendError as e:
        return f"[red]{escape(e.message)}[/red]"


@app.command()
def status() -> None:
    """Show backend status."""
    setup_logging()
    console.print("[bold blue]Health Document Parser Status[/bold blue]")
    console.print()

    async def probe():
        docling = await DoclingDocumentParser(settings).health()
        vision = build_registries(settings).vision.get(settings.default_vision_provider)
        try:
            vision_models = await vision.list_models()
            vision_state = {"ok": True, "models": len(vision_models)}
        except ExtractionBackendError as e:
            vision_state = {"ok": False, "error": e.message}
        return docling, vision.name, vision_state

    docling, vision_name, vision_state = asyncio.run(probe())

    mark = "[green]up[/green]" if docling["ok"] else "[red]down[/red]"
    console.print(f"Document backend (Docling) {docling['url']}: {mark}")
    mark = "[green]up[/green]" if vision_state["ok"] else "[red]down[/red]"
    detail = f"{vision_state['models']} model(s)" if vision_state["ok"] else escape(vision_state["error"])
    console.print(f"Vision backend ({vision_name}): {mark} [dim]{detail}[/dim]")
    console.print(f"[dim]Deployment: {settings.deployment_env}, uploads: {settings.upload_dir}[/dim]")


if __name__ == "__main__":
    app()
