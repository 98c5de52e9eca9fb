"""
Command-Line Interface

CLI using rich for colored output, progress indicators and formatted
results. ``--output json`` prints machine-readable results for agents.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .capture import ScreenshotCapturer
from .config import load_config
from .models import (
    Annotation,
    Config,
    ImagePayload,
    OrchestrationOptions,
    QualityControlResult,
    SynthesisResult,
)
from .orchestrator import DEFAULT_WEIGHTS
from .pipeline import DesignAnalyzer
from .providers import PROVIDER_NAMES, get_provider
from .quality_control import AnalysisQualityController
from .rag import load_knowledge
from .storage import AnalysisNotFoundError, JsonFileStore


console = Console()
err_console = Console(stderr=True)

SEVERITY_STYLES = {
    "critical": "bold red",
    "important": "yellow",
    "suggested": "cyan",
    "enhancement": "blue",
    "positive": "green",
}

ISSUE_STYLES = {
    "critical": ("bold red", "🔴"),
    "high": ("red", "🟠"),
    "medium": ("yellow", "🟡"),
    "low": ("green", "🟢"),
}

PROVIDER_ROLES = {
    "claude": "primary",
    "openai": "supplementary / fallback",
    "perplexity": "research validation",
    "vision": "element detection",
}


def _setup_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=debug, rich_tracebacks=debug)],
        force=True,
    )
    # Vendor SDKs are chatty at INFO
    for name in ("httpx", "anthropic", "openai", "urllib3"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@click.group()
@click.option(
    '--env-file',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Path to .env file (defaults to ./.env)'
)
@click.option('--verbose', '-v', is_flag=True, help='Log progress at INFO level')
@click.option('--debug', is_flag=True, help='Log at DEBUG level and show tracebacks')
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, env_file: Optional[Path], verbose: bool, debug: bool):
    """
    Design Critique - Multi-Model Design Feedback

    Analyze design screenshots with several AI providers, merge their
    feedback and filter out annotations that are not visually grounded.

    Examples:

      # Analyze a screenshot
      design-critique analyze checkout.png -p "Review the checkout flow"

      # Capture a page first, with research validation
      design-critique analyze --url https://example.com -p "Landing page audit" --research

      # Capture two tab states of the same page
      design-critique analyze --url https://example.com/app -p "Settings review" \\
          --state "[data-tab='general']" --state "[data-tab='billing']"

      # JSON output for coding agents
      design-critique analyze home.png -p "Accessibility review" --output json

      # List saved analyses, then re-display one
      design-critique list
      design-critique show 3f2a9c1b7d4e
    """
    _setup_logging(verbose, debug)
    ctx.obj = {
        "config": load_config(env_file),
        "debug": debug,
    }


@main.command()
@click.argument(
    'images',
    nargs=-1,
    type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option('--prompt', '-p', required=True, help='What the analysis should focus on')
@click.option('--url', default=None, help='Capture this page (file:// or http(s)://) and analyze it')
@click.option('--selector', default=None, help='CSS selector to click before capture')
@click.option('--wait-for', default=None, help='CSS selector to wait for before capture')
@click.option(
    '--state',
    'states',
    multiple=True,
    help='CSS selector to click before one capture of --url (repeatable, one image per state)'
)
@click.option('--primary-only', is_flag=True, help='Use only the primary provider when it succeeds')
@click.option('--research', is_flag=True, help='Back annotations with Perplexity research')
@click.option(
    '--knowledge',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='JSON file of knowledge entries to offer as context'
)
@click.option(
    '--output',
    default='rich',
    type=click.Choice(['rich', 'json'], case_sensitive=False),
    help='Output format: rich (colored terminal) or json (for agents)'
)
@click.option('--save/--no-save', default=True, help='Save the analysis to the store directory')
@click.option(
    '--retries',
    default=None,
    type=click.IntRange(0, 5),
    help='Re-run while quality control asks for a retry (default: 2)'
)
@click.pass_obj
def analyze(
    obj: dict,
    images: tuple[Path, ...],
    prompt: str,
    url: Optional[str],
    selector: Optional[str],
    wait_for: Optional[str],
    states: tuple[str, ...],
    primary_only: bool,
    research: bool,
    knowledge: Optional[Path],
    output: str,
    save: bool,
    retries: Optional[int]
):
    """Analyze IMAGES (and/or a captured --url) for design feedback."""
    config: Config = obj["config"]

    if not images and not url:
        raise click.UsageError("Give at least one IMAGE or --url")

    if states and not url:
        raise click.UsageError("--state needs --url")

    if states and selector:
        raise click.UsageError("Use either --selector or --state, not both")

    if not config.has_anthropic() and not config.has_openai():
        console.print("[red]❌ No analysis provider configured[/red]")
        console.print("\nSet ANTHROPIC_API_KEY and/or OPENAI_API_KEY in your .env file")
        sys.exit(1)

    try:
        report = asyncio.run(_run_analysis(
            config=config,
            image_paths=list(images),
            url=url,
            selector=selector,
            wait_for=wait_for,
            states=list(states),
            prompt=prompt,
            options=OrchestrationOptions(
                force_primary_only=primary_only,
                enable_research_validation=research
            ),
            knowledge_path=knowledge,
            save=save,
            retries=retries,
            show_progress=output == 'rich'
        ))
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]❌ Error: {str(e)}[/red]")
        if obj["debug"]:
            console.print_exception()
        sys.exit(1)

    if output == 'json':
        _output_json(report.model_dump(mode="json"))
    else:
        _output_rich(
            analysis_id=report.analysis_id,
            annotations=report.quality.validated_annotations,
            quality=report.quality,
            synthesis=report.synthesis
        )
        if save:
            console.print(f"[dim]💾 Saved as {report.analysis_id} in {config.store_dir}/[/dim]\n")


@main.command()
@click.argument('analysis_id')
@click.option(
    '--output',
    default='rich',
    type=click.Choice(['rich', 'json'], case_sensitive=False),
    help='Output format: rich (colored terminal) or json (for agents)'
)
@click.pass_obj
def show(obj: dict, analysis_id: str, output: str):
    """Show a saved analysis by ANALYSIS_ID."""
    config: Config = obj["config"]
    store = JsonFileStore(Path(config.store_dir))

    try:
        stored = store.load_analysis_result(analysis_id)
    except AnalysisNotFoundError:
        console.print(f"[red]❌ No saved analysis with id {analysis_id}[/red]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]❌ {str(e)}[/red]")
        sys.exit(1)

    if output == 'json':
        _output_json(stored.model_dump(mode="json"))
    else:
        _output_rich(
            analysis_id=stored.analysis_id,
            annotations=stored.final_annotations,
            quality=stored.quality_report,
            synthesis=stored.synthesis
        )


@main.command(name='list')
@click.option('--limit', default=20, type=click.IntRange(min=1), help='Show at most this many analyses')
@click.option(
    '--output',
    default='rich',
    type=click.Choice(['rich', 'json'], case_sensitive=False),
    help='Output format: rich (colored terminal) or json (for agents)'
)
@click.pass_obj
def list_analyses(obj: dict, limit: int, output: str):
    """List saved analyses, newest first."""
    config: Config = obj["config"]
    store = JsonFileStore(Path(config.store_dir))

    rows = []
    for analysis_id in store.list_analysis_ids()[:limit]:
        try:
            stored = store.load_analysis_result(analysis_id)
        except ValueError as e:
            err_console.print(f"[yellow]⚠️  Skipping {analysis_id}: {str(e)}[/yellow]")
            continue
        rows.append({
            "analysis_id": stored.analysis_id,
            "saved_at": stored.saved_at,
            "annotations": len(stored.final_annotations),
            "overall_quality": stored.quality_report.overall_quality,
            "prompt": stored.prompt,
        })

    if output == 'json':
        _output_json({"analyses": rows})
        return

    if not rows:
        console.print(f"[dim]No saved analyses in {config.store_dir}/[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Analysis", style="cyan")
    table.add_column("Saved")
    table.add_column("Annotations", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("Prompt")

    for row in rows:
        quality = row["overall_quality"]
        table.add_row(
            row["analysis_id"],
            row["saved_at"][:19].replace("T", " "),
            str(row["annotations"]),
            f"[{_quality_color(quality)}]{quality:.2f}[/]",
            _truncate(row["prompt"], 60)
        )

    console.print(table)


@main.command()
@click.pass_obj
def providers(obj: dict):
    """List providers and whether they are configured."""
    config: Config = obj["config"]

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Provider", style="cyan")
    table.add_column("Role")
    table.add_column("Weight", justify="right")
    table.add_column("Status")

    for name in PROVIDER_NAMES:
        try:
            provider = get_provider(name, config)
            status = "[green]✓ available[/green]" if provider.is_available() else "[yellow]unavailable[/yellow]"
        except ValueError:
            status = "[red]✗ not configured[/red]"

        weight = DEFAULT_WEIGHTS.get(name)
        table.add_row(
            name,
            PROVIDER_ROLES[name],
            f"{weight:.0%}" if weight is not None else "-",
            status
        )

    console.print(table)


async def _run_analysis(
    config: Config,
    image_paths: list[Path],
    url: Optional[str],
    selector: Optional[str],
    wait_for: Optional[str],
    states: list[str],
    prompt: str,
    options: OrchestrationOptions,
    knowledge_path: Optional[Path],
    save: bool,
    retries: Optional[int],
    show_progress: bool = True
):
    """Run the analysis workflow with progress indicators"""

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=not show_progress
    ) as progress:

        task = progress.add_task("[cyan]Loading images...", total=None)
        images: list[ImagePayload] = [ImagePayload.from_path(path) for path in image_paths]

        if url:
            progress.update(task, description="[cyan]Capturing screenshot...")
            capturer = ScreenshotCapturer(
                viewport={
                    "width": config.viewport_width,
                    "height": config.viewport_height
                }
            )
            if states:
                images.extend(await capturer.capture_multiple(
                    url=url,
                    states=[{"selector": state, "wait_for": wait_for} for state in states]
                ))
            else:
                images.append(await capturer.capture(url=url, selector=selector, wait_for=wait_for))

        knowledge = load_knowledge(knowledge_path) if knowledge_path else None

        store = JsonFileStore(Path(config.store_dir)) if save else None
        analyzer = DesignAnalyzer.from_config(config, store=store)

        progress.update(task, description="[cyan]Analyzing with AI providers...")
        report = await analyzer.analyze_with_retries(
            images,
            prompt,
            max_retries=retries,
            options=options,
            knowledge=knowledge
        )

        progress.update(task, description="[green]✓ Analysis complete", completed=True)

    return report


def _output_rich(
    analysis_id: str,
    annotations: list[Annotation],
    quality: QualityControlResult,
    synthesis: Optional[SynthesisResult]
):
    """Output an analysis as rich formatted terminal output"""

    header = f"[bold]Design Analysis[/bold] {analysis_id}"
    if synthesis is not None:
        meta = synthesis.synthesis_metadata
        header += (
            f"\nPrimary model: {meta.primary_model_used} · "
            f"confidence {meta.confidence_score:.2f} · "
            f"provider quality {meta.quality_score:.2f}"
        )
    header += f"\nOverall quality: [{_quality_color(quality.overall_quality)}]{quality.overall_quality:.2f}[/]"

    console.print()
    console.print(Panel.fit(header, border_style="cyan"))

    # Providers
    if synthesis is not None and synthesis.model_results:
        console.print("\n[bold]🤖 Providers[/bold]")
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Provider", style="cyan")
        table.add_column("Role")
        table.add_column("Result")
        table.add_column("Annotations", justify="right")
        table.add_column("Confidence", justify="right")
        table.add_column("Time", justify="right")

        for result in synthesis.model_results:
            status = "[green]ok[/green]" if result.success else f"[red]{result.error_category}[/red]"
            table.add_row(
                result.provider_name,
                result.role or "-",
                status,
                str(len(result.annotations)),
                f"{result.confidence:.2f}",
                f"{result.processing_time_ms}ms"
            )
        console.print(table)

        fallbacks = synthesis.synthesis_metadata.fallbacks_triggered
        if fallbacks:
            console.print(f"[dim]Fallbacks: {', '.join(fallbacks)}[/dim]")

    # Metrics
    if synthesis is not None:
        metrics = AnalysisQualityController().calculate_analysis_metrics(
            synthesis.final_annotations, quality
        )
        console.print("\n[bold]📊 Metrics[/bold]")
        table = Table(show_header=True, header_style="bold magenta")
        for column in ("Accuracy", "Relevance", "Specificity", "Grounding", "Score"):
            table.add_column(column, justify="right")
        table.add_row(*(
            f"[{_quality_color(value)}]{value:.2f}[/]"
            for value in (
                metrics.accuracy_score,
                metrics.relevance_score,
                metrics.specificity_score,
                metrics.grounding_score,
                metrics.overall_score,
            )
        ))
        console.print(table)

    # Annotations
    if annotations:
        console.print(f"\n[bold]📍 Annotations ({len(annotations)})[/bold]")
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("#", justify="right")
        table.add_column("Severity")
        table.add_column("Category")
        table.add_column("Position", justify="right")
        table.add_column("Feedback")

        for i, annotation in enumerate(annotations, 1):
            style = SEVERITY_STYLES.get(annotation.severity, "white")
            marker = " 🔬" if annotation.research_validated else ""
            table.add_row(
                str(i),
                f"[{style}]{annotation.severity}[/]",
                annotation.category,
                f"img {annotation.image_index} ({annotation.x:.0f}, {annotation.y:.0f})",
                _truncate(annotation.text, 120) + marker
            )
        console.print(table)
    else:
        console.print("\n[bold red]No annotations passed validation[/bold red]")

    # Quality issues
    if quality.quality_issues:
        console.print(f"\n[bold]🔍 Quality Issues ({len(quality.quality_issues)})[/bold]")
        for severity in ("critical", "high", "medium", "low"):
            matching = [i for i in quality.quality_issues if i.severity == severity]
            if not matching:
                continue
            style, icon = ISSUE_STYLES[severity]
            console.print(f"\n[{style}]{severity.title()}:[/]")
            for issue in matching[:5]:
                console.print(f"  {icon} [{issue.type}] {issue.description}")
            if len(matching) > 5:
                console.print(f"  [dim]… and {len(matching) - 5} more[/dim]")

    # Recommendations
    if quality.recommendations:
        console.print("\n[bold]💡 Recommendations[/bold]")
        for i, recommendation in enumerate(quality.recommendations, 1):
            console.print(f"  {i}. {recommendation}")

    if quality.should_retry:
        console.print("\n[yellow]⚠️  Quality below threshold with critical issues; a retry is recommended[/yellow]")

    console.print()


def _output_json(payload: dict):
    """Output result as JSON for coding agents"""
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _quality_color(score: float) -> str:
    if score >= 0.8:
        return "green"
    elif score >= 0.6:
        return "yellow"
    return "red"


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 1] + "…"


if __name__ == "__main__":
    main()
