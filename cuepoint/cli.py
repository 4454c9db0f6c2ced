"""
cuepoint.cli - Typer CLI entry point.

Provides subcommands for each pipeline stage and for full runs.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cuepoint import __version__
from cuepoint.config import (
    CONFIG_FILENAME,
    MODEL_PRESETS,
    CuepointConfig,
    create_default_config,
    load_config,
    write_config,
)
from cuepoint.exceptions import CuepointError, DependencyError
from cuepoint.logging import configure_logging
from cuepoint.utils import format_bytes, format_duration, format_size, format_timestamp

app = typer.Typer(
    name="cuepoint",
    help="Video transcript ingestion for retrieval.\n\n"
    "Turns long-form video into timestamp-anchored, embedded text chunks "
    "through audio extraction, transcription, chunking and embedding.",
    add_completion=False,
)
console = Console()


def find_project_dir() -> Path | None:
    """Find the project directory by looking for cuepoint.yaml."""
    current = Path.cwd()
    while current != current.parent:
        if (current / CONFIG_FILENAME).exists():
            return current
        current = current.parent
    return None


def get_config() -> CuepointConfig:
    """Load the enclosing project's config, or defaults outside a project."""
    project_dir = find_project_dir()
    if not project_dir:
        return CuepointConfig()
    try:
        return load_config(project_dir)
    except CuepointError as e:
        console.print(f"[red]Error loading {CONFIG_FILENAME}: {e}[/red]")
        raise typer.Exit(1)


def fail(error: Exception) -> None:
    console.print(f"[red]Error: {error}[/red]")
    if isinstance(error, DependencyError) and error.install_hint:
        console.print(f"[dim]{error.install_hint}[/dim]")
    raise typer.Exit(1)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"cuepoint {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """Cuepoint - video transcript ingestion for retrieval."""
    configure_logging(verbose)


@app.command("init")
def init_project(
    name: str = typer.Argument(..., help="Project name"),
    model: str = typer.Option(
        "text-embedding-ada-002",
        "--model",
        "-m",
        help=f"Embedding model: {', '.join(MODEL_PRESETS)}",
    ),
    path: str = typer.Option(".", "--path", "-d", help="Directory to create project in"),
) -> None:
    """Create a new Cuepoint project with a default cuepoint.yaml."""
    project_path = Path(path) / name

    if project_path.exists():
        console.print(f"[red]Error: Directory '{project_path}' already exists[/red]")
        raise typer.Exit(1)

    if model not in MODEL_PRESETS:
        console.print(
            f"[yellow]Warning: no preset for '{model}'; set embedding dimensions "
            f"and cost in {CONFIG_FILENAME}[/yellow]"
        )

    config = create_default_config(name, model=model)
    write_config(config, project_path / CONFIG_FILENAME)

    console.print(f"[green]✓[/green] Created project '{name}' using {model}")
    console.print(f"[dim]  {project_path}[/dim]")
    console.print("\nNext steps:")
    console.print(f"  cd {name}")
    console.print("  cuepoint run <video_files>")


@app.command("check")
def run_check(
    videos: list[str] = typer.Argument(None, help="Optional video file(s) to validate"),
) -> None:
    """Check dependencies, credentials and disk space."""
    from cuepoint.validation import run_preflight_checks

    config = get_config()
    video_files = [Path(v).expanduser() for v in videos or []]

    console.print("[cyan]Running preflight checks...[/cyan]\n")
    results = run_preflight_checks(Path.cwd(), config, video_files or None)
    checks = results["checks"]

    table = Table(title="Preflight Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Version/Details")

    ffmpeg = checks["ffmpeg"]
    if "error" in ffmpeg:
        table.add_row("FFmpeg", "✗ Missing", ffmpeg.get("install_hint") or ffmpeg["error"])
    else:
        table.add_row("FFmpeg", "✓ Installed", ffmpeg.get("ffmpeg_version", "unknown"))
        table.add_row("FFprobe", "✓ Installed", ffmpeg.get("ffprobe_version", "unknown"))

    disk = checks["disk_space"]
    if "error" in disk:
        table.add_row("Disk space", "?", disk["error"])
    elif disk["sufficient"]:
        table.add_row("Disk space", "✓ OK", f"{disk['available_mb']} MB free")
    else:
        table.add_row(
            "Disk space",
            "✗ Low",
            f"{disk['available_mb']} MB free, {disk['required_mb']} MB needed",
        )

    embedding = checks["embedding"]
    if embedding["valid"]:
        table.add_row("Embedding API", "✓ Configured", config.embedding.model)
    else:
        details = ", ".join(embedding.get("missing_keys") or []) or embedding.get("error", "")
        table.add_row("Embedding API", "✗ Missing credentials", details)

    for vf in checks.get("video_files", []):
        if vf["valid"]:
            table.add_row(Path(vf["path"]).name, "✓ Found", f"{vf['size_mb']} MB")
        else:
            table.add_row(Path(vf["path"]).name, "✗ Invalid", vf["error"])

    console.print(table)

    if results["passed"]:
        console.print("\n[green]✓ All checks passed[/green]")
    else:
        console.print("\n[yellow]⚠ Some checks failed[/yellow]")
        console.print("[dim]Fix the issues above before running the pipeline[/dim]")
        raise typer.Exit(1)


@app.command("extract")
def extract_cmd(
    video: Path = typer.Argument(..., help="Video file to extract audio from"),
) -> None:
    """Extract a transcription-ready audio track from a video."""
    from cuepoint.extract.audio import extract_audio, probe_duration
    from cuepoint.validation import (
        check_disk_space,
        estimate_audio_size,
        require_toolchain,
        validate_video_file,
    )

    config = get_config()
    try:
        validate_video_file(video)
        require_toolchain()

        duration = probe_duration(video)
        required_mb = estimate_audio_size(
            duration, config.audio.sample_rate, config.audio.channels
        ) + 100
        disk = check_disk_space(video.parent, required_mb)
        if not disk["sufficient"]:
            console.print(
                f"[red]Error: Insufficient disk space. "
                f"Need ~{required_mb}MB, have {disk['available_mb']}MB[/red]"
            )
            raise typer.Exit(1)

        console.print(f"[dim]Extracting audio from {video.name} ({format_duration(duration)})[/dim]")
        output = extract_audio(video, config.audio, console=console)
    except CuepointError as e:
        fail(e)

    console.print(f"[green]✓[/green] Extracted {output} ({format_size(output)})")


@app.command("split")
def split_cmd(
    audio: Path = typer.Argument(..., help="Audio file to split"),
    max_mb: float | None = typer.Option(
        None, "--max-mb", help="Maximum chunk size in MB (default from config)"
    ),
) -> None:
    """Split an audio file into upload-sized chunks."""
    from cuepoint.extract.splitter import split_audio

    config = get_config()
    if not audio.exists():
        console.print(f"[red]Error: File not found: {audio}[/red]")
        raise typer.Exit(1)

    try:
        chunks = split_audio(
            audio,
            max_size_mb=max_mb or config.audio.max_segment_mb,
            timeout=config.audio.timeout_seconds,
        )
    except CuepointError as e:
        fail(e)

    table = Table(title=f"Audio chunks for {audio.name}")
    table.add_column("#", style="cyan")
    table.add_column("File")
    table.add_column("Duration", style="green")
    table.add_column("Size")
    for chunk in chunks:
        table.add_row(
            str(chunk.index),
            chunk.path.name,
            format_duration(chunk.duration_seconds),
            format_bytes(chunk.size_bytes),
        )
    console.print(table)


@app.command("chunk")
def chunk_cmd(
    transcript_file: Path = typer.Argument(..., help="Transcript JSON file"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write chunks to this JSON file"
    ),
) -> None:
    """Chunk a transcript and report chunk statistics."""
    from cuepoint.chunking.chunker import TranscriptChunker, chunk_statistics
    from cuepoint.io import write_json
    from cuepoint.transcribe.engine import load_transcript

    config = get_config()
    try:
        transcript = load_transcript(transcript_file)
        chunker = TranscriptChunker(config.chunking)
        chunks = chunker.chunk(transcript)
        chunker.validate(chunks)
    except CuepointError as e:
        fail(e)

    table = Table(title=f"Chunks for {transcript_file.name}")
    table.add_column("#", style="cyan")
    table.add_column("Start", style="green")
    table.add_column("End", style="green")
    table.add_column("Words")
    for chunk in chunks:
        table.add_row(
            str(chunk.index),
            format_timestamp(chunk.start_timestamp),
            format_timestamp(chunk.end_timestamp),
            str(chunk.word_count),
        )
    console.print(table)

    stats = chunk_statistics(chunks)
    console.print(
        f"\n[green]✓[/green] {stats['total_chunks']} chunks, "
        f"avg {stats['avg_word_count']} words "
        f"(min {stats['min_word_count']}, max {stats['max_word_count']})"
    )

    if output:
        write_json(output, [c.to_dict() for c in chunks])
        console.print(f"[dim]  Wrote {output}[/dim]")


@app.command("estimate")
def estimate_cmd(
    transcript_file: Path = typer.Argument(..., help="Transcript JSON file"),
) -> None:
    """Estimate embedding tokens and cost for a transcript without calling the API."""
    from cuepoint.chunking.chunker import chunk_transcript
    from cuepoint.embed.batcher import estimate_cost, estimate_tokens
    from cuepoint.transcribe.engine import load_transcript

    config = get_config()
    try:
        transcript = load_transcript(transcript_file)
        chunks = chunk_transcript(transcript, config.chunking)
    except CuepointError as e:
        fail(e)

    opts = config.embedding
    tokens = sum(estimate_tokens(c.text, opts.chars_per_token) for c in chunks)
    cost = estimate_cost(chunks, opts)
    batches = -(-len(chunks) // opts.batch_size)

    console.print(f"Model:    {opts.model}")
    console.print(f"Chunks:   {len(chunks)} in {batches} batch(es)")
    console.print(f"Tokens:   ~{tokens:,}")
    console.print(f"Cost:     ~${cost:.6f}")


@app.command("run")
def run_pipeline(
    videos: list[Path] = typer.Argument(..., help="Video file(s) to process"),
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-j", help="Videos processed at once (default from config)"
    ),
) -> None:
    """Run the full pipeline for one or more videos.

    Each video goes through extract, split, transcribe, chunk, embed and
    persist. Failures are reported per video; other videos keep running.
    """
    from cuepoint.pipeline import PipelineOrchestrator, process_videos

    config = get_config()
    orchestrator = PipelineOrchestrator(config)
    max_concurrent = concurrency or config.pipeline.max_concurrent_videos

    console.print(f"[cyan]Processing {len(videos)} video(s)...[/cyan]\n")
    results = process_videos(videos, max_concurrent=max_concurrent, orchestrator=orchestrator)

    table = Table(title="Pipeline Results")
    table.add_column("Video", style="cyan")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Details")

    total_cost = 0.0
    for result in results:
        if result.ok:
            status = "[green]completed[/green]"
            details = str(result.output_path)
        else:
            color = "yellow" if result.status == "cancelled" else "red"
            status = f"[{color}]{result.status}[/{color}]"
            details = f"{result.stage}: {result.message}"
        total_cost += result.estimated_cost
        table.add_row(
            result.video_id,
            status,
            str(result.chunk_count),
            f"{result.total_tokens:,}",
            f"${result.estimated_cost:.6f}",
            details,
        )
    console.print(table)

    completed = sum(1 for r in results if r.ok)
    console.print(
        f"\n[green]✓[/green] Completed {completed}/{len(results)} video(s), "
        f"estimated cost ${total_cost:.6f}"
    )

    if completed < len(results):
        raise typer.Exit(1)


@app.command("verify")
def verify_cmd(
    video_id: str = typer.Argument(..., help="Id of a processed video (its output file stem)"),
    reembed: bool = typer.Option(
        False, "--reembed", help="Re-embed stored chunks with the configured model"
    ),
) -> None:
    """Check that every stored chunk of a video has an embedding."""
    from cuepoint.embed.batcher import EmbeddingBatcher
    from cuepoint.pipeline import JsonChunkStore

    config = get_config()
    store = JsonChunkStore(config.pipeline.output_dir)
    if not store.path_for(video_id).exists():
        console.print(f"[red]Error: No stored chunks for {video_id}[/red]")
        raise typer.Exit(1)

    if reembed:
        try:
            result = store.regenerate_embeddings(
                video_id, EmbeddingBatcher(options=config.embedding, retry=config.retry)
            )
        except CuepointError as e:
            fail(e)
        console.print(
            f"[green]✓[/green] Re-embedded {len(result.embeddings)} chunk(s) with "
            f"{config.embedding.model}, estimated cost ${result.estimated_cost:.6f}"
        )

    report = store.verify(video_id)
    console.print(f"Chunks:   {report['total']}")
    console.print(f"Embedded: {report['embedded']}")
    console.print(f"Missing:  {report['missing']}")

    if report["missing"]:
        indices = ", ".join(str(i) for i in report["missing_indices"])
        console.print(f"[red]Chunks without embeddings: {indices}[/red]")
        raise typer.Exit(1)
