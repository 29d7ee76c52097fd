#!/usr/bin/env python3
"""
restoreflow CLI
Command-line front end for dependency management, batch jobs and previews.
"""

import argparse
import asyncio
import json
import shutil
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from restoreflow import __version__
from restoreflow.config import ConfigFileManager, Settings
from restoreflow.exceptions import ConfigurationError, RestoreflowError
from restoreflow.utils.logging import configure_from_cli

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130

console = Console()
err_console = Console(stderr=True)


def print_error(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}")


def load_settings(args) -> Settings:
    """Settings from config files, with command-line overrides applied."""
    manager = ConfigFileManager()
    if getattr(args, "config", None):
        manager.user_config_path = Path(args.config).expanduser()
    settings = manager.load_settings()
    for error in manager.get_validation_errors():
        err_console.print(f"[yellow]Config warning:[/yellow] {error.path}: {escape(error.message)}")

    if getattr(args, "deps_dir", None):
        settings.deps_dir = Path(args.deps_dir).expanduser()
    if getattr(args, "worker", None):
        settings.worker_path = Path(args.worker).expanduser()
    return settings


# -----------------------------------------------------------------------------
# deps
# -----------------------------------------------------------------------------

def _installer(args, settings: Settings, show_progress: bool = False):
    from restoreflow.deps.installer import DependencyInstaller

    return DependencyInstaller.from_settings(
        settings,
        metadata_path=getattr(args, "metadata", None),
        show_progress=show_progress,
    )


def require_dependencies(args, settings: Settings) -> bool:
    """Check the dependency bundle before any tool is spawned."""
    from restoreflow.deps.installer import DependencyStatus

    status = _installer(args, settings).check_dependencies()
    if status is DependencyStatus.INSTALLED:
        return True
    print_error(f"Dependencies are {status.value} in {settings.deps_dir}")
    err_console.print("Install with: [cyan]restoreflow deps install[/cyan]")
    return False


def deps_check(args) -> int:
    """Report the dependency bundle status."""
    from restoreflow.deps.installer import DependencyStatus

    settings = load_settings(args)
    installer = _installer(args, settings)
    status = installer.check_dependencies()
    installed = installer.get_installed_version()

    table = Table(title="Dependencies", show_header=False)
    table.add_row("Directory", str(installer.deps_dir))
    table.add_row("Platform", installer.platform)
    table.add_row("Expected", installer.expected_version.version)
    table.add_row("Installed", installed.version if installed else "-")
    color = "green" if status is DependencyStatus.INSTALLED else "yellow"
    table.add_row("Status", f"[{color}]{status.value}[/{color}]")
    console.print(table)

    if status is not DependencyStatus.INSTALLED:
        console.print("Install with: [cyan]restoreflow deps install[/cyan]")
        return EXIT_FAILURE
    return EXIT_OK


def deps_install(args) -> int:
    """Download and install the dependency bundle."""
    from restoreflow.deps.installer import DependencyStatus

    settings = load_settings(args)
    installer = _installer(args, settings, show_progress=True)
    status = installer.check_dependencies()
    if status is DependencyStatus.INSTALLED and not args.force:
        console.print(f"[green]Dependencies are up to date[/green] ({installer.deps_dir})")
        return EXIT_OK

    console.print(f"Installing from {installer.get_download_url()}")
    status = asyncio.run(installer.download_and_install())
    console.print(f"[green]Installed[/green] dependencies v{installer.expected_version.version} "
                  f"to {installer.deps_dir}")
    return EXIT_OK if status is DependencyStatus.INSTALLED else EXIT_FAILURE


def deps_uninstall(args) -> int:
    settings = load_settings(args)
    installer = _installer(args, settings)
    if installer.uninstall():
        console.print(f"Removed {installer.deps_dir}")
    else:
        console.print("Nothing to remove")
    return EXIT_OK


# -----------------------------------------------------------------------------
# run
# -----------------------------------------------------------------------------

async def _run_job(supervisor, job, verbose: bool):
    from restoreflow.models.progress import LogLevel

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.fields[fps]}"),
        TextColumn("ETA {task.fields[eta]}"),
        console=console,
        transient=False,
    ) as progress:
        task = progress.add_task(Path(job.input_path).name, total=job.frame_count or None, fps="", eta="--")

        def on_progress(info) -> None:
            progress.update(
                task,
                completed=info.frame,
                total=info.total_frames or None,
                fps=info.fps_formatted,
                eta=info.eta_formatted,
            )

        def on_log(message) -> None:
            if verbose or message.level in (LogLevel.WARNING, LogLevel.ERROR):
                progress.console.print(f"[dim]{escape(str(message))}[/dim]")

        supervisor.progress.subscribe(on_progress)
        supervisor.log.subscribe(on_log)
        try:
            return await supervisor.run(job)
        except asyncio.CancelledError:
            await supervisor.cancel()
            raise
        finally:
            await supervisor.dispose()


def run_job(args) -> int:
    """Run a job file through the worker."""
    from restoreflow.engine.supervisor import ProcessSupervisor
    from restoreflow.models.job import VideoJob

    settings = load_settings(args)
    job = VideoJob.load(args.job)
    if not require_dependencies(args, settings):
        return EXIT_FAILURE
    supervisor = ProcessSupervisor.from_settings(settings)

    console.print(f"Input:  {job.input_path}")
    console.print(f"Output: {job.output_path}")
    console.print(f"Passes: {job.pipeline.summary()}")

    try:
        result = asyncio.run(_run_job(supervisor, job, args.verbose))
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Job cancelled by user[/yellow]")
        return EXIT_CANCELLED

    if result.success:
        console.print(f"[green]{result.describe()}[/green]")
        return EXIT_OK
    if result.cancelled:
        err_console.print("[yellow]Job cancelled[/yellow]")
        return EXIT_CANCELLED
    print_error(result.describe())
    return EXIT_FAILURE


# -----------------------------------------------------------------------------
# preview / probe
# -----------------------------------------------------------------------------

async def _preview(settings: Settings, args) -> Path:
    from restoreflow.models.job import FieldOrder, VideoJob
    from restoreflow.models.pipeline import RestorationPipeline
    from restoreflow.preview.generator import PreviewGenerator

    output = Path(args.output)
    async with PreviewGenerator.from_settings(settings) as generator:
        await generator.open(args.input, frame_rate=args.fps, probe=args.fps is None)
        if args.processed:
            if args.job:
                job = VideoJob.load(args.job)
                pipeline, encoding = job.pipeline, job.encoding
            else:
                pipeline, encoding = RestorationPipeline(), None
            field_order = FieldOrder(args.field_order) if args.field_order else None
            image = await generator.generate_preview(args.time, pipeline, encoding, field_order)
            output.write_bytes(image)
        else:
            frame = await generator.get_raw_frame(args.time)
            shutil.copyfile(frame, output)
    return output


def preview(args) -> int:
    """Render one raw or processed frame to an image file."""
    settings = load_settings(args)
    if not require_dependencies(args, settings):
        return EXIT_FAILURE
    output = asyncio.run(_preview(settings, args))
    console.print(f"[green]Wrote[/green] {output}")
    return EXIT_OK


def probe(args) -> int:
    """Show stream information for a video file."""
    from restoreflow.engine.locator import ToolPaths, build_environment
    from restoreflow.models.job import audio_containers
    from restoreflow.preview.probe import probe_video

    settings = load_settings(args)
    input_path = Path(args.input)
    if not input_path.exists():
        print_error(f"File not found: {input_path}")
        return EXIT_FAILURE
    if not require_dependencies(args, settings):
        return EXIT_FAILURE

    tools = ToolPaths(settings.deps_dir)
    info = asyncio.run(probe_video(input_path, ffprobe=tools.ffprobe, env=build_environment(settings.deps_dir)))

    if args.json:
        console.print_json(json.dumps(info.to_dict()))
        return EXIT_OK

    table = Table(title=str(input_path), show_header=False)
    table.add_row("Resolution", f"{info.width}x{info.height}")
    table.add_row("Frame Rate", f"{info.frame_rate:.3f} fps")
    table.add_row("Duration", f"{info.duration:.2f} seconds")
    table.add_row("Frames", str(info.frame_count))
    table.add_row("Video Codec", f"{info.codec} ({info.pixel_format})")
    table.add_row("Field Order", info.field_order.display_name)
    table.add_row("Audio", info.audio_codec if info.has_audio else "No")
    if info.audio_codec:
        containers = [c.value for c in audio_containers(info.audio_codec)]
        table.add_row("Audio Copy Into", ", ".join(containers) or "none (re-encode)")
    console.print(table)
    return EXIT_OK


# -----------------------------------------------------------------------------
# config
# -----------------------------------------------------------------------------

def config_show(args) -> int:
    """Display the merged configuration."""
    manager = ConfigFileManager()
    if args.config:
        manager.user_config_path = Path(args.config).expanduser()

    console.print("[bold]Configuration sources:[/bold]")
    for label, path in (("User", manager.user_config_path), ("Project", manager.project_config_path)):
        state = "[green]exists[/green]" if path.exists() else "[dim]not found[/dim]"
        console.print(f"  {label:8} {path} {state}")

    manager.load()
    for error in manager.get_validation_errors():
        err_console.print(f"[yellow]Config warning:[/yellow] {error.path}: {escape(error.message)}")
    console.print()
    console.print(manager.show_config(), markup=False, highlight=False)
    return EXIT_OK


def config_init(args) -> int:
    """Write the default configuration template."""
    manager = ConfigFileManager()
    if args.config:
        manager.user_config_path = Path(args.config).expanduser()
    target = "project" if args.project else "user"
    config_path = manager.init_config(target=target, overwrite=args.force)
    console.print(f"[green]Created configuration file:[/green] {config_path}")
    return EXIT_OK


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------

def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="restoreflow",
        description="restoreflow - video restoration job runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Make sure VapourSynth and FFmpeg are installed
  restoreflow deps check
  restoreflow deps install

  # Run a job file
  restoreflow run job.json

  # Inspect a tape capture
  restoreflow probe capture.avi

  # Preview frame at 12.5s with the job's filters applied
  restoreflow preview capture.avi --time 12.5 --processed --job job.json --output frame.png
""",
    )
    parser.add_argument("--version", action="version", version=f"restoreflow {__version__}")
    parser.add_argument("--config", help="Config file to use instead of ~/.restoreflow/config.yaml")
    parser.add_argument("--deps-dir", help="Dependency bundle directory")
    parser.add_argument("--worker", help="Worker executable")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None)
    parser.add_argument("--log-format", choices=["text", "json"], default=None)
    parser.add_argument("--log-file", default=None)

    subparsers = parser.add_subparsers(dest="command")

    # deps
    deps_parser = subparsers.add_parser("deps", help="Manage the dependency bundle")
    deps_sub = deps_parser.add_subparsers(dest="deps_action")

    check_parser = deps_sub.add_parser("check", help="Check the installed bundle")
    check_parser.add_argument("--metadata", help="Alternative deps-version.json")
    check_parser.set_defaults(func=deps_check)

    install_parser = deps_sub.add_parser("install", help="Download and install the bundle")
    install_parser.add_argument("--metadata", help="Alternative deps-version.json")
    install_parser.add_argument("--force", action="store_true", help="Reinstall even if up to date")
    install_parser.set_defaults(func=deps_install)

    uninstall_parser = deps_sub.add_parser("uninstall", help="Remove the installed bundle")
    uninstall_parser.set_defaults(func=deps_uninstall)

    # run
    run_parser = subparsers.add_parser("run", help="Run a job file")
    run_parser.add_argument("job", help="Job description (JSON)")
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Show all worker log lines")
    run_parser.set_defaults(func=run_job)

    # preview
    preview_parser = subparsers.add_parser("preview", help="Render a single frame")
    preview_parser.add_argument("input", help="Source video")
    preview_parser.add_argument("--time", type=float, required=True, help="Timestamp in seconds")
    preview_parser.add_argument("--output", required=True, help="Image file to write")
    preview_parser.add_argument("--processed", action="store_true", help="Apply the restoration pipeline")
    preview_parser.add_argument("--job", help="Job file supplying the pipeline for --processed")
    preview_parser.add_argument("--fps", type=float, default=None, help="Frame rate (skips probing)")
    preview_parser.add_argument("--field-order", choices=["tff", "bff", "progressive"], default=None)
    preview_parser.set_defaults(func=preview)

    # probe
    probe_parser = subparsers.add_parser("probe", help="Show video stream information")
    probe_parser.add_argument("input", help="Video file")
    probe_parser.add_argument("--json", action="store_true", help="Print JSON")
    probe_parser.set_defaults(func=probe)

    # config
    config_parser = subparsers.add_parser("config", help="Manage configuration files")
    config_sub = config_parser.add_subparsers(dest="config_action")

    show_parser = config_sub.add_parser("show", help="Display current configuration")
    show_parser.set_defaults(func=config_show)

    init_parser = config_sub.add_parser("init", help="Create default configuration file")
    init_parser.add_argument("--project", action="store_true", help="Write .restoreflow.yaml here")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing file")
    init_parser.set_defaults(func=config_init)

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return EXIT_OK

    try:
        base = load_settings(args).log
        configure_from_cli(
            log_level=args.log_level,
            log_format=args.log_format,
            log_file=args.log_file,
            base=base,
        )
        return args.func(args)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return EXIT_CANCELLED
    except (RestoreflowError, ConfigurationError) as e:
        print_error(str(e))
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
