"""CLI entry-point: submit generations, follow them, re-check tasks, list history."""

import asyncio
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from mediagen.config import get_settings
from mediagen.errors import CredentialError, GenerationError
from mediagen.jobs import JobManager, get_record_store
from mediagen.providers import list_providers
from mediagen.schemas.models import (
    SUPPORTED_IMAGE_TYPES,
    GenerationMode,
    GenerationRequest,
    InputAsset,
    Job,
    JobState,
    MediaKind,
)

app = typer.Typer(help="Generate images and videos through third-party providers")
console = Console()

_SUFFIX_TYPES = {ext: ctype for ctype, ext in SUPPORTED_IMAGE_TYPES.items() if ctype != "image/jpg"}
_SUFFIX_TYPES[".jpeg"] = "image/jpeg"


def _load_image(path: str) -> InputAsset:
    p = Path(path)
    if not p.exists():
        console.print(f"[red]Error: image not found: {p}[/red]")
        raise typer.Exit(1)
    content_type = _SUFFIX_TYPES.get(p.suffix.lower())
    if content_type is None:
        console.print(f"[red]Error: unsupported image type: {p.suffix}[/red]")
        raise typer.Exit(1)
    return InputAsset(data=p.read_bytes(), content_type=content_type)


def _print_job(job: Job, base_url: str) -> None:
    if job.status == JobState.SUCCEEDED:
        if job.output_asset_ref:
            console.print(f"[green]Done:[/green] {base_url}/{job.output_asset_ref}")
        else:
            console.print(f"[yellow]Done, but not stored locally:[/yellow] {job.materialization_warning}")
            console.print(f"Provider URL: {job.result_url}")
    elif job.status == JobState.FAILED:
        console.print(f"[red]Failed:[/red] {job.failure_reason}")
    else:
        console.print(f"Job {job.id} is {job.status.value}")


async def _run(request: GenerationRequest, wait: bool) -> None:
    settings = get_settings()
    async with JobManager(settings) as manager:
        handle = await manager.submit(request)
        console.print(f"Submitted job {handle.id} (task {handle.job.correlation_id})")
        if not wait:
            return
        with console.status("Generating...") as status:
            async for snapshot in manager.subscribe(handle.id):
                status.update(f"Generating... {snapshot.progress_percent}%")
        _print_job(handle.job, settings.asset_base_url)


def _submit(request: GenerationRequest, wait: bool) -> None:
    try:
        asyncio.run(_run(request, wait))
    except CredentialError as e:
        console.print(f"[red]Credential error: {e}[/red] (set --api-key or MEDIAGEN_API_KEY)")
        raise typer.Exit(2)
    except GenerationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def image(
    prompt: str = typer.Argument(..., help="Text prompt"),
    provider: str = typer.Option("nano-banana", help="Image provider"),
    sub_model: str = typer.Option(None, help="Provider sub-model (defaults to the provider's base tier)"),
    aspect_ratio: str = typer.Option("16:9", help="Aspect ratio, e.g. 16:9, 1:1"),
    style: str = typer.Option(None, help="Optional style hint"),
    image: list[str] = typer.Option(default=[], help="Reference image path(s)"),
    api_key: str = typer.Option("", envvar="MEDIAGEN_API_KEY", help="Provider API key"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Follow the job until it finishes"),
):
    """Generate an image from text (and optional reference images)."""
    parameters: dict[str, Any] = {"aspect_ratio": aspect_ratio, "style": style}
    request = GenerationRequest(
        kind=MediaKind.IMAGE,
        provider_id=provider,
        sub_model=sub_model or provider,
        prompt=prompt,
        parameters=parameters,
        mode=GenerationMode.IMAGE if image else GenerationMode.TEXT,
        input_assets=[_load_image(p) for p in image],
        credential=api_key,
    )
    _submit(request, wait)


@app.command()
def video(
    prompt: str = typer.Argument(..., help="Text prompt"),
    provider: str = typer.Option("sora2", help="Video provider: sora2 | veo3"),
    sub_model: str = typer.Option(None, help="sora-2 | sora-2-pro | veo3.1 | veo3.1-pro"),
    aspect_ratio: str = typer.Option("16:9", help="16:9 | 9:16 | 1:1"),
    duration: str = typer.Option(None, help="Seconds (sora-2-pro only): 10 | 15"),
    hd: Optional[bool] = typer.Option(None, "--hd/--no-hd", help="HD output (sora-2-pro only)"),
    watermark: Optional[bool] = typer.Option(None, "--watermark/--no-watermark", help="sora-2-pro only"),
    enhance_prompt: Optional[bool] = typer.Option(None, "--enhance-prompt/--no-enhance-prompt", help="veo3 only"),
    first_frame: str = typer.Option(None, help="First frame image (image-to-video)"),
    last_frame: str = typer.Option(None, help="Optional last frame image"),
    api_key: str = typer.Option("", envvar="MEDIAGEN_API_KEY", help="Provider API key"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Follow the job until it finishes"),
):
    """Generate a video from text, or from a first (and optional last) frame."""
    if last_frame and not first_frame:
        console.print("[red]Error: --last-frame needs --first-frame[/red]")
        raise typer.Exit(1)
    default_sub = {"sora2": "sora-2", "veo3": "veo3.1"}.get(provider, provider)
    parameters: dict[str, Any] = {
        "aspect_ratio": aspect_ratio,
        "duration": duration,
        "hd": hd,
        "watermark": watermark,
        "enhance_prompt": enhance_prompt,
    }
    frames = [_load_image(p) for p in (first_frame, last_frame) if p]
    request = GenerationRequest(
        kind=MediaKind.VIDEO,
        provider_id=provider,
        sub_model=sub_model or default_sub,
        prompt=prompt,
        parameters=parameters,
        mode=GenerationMode.IMAGE if frames else GenerationMode.TEXT,
        input_assets=frames,
        credential=api_key,
    )
    _submit(request, wait)


@app.command()
def status(
    kind: MediaKind = typer.Argument(..., help="image | video"),
    task_id: str = typer.Argument(..., help="Provider task id"),
    api_key: str = typer.Option("", envvar="MEDIAGEN_API_KEY", help="Provider API key"),
):
    """Re-check a submitted task once and update its record."""

    async def _check():
        async with JobManager() as manager:
            return await manager.check_status(kind, task_id, api_key)

    try:
        record, provider_status = asyncio.run(_check())
    except GenerationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"Provider: {provider_status.state.value} ({provider_status.progress_percent or 0}%)")
    console.print(f"Record {record.job_id}: {record.status.value}")
    if record.result_asset_name:
        console.print(f"Result: {get_settings().asset_base_url}/{record.result_asset_name}")
    elif record.failure_reason:
        console.print(f"Reason: {record.failure_reason}")


@app.command()
def history(
    kind: Optional[MediaKind] = typer.Option(None, help="image | video (default: both)"),
    page: int = typer.Option(1, help="Page number"),
    limit: int = typer.Option(10, help="Records per page"),
):
    """List past generations, newest first."""
    result = get_record_store().list(kind, page=page, limit=limit)
    table = Table(title=f"History (page {result.pagination.page}, {result.pagination.total} total)")
    for column in ("job", "kind", "model", "status", "created", "prompt"):
        table.add_column(column)
    for r in result.records:
        table.add_row(
            r.job_id,
            r.kind.value,
            f"{r.model}/{r.sub_model}",
            r.status.value,
            r.created_at.strftime("%Y-%m-%d %H:%M"),
            r.prompt[:50] + ("..." if len(r.prompt) > 50 else ""),
        )
    console.print(table)


@app.command()
def providers():
    """List supported providers and their sub-models."""
    for kind in MediaKind:
        for provider_id, sub_models in list_providers(kind).items():
            console.print(f"{kind.value:6} {provider_id:12} {', '.join(sub_models)}")


if __name__ == "__main__":
    app()
