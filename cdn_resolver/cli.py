from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from cdn_resolver.config import ResolverConfig, load_config
from cdn_resolver.errors import ConfigError, NoSourceAvailable
from cdn_resolver.http_utils import HttpxEnvironment
from cdn_resolver.loaders.audio import AudioLoader
from cdn_resolver.loaders.font import FontStylesheetLoader
from cdn_resolver.loaders.image import ImageLoader
from cdn_resolver.resolver import ResourceResolver
from cdn_resolver.runner import EXIT_DEGRADED, EXIT_ERROR, EXIT_OK, build_summary, run_sync

app = typer.Typer(add_completion=False, help="Multi-origin static resource resolver")


class ResourceKind(str, Enum):
    image = "image"
    audio = "audio"
    font = "font"


_LOADERS = {
    ResourceKind.image: ImageLoader,
    ResourceKind.audio: AudioLoader,
    ResourceKind.font: FontStylesheetLoader,
}


def _setup(verbose: bool, force_local: bool = False) -> ResolverConfig:
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config()
    except ConfigError as exc:
        typer.echo(f"[Resolver] Invalid configuration: {exc}")
        raise typer.Exit(code=EXIT_ERROR)
    if force_local:
        config = replace(config, local_optimization=replace(config.local_optimization, force_local=True))
    return config


@app.command()
def resolve(
    path: str = typer.Argument(..., help="Logical resource path, e.g. images/avatar.webp"),
    fallback: bool = typer.Option(True, "--fallback/--no-fallback", help="Fall back to the local copy"),
    cache: bool = typer.Option(True, "--cache/--no-cache", help="Cache the resolved URL"),
    force_local: bool = typer.Option(False, "--force-local", help="Treat this run as local development"),
    probe: bool = typer.Option(True, "--probe/--no-probe", help="Probe origins before resolving"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    config = _setup(verbose, force_local)

    async def _run() -> str:
        resolver = ResourceResolver(config)
        try:
            if probe:
                await resolver.init()
            return resolver.resolve(path, enable_fallback=fallback, cache_urls=cache)
        finally:
            await resolver.dispose()

    try:
        url = asyncio.run(_run())
    except NoSourceAvailable as exc:
        typer.echo(f"[Resolver] {exc}")
        raise typer.Exit(code=EXIT_ERROR)
    typer.echo(url)


@app.command()
def probe(
    jsonl: Optional[Path] = typer.Option(None, "--jsonl", help="Append per-probe records to this JSONL file"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    config = _setup(verbose)
    code, report = run_sync(config, jsonl_path=jsonl)
    if report is None:
        typer.echo("[Resolver] Probe round failed.")
        raise typer.Exit(code=code)
    typer.echo("\n".join(build_summary(report)))
    raise typer.Exit(code=code)


@app.command()
def fetch(
    path: str = typer.Argument(..., help="Logical resource path"),
    kind: ResourceKind = typer.Option(ResourceKind.image, "--kind", help="Which loader validates the response"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    config = _setup(verbose)

    async def _run() -> tuple[bool, str | None]:
        port = HttpxEnvironment(page_url=config.page_url)
        resolver = ResourceResolver(config, port)
        try:
            await resolver.init()
            loader = _LOADERS[kind](port.client)
            url = resolver.resolve(path)
            if await loader.attempt_load(url):
                return True, url
            typer.echo(f"[Resolver] {url} failed ({loader.last_reason}), recovering...")
            outcome = await resolver.recover(path, loader, failed_url=url)
            return outcome.ok, outcome.url
        finally:
            await resolver.dispose()
            await port.aclose()

    ok, url = asyncio.run(_run())
    if ok:
        typer.echo(url)
        raise typer.Exit(code=EXIT_OK)
    typer.echo(f"[Resolver] {path}: unavailable from every source")
    raise typer.Exit(code=EXIT_DEGRADED)


@app.command("origins")
def list_origins() -> None:
    config = _setup(False)
    if not config.origins:
        typer.echo("(no origins configured, local only)")
        return
    for i, origin in enumerate(config.origins, start=1):
        typer.echo(f"{i}. {origin}")


if __name__ == "__main__":
    app()
