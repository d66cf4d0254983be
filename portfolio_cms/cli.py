"""Command-line tools for the portfolio CMS (database setup, markdown import)."""

import logging
from pathlib import Path
from typing import Annotated, Any, Dict

import typer
from rich.console import Console

from portfolio_cms.config import LOG_LEVEL
from portfolio_cms.db.engine import Base, SessionLocal, engine
from portfolio_cms.services.content_service import VARIANTS, ContentService
from portfolio_cms.services.errors import CMSError
from portfolio_cms.services.markdown_rewriter import merge_frontmatter, split_frontmatter

app = typer.Typer(
    name="portfolio-cms",
    help="Manage the portfolio CMS content store.",
)

console = Console()
logger = logging.getLogger(__name__)

MARKDOWN_SUFFIXES = (".md", ".mdx")


@app.callback()
def main() -> None:
    """Portfolio CMS - content store tools."""
    logging.basicConfig(level=LOG_LEVEL)


def record_from_markdown(path: Path) -> Dict[str, Any]:
    """Build record fields from a markdown file with optional frontmatter.

    The filename stem is the fallback for both slug and title.
    """
    metadata, body = split_frontmatter(path.read_text(encoding="utf-8"))
    record = merge_frontmatter({}, metadata)

    record.setdefault("slug", path.stem)
    record.setdefault("title", path.stem)
    record.setdefault("description", "")
    if not record.get("image") and metadata.get("cover"):
        record["image"] = metadata["cover"]
    if not record.get("published_at") and metadata.get("date"):
        record["published_at"] = metadata["date"]
    if metadata.get("featured"):
        record["featured"] = metadata["featured"].lower() == "true"
    if metadata.get("order"):
        try:
            record["order"] = int(metadata["order"])
        except ValueError:
            logger.warning("Ignoring non-numeric order %r in %s", metadata["order"], path.name)
    record["content"] = body
    return record


@app.command("init-db")
def init_db() -> None:
    """Create the content tables if they do not exist."""
    Base.metadata.create_all(bind=engine)
    console.print("[green]Content tables ready.[/green]")


@app.command("import")
def import_markdown(
    directory: Annotated[
        Path,
        typer.Argument(help="Directory containing .md/.mdx files."),
    ],
    variant: Annotated[
        str,
        typer.Option("--variant", help="Content type: 'projects' or 'blog'."),
    ] = "blog",
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Parse files but do not write anything."),
    ] = False,
) -> None:
    """Import markdown files as content records, skipping existing slugs."""
    if variant not in VARIANTS:
        console.print(f"[red]Error:[/red] Unknown variant '{variant}'. Use one of: {', '.join(VARIANTS)}")
        raise typer.Exit(1)

    if not directory.is_dir():
        console.print(f"[red]Error:[/red] Directory not found: {directory}")
        raise typer.Exit(1)

    files = sorted(p for p in directory.iterdir() if p.suffix.lower() in MARKDOWN_SUFFIXES)
    if not files:
        console.print(f"[yellow]No markdown files found in {directory}[/yellow]")
        raise typer.Exit(0)

    Base.metadata.create_all(bind=engine)

    created = skipped = failed = 0
    db = SessionLocal()
    try:
        service = ContentService.for_variant(db, variant)
        for path in files:
            record = record_from_markdown(path)
            if service.find(record["slug"]) is not None:
                console.print(f"  skip   {record['slug']} (already exists)")
                skipped += 1
                continue
            if dry_run:
                console.print(f"  would create {record['slug']}")
                created += 1
                continue
            try:
                service.create(record)
            except CMSError as e:
                console.print(f"  [red]error[/red]  {path.name}: {e.message}")
                failed += 1
                continue
            console.print(f"  [green]create[/green] {record['slug']}")
            created += 1

        total = len(service.list())
    finally:
        db.close()

    console.print(
        f"\n{'Would create' if dry_run else 'Created'} {created}, skipped {skipped}, failed {failed}."
    )
    console.print(f"{service.label}s in store: {total}")
    if failed:
        raise typer.Exit(1)
