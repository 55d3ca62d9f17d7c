from __future__ import annotations

import dataclasses
import logging
import sqlite3
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .config import Settings
from .detect.configured import EntityConfig, load_relationships
from .detect.detector import DetectorConfig, RelationshipDetector, detect_schema
from .errors import ConfigInvalid, NotFoundError, SourceError
from .graph.builder import EntityGraphBuilder
from .models import EntityGraphNode
from .pipeline import JsonlChunkSink, build_context, make_cache
from .source.sqlite_source import SqliteSource, connect


app = typer.Typer(add_completion=False, help="Relationship-aware context chunks for RAG indexing.")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log warnings and progress")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.ERROR,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _open(db: Path | None) -> sqlite3.Connection:
    path = Path(db) if db is not None else Path(Settings().db_path)
    if not path.is_file():
        raise typer.BadParameter(f"Database not found: {path}", param_hint="--db")
    return connect(path)


def _settings(**overrides) -> Settings:
    base = Settings()
    changes = {k: v for k, v in overrides.items() if v is not None}
    try:
        return dataclasses.replace(base, **changes).validate()
    except ConfigInvalid as e:
        raise typer.BadParameter(str(e))


def _relationships(path: Path | None, settings: Settings) -> tuple[EntityConfig, ...] | None:
    if path is None and settings.relationships_path:
        path = Path(settings.relationships_path)
    if path is None:
        return None
    try:
        return load_relationships(path)
    except ConfigInvalid as e:
        raise typer.BadParameter(str(e), param_hint="--relationships")


@app.command()
def detect(
    db: Path | None = typer.Option(None, "--db", help="SQLite file (default: RELGRAPH_DB_PATH)"),
    entity: str | None = typer.Option(None, "--entity", help="Only this entity (shows every ranked target)"),
    threshold: float | None = typer.Option(None, "--threshold", help="Minimum confidence for the schema view"),
    sample_size: int | None = typer.Option(None, "--sample-size", help="Values sampled per field"),
):
    """Show inferred relationships with confidence and evidence."""
    settings = _settings(confidence_threshold=threshold, sample_size=sample_size)
    detector = RelationshipDetector(DetectorConfig(sample_size=settings.sample_size))

    conn = _open(db)
    try:
        source = SqliteSource(conn)
        if entity:
            try:
                fields = source.list_fields(entity)
            except SourceError as e:
                console.print(str(e), style="red")
                raise typer.Exit(code=2)
            cands = detector.detect(entity, fields, source)
        else:
            cands = list(detect_schema(source, detector, threshold=settings.confidence_threshold).candidates)
    finally:
        conn.close()

    if not cands:
        console.print("No relationships detected.", style="yellow")
        return

    table = Table(title="Relationship Candidates")
    table.add_column("source")
    table.add_column("target")
    table.add_column("kind")
    table.add_column("confidence", justify="right", width=10)
    table.add_column("method")
    table.add_column("evidence")
    table.add_column("rank", justify="right", width=4)
    for c in cands:
        table.add_row(
            Text(f"{c.source_entity}.{c.local_key}"),
            Text(f"{c.target_entity}.{c.target_key}"),
            Text(c.kind),
            Text(f"{c.confidence:.3f}"),
            Text(c.method),
            Text(", ".join(c.evidence)),
            Text(str(c.rank)),
        )
    console.print(table)


@app.command()
def graph(
    db: Path | None = typer.Option(None, "--db", help="SQLite file (default: RELGRAPH_DB_PATH)"),
    entity: str = typer.Option(..., "--entity"),
    uid: str = typer.Option(..., "--uid"),
    max_depth: int | None = typer.Option(None, "--max-depth", help="Maximum relationship hops"),
    per_relation_limit: int | None = typer.Option(None, "--per-relation-limit", help="Max children per relation"),
    relationships: Path | None = typer.Option(None, "--relationships", help="JSON file of declared relationships"),
):
    """Expand one record and print its entity graph."""
    settings = _settings(max_depth=max_depth, per_relation_limit=per_relation_limit)
    configured = _relationships(relationships, settings)

    conn = _open(db)
    try:
        source = SqliteSource(conn)
        index = make_cache(source, settings).get()
        if configured is not None:
            index = index.with_relationships(configured)
        try:
            g = EntityGraphBuilder(source, index).build(
                entity,
                uid,
                settings.max_depth,
                settings.per_relation_limit,
                max_workers=settings.fetch_workers,
            )
        except (NotFoundError, SourceError) as e:
            console.print(str(e), style="red")
            raise typer.Exit(code=2)
    finally:
        conn.close()

    console.print(_tree(g.root))
    console.print(f"nodes: {len(g.nodes)}", markup=False)
    for w in g.warnings:
        console.print(f"warning: {w}", markup=False, style="yellow")


@app.command()
def build(
    db: Path | None = typer.Option(None, "--db", help="SQLite file (default: RELGRAPH_DB_PATH)"),
    entity: str = typer.Option(..., "--entity"),
    uid: str = typer.Option(..., "--uid"),
    out: Path | None = typer.Option(None, "--out", help="Append chunks to this JSONL file"),
    max_depth: int | None = typer.Option(None, "--max-depth"),
    per_relation_limit: int | None = typer.Option(None, "--per-relation-limit"),
    chunk_size: int | None = typer.Option(None, "--chunk-size", help="Max chars per chunk"),
    overlap: int | None = typer.Option(None, "--overlap", help="Overlap chars between chunks"),
    flatten_depth: int | None = typer.Option(None, "--flatten-depth", help="Levels rendered in full"),
    relationships: Path | None = typer.Option(None, "--relationships", help="JSON file of declared relationships"),
    show_text: bool = typer.Option(False, "--show-text", help="Also print every chunk"),
):
    """Build context chunks for one record (detect -> graph -> chunk)."""
    settings = _settings(
        max_depth=max_depth,
        per_relation_limit=per_relation_limit,
        chunk_size=chunk_size,
        overlap=overlap,
        flatten_depth_cutoff=flatten_depth,
    )
    configured = _relationships(relationships, settings)
    sink = JsonlChunkSink(out) if out is not None else None

    conn = _open(db)
    try:
        try:
            res = build_context(
                source=SqliteSource(conn),
                entity=entity,
                uid=uid,
                settings=settings,
                sink=sink,
                relationships=configured,
            )
        except (NotFoundError, SourceError) as e:
            console.print(str(e), style="red")
            raise typer.Exit(code=2)
    finally:
        conn.close()

    console.print(f"Namespace: {res.namespace}", markup=False)
    console.print(f"Nodes: {len(res.graph.nodes)}", markup=False)
    console.print(f"Chunks created: {res.chunks_created}", markup=False)
    for w in res.warnings:
        console.print(f"warning: {w}", markup=False, style="yellow")
    if out is not None:
        console.print(f"Wrote {res.chunks_created} chunks to {out}", markup=False)

    if show_text:
        for c in res.chunks:
            console.print("\n" + "=" * 80, markup=False)
            console.print(c.id, markup=False, style="bold")
            console.print(c.content, markup=False)


def _tree(root: EntityGraphNode) -> Tree:
    tree = Tree(_label(root))
    stack = [(root, tree)]
    while stack:
        node, branch = stack.pop()
        for name, kids in node.children.items():
            rel = branch.add(Text(f"{name} ({len(kids)})", style="bold"))
            for child in kids:
                stack.append((child, rel.add(_label(child))))
    return tree


def _label(node: EntityGraphNode) -> Text:
    label = Text(f"{node.entity} (ID: {node.uid})")
    if node.reference_only:
        label.append(" [ref]", style="dim")
    return label


if __name__ == "__main__":
    app()
