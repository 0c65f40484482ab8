"""
ragcore CLI

Maintenance and inspection commands around the knowledge base:
schema creation, item registration, (re)processing, embedding backfill,
embedding audit and ad-hoc retrieval.
"""

import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

import click
import yaml

from ragcore.config.retrieval import load_retrieval_config
from ragcore.core.knowledge_base import KnowledgeBase, KnowledgeBaseConfig
from ragcore.logging_setup import configure_logging
from ragcore.storage.chunks.store import ChunkStoreConfig
from ragcore.storage.retriever.errors import AllStrategiesTimedOut, RetrievalFault


# ============================================================================
# Helper Functions
# ============================================================================

def run_async(coro):
    """Run async coroutine and return result."""
    return asyncio.run(coro)


def build_knowledge_base(ctx: click.Context) -> KnowledgeBase:
    """KnowledgeBase from the global CLI options."""
    opts = ctx.obj
    chunk_store = ChunkStoreConfig(url=opts["database_url"]) if opts["database_url"] else ChunkStoreConfig()
    config = KnowledgeBaseConfig(
        chunk_store=chunk_store,
        use_graph=opts["use_graph"],
        retrieval_config_path=opts["config_path"],
    )
    return KnowledgeBase(config)


async def _with_kb(ctx: click.Context, action):
    kb = build_knowledge_base(ctx)
    await kb.connect()
    try:
        return await action(kb)
    finally:
        await kb.close()


# ============================================================================
# CLI
# ============================================================================

@click.group()
@click.version_option(version='0.1.0', prog_name='ragcore')
@click.option('--database-url', envvar='RAGCORE_DATABASE_URL', help='SQLAlchemy async URL of the chunk store')
@click.option('--config', 'config_path', type=click.Path(), help='Retrieval config YAML (default: packaged)')
@click.option('--graph/--no-graph', 'use_graph', default=True, help='Connect the knowledge graph')
@click.option('--log-level', default='WARNING', help='Log level')
@click.option('--log-json', is_flag=True, help='Log as JSON lines')
@click.pass_context
def cli(ctx, database_url, config_path, use_graph, log_level, log_json):
    """ragcore - hybrid retrieval core for knowledge-grounded assistants."""
    configure_logging(log_level, json=log_json)
    ctx.ensure_object(dict)
    ctx.obj.update(database_url=database_url, config_path=config_path, use_graph=use_graph)


@cli.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create the chunk store schema."""
    try:
        run_async(_with_kb(ctx, _noop))
        click.echo("✅ Chunk store schema ready")
    except Exception as e:
        click.echo(f"❌ Error initializing chunk store: {e}", err=True)
        sys.exit(1)


async def _noop(kb: KnowledgeBase):
    return None


@cli.command('add')
@click.argument('text_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--title', help='Item title (default: file name)')
@click.option('--category', 'categories', multiple=True, help='Category (repeatable)')
@click.option('--process', is_flag=True, help='Chunk and embed immediately')
@click.pass_context
def add_item(ctx, text_file, title, categories, process):
    """Register a text file as a PENDING knowledge item.

    Example:
        ragcore add notes/deload.md --title "Deload Week Explained" --process
    """
    path = Path(text_file)
    content = path.read_text(encoding='utf-8')

    async def action(kb: KnowledgeBase):
        item_id = await kb.add_item(
            title or path.stem,
            content,
            file_path=str(path),
            categories=list(categories),
        )
        report = await kb.reprocess(item_id) if process else None
        return item_id, report

    try:
        item_id, report = run_async(_with_kb(ctx, action))
    except Exception as e:
        click.echo(f"❌ Error adding item: {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Added knowledge item {item_id}")
    if report:
        click.echo(f"  - {report.chunks} chunks, {report.embedded} embedded, {len(report.failed_chunk_ids)} failed")


@cli.command('reprocess')
@click.argument('item_id', required=False)
@click.option('--pending', is_flag=True, help='Process every PENDING item')
@click.pass_context
def reprocess(ctx, item_id, pending):
    """Re-chunk and re-embed one item (or all PENDING items)."""
    if not item_id and not pending:
        raise click.UsageError("Give an ITEM_ID or --pending")

    async def action(kb: KnowledgeBase):
        if pending:
            return await kb.process_pending()
        return [await kb.reprocess(item_id)]

    try:
        reports = run_async(_with_kb(ctx, action))
    except Exception as e:
        click.echo(f"❌ Error processing: {e}", err=True)
        sys.exit(1)

    if not reports:
        click.echo("Nothing to process")
    for report in reports:
        line = f"  - {report.item_id}: {report.status.value}, {report.chunks} chunks, {report.embedded} embedded"
        if report.error:
            line += f" ({report.error})"
        click.echo(line)


@cli.command('backfill')
@click.option('--limit', type=int, help='Maximum chunks to embed in this run')
@click.option('--item', 'item_id', help='Only chunks of this item')
@click.pass_context
def backfill(ctx, limit, item_id):
    """Embed chunks that have no embedding yet."""
    try:
        report = run_async(_with_kb(ctx, lambda kb: kb.backfill(limit=limit, item_id=item_id)))
    except Exception as e:
        click.echo(f"❌ Error during backfill: {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Embedded {report.embedded}/{report.total} chunks ({report.failed} failed, {report.pauses} pauses)")
    for chunk_id in report.failed_chunk_ids:
        click.echo(f"  - failed: {chunk_id}")


@cli.command('audit')
@click.option('--dimension', type=int, help='Expected embedding dimension')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def audit(ctx, dimension, output_format):
    """Report embedding coverage and consistency."""
    try:
        result = run_async(_with_kb(ctx, lambda kb: kb.audit(expected_dimension=dimension)))
    except Exception as e:
        click.echo(f"❌ Error auditing embeddings: {e}", err=True)
        sys.exit(1)

    if output_format == 'json':
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"Chunks:     {result.total_chunks}")
    click.echo(f"Embedded:   {result.embedded}")
    click.echo(f"Missing:    {result.missing}")
    click.echo(f"Dimensions: {result.dimensions}")
    click.echo(f"Models:     {result.models}")
    if result.dimension_mismatches:
        click.echo(f"Dimension mismatches: {len(result.dimension_mismatches)}")
    if result.model_mismatches:
        click.echo(f"Model mismatches: {len(result.model_mismatches)}")
    click.echo("✅ Consistent" if result.is_consistent else "⚠️  Inconsistent")


@cli.command('retrieve')
@click.argument('query')
@click.option('--max-chunks', type=int, help='Override max_chunks for this query')
@click.option('--threshold', type=float, help='Override similarity_threshold for this query')
@click.option('--category', 'categories', multiple=True, help='Only search items in this category (repeatable)')
@click.option('--prefer-category', 'preferred', multiple=True, help='Boost items in this category (repeatable)')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def retrieve(ctx, query, max_chunks, threshold, categories, preferred, output_format):
    """Run one retrieval and print ranked chunks and citations.

    Example:
        ragcore retrieve "What is a deload week?" --format json
    """
    async def action(kb: KnowledgeBase):
        overrides = {}
        if max_chunks is not None:
            overrides['max_chunks'] = max_chunks
        if threshold is not None:
            overrides['similarity_threshold'] = threshold
        if categories:
            overrides['categories'] = categories
        if preferred:
            overrides['priority_categories'] = preferred
        snapshot = kb.config_store.snapshot()
        if overrides:
            snapshot = replace(snapshot, **overrides)
        return await kb.retrieve(query, snapshot)

    try:
        result = run_async(_with_kb(ctx, action))
    except AllStrategiesTimedOut as e:
        click.echo(f"❌ Retrieval timed out: {e}", err=True)
        sys.exit(2)
    except RetrievalFault as e:
        click.echo(f"❌ Retrieval unavailable: {e}", err=True)
        sys.exit(2)
    except Exception as e:
        click.echo(f"❌ Error retrieving: {e}", err=True)
        sys.exit(1)

    if output_format == 'json':
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.is_empty:
        click.echo(f"No results ({result.outcome})")
        return

    for chunk in result.chunks:
        marker = "*" if chunk.high_confidence else " "
        click.echo(
            f"{marker}[{chunk.citation_ordinal}] {chunk.fused_score:.3f} "
            f"{'+'.join(chunk.strategies):<22} {chunk.item_title} #{chunk.chunk_index}"
        )
    click.echo("")
    for citation in result.citations:
        click.echo(f"[{citation.ordinal}] {citation.title}")


@cli.group()
def config():
    """Inspect retrieval configuration."""
    pass


@config.command('show')
@click.pass_context
def config_show(ctx):
    """Print the effective retrieval config as YAML."""
    try:
        current = load_retrieval_config(ctx.obj["config_path"])
    except Exception as e:
        click.echo(f"❌ Error loading config: {e}", err=True)
        sys.exit(1)
    click.echo(yaml.safe_dump({'retrieval': current.to_dict()}, sort_keys=False))


if __name__ == '__main__':
    cli()
