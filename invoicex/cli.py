"""
InvoiceX CLI commands

This module provides command-line interface for InvoiceX operations.
"""

import asyncio
import json
import logging
from pathlib import Path

import click

from invoicex.config.invoicex_config import InvoiceXConfig
from invoicex.core import InvoiceX
from invoicex.exceptions import InvoiceXError
from invoicex.models.invoice import WorkerMode
from invoicex.services.statistics import format_amount, format_processing_time


def configure_logging(config: InvoiceXConfig, level: str = None) -> None:
    logging.basicConfig(
        level=(level or config.get('logging.level', 'INFO')).upper(),
        format=config.get('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )


def _build_app(ctx: click.Context) -> InvoiceX:
    return InvoiceX.from_config(ctx.obj['config'])


def _run(coro):
    try:
        return asyncio.run(coro)
    except InvoiceXError as e:
        click.echo(f'Error: {e}', err=True)
        raise click.Abort()


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True), help='Path to configuration file')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']), help='Logging level')
@click.pass_context
def cli(ctx, config_path, log_level):
    """InvoiceX command-line interface"""
    config = InvoiceXConfig.load(config_path).apply_env()
    configure_logging(config, log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.pass_context
def init(ctx):
    """Create the database tables"""
    app = _build_app(ctx)
    try:
        app.initialize()
    finally:
        app.close()
    config = ctx.obj['config']
    click.echo('InvoiceX initialized')
    click.echo(f"  Database: {config.get('database.url') or config.get('database.path')}")
    click.echo(f"  Storage:  {config.get('storage.type')}")
    click.echo(f"  Worker:   {config.get('worker.mode')}")


@cli.command()
@click.option('--concurrency', type=int, help='Maximum concurrent jobs')
@click.pass_context
def worker(ctx, concurrency):
    """Run the job worker until interrupted"""
    if concurrency:
        ctx.obj['config'].set('worker.concurrency', concurrency)
    app = _build_app(ctx)
    if app.mode == WorkerMode.DISABLED:
        click.echo('Worker mode is disabled; documents are processed synchronously', err=True)
        app.close()
        return

    job_worker = app.create_worker()
    click.echo(f'Worker started (concurrency {job_worker.config.max_concurrent})')
    try:
        asyncio.run(job_worker.run())
    finally:
        app.close()


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--owner', required=True, help='Owner of the documents')
@click.option('--batch', 'batch_id', help='Draft batch to upload into (created when omitted)')
@click.pass_context
def upload(ctx, files, owner, batch_id):
    """Upload PDF files into a batch"""
    app = _build_app(ctx)

    async def _upload():
        nonlocal batch_id
        for file_path in files:
            path = Path(file_path)
            document = await app.documents.upload_document(owner, path.name, path.read_bytes(), batch_id)
            batch_id = document.batch_id
            click.echo(f'{document.id}  {path.name}')
        click.echo(f'Batch: {batch_id}')

    try:
        _run(_upload())
    finally:
        app.close()


@cli.command()
@click.argument('batch_id')
@click.option('--owner', required=True, help='Owner of the batch')
@click.pass_context
def submit(ctx, batch_id, owner):
    """Submit the pending documents of a draft batch"""
    app = _build_app(ctx)
    try:
        outcome = _run(app.batches.submit_batch(batch_id, owner))
    finally:
        app.close()

    for result in outcome.submitted:
        line = f'{result.document_id}  {result.mode.value:<6}  {result.status.value}'
        if result.job_id:
            line += f'  job={result.job_id}'
        if result.warning:
            line += f'  ({result.warning})'
        if result.error:
            line += f'  error: {result.error}'
        click.echo(line)
    for error in outcome.errors:
        click.echo(f'{error.document_id}  error: {error.error}', err=True)
    click.echo(f'Batch status: {outcome.status.value}')


@cli.command()
@click.argument('batch_id')
@click.option('--owner', required=True, help='Owner of the batch')
@click.pass_context
def retry(ctx, batch_id, owner):
    """Retry the failed documents of a batch"""
    app = _build_app(ctx)
    try:
        outcome = _run(app.batches.retry_batch(batch_id, owner))
    finally:
        app.close()

    click.echo(f'Retried {len(outcome.retried)} document(s), {len(outcome.errors)} error(s)')
    for error in outcome.errors:
        click.echo(f'{error.document_id}  error: {error.error}', err=True)
    click.echo(f'Batch status: {outcome.status.value}')


@cli.command()
@click.argument('document_ids', nargs=-1, required=True)
@click.option('--owner', required=True, help='Owner of the documents')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def status(ctx, document_ids, owner, output_format):
    """Show the processing status of documents"""
    app = _build_app(ctx)
    try:
        views = _run(app.documents.get_status(list(document_ids), owner))
    finally:
        app.close()

    if output_format == 'json':
        click.echo(json.dumps([v.model_dump(mode='json') for v in views], indent=2))
        return
    for view in views:
        line = f'{view.document_id}  {view.status.value:<17}  retries={view.retry_count}'
        if view.elapsed_seconds is not None:
            line += f'  {view.elapsed_seconds}s/{view.estimated_seconds}s'
        if view.last_error:
            line += f'  error: {view.last_error}'
        click.echo(line)


@cli.command()
@click.argument('batch_id')
@click.option('--owner', required=True, help='Owner of the batch')
@click.pass_context
def stats(ctx, batch_id, owner):
    """Show batch statistics"""
    app = _build_app(ctx)
    try:
        batch = app.batches.get_batch(batch_id, owner)
        statistics = app.batches.get_statistics(batch_id, owner)
    except InvoiceXError as e:
        click.echo(f'Error: {e}', err=True)
        raise click.Abort()
    finally:
        app.close()

    click.echo(f'{batch.name} ({batch.status})')
    click.echo(f'  Total:        {statistics.total}')
    click.echo(f'  Processed:    {statistics.processed}')
    click.echo(f'  Failed:       {statistics.failed}')
    click.echo(f'  Pending:      {statistics.pending}')
    click.echo(f'  Queued:       {statistics.queued}')
    click.echo(f'  Processing:   {statistics.processing}')
    click.echo(f'  Success rate: {statistics.success_rate}%')
    click.echo(f'  Total amount: {format_amount(statistics.total_amount, statistics.currency)}')
    click.echo(f'  Average:      {format_amount(statistics.average_amount, statistics.currency)}')
    click.echo(f'  Avg time:     {format_processing_time(statistics.average_processing_time_ms)}')


if __name__ == '__main__':
    cli()
