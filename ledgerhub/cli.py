"""
Command Line Interface

Operator commands for the jobs that also run from the API and scheduler.
Usable from the system crontab, e.g.:

    0 2 * * * ledgerhub cleanup-trials --execute
"""
import json
import sys

import click

from ledgerhub.config import get_settings
from ledgerhub.core.exceptions import DuplicateError, ProvisioningError
from ledgerhub.utils.logging import setup_logging


@click.group()
@click.option('--log-level', default=None, help='Override LOG_LEVEL.')
def cli(log_level):
    """LedgerHub tenant platform operations."""
    settings = get_settings()
    setup_logging(log_level=log_level or settings.LOG_LEVEL, json_format=(settings.ENVIRONMENT == "production"))


@cli.command('init-master')
def init_master():
    """Create and seed the master database."""
    from ledgerhub.services.master_init import init_master_database

    init_master_database()
    click.echo('Master database ready.')


@cli.command('cleanup-trials')
@click.option('--dry-run/--execute', default=None,
              help='Report only, or actually drop databases. Defaults to CLEANUP_DRY_RUN.')
@click.option('--backup/--no-backup', default=None,
              help='Back up each database before dropping it. Defaults to CLEANUP_CREATE_BACKUP.')
@click.option('--expiry-days', type=int, default=None,
              help='Inactivity window in days. Defaults to TRIAL_EXPIRY_DAYS.')
def cleanup_trials(dry_run, backup, expiry_days):
    """Remove databases of expired, inactive trial tenants."""
    from ledgerhub.database import SessionLocal
    from ledgerhub.services.trial_cleanup import TrialCleanupService

    db = SessionLocal()
    try:
        service = TrialCleanupService(db, dry_run=dry_run, create_backup=backup, expiry_days=expiry_days)
        summary = service.run()
    finally:
        db.close()

    click.echo(f'Databases deleted: {summary.deleted}')
    click.echo(f'Databases kept (recent activity): {summary.kept}')
    click.echo(f'Tenants marked inactive: {summary.marked_inactive}')
    click.echo(f'Errors: {summary.errors}')
    if summary.dry_run:
        click.echo('DRY RUN: no changes were made. Use --execute to clean up.')
    if summary.errors:
        sys.exit(1)


@cli.command('sync-schemas')
def sync_schemas():
    """Create missing tables and columns in every tenant database."""
    from ledgerhub.database import SessionLocal
    from ledgerhub.services.schema_sync import sync_tenant_schemas

    db = SessionLocal()
    try:
        result = sync_tenant_schemas(db)
    finally:
        db.close()

    for item in result['results']:
        if item['status'] == 'success':
            click.echo(f"{item['db_name']}: ok ({len(item['created_tables'])} tables, "
                       f"{len(item['added_columns'])} columns added)")
        else:
            click.echo(f"{item['db_name']}: FAILED {item['error']}", err=True)
    click.echo(f"Synced {result['success']}/{result['total']} tenant databases, {result['errors']} failed.")
    if result['errors']:
        sys.exit(1)


@cli.command('storage-report')
@click.option('--json', 'as_json', is_flag=True, help='Print the report as JSON.')
def storage_report(as_json):
    """Database storage usage. Exit code 1 on warning, 2 on critical."""
    from ledgerhub.services.storage import EXIT_CODES, build_storage_report

    report = build_storage_report()

    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
    else:
        click.echo(f"{'Database':<40}| {'Size (MB)':>10} | {'Tables':>6}")
        click.echo('-' * 62)
        for db in report['databases']:
            click.echo(f"{db['name']:<40}| {db['size_mb']:>10.2f} | {db['tables']:>6}")
        click.echo('-' * 62)
        click.echo(f"{'TOTAL':<40}| {report['total_mb']:>10.2f} | {report['total_tables']:>6}")
        click.echo('')
        click.echo(f"Used {report['total_mb']:.2f} of {report['limit_mb']} MB "
                   f"({report['usage_percent']}%), {report['remaining_mb']:.2f} MB remaining")
        click.echo(f"Status: {report['status'].upper()}")

        analysis = report['tenant_analysis']
        if analysis:
            click.echo('')
            click.echo(f"Tenant databases: {analysis['count']}, average {analysis['average_mb']:.2f} MB, "
                       f"largest {analysis['largest_mb']:.2f} MB, smallest {analysis['smallest_mb']:.2f} MB")
            for db in analysis['largest']:
                click.echo(f"  {db['name']}: {db['size_mb']:.2f} MB")

    sys.exit(EXIT_CODES[report['status']])


@cli.command('provision-tenant')
@click.option('--company-name', required=True)
@click.option('--subdomain', required=True)
@click.option('--email', required=True)
@click.option('--gstin', default=None)
@click.option('--plan', 'subscription_plan', default=None)
def provision_tenant(company_name, subdomain, email, gstin, subscription_plan):
    """Create a tenant and provision its database."""
    from ledgerhub.database import SessionLocal
    from ledgerhub.services.provisioning import TenantProvisioningService

    db = SessionLocal()
    try:
        created = TenantProvisioningService(db).create_tenant({
            'company_name': company_name,
            'subdomain': subdomain,
            'email': email,
            'gstin': gstin,
            'subscription_plan': subscription_plan,
        })
    except DuplicateError as exc:
        click.echo(exc.detail, err=True)
        sys.exit(1)
    except ProvisioningError as exc:
        click.echo(f'Provisioning failed: {exc}', err=True)
        for statement in getattr(exc, 'grant_statements', []):
            click.echo(f'  {statement}', err=True)
        sys.exit(1)
    finally:
        db.close()

    tenant = created['tenant']
    click.echo(f'Tenant {tenant.id} created: {tenant.subdomain} -> {tenant.db_name}')


if __name__ == '__main__':
    cli()
