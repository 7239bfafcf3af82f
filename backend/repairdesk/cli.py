# Overview: Flask CLI command groups for bootstrap and billing operations.

# backend/repairdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Company bootstrap (MULTI-TENANT):
# - python -m flask companies list
#   List all companies with location counts.
# - python -m flask companies create --name "Fix-It Phones" --email billing@fixit.example
#   Create a company and its first (free) location.
# - python -m flask locations create --company-id 1 --name "Downtown"
#   Add a billable location (use --free to exclude it from billing).
#
# Payment integration:
# - python -m flask integrations set-payment --company-id 1 --provider square --credential accessToken=... --credential locationId=... --test-mode
#   Store (encrypted) processor credentials for a company.
# - python -m flask integrations test-payment --company-id 1
#   Run the provider's connection check.
#
# Billing:
# - python -m flask billing run [--date 2025-01-01]
#   One monthly billing pass (for cron). Safe to run repeatedly.
# - python -m flask billing amount --company-id 1
#   Show the monthly amount and location counts.
# - python -m flask billing history --company-id 1
#   List billing ledger rows, newest first.

from datetime import datetime

import click
from flask.cli import with_appcontext

from .errors import AppError
from .extensions import db
from .models import Company, Location
from .services import billing_service, credential_service
from .services.tenant_service import create_location


@click.group('companies')
def companies_group():
    """Company (tenant) bootstrap commands."""


@companies_group.command('list')
@with_appcontext
def list_companies():
    companies = db.session.query(Company).order_by(Company.id).all()
    if not companies:
        click.echo("No companies found.")
        return
    for company in companies:
        count = db.session.query(Location).filter(
            Location.company_id == company.id, Location.deleted_at.is_(None)
        ).count()
        status = "active" if company.is_active else "inactive"
        click.echo(f"{company.id:>4}  {company.name:<30} {status:<8} locations={count}")


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--email', default=None, help='Billing contact email')
@click.option('--location', 'location_name', default='Main Location', help='Name of the first location')
@with_appcontext
def create_company(name, email, location_name):
    """Create a company with its first location (always free)."""
    company = Company(name=name, email=email, settings={}, is_active=True)
    db.session.add(company)
    db.session.flush()
    location = create_location(company.id, location_name)
    db.session.commit()
    click.echo(f"PASS Created company {company.name} (ID: {company.id}) with free location {location.name} (ID: {location.id})")


@click.group('locations')
def locations_group():
    """Location commands."""


@locations_group.command('create')
@click.option('--company-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--free', is_flag=True, default=False, help='Exclude this location from billing')
@with_appcontext
def create_location_cmd(company_id, name, free):
    try:
        location = create_location(company_id, name, is_free=free)
        db.session.commit()
    except AppError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    label = "free" if location.is_free else "billable"
    click.echo(f"PASS Created {label} location {location.name} (ID: {location.id})")


@click.group('integrations')
def integrations_group():
    """Payment integration commands."""


@integrations_group.command('set-payment')
@click.option('--company-id', type=int, required=True)
@click.option('--provider', type=click.Choice(credential_service.PAYMENT_PROVIDERS), required=True)
@click.option('--credential', 'credentials', multiple=True, help='key=value, repeatable')
@click.option('--test-mode', is_flag=True, default=False, help='Use the processor sandbox')
@click.option('--disabled', is_flag=True, default=False)
@with_appcontext
def set_payment_integration(company_id, provider, credentials, test_mode, disabled):
    parsed = {}
    for item in credentials:
        if '=' not in item:
            raise click.BadParameter(f"Expected key=value, got {item!r}", param_hint='--credential')
        key, value = item.split('=', 1)
        parsed[key.strip()] = value
    try:
        credential_service.save_integration(
            company_id,
            "payment",
            provider=provider,
            credentials=parsed,
            settings={"testMode": test_mode},
            enabled=not disabled,
        )
        db.session.commit()
    except AppError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    click.echo(f"PASS Saved {provider} integration for company {company_id} ({len(parsed)} credentials)")


@integrations_group.command('test-payment')
@click.option('--company-id', type=int, required=True)
@with_appcontext
def test_payment_integration(company_id):
    try:
        result = credential_service.test_integration(company_id, "payment")
        db.session.commit()
    except AppError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    if result.success:
        click.echo("PASS Connection OK")
    else:
        click.echo(f"FAIL {result.error}")


@click.group('billing')
def billing_group():
    """Subscription billing commands."""


@billing_group.command('run')
@click.option('--date', 'run_date', default=None, help='Run as if today were YYYY-MM-DD (UTC)')
@with_appcontext
def run_billing(run_date):
    """Run one monthly billing pass. Idempotent per billing period."""
    now = None
    if run_date:
        try:
            now = datetime.strptime(run_date, "%Y-%m-%d")
        except ValueError:
            raise click.BadParameter("Use YYYY-MM-DD", param_hint='--date')
    created = billing_service.process_monthly_billing(now=now)
    click.echo(f"PASS Billing pass complete: {created} payment records created")


@billing_group.command('amount')
@click.option('--company-id', type=int, required=True)
@with_appcontext
def billing_amount(company_id):
    amount = billing_service.calculate_monthly_amount(company_id)
    click.echo(
        f"Company {company_id}: {amount.amount} per month "
        f"({amount.location_count} billable, {amount.free_location_count} free)"
    )


@billing_group.command('history')
@click.option('--company-id', type=int, required=True)
@with_appcontext
def billing_history(company_id):
    payments = billing_service.get_billing_history(company_id)
    if not payments:
        click.echo("No billing records.")
        return
    for payment in payments:
        period = payment.billing_period_start.strftime("%Y-%m")
        reason = f"  ({payment.failure_reason})" if payment.failure_reason else ""
        click.echo(f"{payment.id:>5}  {period}  {payment.amount:>10}  {payment.status:<9} locations={payment.location_count}{reason}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(companies_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(integrations_group)
    app.cli.add_command(billing_group)
