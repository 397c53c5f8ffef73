"""Operational commands, available as `flask --app farmtrack <command>`."""
import click
from flask.cli import with_appcontext

from . import db
from .auth import issue_token
from .models import Farm, Setting, User, NIGHT_CHECK_SCHEDULE_KEY
from .scheduler import night_check


@click.command('night-check')
@with_appcontext
@click.option('--farm-id', type=int, default=None, help='Only check this farm. Defaults to every farm with animals.')
def night_check_command(farm_id):
    """Run the night return check now, without waiting for the schedule."""
    report = night_check.trigger_now(farm_id)
    if not report.ok:
        raise click.ClickException(f'Night check failed: {report.error}')

    if not report.results:
        click.echo('No farms to check.')
    for result in report.results:
        click.echo(f'Farm {result.farm_id}: {result.summary}')
        for label in result.missing_animals:
            click.echo(f'  - {label}')


@click.command('init-settings')
@with_appcontext
def init_settings_command():
    """Create the default night check schedule for every farm that lacks one."""
    default_time = night_check.default_time
    created = 0
    for farm in Farm.query.order_by(Farm.id).all():
        existing = Setting.query.filter_by(key=NIGHT_CHECK_SCHEDULE_KEY, farm_id=farm.id).first()
        if existing:
            click.echo(f'Night check schedule already exists for farm {farm.name} ({existing.value})')
            continue
        db.session.add(Setting(
            key=NIGHT_CHECK_SCHEDULE_KEY,
            value=default_time,
            description='Daily night return check schedule time (24-hour format)',
            farm_id=farm.id,
        ))
        created += 1
        click.echo(f'Created default night check schedule for farm {farm.name}')
    db.session.commit()

    # Pick up the new rows in this process too.
    night_check.load_schedules()
    click.echo(f'Settings initialization completed ({created} created).')


@click.command('issue-token')
@with_appcontext
@click.option('--user-id', type=int, required=True)
def issue_token_command(user_id):
    """Print a bearer token for a user."""
    user = db.session.get(User, user_id)
    if user is None:
        raise click.ClickException(f'User {user_id} not found')
    click.echo(issue_token(user))


def register_commands(app):
    app.cli.add_command(night_check_command)
    app.cli.add_command(init_settings_command)
    app.cli.add_command(issue_token_command)
