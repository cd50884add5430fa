# Overview: Flask CLI command group for lottery bootstrap and identifier inspection.

# backend/packtrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# - python -m flask lottery init-db [--bins 10] [--store-id 1]
#   Create all tables and seed numbered bins (idempotent).
# - python -m flask lottery add-game --code 0033 --name "Lucky 7s" --price-cents 500 --tickets-per-pack 150
#   Register a scratch game.
# - python -m flask lottery upcs 0033 5633005 15
#   Print the per-ticket UPCs for a pack.
# - python -m flask lottery parse-barcode 003356330050450000000000
#   Decompose a 24-digit pack scan barcode.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import LotteryBin
from .services import pack_service
from .services.identifier_codec import generate_upcs, parse_scan_barcode
from .validation import ValidationError, ConflictError


@click.group('lottery')
def lottery_group():
    """Lottery pack bootstrap and identifier tools."""


@lottery_group.command('init-db')
@click.option('--bins', 'bin_count', type=int, default=0, help='Number of bins to create')
@click.option('--store-id', type=int, default=pack_service.DEFAULT_STORE_ID, help='Store ID for the bins')
@with_appcontext
def init_db(bin_count, store_id):
    """Create tables and seed bins 1..N (existing bins are kept)."""
    db.create_all()
    click.echo("OK Tables created")

    created = 0
    for number in range(1, bin_count + 1):
        exists = db.session.query(LotteryBin).filter_by(store_id=store_id, bin_number=number).first()
        if exists:
            continue
        db.session.add(LotteryBin(store_id=store_id, bin_number=number, name=f"Bin {number}"))
        created += 1
    db.session.commit()
    if bin_count:
        click.echo(f"OK {created} bin(s) created for store {store_id}")


@lottery_group.command('add-game')
@click.option('--code', required=True, help='4-digit game code')
@click.option('--name', required=True, help='Game name')
@click.option('--price-cents', type=int, default=0, help='Ticket price in cents')
@click.option('--tickets-per-pack', type=int, default=None, help='Tickets in a full pack')
@with_appcontext
def add_game(code, name, price_cents, tickets_per_pack):
    """Register a scratch game."""
    try:
        game = pack_service.create_game(
            code, name, price_cents=price_cents, tickets_per_pack=tickets_per_pack
        )
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"OK Game {game.code} '{game.name}' created (id={game.id})")


@lottery_group.command('upcs')
@click.argument('game_code')
@click.argument('pack_number')
@click.argument('ticket_count', type=int)
def upcs(game_code, pack_number, ticket_count):
    """Print one UPC per ticket, ticket 000 first."""
    try:
        values = generate_upcs(game_code, pack_number, ticket_count)
    except ValidationError as e:
        raise click.ClickException(str(e))
    for value in values:
        click.echo(value)


@lottery_group.command('parse-barcode')
@click.argument('barcode')
def parse_barcode(barcode):
    """Show the fields encoded in a 24-digit scan barcode."""
    try:
        parsed = parse_scan_barcode(barcode)
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"game_code:       {parsed.game_code}")
    click.echo(f"pack_number:     {parsed.pack_number}")
    click.echo(f"serial_position: {parsed.serial}")
    click.echo(f"reserved:        {parsed.reserved}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(lottery_group)
