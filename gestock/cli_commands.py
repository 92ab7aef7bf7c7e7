"""
Flask CLI commands.

Commands:
- flask init-db: Create the database tables
- flask verify-ledger: Check stock quantities against the movement history
"""

import click

from gestock.database import create_tables, get_session
from gestock.services.stock_ledger import verify_ledger


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        create_tables()
        click.echo(click.style('✅ Tables créées', fg='green'))

    @app.cli.command('verify-ledger')
    def verify_ledger_command():
        """Compare each stock row with the sum of its signed movements."""
        mismatches = verify_ledger(get_session())
        if not mismatches:
            click.echo(click.style('✅ Stock cohérent avec les mouvements', fg='green'))
            return

        for mismatch in mismatches:
            click.echo(click.style(
                f"❌ Produit {mismatch['product_id']}: stock {mismatch['recorded_quantity']}, "
                f"mouvements {mismatch['ledger_quantity']}",
                fg='red'
            ))
        raise click.exceptions.Exit(1)
