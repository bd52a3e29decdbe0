"""
Flask CLI commands for operating the storefront.

Commands:
- flask init-db: Create database tables
- flask create-admin: Create a back-office admin user
- flask reconcile-session: Reconcile a checkout session by hand
"""

import click
import re
from storefront.database import get_session, create_tables
from storefront.exceptions import StorefrontError
from storefront.models import AppUser


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables that do not exist yet."""
        create_tables()
        click.echo(click.style('✅ Database tables created.', fg='green'))

    @app.cli.command('create-admin')
    @click.option('--email', prompt=True, help='Admin email address')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
    @click.option('--name', default=None, help='Full name')
    def create_admin(email, password, name):
        """Create a new admin user for the back-office."""
        db_session = get_session()

        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            click.echo(click.style('❌ Invalid email. Use user@example.com', fg='red'))
            return

        if len(password) < 8:
            click.echo(click.style('❌ Password must be at least 8 characters.', fg='red'))
            return

        user = db_session.query(AppUser).filter_by(email=email.lower()).first()
        if user and user.is_admin:
            click.echo(click.style(f'❌ An admin with email {email} already exists', fg='red'))
            return

        try:
            if user is None:
                user = AppUser(email=email.lower(), full_name=name)
                db_session.add(user)
            user.is_admin = True
            user.set_password(password)
            db_session.commit()

            click.echo(click.style('\n✅ Admin user ready', fg='green', bold=True))
            click.echo(f'   Email: {user.email}')
            click.echo(f'   ID: {user.id}')

        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'❌ Error creating admin: {str(e)}', fg='red'))

    @app.cli.command('reconcile-session')
    @click.argument('session_id')
    def reconcile_session(session_id):
        """Create the order for a paid checkout session whose redirect and webhook were both lost."""
        from storefront.services.reconciliation_service import confirm_session
        from storefront.services.stripe_client import get_checkout_gateway
        db_session = get_session()

        try:
            outcome = confirm_session(db_session, get_checkout_gateway(), session_id, entry_point='cli')
        except StorefrontError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise SystemExit(1)

        order = outcome.order
        click.echo(click.style(f'✅ {outcome.state.value}', fg='green', bold=True))
        click.echo(f'   Order ID: {order.id}')
        click.echo(f'   Total: {order.total_price}')
        click.echo(f'   Owner: {order.user_id or "guest"}')
