import click
from flask import Flask, jsonify # The main Flask class and JSON responses.
from flask_migrate import Migrate # For handling database migrations with Flask-Migrate.
from config import Config # Import the application's configuration class.
from extensions import db, login_manager, billing_provider, webhook_log # Import initialized extensions.
from models.user import User # Import User model, primarily for the user_loader.
from services.errors import BillingError, Unauthenticated

# Application Factory Function
def create_app(config_class=Config):
    """
    Application factory for creating and configuring the Flask app.
    Tests pass a Config subclass; everything else uses Config.
    """
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration from the Config object (defined in config.py).
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # --- Initialize Flask Extensions ---
    db.init_app(app)
    # Links the Flask app and SQLAlchemy DB instance to the migration engine.
    Migrate(app, db)

    # Flask-Login resolves the caller from the session. API clients get a JSON 401, not a redirect.
    login_manager.init_app(app)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(Unauthenticated().to_dict()), 401

    # --- Billing ---
    # Stripe API key, bounded HTTP timeout and retry policy.
    billing_provider.init_app(app)
    # Webhook event log, sized from config. Starts empty on every process start.
    webhook_log.init_app(app)

    # --- Error rendering ---
    # Every BillingError leaves the app as {"success": false, "error", "code", ...} with its status code.
    @app.errorhandler(BillingError)
    def handle_billing_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.__class__.__name__} ({error.code}): {error.message} | details: {error.details}")
        include_details = app.config.get('EXPOSE_ERROR_DETAILS', False)
        return jsonify(error.to_dict(include_details=include_details)), error.status_code

    # --- Import and Register Blueprints ---
    from routes.auth import auth_bp
    from routes.billing import billing_bp
    from routes.subscription import subscription_bp
    from routes.streams import streams_bp

    app.register_blueprint(auth_bp)         # /auth/...
    app.register_blueprint(billing_bp)      # /billing/...
    app.register_blueprint(subscription_bp) # /api/plans, /api/subscription/...
    app.register_blueprint(streams_bp)      # /api/streams/...

    # --- Flask-Login User Loader ---
    @login_manager.user_loader
    def load_user(user_id):
        """Loads a user from the database given their ID."""
        return db.session.get(User, int(user_id))

    # --- CLI ---
    @app.cli.command('seed-plans')
    def seed_plans_command():
        """Creates or updates the default plan catalog."""
        from services.catalog import seed_default_plans
        created, updated = seed_default_plans()
        click.echo(f"Plans seeded: {created} created, {updated} updated.")

    return app

# Allows running the Flask development server directly using `python app.py`.
if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
