"""Flask application factory."""
import logging
import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from gestock.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Sentry error tracking in production
    sentry_dsn = app.config.get('SENTRY_DSN')
    if sentry_dsn and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache
    from gestock.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from gestock.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Error Handlers
    from gestock.exceptions import GestockError

    @app.errorhandler(GestockError)
    def handle_gestock_error(error):
        """Handle application exceptions as {data: null, error}."""
        if error.status_code >= 500:
            app.logger.error(f"GestockError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"GestockError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'data': None, 'error': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        from gestock.database import get_session
        get_session().rollback()
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'data': None, 'error': 'Erreur interne du serveur'}), 500

    # Register blueprints
    from gestock.blueprints.main import main_bp
    from gestock.blueprints.stock import stock_bp
    from gestock.blueprints.purchase_orders import purchase_orders_bp
    from gestock.blueprints.delivery_notes import delivery_notes_bp
    from gestock.blueprints.cancellations import cancellations_bp
    from gestock.blueprints.invoices import invoices_bp
    from gestock.blueprints.partners import partners_bp
    from gestock.blueprints.metrics import metrics_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(delivery_notes_bp)
    app.register_blueprint(cancellations_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(partners_bp)
    app.register_blueprint(metrics_bp)

    # CLI commands
    from gestock.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
