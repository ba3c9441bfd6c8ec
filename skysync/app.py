"""
SkySync Flask Application.

Main entry point for the web application. Initializes:
- Configuration check (fails fast without the SafeSky secret)
- Database schema
- Flight session managers
- Refresh scheduler and beacon cache refresh
- API routes

Usage:
    python -m skysync.app

Or with gunicorn:
    gunicorn -w 1 'skysync.app:create_app()'

Every process that creates the app would otherwise start its own
refresh loop. With several web workers, set REFRESH_SCHEDULER_ENABLED=0
for them and run the scheduler in a single separate process.
"""

import logging
import os
from typing import Optional

from flask import Flask
from flask_cors import CORS

from skysync.airspace import AdvisoryPublisher, SafeSkyClient
from skysync.api import beacons_bp, flights_bp, metrics_bp
from skysync.cache import beacon_cache
from skysync.config import config
from skysync.exceptions import StoreUnavailableError
from skysync.flights import FlightRegistry, FlightSessionManagers
from skysync.ingestion import BeaconIngestor, CycleReport, RefreshScheduler, ViewerHeartbeats
from skysync.models import MissionLookup, init_db

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


def create_app(
    start_scheduler: bool = True,
    client: Optional[SafeSkyClient] = None,
) -> Flask:
    """
    Application factory for Flask.

    Args:
        start_scheduler: Whether to start the background refresh loop.
                         Set to False for testing. Ignored when
                         REFRESH_SCHEDULER_ENABLED=0.
        client: SafeSky client (created from config if None)

    Returns:
        Configured Flask application instance.

    Raises:
        ConfigurationError if the SafeSky secret is missing
    """
    config.validate()

    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = config.secret_key

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    # Initialize database
    logger.info('Initializing database...')
    init_db()

    # Register API blueprints
    app.register_blueprint(flights_bp)
    app.register_blueprint(beacons_bp)
    app.register_blueprint(metrics_bp)

    client = client or SafeSkyClient.from_config()
    missions = MissionLookup()
    publisher = AdvisoryPublisher(client, missions=missions)
    registry = FlightRegistry()
    viewers = ViewerHeartbeats()

    app.config['FLIGHT_REGISTRY'] = registry
    app.config['FLIGHT_MANAGERS'] = FlightSessionManagers(publisher=publisher, missions=missions)
    app.config['VIEWER_HEARTBEATS'] = viewers

    if start_scheduler and not config.scheduler.enabled:
        logger.info('Refresh scheduler disabled for this process')

    if start_scheduler and config.scheduler.enabled:
        scheduler = RefreshScheduler(
            publisher=publisher,
            ingestor=BeaconIngestor(client),
            registry=registry,
            missions=missions,
            viewers=viewers,
        )

        # Refresh the read cache after each cycle
        def on_cycle(report: CycleReport):
            beacon_cache.refresh_from_database()

        scheduler.add_cycle_callback(on_cycle)
        scheduler.start_background()
        app.config['REFRESH_SCHEDULER'] = scheduler

        logger.info(
            f'Refresh scheduler started (interval={config.scheduler.interval_seconds}s, '
            f'beacon radius {config.beacons.radius_km}km)'
        )
    else:
        app.config['REFRESH_SCHEDULER'] = None

    @app.route('/health')
    def health():
        """Simple health check endpoint."""
        return {'status': 'ok'}

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.errorhandler(400)
    def bad_request(e):
        return {'error': 'Bad request'}, 400

    @app.errorhandler(404)
    def not_found(e):
        return {'error': 'Not found'}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {'error': 'Method not allowed'}, 405

    @app.errorhandler(409)
    def conflict(e):
        return {'error': 'Conflict'}, 409

    @app.errorhandler(StoreUnavailableError)
    def store_unavailable(e):
        logger.error(f'Store unavailable: {e}')
        return {'error': 'Flight store unavailable'}, 503

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f'Server error: {e}')
        return {'error': 'Internal server error'}, 500

    return app


def run_development_server():
    """Run the development server."""
    app = create_app()

    # Get port from environment or default
    port = int(os.environ.get('PORT', 5000))

    logger.info(f'Starting SkySync on http://localhost:{port}')

    app.run(
        host='0.0.0.0',
        port=port,
        debug=config.debug,
        use_reloader=False,  # Disable reloader to prevent duplicate scheduler threads
    )


if __name__ == '__main__':
    run_development_server()
