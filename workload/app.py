#!/usr/bin/env python3
"""
Sample workload scaled by the autoscaler.

A minimal Flask service that counts requests and reports its health.
Each replica identifies itself through INSTANCE_NAME so responses show
which container served them. Metrics are exposed at /metrics.
"""

import logging
import os
import threading

from flask import Flask, jsonify
from prometheus_client import CollectorRegistry, Counter, Gauge, make_wsgi_app
from werkzeug.middleware.dispatcher import DispatcherMiddleware

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

INSTANCE_NAME = os.environ.get('INSTANCE_NAME', 'unknown')
PORT = int(os.environ.get('PORT', '3000'))


def create_app(instance_name: str = INSTANCE_NAME) -> Flask:
    """
    Build the workload application.

    Args:
        instance_name: Name reported in every response

    Returns:
        Flask application with /metrics mounted
    """
    app = Flask(__name__)
    registry = CollectorRegistry()

    total_requests = Counter(
        'workload_requests_total',
        'Total number of requests served by the root endpoint',
        registry=registry
    )
    health_status = Gauge(
        'workload_health_status',
        'Application health status (1=healthy, 0=unhealthy)',
        registry=registry
    )
    health_status.set(1)

    lock = threading.Lock()
    state = {'request_count': 0}

    @app.route('/')
    def index():
        """Count the request and identify the serving instance."""
        with lock:
            state['request_count'] += 1
            count = state['request_count']
        total_requests.inc()

        return jsonify({
            'instance': instance_name,
            'message': 'Hello!',
            'requestCount': count
        })

    @app.route('/health')
    def health():
        """
        Health check endpoint.
        Returns 200 if application is healthy.
        """
        return jsonify({
            'status': 'healthy',
            'instance': instance_name
        }), 200

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal error: {error}")
        health_status.set(0)
        return jsonify({'error': 'Internal server error'}), 500

    app.wsgi_app = DispatcherMiddleware(app.wsgi_app, {
        '/metrics': make_wsgi_app(registry)
    })
    return app


app = create_app()


if __name__ == '__main__':
    logger.info(f"{INSTANCE_NAME} listening on port {PORT}")
    app.run(host='0.0.0.0', port=PORT)
