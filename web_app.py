#!/usr/bin/env python3
"""
Flask API for the storyscout pipeline.
Features: per-caller rate limiting, read endpoints for posts and results, manual job triggers, quota reporting.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from functools import wraps
from typing import Optional

import psycopg
from flask import Flask, current_app, jsonify, request

from classify_worker import CLASSIFY_LOCK, RATING_LOCK, build_ai_limiter, run_jobs
from storyscout.ai.completion import OpenAICompletionClient
from storyscout.concurrency.locks import InMemoryLockStore, LockManager, PostgresLockStore
from storyscout.config import Settings, configure_logging
from storyscout.ratelimit.flask_guard import create_http_limiter, refusal_message, refusal_response, retry_after_seconds
from storyscout.ratelimit.limiter import SendQuota, limit_string
from storyscout.storage.post_store import post_to_dict
from storyscout.storage.postgres_repo import PostgresRepo

logger = logging.getLogger(__name__)

JOB_LOCKS = {'classify': CLASSIFY_LOCK, 'rate': RATING_LOCK}


def add_security_headers(response):
    """Add security headers"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    return response


def handle_store_errors(f):
    """Decorator for handling store errors gracefully"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except psycopg.Error as e:
            logger.error(f"Database error in {f.__name__}: {e}")
            return jsonify({'success': False, 'error': 'Database temporarily unavailable', 'retry': True}), 503
    return decorated_function


def _state():
    return current_app.extensions['storyscout']


def create_app(settings: Optional[Settings] = None, store=None, lock_manager: Optional[LockManager] = None,
               client=None, send_quota: Optional[SendQuota] = None) -> Flask:
    settings = settings or Settings.from_env()
    if store is None:
        store = PostgresRepo(settings.pg_dsn)
    if lock_manager is None:
        lock_store = PostgresLockStore(settings.pg_dsn) if isinstance(store, PostgresRepo) else InMemoryLockStore()
        lock_manager = LockManager(lock_store, ttl_seconds=settings.lock_ttl_seconds)

    app = Flask(__name__)
    app.json.sort_keys = False

    limiter = create_http_limiter(app, settings)
    app.extensions['storyscout'] = {
        'settings': settings,
        'store': store,
        'locks': lock_manager,
        'client': client,
        'ai_limiter': build_ai_limiter(settings),
        'send_quota': send_quota or SendQuota.from_settings(settings),
        'limiter': limiter,
    }

    app.after_request(add_security_headers)

    @app.route('/api/health')
    @limiter.exempt
    def health_check():
        """API health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': '1.0.0'
        })

    @app.route('/api/posts')
    @handle_store_errors
    def list_posts():
        limit = min(max(request.args.get('limit', 50, type=int) or 50, 1), 200)
        offset = max(request.args.get('offset', 0, type=int) or 0, 0)
        posts = _state()['store'].recent_posts(limit=limit, offset=offset)
        return jsonify({'success': True, 'posts': posts, 'limit': limit, 'offset': offset})

    @app.route('/api/posts/<post_id>')
    @handle_store_errors
    def get_post(post_id):
        s = _state()['store']
        post = s.find_post(post_id)
        if post is None:
            return jsonify({'success': False, 'error': 'Post not found'}), 404
        classification = s.get_classification(post_id)
        rating = s.get_rating(post_id)
        return jsonify({
            'success': True,
            'post': post_to_dict(post),
            'classification': {
                'is_historic': classification.is_historic,
                'confidence': classification.confidence,
                'reason': classification.reason,
            } if classification else None,
            'rating': {'rating': rating.rating, 'factors': rating.factors} if rating else None,
        })

    @app.route('/api/stats')
    @handle_store_errors
    def stats():
        state = _state()
        return jsonify({
            'success': True,
            'stats': state['store'].stats(),
            'jobs': {name: {'is_locked': state['locks'].is_locked(lock)} for name, lock in JOB_LOCKS.items()},
        })

    @app.route('/api/quota')
    def quota():
        return jsonify({'success': True, 'quota': _state()['send_quota'].usage()})

    @app.route('/api/jobs/<job>', methods=['POST'])
    @limiter.limit(
        limit_string(settings.trigger_rate_max, settings.trigger_rate_window_ms),
        error_message='Too many job triggers, please wait before trying again.',
    )
    @handle_store_errors
    def trigger_job(job):
        if job not in JOB_LOCKS:
            return jsonify({'success': False, 'error': f'Unknown job: {job}'}), 404
        state = _state()
        client = state['client']
        if client is None:
            if not state['settings'].openai_api_key:
                return jsonify({'success': False, 'error': 'AI service not configured'}), 503
            client = state['client'] = OpenAICompletionClient.from_settings(state['settings'])

        runs = asyncio.run(run_jobs(state['settings'], job, state['store'], state['locks'], client, state['ai_limiter']))
        run = runs[0]
        body = {'success': run.status.value != 'failed', 'job': job, 'status': run.status.value}
        if run.report is not None:
            body['report'] = {
                'selected': run.report.selected,
                'succeeded': run.report.succeeded,
                'failures': run.report.failures,
                'throttled': run.report.throttled,
            }
        if run.error:
            body['error'] = run.error
        return jsonify(body), (409 if run.status.value == 'skipped' else 200)

    @app.errorhandler(404)
    def not_found(error):
        """Custom 404 handler"""
        return jsonify({'success': False, 'error': 'Endpoint not found'}), 404

    @app.errorhandler(429)
    def rate_limit_handler(error):
        """Custom rate limit handler"""
        logger.warning(f"Rate limit exceeded for {request.path}: {error.description}")
        return refusal_response(refusal_message(error), retry_after_seconds(limiter))

    @app.errorhandler(500)
    def internal_error(error):
        """Custom 500 handler"""
        logger.error(f"Internal server error: {error}")
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    return app


if __name__ == '__main__':
    configure_logging()
    app = create_app()
    port = int(os.environ.get('PORT', 5002))
    debug = os.environ.get('FLASK_ENV') == 'development'

    logger.info(f"Starting storyscout API on port {port}")
    logger.info(f"Debug mode: {debug}")

    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug,
        threaded=True
    )
