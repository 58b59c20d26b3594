"""
Flask web application for the site mirror.

Provides a JSON API to start mirror jobs and to watch, pause, resume and
cancel them while they run in background threads.
"""

import asyncio
import os
import threading
import time
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

from flask import Flask, jsonify, request

from ..crawler import MirrorConfig, MirrorCrawler, MirrorError
from ..utils.log import get_logger


logger = get_logger("web")

FINISHED_STATUSES = ('completed', 'failed', 'cancelled')


def create_app(crawler_factory: Optional[Callable[..., MirrorCrawler]] = None):
    """
    Create and configure the Flask application.

    Args:
        crawler_factory: Called as factory(config, on_progress=..., on_error=...)
                         to build the crawler of a job (MirrorCrawler by default)
    """
    app = Flask(__name__)

    # Store for mirror jobs and their crawlers
    app.mirror_jobs: Dict[str, dict] = {}
    app.crawlers: Dict[str, MirrorCrawler] = {}
    app.job_counter = 0
    app.job_lock = threading.Lock()
    app.crawler_factory = crawler_factory or MirrorCrawler

    @app.route('/')
    def index():
        """Describe the API."""
        return jsonify({
            'name': 'site-mirror',
            'endpoints': [
                'POST /api/download',
                'GET /api/status/<job_id>',
                'GET /api/jobs',
                'POST /api/pause/<job_id>',
                'POST /api/resume/<job_id>',
                'POST /api/cancel/<job_id>',
            ]
        })

    @app.route('/api/download', methods=['POST'])
    def start_download():
        """Start a new mirror job."""
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'success': False, 'error': 'No JSON data provided'}), 400

        url = str(data.get('url') or '').strip()
        if not url:
            return jsonify({'success': False, 'error': 'No URL'}), 400

        if not url.startswith(('http://', 'https://')):
            url = 'https://' + url
        if not urlsplit(url).hostname:
            return jsonify({'success': False, 'error': 'Invalid URL format'}), 400

        try:
            config = MirrorConfig.from_dict(data)
        except (TypeError, ValueError) as e:
            return jsonify({'success': False, 'error': f'Invalid parameter value: {e}'}), 400

        crawler = app.crawler_factory(
            config,
            on_progress=lambda *args: _record_progress(app, job_id, *args),
            on_error=lambda message: _record_error(app, job_id, message)
        )

        with app.job_lock:
            app.job_counter += 1
            job_id = f"job_{app.job_counter}_{int(time.time())}"

            app.mirror_jobs[job_id] = {
                'id': job_id,
                'url': url,
                'status': 'starting',
                'message': 'Initializing...',
                'folder': os.path.abspath(crawler.site_dir(url)),
                'progress': {'current': 0, 'total': 0, 'speedKbs': 0.0, 'etaSeconds': 0.0},
                'errors': [],
                'summary': None,
                'started_at': time.time(),
                'completed_at': None,
            }
            app.crawlers[job_id] = crawler

        thread = threading.Thread(
            target=_run_mirror_job,
            args=(app, job_id, url),
            daemon=True
        )
        thread.start()

        return jsonify({
            'success': True,
            'jobId': job_id,
            'folder': app.mirror_jobs[job_id]['folder'],
            'status': 'starting'
        }), 202

    @app.route('/api/status/<job_id>')
    def get_status(job_id):
        """Get the status of a mirror job."""
        job = _job_snapshot(app, job_id)
        if not job:
            return jsonify({'error': 'Job not found'}), 404
        return jsonify(job)

    @app.route('/api/jobs')
    def list_jobs():
        """List all mirror jobs."""
        with app.job_lock:
            job_ids = list(app.mirror_jobs)
        jobs = [_job_snapshot(app, job_id) for job_id in job_ids]
        jobs.sort(key=lambda x: x.get('started_at', 0), reverse=True)
        return jsonify({'jobs': jobs})

    @app.route('/api/pause/<job_id>', methods=['POST'])
    def pause_job(job_id):
        """Pause a running mirror job."""
        return _control_job(app, job_id, 'pause')

    @app.route('/api/resume/<job_id>', methods=['POST'])
    def resume_job(job_id):
        """Resume a paused mirror job."""
        return _control_job(app, job_id, 'resume')

    @app.route('/api/cancel/<job_id>', methods=['POST'])
    def cancel_job(job_id):
        """Cancel a running mirror job."""
        return _control_job(app, job_id, 'cancel')

    return app


def _job_snapshot(app, job_id: str) -> Optional[dict]:
    """Copy of a job record with live counters of a running crawler."""
    with app.job_lock:
        job = app.mirror_jobs.get(job_id)
        if job is None:
            return None
        job = dict(job, errors=list(job['errors']), progress=dict(job['progress']))
        crawler = app.crawlers.get(job_id)

    if crawler is not None and job['status'] not in FINISHED_STATUSES:
        context = crawler.context
        job['successCount'] = context.success_count
        job['failCount'] = context.fail_count
        job['downloadedBytes'] = context.downloaded_bytes
        job['pages'] = len(context.pages)

    return job


def _control_job(app, job_id: str, action: str):
    """Apply pause/resume/cancel to a job."""
    with app.job_lock:
        job = app.mirror_jobs.get(job_id)
        crawler = app.crawlers.get(job_id)
        if job is None:
            return jsonify({'error': 'Job not found'}), 404
        if job['status'] in FINISHED_STATUSES or crawler is None:
            return jsonify({'error': 'Job is not running'}), 400

        if action == 'pause':
            crawler.pause()
            job['status'] = 'paused'
            job['message'] = 'Paused by user'
        elif action == 'resume':
            crawler.resume()
            job['status'] = 'running'
            job['message'] = 'Resumed'
        else:
            crawler.cancel()
            job['message'] = 'Cancelling...'

    logger.info(f"{job_id}: {action}")
    return jsonify({'success': True, 'status': job['status']})


def _update_job(app, job_id: str, **fields) -> None:
    with app.job_lock:
        job = app.mirror_jobs.get(job_id)
        if job is not None:
            job.update(fields)


def _record_progress(app, job_id, url, current, total, speed_kbs, eta_seconds) -> None:
    with app.job_lock:
        job = app.mirror_jobs.get(job_id)
        if job is None:
            return
        job['progress'] = {
            'current': current,
            'total': total,
            'speedKbs': speed_kbs,
            'etaSeconds': eta_seconds,
        }
        if job['status'] == 'running':
            job['message'] = f'Downloading {current}/{total}: {url}'


def _record_error(app, job_id: str, message: str) -> None:
    with app.job_lock:
        job = app.mirror_jobs.get(job_id)
        # Limit errors stored
        if job is not None and len(job['errors']) < 100:
            job['errors'].append(message)


def _run_mirror_job(app, job_id: str, url: str) -> None:
    """Run a mirror job in a background thread."""
    crawler = app.crawlers[job_id]
    _update_job(app, job_id, status='running', message='Mirroring...')

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        summary = loop.run_until_complete(crawler.run(url))
    except MirrorError as e:
        logger.error(f"{job_id} failed: {e}")
        _update_job(app, job_id, status='failed', message=f'Error: {e}', completed_at=time.time())
    except Exception as e:
        logger.exception(f"{job_id} crashed")
        _update_job(app, job_id, status='failed', message=f'Error: {e}', completed_at=time.time())
    else:
        status = 'cancelled' if summary.cancelled else 'completed'
        _update_job(
            app,
            job_id,
            status=status,
            message=(
                f'{status.capitalize()}: {len(summary.pages)} pages, '
                f'{summary.success_count} resources, {summary.fail_count} failed'
            ),
            summary=summary.to_dict(),
            completed_at=time.time()
        )
    finally:
        loop.close()
        asyncio.set_event_loop(None)


def run_app(host: str = '127.0.0.1', port: int = 5000, debug: bool = False):
    """Run the Flask web application."""
    app = create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == '__main__':
    run_app()
