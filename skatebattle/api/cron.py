import hmac

from flask import Blueprint, current_app, jsonify, request

from skatebattle.services.scheduler import run_sweeps


cron = Blueprint('cron', __name__)


@cron.route('/sweeps', methods=['POST'])
def trigger_sweeps():
    """Run every sweep once; for hosts that drive the scheduler externally."""
    secret = current_app.config.get('CRON_SECRET')
    if not secret:
        return jsonify({'error': 'Cron trigger is not configured'}), 503
    provided = request.headers.get('X-Cron-Secret', '')
    if not hmac.compare_digest(provided.encode(), secret.encode()):
        current_app.logger.warning(f"[cron-denied] remote={request.remote_addr}")
        return jsonify({'error': 'Unauthorized'}), 401

    counts = run_sweeps(current_app._get_current_object())
    return jsonify({'success': True, 'counts': counts})
