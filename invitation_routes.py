import secrets
from datetime import datetime

import requests
from flask import Blueprint, jsonify, request, current_app

from extensions import db
from models import Invitation
from decorators import login_required, admin_required

invitations = Blueprint('invitations', __name__)

CLICKUP_TASK_URL = "https://api.clickup.com/api/v2/list/{list_id}/task"


@invitations.route('/api/invitations', methods=['POST'])
@login_required
def create_invitation():
    payload = request.get_json(silent=True) or {}
    email = (payload.get('email') or '').strip().lower()
    first_name = (payload.get('firstName') or '').strip() or None
    if not email or '@' not in email:
        return jsonify({'error': 'A valid email is required'}), 400

    token = (payload.get('token') or '').strip() or secrets.token_urlsafe(32)
    if Invitation.query.filter_by(token=token).first():
        return jsonify({'error': 'Invitation token already exists'}), 409

    invite = Invitation.issue(token, email, first_name,
                              ttl_hours=current_app.config['INVITATION_TTL_HOURS'])
    db.session.add(invite)
    db.session.commit()
    link = f"{current_app.config['APP_BASE_URL'].rstrip('/')}/invitation?token={token}"
    current_app.logger.info("Invitation issued for %s", email)
    return jsonify({'success': True, 'invitation': invite.to_dict(), 'inviteLink': link}), 201


@invitations.route('/api/invitations', methods=['GET'])
@admin_required
def list_invitations():
    items = Invitation.query.order_by(Invitation.created_at.desc()).all()
    return jsonify({'success': True, 'invitations': [i.to_dict() for i in items]})


@invitations.route('/api/invitations/accept', methods=['POST'])
def accept_invitation():
    payload = request.get_json(silent=True) or {}
    token = (payload.get('token') or '').strip()
    if not token:
        return jsonify({'error': 'Token is required'}), 400

    invite = Invitation.query.filter_by(token=token).first()
    if not invite:
        return jsonify({'error': 'Invitation not found'}), 404
    if invite.status == 'accepted':
        return jsonify({'success': True, 'message': 'Invitation already accepted',
                        'invitation': invite.to_dict()})
    now = datetime.utcnow()
    if invite.is_expired(now):
        return jsonify({'error': 'expired'}), 410

    invite.status = 'accepted'
    invite.accepted_at = now
    db.session.commit()
    return jsonify({'success': True, 'message': 'Invitation accepted', 'invitation': invite.to_dict()})


@invitations.route('/api/submit-feature-request', methods=['POST'])
def submit_feature_request():
    payload = request.get_json(silent=True) or {}
    name = (payload.get('featureName') or '').strip()
    description = (payload.get('featureDescription') or '').strip()
    if not name or not description:
        return jsonify({'message': 'Feature name and description are required'}), 400

    token = current_app.config.get('CLICKUP_API_TOKEN')
    list_id = current_app.config.get('CLICKUP_LIST_ID')
    if not token or not list_id:
        return jsonify({'message': 'Server configuration error: Missing ClickUp API credentials.'}), 500

    task = {
        'name': name,
        'description': "\n".join([
            f"Feature Description: {description}",
            f"Experience Rating: {payload.get('experienceRating') or 'Not provided'}",
            f"Contact Info: {payload.get('contactInfo') or 'Not provided'}",
            f"Submitted: {datetime.utcnow().isoformat()}Z",
        ]),
        'priority': 3,
        'tags': ['feature-request', 'user-submission'],
    }
    try:
        r = requests.post(CLICKUP_TASK_URL.format(list_id=list_id),
                          headers={'Authorization': token, 'Content-Type': 'application/json'},
                          json=task, timeout=15)
    except requests.RequestException as e:
        current_app.logger.warning("ClickUp request failed: %s", e)
        return jsonify({'message': 'Internal Server Error', 'error': 'An error occurred.'}), 500

    if not r.ok:
        current_app.logger.warning("ClickUp error %s: %s", r.status_code, r.text[:500])
        return jsonify({'message': 'Failed to create task in ClickUp', 'error': r.text}), r.status_code

    return jsonify({'message': 'Feature request submitted successfully', 'taskId': r.json().get('id')})
