from flask import Flask, request, session, jsonify, g
from config import get_config
from extensions import db  # Import db from the new file
from werkzeug.security import generate_password_hash, check_password_hash
from werkzeug.exceptions import HTTPException
import logging
import os
import waitress

from decorators import login_required
from models import User, Profile
from payment_routes import payment
from document_routes import documents
from flashcard_routes import flashcards
from quiz_routes import quizzes
from exam_routes import exams
from chat_routes import chats
from invitation_routes import invitations

app = Flask(__name__)
app.config.from_object(get_config())
logging.basicConfig(level=app.config['LOG_LEVEL'],
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s")
db.init_app(app)
os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

app.register_blueprint(payment)
app.register_blueprint(documents)
app.register_blueprint(flashcards)
app.register_blueprint(quizzes)
app.register_blueprint(exams)
app.register_blueprint(chats)
app.register_blueprint(invitations)

MIN_PASSWORD_LENGTH = 6


def _user_payload(user):
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "plan": user.plan,
        "isPro": user.is_pro,
    }


def _ensure_profile(user):
    if user.profile:
        return user.profile
    first, _, last = (user.name or '').partition(' ')
    profile = Profile(user_id=user.id, email=user.email, first_name=first, last_name=last)
    db.session.add(profile)
    db.session.commit()
    return profile


# Routes for Authentication

@app.route('/api/auth/signup', methods=['POST'])
def signup():
    payload = request.get_json(silent=True) or {}
    email = (payload.get('email') or '').strip().lower()
    password = payload.get('password') or ''
    first_name = (payload.get('firstName') or '').strip()
    last_name = (payload.get('lastName') or '').strip()
    if not email or not first_name or not last_name:
        return jsonify({'error': 'Email, first name and last name are required'}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({'error': f'Password must be at least {MIN_PASSWORD_LENGTH} characters'}), 400
    if User.query.filter(User.email.ilike(email)).first():
        return jsonify({'error': 'An account with this email already exists'}), 400

    user = User(email=email, password_hash=generate_password_hash(password),
                name=f"{first_name} {last_name}")
    db.session.add(user)
    db.session.flush()
    db.session.add(Profile(user_id=user.id, email=email, first_name=first_name, last_name=last_name))
    db.session.commit()
    app.logger.info("New account created: user %s", user.id)
    return jsonify({'success': True, 'user': _user_payload(user)}), 201


@app.route('/api/auth/login', methods=['POST'])
def login():
    payload = request.get_json(silent=True) or {}
    email = (payload.get('email') or '').strip()
    password = payload.get('password') or ''
    if not email or not password:
        return jsonify({'error': 'Email and password are required'}), 400
    user = User.query.filter(User.email.ilike(email)).first()
    if not user or not check_password_hash(user.password_hash, password):
        return jsonify({'error': 'Invalid credentials'}), 401
    session.clear()
    session["user_id"] = user.id
    session['email'] = user.email
    return jsonify({'success': True, 'user': _user_payload(user)})


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'success': True})


@app.route('/api/profile', methods=['GET'])
@login_required
def get_profile():
    profile = _ensure_profile(g.user)
    return jsonify({'success': True, 'profile': profile.to_dict()})


@app.route('/api/profile', methods=['PUT'])
@login_required
def update_profile():
    user = g.user
    profile = _ensure_profile(user)
    payload = request.get_json(silent=True) or {}
    if 'firstName' in payload:
        profile.first_name = (payload.get('firstName') or '').strip()
    if 'lastName' in payload:
        profile.last_name = (payload.get('lastName') or '').strip()
    if 'bio' in payload:
        profile.bio = payload.get('bio')
    if 'location' in payload:
        profile.location = payload.get('location')
    user.name = f"{profile.first_name} {profile.last_name}".strip() or user.name
    db.session.commit()
    return jsonify({'success': True, 'profile': profile.to_dict()})


# JSON error responses

@app.errorhandler(404)
def not_found(e):
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(413)
def too_large(e):
    limit_mb = app.config['MAX_UPLOAD_SIZE'] // (1024 * 1024)
    return jsonify({'error': f'File too large. Maximum size is {limit_mb}MB'}), 413


@app.errorhandler(500)
def internal_error(e):
    db.session.rollback()
    app.logger.error("Unhandled error: %s", getattr(e, 'original_exception', e))
    return jsonify({'error': 'Internal server error'}), 500


@app.errorhandler(HTTPException)
def http_error(e):
    return jsonify({'error': e.description}), e.code


if __name__ == '__main__':
    with app.app_context():
        db.create_all()
    if app.config['USE_WAITRESS']:
        app.logger.info("Starting Waitress production server on %s:%s...",
                        app.config['SERVER_HOST'], app.config['SERVER_PORT'])
        waitress.serve(app, host=app.config['SERVER_HOST'], port=app.config['SERVER_PORT'], threads=12)
    else:
        app.logger.info("Starting Flask development server on %s:%s...",
                        app.config['SERVER_HOST'], app.config['SERVER_PORT'])
        app.run(host=app.config['SERVER_HOST'],
                port=app.config['SERVER_PORT'],
                debug=True)
