import os
from datetime import datetime

from flask import Blueprint, jsonify, request, current_app, g
from werkzeug.utils import secure_filename

from extensions import db
from models import Document, Project, Flashcard, FlashcardSet, QuizSet
from decorators import login_required, internal_or_login_required
from document_utils import (
    ExtractionError, extract_text, guess_mime_type, is_allowed_upload,
)

documents = Blueprint('documents', __name__)


def run_extraction(document):
    """Extract and store text for a document; status ends as ready or failed."""
    document.status = 'processing'
    document.processing_progress = 10
    db.session.commit()
    try:
        text = extract_text(document.file_path, document.file_type)
    except (ExtractionError, OSError) as e:
        current_app.logger.warning("Extraction failed for document %s: %s", document.id, e)
        document.status = 'failed'
        document.processing_progress = 0
        db.session.commit()
        raise ExtractionError(str(e)) from e
    document.notes = text
    document.status = 'ready'
    document.processing_progress = 100
    db.session.commit()
    current_app.logger.info("Extracted %s chars from document %s", len(text), document.id)
    return text


def _needs_extraction(doc, min_chars):
    if not doc.file_path or doc.file_type == 'manual':
        return False
    return doc.status == 'pending' or (doc.status == 'ready' and not doc.has_text(min_chars))


@documents.route('/api/upload', methods=['POST'])
@login_required
def upload_document():
    user = g.user
    if 'file' not in request.files:
        return jsonify({'error': 'No file provided'}), 400
    f = request.files['file']
    if not f.filename:
        return jsonify({'error': 'Empty filename'}), 400

    filename = secure_filename(f.filename)
    mime_type = guess_mime_type(filename, f.mimetype)
    if not is_allowed_upload(filename, mime_type):
        return jsonify({'error': 'File type not allowed. Upload PDF, Word, PowerPoint, text or image files.'}), 400

    data = f.read()
    max_size = current_app.config['MAX_UPLOAD_SIZE']
    if len(data) > max_size:
        return jsonify({'error': f'File too large. Maximum size is {max_size // (1024 * 1024)}MB.'}), 400

    project_id = request.form.get('projectId', type=int)
    if project_id and not Project.query.filter_by(id=project_id, user_id=user.id).first():
        return jsonify({'error': 'Project not found'}), 404

    user_dir = os.path.join(current_app.config['UPLOAD_FOLDER'], str(user.id))
    os.makedirs(user_dir, exist_ok=True)
    stored_name = f"{datetime.utcnow().strftime('%Y%m%d%H%M%S%f')}_{filename}"
    path = os.path.join(user_dir, stored_name)
    with open(path, 'wb') as out:
        out.write(data)

    doc = Document(
        user_id=user.id,
        project_id=project_id,
        title=request.form.get('title') or os.path.splitext(filename)[0],
        file_name=filename,
        file_type=mime_type,
        file_size=len(data),
        file_path=path,
        subject=request.form.get('subject'),
        status='pending',
    )
    db.session.add(doc)
    db.session.commit()

    try:
        run_extraction(doc)
    except ExtractionError as e:
        return jsonify({'success': True, 'document': doc.to_dict(), 'extractionError': str(e)}), 201
    return jsonify({'success': True, 'document': doc.to_dict()}), 201


@documents.route('/api/documents', methods=['GET'])
@login_required
def list_documents():
    query = Document.query.filter_by(user_id=g.user.id)
    project_id = request.args.get('projectId', type=int)
    if project_id:
        query = query.filter_by(project_id=project_id)
    docs = query.order_by(Document.created_at.desc()).all()
    return jsonify({'success': True, 'documents': [d.to_dict() for d in docs], 'total': len(docs)})


@documents.route('/api/documents/<int:document_id>', methods=['GET'])
@login_required
def get_document(document_id):
    doc = Document.query.filter_by(id=document_id, user_id=g.user.id).first()
    if not doc:
        return jsonify({'error': 'Document not found'}), 404
    data = doc.to_dict()
    data['notes'] = doc.notes
    return jsonify({'success': True, 'document': data})


@documents.route('/api/documents/<int:document_id>', methods=['DELETE'])
@login_required
def delete_document(document_id):
    doc = Document.query.filter_by(id=document_id, user_id=g.user.id).first()
    if not doc:
        return jsonify({'error': 'Document not found'}), 404
    if doc.file_path and os.path.exists(doc.file_path):
        try:
            os.remove(doc.file_path)
        except OSError as e:
            current_app.logger.warning("Could not remove file %s: %s", doc.file_path, e)
    # Cards and sets survive without their source document
    Flashcard.query.filter_by(document_id=doc.id).update({'document_id': None})
    FlashcardSet.query.filter_by(document_id=doc.id).update({'document_id': None})
    db.session.delete(doc)
    db.session.commit()
    return jsonify({'success': True})


@documents.route('/api/documents/<int:document_id>/extract', methods=['POST'])
@internal_or_login_required
def extract_document(document_id):
    query = Document.query.filter_by(id=document_id)
    if g.user is not None:
        query = query.filter_by(user_id=g.user.id)
    doc = query.first()
    if not doc:
        return jsonify({'error': 'Document not found'}), 404
    if not doc.file_path:
        return jsonify({'error': 'Document has no stored file'}), 400
    try:
        text = run_extraction(doc)
    except ExtractionError as e:
        return jsonify({'success': False, 'error': str(e)}), 500
    return jsonify({'success': True, 'textLength': len(text), 'preview': text[:200]})


@documents.route('/api/documents/extract-selected', methods=['POST'])
@login_required
def extract_selected():
    payload = request.get_json(silent=True) or {}
    ids = payload.get('documentIds')
    if not ids or not isinstance(ids, list):
        return jsonify({'error': 'Document IDs are required'}), 400

    min_chars = current_app.config['MIN_DOCUMENT_CHARS']
    results = {'total': len(ids), 'triggered': 0, 'alreadyExtracted': 0, 'failed': []}
    for doc_id in ids:
        doc = Document.query.filter_by(id=doc_id, user_id=g.user.id).first()
        if not doc:
            results['failed'].append({'id': doc_id, 'title': 'Unknown', 'error': 'Document not found'})
            continue
        if doc.has_text(min_chars):
            results['alreadyExtracted'] += 1
            continue
        if not doc.file_path:
            results['failed'].append({'id': doc.id, 'title': doc.display_title, 'error': 'No stored file'})
            continue
        try:
            run_extraction(doc)
            results['triggered'] += 1
        except ExtractionError as e:
            results['failed'].append({'id': doc.id, 'title': doc.display_title, 'error': str(e)})
    return jsonify({'success': True, 'results': results})


@documents.route('/api/documents/fix-extractions', methods=['POST'])
@login_required
def fix_extractions():
    min_chars = current_app.config['MIN_DOCUMENT_CHARS']
    candidates = [d for d in Document.query.filter_by(user_id=g.user.id).all() if _needs_extraction(d, min_chars)]
    results = {'total': len(candidates), 'triggered': 0, 'failed': []}
    if not candidates:
        return jsonify({'success': True, 'message': 'No documents need extraction', 'results': results})
    for doc in candidates:
        try:
            run_extraction(doc)
            results['triggered'] += 1
        except ExtractionError as e:
            results['failed'].append({'id': doc.id, 'title': doc.display_title, 'error': str(e)})
    message = f"Triggered extraction for {results['triggered']} document(s)"
    if results['failed']:
        message += f". {len(results['failed'])} failed."
    return jsonify({'success': True, 'message': message, 'results': results})


# --- Projects ---

def _parse_date(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).replace(tzinfo=None)
    except ValueError:
        return None


@documents.route('/api/projects', methods=['GET'])
@login_required
def list_projects():
    projects = Project.query.filter_by(user_id=g.user.id).order_by(Project.created_at.desc()).all()
    return jsonify({'success': True, 'projects': [p.to_dict(with_documents=True) for p in projects]})


@documents.route('/api/projects', methods=['POST'])
@login_required
def create_project():
    payload = request.get_json(silent=True) or {}
    name = (payload.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Project name is required'}), 400

    doc_ids = payload.get('document_ids') or []
    docs = []
    for doc_id in doc_ids:
        doc = db.session.get(Document, doc_id)
        if not doc:
            return jsonify({'error': f'Document {doc_id} not found'}), 404
        if doc.user_id != g.user.id:
            return jsonify({'error': f'Document {doc_id} not found or access denied'}), 403
        docs.append(doc)

    project = Project(
        user_id=g.user.id,
        name=name,
        description=payload.get('description'),
        category=payload.get('category'),
        study_goal=payload.get('study_goal'),
        target_date=_parse_date(payload.get('target_date')),
        estimated_hours=payload.get('estimated_hours'),
        status='active',
        progress=0,
    )
    db.session.add(project)
    db.session.flush()
    for doc in docs:
        doc.project_id = project.id
    db.session.commit()
    return jsonify({'success': True, 'project': project.to_dict(with_documents=True)}), 201


@documents.route('/api/projects/<int:project_id>', methods=['GET'])
@login_required
def get_project(project_id):
    project = Project.query.filter_by(id=project_id, user_id=g.user.id).first()
    if not project:
        return jsonify({'error': 'Project not found'}), 404
    return jsonify({'success': True, 'project': project.to_dict(with_documents=True)})


@documents.route('/api/projects/<int:project_id>', methods=['PUT'])
@login_required
def update_project(project_id):
    project = Project.query.filter_by(id=project_id, user_id=g.user.id).first()
    if not project:
        return jsonify({'error': 'Project not found'}), 404
    payload = request.get_json(silent=True) or {}
    for field in ('name', 'description', 'category', 'study_goal', 'status', 'estimated_hours'):
        if field in payload:
            setattr(project, field, payload[field])
    if 'progress' in payload:
        project.progress = max(0, min(100, int(payload['progress'] or 0)))
    if 'target_date' in payload:
        project.target_date = _parse_date(payload['target_date'])
    if not (project.name or '').strip():
        db.session.rollback()
        return jsonify({'error': 'Project name is required'}), 400
    db.session.commit()
    return jsonify({'success': True, 'project': project.to_dict()})


@documents.route('/api/projects/<int:project_id>', methods=['DELETE'])
@login_required
def delete_project(project_id):
    project = Project.query.filter_by(id=project_id, user_id=g.user.id).first()
    if not project:
        return jsonify({'error': 'Project not found'}), 404
    Document.query.filter_by(project_id=project.id).update({'project_id': None})
    FlashcardSet.query.filter_by(project_id=project.id).update({'project_id': None})
    QuizSet.query.filter_by(project_id=project.id).update({'project_id': None})
    db.session.delete(project)
    db.session.commit()
    return jsonify({'success': True})
