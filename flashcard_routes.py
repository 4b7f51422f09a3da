from datetime import datetime

from flask import Blueprint, jsonify, request, current_app, g

from extensions import db
from models import Document, Flashcard, FlashcardSet, Project
from decorators import login_required
import ai_service
from ai_service import AIServiceError, GenerationError, SERVICE_UNAVAILABLE

flashcards = Blueprint('flashcards', __name__)


def _owned_card(card_id):
    """Returns (card, error_response)."""
    card = db.session.get(Flashcard, card_id)
    if not card:
        return None, (jsonify({'error': 'Flashcard not found'}), 404)
    if card.user_id != g.user.id:
        return None, (jsonify({'error': 'Forbidden'}), 403)
    return card, None


def _owned_set(set_id):
    fs = db.session.get(FlashcardSet, set_id)
    if not fs:
        return None, (jsonify({'error': 'Flashcard set not found'}), 404)
    if fs.user_id != g.user.id:
        return None, (jsonify({'error': 'Forbidden'}), 403)
    return fs, None


@flashcards.route('/api/flashcards/generate', methods=['POST'])
@login_required
def generate_flashcards():
    payload = request.get_json(silent=True) or {}
    document_ids = payload.get('documentIds') or []
    if not document_ids:
        return jsonify({'error': 'At least one document is required'}), 400

    docs = Document.owned(g.user.id, document_ids, ready_only=True)
    if not docs:
        return jsonify({'error': 'No ready documents found or access denied'}), 404

    min_chars = current_app.config['MIN_DOCUMENT_CHARS']
    created = []
    processed, failed = [], []
    for doc in docs:
        if not doc.has_text(min_chars):
            failed.append(doc.id)
            continue
        try:
            language = ai_service.detect_language(doc.notes, sample_size=1000)
            cards = ai_service.generate_flashcards(doc.notes, doc.display_title, language)
        except (AIServiceError, GenerationError) as e:
            current_app.logger.warning("Flashcard generation failed for document %s: %s", doc.id, e)
            failed.append(doc.id)
            continue
        for c in cards:
            card = Flashcard(
                user_id=g.user.id,
                document_id=doc.id,
                question=c['question'],
                answer=c['answer'],
                difficulty=c['difficulty'],
                subject=c['subject'] or doc.subject,
                mastered=False,
                review_count=0,
            )
            db.session.add(card)
            created.append(card)
        processed.append(doc.id)

    if not created:
        db.session.rollback()
        return jsonify({
            'error': 'Failed to generate flashcards from any documents',
            'processedDocuments': processed,
            'failedDocuments': failed,
        }), 400
    db.session.commit()
    return jsonify({
        'success': True,
        'flashcards': [c.to_dict() for c in created],
        'processedDocuments': processed,
        'failedDocuments': failed,
    }), 201


@flashcards.route('/api/flashcards', methods=['GET'])
@login_required
def list_flashcards():
    query = Flashcard.query.filter_by(user_id=g.user.id)
    document_id = request.args.get('documentId', type=int)
    if document_id:
        query = query.filter_by(document_id=document_id)
    cards = query.order_by(Flashcard.created_at.desc()).all()
    return jsonify({'success': True, 'flashcards': [c.to_dict() for c in cards], 'total': len(cards)})


@flashcards.route('/api/flashcards/<int:card_id>', methods=['GET'])
@login_required
def get_flashcard(card_id):
    card, err = _owned_card(card_id)
    if err:
        return err
    return jsonify({'success': True, 'flashcard': card.to_dict()})


@flashcards.route('/api/flashcards/<int:card_id>', methods=['PATCH'])
@login_required
def update_flashcard(card_id):
    card, err = _owned_card(card_id)
    if err:
        return err
    payload = request.get_json(silent=True) or {}
    if 'mastered' in payload:
        card.mastered = bool(payload['mastered'])
    if 'reviewCount' in payload:
        try:
            card.review_count = max(0, int(payload['reviewCount']))
        except (TypeError, ValueError):
            return jsonify({'error': 'reviewCount must be a number'}), 400
    if 'lastReviewed' in payload:
        value = payload['lastReviewed']
        try:
            card.last_reviewed = (datetime.fromisoformat(str(value).replace('Z', '+00:00')).replace(tzinfo=None)
                                  if value else None)
        except ValueError:
            return jsonify({'error': 'lastReviewed must be an ISO date'}), 400
    db.session.commit()
    return jsonify({'success': True, 'flashcard': card.to_dict()})


@flashcards.route('/api/flashcards/generate-answer', methods=['POST'])
@login_required
def generate_flashcard_answer():
    payload = request.get_json(silent=True) or {}
    question = (payload.get('question') or '').strip()
    if not question:
        return jsonify({'error': 'Question is required'}), 400

    limit = current_app.config['MAX_CONTEXT_DOCUMENTS']
    docs = Document.owned(g.user.id, payload.get('documentIds') or [])[:limit]
    context, count = ai_service.build_document_context(docs, current_app.config['MIN_DOCUMENT_CHARS'])
    try:
        result = ai_service.generate_answer(question, context, count, max_tokens=200)
    except AIServiceError:
        return jsonify({'success': False, 'error': SERVICE_UNAVAILABLE}), 503
    except GenerationError as e:
        return jsonify({'success': False, 'error': str(e)}), 500
    return jsonify({'success': True, **result})


# --- Flashcard sets ---

@flashcards.route('/api/flashcard-sets', methods=['GET'])
@login_required
def list_flashcard_sets():
    sets = FlashcardSet.query.filter_by(user_id=g.user.id).order_by(FlashcardSet.created_at.desc()).all()
    return jsonify({'success': True, 'flashcardSets': [s.to_dict() for s in sets]})


@flashcards.route('/api/flashcard-sets', methods=['POST'])
@login_required
def create_flashcard_set():
    payload = request.get_json(silent=True) or {}
    name = (payload.get('name') or '').strip()
    card_ids = payload.get('flashcardIds') or []
    if not name:
        return jsonify({'error': 'Name is required'}), 400
    if not card_ids:
        return jsonify({'error': 'At least one flashcard is required'}), 400

    project_id = payload.get('projectId')
    if project_id and not Project.query.filter_by(id=project_id, user_id=g.user.id).first():
        return jsonify({'error': 'Project not found'}), 404

    cards = Flashcard.query.filter(Flashcard.id.in_(card_ids), Flashcard.user_id == g.user.id).all()
    if not cards:
        return jsonify({'error': 'No flashcards found'}), 404

    fs = FlashcardSet(
        user_id=g.user.id,
        name=name,
        description=payload.get('description'),
        project_id=project_id,
        document_id=cards[0].document_id,
    )
    db.session.add(fs)
    db.session.flush()
    for card in cards:
        card.set_id = fs.id
    db.session.commit()
    return jsonify({'success': True, 'flashcardSet': fs.to_dict()}), 201


@flashcards.route('/api/flashcard-sets/<int:set_id>', methods=['GET'])
@login_required
def get_flashcard_set(set_id):
    fs, err = _owned_set(set_id)
    if err:
        return err
    data = fs.to_dict()
    data['flashcards'] = [c.to_dict() for c in fs.flashcards]
    return jsonify({'success': True, 'flashcardSet': data})


@flashcards.route('/api/flashcard-sets/<int:set_id>/flashcards', methods=['GET'])
@login_required
def get_flashcard_set_cards(set_id):
    fs, err = _owned_set(set_id)
    if err:
        return err
    return jsonify({'success': True, 'flashcards': [c.to_dict() for c in fs.flashcards], 'setName': fs.name})


@flashcards.route('/api/flashcard-sets/<int:set_id>', methods=['DELETE'])
@login_required
def delete_flashcard_set(set_id):
    fs, err = _owned_set(set_id)
    if err:
        return err
    Flashcard.query.filter_by(set_id=fs.id).update({'set_id': None})
    db.session.delete(fs)
    db.session.commit()
    return jsonify({'success': True})


@flashcards.route('/api/flashcard-sets/manual', methods=['POST'])
@login_required
def create_manual_flashcard_set():
    payload = request.get_json(silent=True) or {}
    name = (payload.get('deckName') or payload.get('projectName') or '').strip()
    cards = payload.get('flashcards') or payload.get('cards') or []
    category = (payload.get('category') or '').strip() or None
    if not name:
        return jsonify({'success': False, 'error': 'Deck name is required'}), 400
    if not isinstance(cards, list) or not cards:
        return jsonify({'success': False, 'error': 'At least one flashcard is required'}), 400
    for card in cards:
        if not isinstance(card, dict) or not str(card.get('question') or '').strip():
            return jsonify({'success': False, 'error': 'All flashcards must have a question'}), 400
        if not str(card.get('answer') or '').strip():
            return jsonify({'success': False, 'error': 'All flashcards must have an answer'}), 400

    document_id = None
    document_ids = payload.get('documentIds') or []
    if document_ids:
        owned = Document.owned(g.user.id, document_ids[:1])
        if owned:
            document_id = owned[0].id
    if document_id is None:
        placeholder = Document(
            user_id=g.user.id,
            title=f"{name} - Manual Flashcards",
            file_name="manual_creation",
            file_type="manual",
            status="ready",
            processing_progress=100,
            notes=f"Manually created flashcard deck: {name}",
        )
        db.session.add(placeholder)
        db.session.flush()
        document_id = placeholder.id

    fs = FlashcardSet(user_id=g.user.id, name=name, subject=category, document_id=document_id)
    db.session.add(fs)
    db.session.flush()
    created = []
    for card in cards:
        fc = Flashcard(
            user_id=g.user.id,
            document_id=document_id,
            set_id=fs.id,
            question=card['question'].strip(),
            answer=card['answer'].strip(),
            difficulty=ai_service.normalize_difficulty(card.get('difficulty')),
            subject=category or card.get('subject') or 'General',
        )
        db.session.add(fc)
        created.append(fc)
    db.session.commit()
    return jsonify({
        'success': True,
        'flashcardSet': fs.to_dict(),
        'flashcards': [c.to_dict() for c in created],
    }), 201
