import json
from datetime import datetime

from flask import Blueprint, jsonify, request, current_app, g

from extensions import db
from models import Document, ChatConversation, ChatMessage
from decorators import login_required
import ai_service
from ai_service import AIServiceError, GenerationError, SERVICE_UNAVAILABLE

chats = Blueprint('chats', __name__)

CONTEXT_SEPARATOR = "\n---\n\n"


def _chat_limit_state(user):
    limit = current_app.config['FREE_CHAT_LIMIT']
    count = user.chat_count or 0
    if user.is_pro:
        return {'isPro': True, 'chatCount': count, 'chatLimit': -1, 'remainingChats': -1, 'limitReached': False}
    return {
        'isPro': False,
        'chatCount': count,
        'chatLimit': limit,
        'remainingChats': max(0, limit - count),
        'limitReached': count >= limit,
    }


def _valid_chat_documents(user_id, document_ids):
    """Split requested documents into usable ones and (id, reason) failures."""
    min_chars = current_app.config['MIN_DOCUMENT_CHARS']
    owned = {d.id: d for d in Document.owned(user_id, document_ids)}
    valid, failed = [], []
    for raw_id in document_ids:
        try:
            doc = owned.get(int(raw_id))
        except (TypeError, ValueError):
            doc = None
        if doc is None:
            failed.append({'id': raw_id, 'reason': 'Document not found or access denied'})
        elif doc.status != 'ready':
            failed.append({'id': raw_id, 'reason': f'Document not ready (status: {doc.status})'})
        elif not doc.has_text(min_chars):
            failed.append({'id': raw_id, 'reason': 'Insufficient extracted content'})
        else:
            valid.append(doc)
    return valid, failed


@chats.route('/api/chats', methods=['POST'])
@login_required
def send_message():
    user = g.user
    payload = request.get_json(silent=True) or {}
    message = (payload.get('message') or '').strip()
    document_ids = payload.get('documentIds') or []
    if not message:
        return jsonify({'error': 'Message is required'}), 400
    if not document_ids or not isinstance(document_ids, list):
        return jsonify({'error': 'At least one document must be selected'}), 400

    state = _chat_limit_state(user)
    if state['limitReached']:
        return jsonify({
            'error': 'Chat limit reached',
            'message': (f"You've reached your limit of {state['chatLimit']} free chats. "
                        "Upgrade to Pro for unlimited chats!"),
            'limitReached': True,
            'remainingChats': 0,
            'chatLimit': state['chatLimit'],
        }), 403

    valid, failed = _valid_chat_documents(user.id, document_ids)
    if not valid:
        return jsonify({
            'error': 'No valid documents available for chat',
            'details': failed,
            'solution': "Please ensure your documents have extracted text content and are marked as 'ready'",
        }), 400

    context = CONTEXT_SEPARATOR.join(f"[Document: {d.display_title}]\n{d.notes}" for d in valid)
    titles = [d.display_title for d in valid]

    conversation = None
    conversation_id = payload.get('conversationId')
    if conversation_id:
        conversation = ChatConversation.query.filter_by(id=conversation_id, user_id=user.id).first()
        if not conversation:
            return jsonify({'error': 'Conversation not found'}), 404
    if conversation is None:
        title = message[:50] + "..."
        conversation = ChatConversation(user_id=user.id, title=title,
                                        documents_json=json.dumps([d.id for d in valid]))
        db.session.add(conversation)
        db.session.flush()

    history = [{'role': m.role, 'content': m.content} for m in conversation.messages]
    db.session.add(ChatMessage(conversation_id=conversation.id, role='user', content=message))
    db.session.commit()

    try:
        reply = ai_service.chat_reply(message, context, history)
    except AIServiceError:
        return jsonify({'error': SERVICE_UNAVAILABLE, 'conversationId': conversation.id}), 503
    except GenerationError as e:
        return jsonify({'error': str(e), 'conversationId': conversation.id}), 500

    metadata = {
        'relatedFiles': titles,
        'processedDocuments': len(valid),
        'failedDocuments': len(failed),
    }
    assistant = ChatMessage(conversation_id=conversation.id, role='assistant', content=reply,
                            metadata_json=json.dumps(metadata))
    db.session.add(assistant)
    if not state['isPro']:
        user.chat_count = (user.chat_count or 0) + 1
    conversation.updated_at = datetime.utcnow()
    db.session.commit()

    response_meta = dict(metadata)
    if failed:
        response_meta['failedDetails'] = failed
    after = _chat_limit_state(user)
    if not after['isPro']:
        response_meta['remainingChats'] = after['remainingChats']
        response_meta['chatLimit'] = after['chatLimit']
    return jsonify({
        'success': True,
        'conversationId': conversation.id,
        'message': {
            'id': assistant.id,
            'content': reply,
            'role': 'assistant',
            'timestamp': assistant.timestamp.isoformat() if assistant.timestamp else None,
            'relatedFiles': titles,
        },
        'remainingChats': after['remainingChats'],
        'isPro': after['isPro'],
        'metadata': response_meta,
    })


@chats.route('/api/chats', methods=['GET'])
@login_required
def list_conversations():
    items = (ChatConversation.query.filter_by(user_id=g.user.id)
             .order_by(ChatConversation.updated_at.desc()).all())
    return jsonify({'success': True, 'conversations': [c.to_dict() for c in items]})


@chats.route('/api/chats/<int:conversation_id>', methods=['GET'])
@login_required
def get_conversation(conversation_id):
    conversation = ChatConversation.query.filter_by(id=conversation_id, user_id=g.user.id).first()
    if not conversation:
        return jsonify({'error': 'Conversation not found'}), 404
    return jsonify({'success': True, 'conversation': conversation.to_dict(with_messages=True)})


@chats.route('/api/chats/<int:conversation_id>', methods=['DELETE'])
@login_required
def delete_conversation(conversation_id):
    conversation = ChatConversation.query.filter_by(id=conversation_id, user_id=g.user.id).first()
    if not conversation:
        return jsonify({'error': 'Conversation not found'}), 404
    db.session.delete(conversation)
    db.session.commit()
    return jsonify({'success': True})


@chats.route('/api/chats/limit', methods=['GET'])
@login_required
def chat_limit():
    state = _chat_limit_state(g.user)
    return jsonify({'success': True, 'limit': state['chatLimit'], 'remaining': state['remainingChats'], **state})


@chats.route('/api/chats/suggested', methods=['POST'])
@login_required
def suggested_questions():
    payload = request.get_json(silent=True) or {}
    document_ids = payload.get('documentIds') or []
    if not document_ids:
        return jsonify({'error': 'At least one document is required'}), 400
    valid, _ = _valid_chat_documents(g.user.id, document_ids)
    if not valid:
        return jsonify({'error': 'No valid documents found'}), 400
    previews = [(d.display_title, d.notes[:500]) for d in valid]
    try:
        questions = ai_service.suggest_questions(previews)
    except AIServiceError:
        return jsonify({'error': SERVICE_UNAVAILABLE}), 503
    except GenerationError as e:
        return jsonify({'error': str(e)}), 500
    return jsonify({'success': True, 'questions': questions})
