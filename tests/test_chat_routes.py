from unittest.mock import patch

from models import User, ChatConversation, ChatMessage
from ai_service import AIServiceError
from conftest import login, make_document, make_user, refreshed


def test_chat_creates_conversation_and_counts_usage(auth_client, user):
    doc = make_document(user, title='Photosynthesis')
    with patch('ai_service.chat_reply', return_value='Plants use light.') as reply:
        resp = auth_client.post('/api/chats', json={'message': 'How do plants make food?', 'documentIds': [doc.id]})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['success'] is True
    assert data['message']['content'] == 'Plants use light.'
    assert data['message']['relatedFiles'] == ['Photosynthesis']
    assert data['remainingChats'] == 4
    assert data['isPro'] is False

    context = reply.call_args.args[1]
    assert context.startswith('[Document: Photosynthesis]\n')

    conversation = ChatConversation.query.one()
    assert conversation.title == 'How do plants make food?...'
    assert [m.role for m in conversation.messages] == ['user', 'assistant']
    assert refreshed(User, user.id).chat_count == 1


def test_chat_continues_existing_conversation_with_history(auth_client, user):
    doc = make_document(user)
    with patch('ai_service.chat_reply', return_value='First.'):
        first = auth_client.post('/api/chats', json={'message': 'One', 'documentIds': [doc.id]}).get_json()
    with patch('ai_service.chat_reply', return_value='Second.') as reply:
        auth_client.post('/api/chats', json={'message': 'Two', 'documentIds': [doc.id],
                                             'conversationId': first['conversationId']})
    history = reply.call_args.args[2]
    assert [m['content'] for m in history] == ['One', 'First.']
    assert ChatMessage.query.count() == 4


def test_long_message_title_is_truncated(auth_client, user):
    doc = make_document(user)
    message = 'x' * 80
    with patch('ai_service.chat_reply', return_value='ok'):
        auth_client.post('/api/chats', json={'message': message, 'documentIds': [doc.id]})
    assert ChatConversation.query.one().title == 'x' * 50 + '...'


def test_free_chat_limit_is_enforced(client, app):
    user = make_user(chat_count=5)
    doc = make_document(user)
    login(client, user)
    with patch('ai_service.chat_reply') as reply:
        resp = client.post('/api/chats', json={'message': 'Hi', 'documentIds': [doc.id]})
    assert resp.status_code == 403
    data = resp.get_json()
    assert data['limitReached'] is True
    assert data['remainingChats'] == 0
    reply.assert_not_called()


def test_pro_users_are_not_limited(client, app):
    user = make_user(chat_count=50, plan='pro', subscription_status='active')
    doc = make_document(user)
    login(client, user)
    with patch('ai_service.chat_reply', return_value='Sure.'):
        resp = client.post('/api/chats', json={'message': 'Hi', 'documentIds': [doc.id]})
    assert resp.status_code == 200
    assert resp.get_json()['remainingChats'] == -1
    assert refreshed(User, user.id).chat_count == 50


def test_chat_requires_usable_documents(auth_client, user):
    short = make_document(user, notes='too short')
    pending = make_document(user, status='pending', title='Pending')
    resp = auth_client.post('/api/chats', json={'message': 'Hi', 'documentIds': [short.id, pending.id]})
    assert resp.status_code == 400
    data = resp.get_json()
    assert data['error'] == 'No valid documents available for chat'
    assert len(data['details']) == 2

    assert auth_client.post('/api/chats', json={'message': 'Hi', 'documentIds': []}).status_code == 400
    assert auth_client.post('/api/chats', json={'message': ' ', 'documentIds': [short.id]}).status_code == 400


def test_chat_ai_outage_does_not_count(auth_client, user):
    doc = make_document(user)
    with patch('ai_service.chat_reply', side_effect=AIServiceError('down')):
        resp = auth_client.post('/api/chats', json={'message': 'Hi', 'documentIds': [doc.id]})
    assert resp.status_code == 503
    assert refreshed(User, user.id).chat_count == 0


def test_chat_limit_endpoint(auth_client, user):
    data = auth_client.get('/api/chats/limit').get_json()
    assert data['isPro'] is False
    assert data['limit'] == 5
    assert data['remaining'] == 5
    assert data['limitReached'] is False
    assert data['chatCount'] == 0


def test_conversations_are_private(client, user, other_user):
    doc = make_document(other_user)
    login(client, other_user)
    with patch('ai_service.chat_reply', return_value='ok'):
        conversation_id = client.post('/api/chats', json={'message': 'Hi', 'documentIds': [doc.id]}
                                      ).get_json()['conversationId']
    assert client.get(f'/api/chats/{conversation_id}').get_json()['conversation']['messages']

    login(client, user)
    assert client.get(f'/api/chats/{conversation_id}').status_code == 404
    assert client.get('/api/chats').get_json()['conversations'] == []


def test_suggested_questions_use_previews(auth_client, user):
    doc = make_document(user, notes='a' * 900, title='Long')
    suggestions = [{'question': 'What is a?', 'category': 'concept', 'difficulty': 'beginner'}]
    with patch('ai_service.suggest_questions', return_value=suggestions) as suggest:
        resp = auth_client.post('/api/chats/suggested', json={'documentIds': [doc.id]})
    assert resp.status_code == 200
    assert resp.get_json()['questions'] == suggestions
    previews = suggest.call_args.args[0]
    assert previews == [('Long', 'a' * 500)]


def test_chat_rejects_placeholder_documents(auth_client, user):
    slides = make_document(user, notes='[Unsupported file type: application/vnd.ms-powerpoint] slides deck export')
    with patch('ai_service.chat_reply') as reply:
        resp = auth_client.post('/api/chats', json={'message': 'Hi', 'documentIds': [slides.id]})
    assert resp.status_code == 400
    assert resp.get_json()['details'][0]['reason'] == 'Insufficient extracted content'
    reply.assert_not_called()


def test_chat_document_ids_must_be_a_list(auth_client, user):
    make_document(user)
    assert auth_client.post('/api/chats', json={'message': 'Hi', 'documentIds': '1'}).status_code == 400
