import json
from unittest.mock import patch

from extensions import db
from models import Exam, ExamQuestion, ExamAttempt, Quiz, QuizAttempt
from ai_service import AIServiceError
from conftest import login, make_document


def _make_exam(user):
    exam = Exam(user_id=user.id, title='Biology exam', duration=30, total_marks=10)
    db.session.add(exam)
    db.session.flush()
    questions = [
        ExamQuestion(exam_id=exam.id, question_type='multiple-choice', question='Where?',
                     options_json=json.dumps(['Roots', 'Chloroplasts', 'Stem', 'Seeds']),
                     correct_answer='1', marks=2, order=0),
        ExamQuestion(exam_id=exam.id, question_type='true-false', question='Plants make oxygen',
                     options_json=json.dumps(['True', 'False']), correct_answer='0', marks=2, order=1),
        ExamQuestion(exam_id=exam.id, question_type='multiple-select', question='Inputs?',
                     options_json=json.dumps(['CO2', 'Gold', 'Water', 'Salt']), correct_answer='[0, 2]',
                     marks=4, order=2),
        ExamQuestion(exam_id=exam.id, question_type='written', question='Explain', options_json=None,
                     correct_answer='Light energy becomes chemical energy', marks=2, order=3),
    ]
    db.session.add_all(questions)
    db.session.commit()
    return exam, questions


def test_exam_attempt_scores_and_persists(auth_client, user):
    exam, qs = _make_exam(user)
    resp = auth_client.post('/api/exams/attempt', json={
        'examId': exam.id,
        'totalTime': 600,
        'answers': [
            {'questionId': qs[0].id, 'answer': 1},
            {'questionId': qs[1].id, 'answer': 1},
            {'questionId': qs[2].id, 'answer': [2, 0]},
            {'questionId': qs[3].id, 'answer': 'Sunlight is stored as sugar'},
        ],
    })
    assert resp.status_code == 200
    attempt = resp.get_json()['attempt']
    assert attempt['earnedMarks'] == 8
    assert attempt['totalMarks'] == 10
    assert attempt['score'] == 80
    assert [a['is_correct'] for a in attempt['answers']] == [True, False, True, True]

    stored = ExamAttempt.query.filter_by(exam_id=exam.id).one()
    assert (stored.completed_at - stored.started_at).total_seconds() == 600


def test_exam_attempt_missing_exam_is_404_and_not_persisted(auth_client):
    resp = auth_client.post('/api/exams/attempt', json={'examId': 999, 'answers': []})
    assert resp.status_code == 404
    assert ExamAttempt.query.count() == 0


def test_exam_of_other_user_is_hidden(client, user, other_user):
    exam, _ = _make_exam(other_user)
    login(client, user)
    assert client.get(f'/api/exams/{exam.id}').status_code == 404


def test_generate_exam_validates_types(auth_client):
    resp = auth_client.post('/api/exam', json={'documentIds': [1], 'questionTypes': [], 'questionCount': 5})
    assert resp.status_code == 400
    resp = auth_client.post('/api/exam', json={
        'documentIds': [1], 'questionTypes': ['multiple-choice', 'true-false', 'written'], 'questionCount': 2,
    })
    assert resp.status_code == 400
    assert 'solution' in resp.get_json()


def test_generate_exam_creates_questions(auth_client, user):
    doc = make_document(user)
    generated = [
        {'type': 'multiple-choice', 'question': 'Q1', 'options': ['a', 'b', 'c', 'd'], 'correctAnswer': 2,
         'explanation': '', 'category': 'Bio', 'difficulty': 'easy', 'marks': 2},
        {'type': 'multiple-select', 'question': 'Q2', 'options': ['a', 'b', 'c', 'd'], 'correctAnswer': [0, 3],
         'explanation': '', 'category': 'Bio', 'difficulty': 'hard', 'marks': 6},
    ]
    with patch('ai_service.detect_language', return_value='en'), \
            patch('ai_service.generate_exam_questions', return_value=generated) as gen:
        resp = auth_client.post('/api/exam', json={
            'documentIds': [doc.id], 'questionTypes': ['multiple-choice', 'multiple-select'],
            'difficulties': ['easy', 'hard'], 'questionCount': 2, 'duration': 1800,
        })
    assert resp.status_code == 201
    exam = resp.get_json()['exam']
    assert exam['duration'] == 30
    assert exam['totalMarks'] == 8
    assert exam['visibility'] == 'private'
    assert len(exam['questions']) == 2
    distribution = gen.call_args.args[2]
    assert distribution == [{'type': 'multiple-choice', 'count': 1}, {'type': 'multiple-select', 'count': 1}]
    stored = ExamQuestion.query.filter_by(question_type='multiple-select').one()
    assert json.loads(stored.correct_answer) == [0, 3]


def _make_quiz(user):
    questions = [
        {'id': 'q1', 'question': 'A?', 'options': ['a', 'b', 'c', 'd'], 'correctAnswer': 0, 'points': 1},
        {'id': 'q2', 'question': 'B?', 'options': ['a', 'b', 'c', 'd'], 'correctAnswer': 1, 'points': 1},
        {'id': 'q3', 'question': 'C?', 'options': ['a', 'b', 'c', 'd'], 'correctAnswer': 2, 'points': 1},
    ]
    quiz = Quiz(user_id=user.id, title='Quiz from 1 document(s)', questions_json=json.dumps(questions))
    db.session.add(quiz)
    db.session.commit()
    return quiz


def test_quiz_attempt_two_of_three(auth_client, user):
    quiz = _make_quiz(user)
    resp = auth_client.post('/api/quiz/attempt', json={
        'quizId': quiz.id,
        'answers': [
            {'questionId': 'q1', 'selectedAnswer': 0, 'timeSpent': 10},
            {'questionId': 'q2', 'selectedAnswer': 1, 'timeSpent': 12},
            {'questionId': 'q3', 'selectedAnswer': 3, 'timeSpent': 8},
        ],
    })
    assert resp.status_code == 200
    attempt = resp.get_json()['attempt']
    assert attempt['score'] == 67
    assert attempt['correctAnswers'] == 2
    assert attempt['totalQuestions'] == 3
    assert attempt['timeSpent'] == 30


def test_each_quiz_submission_creates_an_attempt(auth_client, user):
    quiz = _make_quiz(user)
    body = {'quizId': quiz.id, 'answers': [{'questionId': 'q1', 'selectedAnswer': 0}], 'totalTime': 5}
    auth_client.post('/api/quiz/attempt', json=body)
    auth_client.post('/api/quiz/attempt', json=body)
    assert QuizAttempt.query.filter_by(quiz_id=quiz.id).count() == 2


def test_quiz_attempt_requires_fields(auth_client):
    assert auth_client.post('/api/quiz/attempt', json={'quizId': 1}).status_code == 400
    assert auth_client.post('/api/quiz/attempt', json={'quizId': 42, 'answers': []}).status_code == 404


def test_generate_quiz_shuffles_and_slices(auth_client, user):
    docs = [make_document(user, title='A'), make_document(user, title='B')]
    fake = [{'question': f'Q{i}', 'options': ['a', 'b', 'c', 'd'], 'correctAnswer': 0, 'explanation': '',
             'subject': 'Bio', 'difficulty': 'easy', 'points': 1} for i in range(3)]
    with patch('ai_service.detect_language', return_value='en'), \
            patch('ai_service.generate_quiz_questions', side_effect=lambda *a, **k: [dict(q) for q in fake]) as gen:
        resp = auth_client.post('/api/quiz', json={
            'documentIds': [d.id for d in docs], 'difficulties': ['easy'], 'questionCount': 5,
        })
    assert resp.status_code == 201
    quiz = resp.get_json()['quiz']
    assert quiz['title'] == 'Quiz from 2 document(s)'
    assert len(quiz['questions']) == 5
    assert len({q['id'] for q in quiz['questions']}) == 5
    assert gen.call_args.args[2] == 3


def test_generate_quiz_requires_ready_documents(auth_client, user):
    doc = make_document(user, status='processing')
    resp = auth_client.post('/api/quiz', json={'documentIds': [doc.id], 'difficulties': ['easy'], 'questionCount': 3})
    assert resp.status_code == 404


def test_generate_alternatives_endpoint(auth_client, user):
    doc = make_document(user)
    result = {'alternatives': ['w', 'x', 'y', 'z'], 'correctAnswerIndex': 2, 'hasDocuments': True}
    with patch('ai_service.generate_alternatives', return_value=result) as gen:
        resp = auth_client.post('/api/quiz/generate-alternatives',
                                json={'question': 'What?', 'documentIds': [doc.id]})
    assert resp.status_code == 200
    assert resp.get_json()['correctAnswerIndex'] == 2
    assert gen.call_args.args[2] == 1


def test_ai_outage_maps_to_503(auth_client):
    with patch('ai_service.generate_answer', side_effect=AIServiceError('down')):
        resp = auth_client.post('/api/quiz/generate-open-ended-answer', json={'question': 'Why?'})
    assert resp.status_code == 503
    assert resp.get_json()['error'] == 'AI service temporarily unavailable. Please try again.'


def test_manual_quiz_set(auth_client):
    resp = auth_client.post('/api/quiz-sets/manual', json={
        'quizName': 'Cells',
        'category': 'Biology',
        'questions': [
            {'type': 'multiple_choice', 'question': 'Powerhouse?', 'correctAnswer': 'Mitochondria',
             'alternatives': [{'text': 'Nucleus', 'isCorrect': False}, {'text': 'Mitochondria', 'isCorrect': True}]},
            {'type': 'open_ended', 'question': 'Define osmosis', 'correctAnswer': 'Diffusion of water'},
        ],
    })
    assert resp.status_code == 201
    questions = resp.get_json()['quizSet']['questions']
    assert questions[0]['correctAnswer'] == 1
    assert questions[0]['options'] == ['Nucleus', 'Mitochondria']
    assert questions[1]['openEndedAnswer'] == 'Diffusion of water'


def test_manual_quiz_set_needs_two_alternatives(auth_client):
    resp = auth_client.post('/api/quiz-sets/manual', json={
        'quizName': 'Cells',
        'questions': [{'type': 'multiple_choice', 'question': 'Q', 'correctAnswer': 'A',
                       'alternatives': [{'text': 'A', 'isCorrect': True}]}],
    })
    assert resp.status_code == 400


def test_quiz_set_of_other_user_is_forbidden(client, user, other_user):
    login(client, other_user)
    created = client.post('/api/quiz-sets', json={'name': 'Mine', 'questions': [{'question': 'Q'}]}).get_json()
    login(client, user)
    assert client.get(f"/api/quiz-sets/{created['quizSet']['id']}").status_code == 403
    assert client.delete(f"/api/quiz-sets/{created['quizSet']['id']}").status_code == 403


def test_exam_attempt_repeated_question_scores_once(auth_client, user):
    exam, qs = _make_exam(user)
    resp = auth_client.post('/api/exams/attempt', json={
        'examId': exam.id,
        'answers': [{'questionId': qs[1].id, 'answer': 0}] * 3,
    })
    assert resp.status_code == 200
    attempt = resp.get_json()['attempt']
    assert attempt['earnedMarks'] == 2
    assert attempt['score'] == 20
    assert ExamAttempt.query.filter_by(exam_id=exam.id).one().score == 20


def test_quiz_attempt_repeated_question_scores_once(auth_client, user):
    quiz = _make_quiz(user)
    resp = auth_client.post('/api/quiz/attempt', json={
        'quizId': quiz.id,
        'answers': [{'questionId': 'q1', 'selectedAnswer': 0}] * 5,
    })
    attempt = resp.get_json()['attempt']
    assert attempt['score'] == 33
    assert attempt['correctAnswers'] == 1


def test_quiz_attempt_tolerates_bad_times(auth_client, user):
    quiz = _make_quiz(user)
    resp = auth_client.post('/api/quiz/attempt', json={
        'quizId': quiz.id,
        'answers': [{'questionId': 'q1', 'selectedAnswer': 0, 'timeSpent': 'ten'},
                    {'questionId': 'q2', 'selectedAnswer': 1, 'timeSpent': 12}],
    })
    assert resp.status_code == 200
    assert resp.get_json()['attempt']['timeSpent'] == 12

    resp = auth_client.post('/api/quiz/attempt', json={
        'quizId': quiz.id, 'answers': [{'questionId': 'q1', 'selectedAnswer': 0}], 'totalTime': 'soon',
    })
    assert resp.status_code == 200
    assert resp.get_json()['attempt']['timeSpent'] == 0


def test_placeholder_notes_are_not_used_as_grounding(auth_client, user):
    pptx = 'application/vnd.openxmlformats-officedocument.presentationml.presentation'
    slides = make_document(user, notes=f'[Unsupported file type: {pptx}]', title='Slides')
    result = {'alternatives': ['w', 'x', 'y', 'z'], 'correctAnswerIndex': 0, 'hasDocuments': False}
    with patch('ai_service.generate_alternatives', return_value=result) as gen:
        resp = auth_client.post('/api/quiz/generate-alternatives',
                                json={'question': 'What?', 'documentIds': [slides.id]})
    assert resp.status_code == 200
    assert gen.call_args.args[1] == ''
    assert gen.call_args.args[2] == 0


def test_generate_quiz_rejects_placeholder_documents(auth_client, user):
    slides = make_document(user, notes='[Image content - no text could be read from this picture]', title='Photo')
    with patch('ai_service.generate_quiz_questions') as gen:
        resp = auth_client.post('/api/quiz', json={
            'documentIds': [slides.id], 'difficulties': ['easy'], 'questionCount': 3,
        })
    assert resp.status_code == 500
    assert resp.get_json()['failedDocuments'] == [slides.id]
    gen.assert_not_called()


def test_answer_context_is_capped(auth_client, user, app):
    docs = [make_document(user, title=f'Doc {i}') for i in range(12)]
    result = {'answer': 'ok', 'hasDocuments': True}
    with patch('ai_service.generate_answer', return_value=result) as gen:
        auth_client.post('/api/quiz/generate-open-ended-answer',
                         json={'question': 'Why?', 'documentIds': [d.id for d in docs]})
    assert gen.call_args.args[2] == app.config['MAX_CONTEXT_DOCUMENTS'] == 10


def test_document_ids_must_be_a_list(auth_client, user):
    for _ in range(12):
        make_document(user)
    result = {'answer': 'ok', 'hasDocuments': False}
    with patch('ai_service.generate_answer', return_value=result) as gen:
        auth_client.post('/api/quiz/generate-open-ended-answer', json={'question': 'Why?', 'documentIds': '12'})
    assert gen.call_args.args[2] == 0
