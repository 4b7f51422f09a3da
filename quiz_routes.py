import json
import math
import random
import time

from flask import Blueprint, jsonify, request, current_app, g

from extensions import db
from models import Document, Quiz, QuizAttempt, QuizSet, Project
from decorators import login_required
import ai_service
import grading
from ai_service import AIServiceError, GenerationError, SERVICE_UNAVAILABLE

quizzes = Blueprint('quizzes', __name__)

MAX_QUESTION_COUNT = 50


@quizzes.route('/api/quiz', methods=['POST'])
@login_required
def generate_quiz():
    payload = request.get_json(silent=True) or {}
    document_ids = payload.get('documentIds') or []
    difficulties = [ai_service.normalize_difficulty(d) for d in (payload.get('difficulties') or [])]
    try:
        question_count = int(payload.get('questionCount') or 10)
    except (TypeError, ValueError):
        return jsonify({'error': 'questionCount must be a number'}), 400
    if not document_ids:
        return jsonify({'error': 'At least one document is required'}), 400
    if not difficulties:
        return jsonify({'error': 'At least one difficulty level is required'}), 400
    if not 1 <= question_count <= MAX_QUESTION_COUNT:
        return jsonify({'error': f'questionCount must be between 1 and {MAX_QUESTION_COUNT}'}), 400

    docs = Document.owned(g.user.id, document_ids, ready_only=True)
    if not docs:
        return jsonify({'error': 'No ready documents found or access denied'}), 404

    min_chars = current_app.config['MIN_DOCUMENT_CHARS']
    per_doc = math.ceil(question_count / len(docs))
    all_questions, processed, failed = [], [], []
    stamp = int(time.time() * 1000)
    for doc in docs:
        if not doc.has_text(min_chars):
            current_app.logger.warning("Document %s has no extracted content", doc.id)
            failed.append(doc.id)
            continue
        difficulty = random.choice(difficulties)
        try:
            language = ai_service.detect_language(doc.notes, sample_size=1000)
            questions = ai_service.generate_quiz_questions(doc.notes, doc.display_title, per_doc, difficulty, language)
        except (AIServiceError, GenerationError) as e:
            current_app.logger.warning("Quiz generation failed for document %s: %s", doc.id, e)
            failed.append(doc.id)
            continue
        for i, q in enumerate(questions):
            q['id'] = f"{doc.id}-{i}-{stamp}"
        all_questions.extend(questions)
        processed.append(doc.id)

    if not all_questions:
        return jsonify({
            'error': 'Failed to generate any questions',
            'solution': 'Please ensure your documents contain extracted text content.',
            'failedDocuments': failed,
        }), 500

    final = ai_service.fisher_yates(all_questions)[:question_count]
    settings = payload.get('settings') or {}
    quiz = Quiz(
        user_id=g.user.id,
        title=f"Quiz from {len(processed)} document(s)",
        documents_json=json.dumps(processed),
        questions_json=json.dumps(final),
        settings_json=json.dumps({
            'shuffleQuestions': bool(settings.get('shuffleQuestions', True)),
            'showExplanations': bool(settings.get('showExplanations', True)),
        }),
    )
    db.session.add(quiz)
    db.session.commit()
    return jsonify({
        'success': True,
        'quiz': quiz.to_dict(),
        'processedDocuments': processed,
        'failedDocuments': failed,
    }), 201


@quizzes.route('/api/quizzes', methods=['GET'])
@login_required
def list_quizzes():
    items = Quiz.query.filter_by(user_id=g.user.id).order_by(Quiz.created_at.desc()).all()
    return jsonify({'success': True, 'quizzes': [q.to_dict() for q in items], 'totalQuizzes': len(items)})


@quizzes.route('/api/quiz/<int:quiz_id>', methods=['GET'])
@login_required
def get_quiz(quiz_id):
    quiz = Quiz.query.filter_by(id=quiz_id, user_id=g.user.id).first()
    if not quiz:
        return jsonify({'error': 'Quiz not found'}), 404
    return jsonify({'success': True, 'quiz': quiz.to_dict()})


def _seconds(value):
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


@quizzes.route('/api/quiz/attempt', methods=['POST'])
@login_required
def submit_quiz_attempt():
    """
    Body: { quizId, answers: [{questionId, selectedAnswer, timeSpent}], totalTime }
    """
    payload = request.get_json(silent=True) or {}
    answers = payload.get('answers')
    if not payload.get('quizId') or not isinstance(answers, list):
        return jsonify({'error': 'quizId and answers are required'}), 400

    quiz = Quiz.query.filter_by(id=payload.get('quizId'), user_id=g.user.id).first()
    if not quiz:
        return jsonify({'error': 'Quiz not found'}), 404

    questions = quiz.questions
    submitted = [(a.get('questionId'), a.get('selectedAnswer')) for a in answers if isinstance(a, dict)]
    result = grading.grade(grading.quiz_questions_for_grading(questions), submitted)

    total_time = payload.get('totalTime')
    if total_time is None:
        total_time = sum(_seconds(a.get('timeSpent')) for a in answers if isinstance(a, dict))

    attempt = QuizAttempt(
        quiz_id=quiz.id,
        user_id=g.user.id,
        answers_json=json.dumps(answers),
        score=result['score'],
        correct_answers=result['correct'],
        total_questions=len(questions),
        time_spent=_seconds(total_time),
    )
    db.session.add(attempt)
    db.session.commit()
    return jsonify({
        'success': True,
        'attempt': {
            'id': attempt.id,
            'score': attempt.score,
            'correctAnswers': attempt.correct_answers,
            'totalQuestions': attempt.total_questions,
            'timeSpent': attempt.time_spent,
            'answers': result['answers'],
        },
    })


def _answer_context(payload):
    limit = current_app.config['MAX_CONTEXT_DOCUMENTS']
    docs = Document.owned(g.user.id, payload.get('documentIds') or [])[:limit]
    return ai_service.build_document_context(docs, current_app.config['MIN_DOCUMENT_CHARS'])


@quizzes.route('/api/quiz/generate-alternatives', methods=['POST'])
@login_required
def generate_alternatives():
    payload = request.get_json(silent=True) or {}
    question = (payload.get('question') or '').strip()
    if not question:
        return jsonify({'error': 'Question is required'}), 400
    context, count = _answer_context(payload)
    try:
        result = ai_service.generate_alternatives(question, context, count)
    except AIServiceError:
        return jsonify({'success': False, 'error': SERVICE_UNAVAILABLE}), 503
    except GenerationError as e:
        current_app.logger.warning("Alternative generation failed: %s", e)
        return jsonify({'success': False, 'error': str(e)}), 500
    return jsonify({'success': True, **result})


@quizzes.route('/api/quiz/generate-open-ended-answer', methods=['POST'])
@login_required
def generate_open_ended_answer():
    payload = request.get_json(silent=True) or {}
    question = (payload.get('question') or '').strip()
    if not question:
        return jsonify({'error': 'Question is required'}), 400
    context, count = _answer_context(payload)
    try:
        result = ai_service.generate_answer(question, context, count, max_tokens=250)
    except AIServiceError:
        return jsonify({'success': False, 'error': SERVICE_UNAVAILABLE}), 503
    except GenerationError as e:
        return jsonify({'success': False, 'error': str(e)}), 500
    return jsonify({'success': True, **result})


# --- Quiz sets ---

def _owned_quiz_set(set_id):
    qs = db.session.get(QuizSet, set_id)
    if not qs:
        return None, (jsonify({'error': 'Quiz set not found'}), 404)
    if qs.user_id != g.user.id:
        return None, (jsonify({'error': 'Forbidden'}), 403)
    return qs, None


@quizzes.route('/api/quiz-sets', methods=['GET'])
@login_required
def list_quiz_sets():
    sets = QuizSet.query.filter_by(user_id=g.user.id).order_by(QuizSet.created_at.desc()).all()
    return jsonify({'success': True, 'quizSets': [s.to_dict() for s in sets]})


@quizzes.route('/api/quiz-sets', methods=['POST'])
@login_required
def create_quiz_set():
    payload = request.get_json(silent=True) or {}
    name = (payload.get('name') or '').strip()
    questions = payload.get('questions') or []
    if not name:
        return jsonify({'success': False, 'error': 'Quiz name is required'}), 400
    if not isinstance(questions, list) or not questions:
        return jsonify({'success': False, 'error': 'At least one question is required'}), 400

    project_id = payload.get('projectId')
    if project_id and not Project.query.filter_by(id=project_id, user_id=g.user.id).first():
        return jsonify({'success': False, 'error': 'Project not found'}), 404

    qs = QuizSet(
        user_id=g.user.id,
        project_id=project_id,
        name=name,
        description=payload.get('description'),
        questions_json=json.dumps(questions),
        status='completed',
        last_score=payload.get('lastScore') or 0,
        is_ai_generated=bool(payload.get('isAIGenerated', False)),
        difficulty=ai_service.normalize_difficulty(payload.get('difficulty')),
    )
    db.session.add(qs)
    db.session.commit()
    return jsonify({'success': True, 'quizSet': qs.to_dict()}), 201


@quizzes.route('/api/quiz-sets/<int:set_id>', methods=['GET'])
@login_required
def get_quiz_set(set_id):
    qs, err = _owned_quiz_set(set_id)
    if err:
        return err
    return jsonify({'success': True, 'quizSet': qs.to_dict()})


@quizzes.route('/api/quiz-sets/<int:set_id>', methods=['DELETE'])
@login_required
def delete_quiz_set(set_id):
    qs, err = _owned_quiz_set(set_id)
    if err:
        return err
    db.session.delete(qs)
    db.session.commit()
    return jsonify({'success': True})


def _manual_question(q, index, stamp, category, default_difficulty):
    base = {
        'id': f"manual-q-{stamp}-{index}",
        'question': q['question'].strip(),
        'subject': category or q.get('subject') or 'General',
        'difficulty': ai_service.normalize_difficulty(q.get('difficulty') or default_difficulty),
        'points': 1,
    }
    answer = str(q.get('correctAnswer') or '').strip()
    if q.get('type') == 'multiple_choice':
        alternatives = q.get('alternatives') or []
        correct = next((i for i, alt in enumerate(alternatives) if alt.get('isCorrect')), 0)
        base.update({
            'type': 'multiple_choice',
            'options': [alt.get('text', '') for alt in alternatives],
            'correctAnswer': correct,
            'explanation': f"Correct answer: {answer}",
        })
    else:
        base.update({
            'type': 'open_ended',
            'options': [],
            'correctAnswer': 0,
            'explanation': answer,
            'openEndedAnswer': answer,
        })
    return base


@quizzes.route('/api/quiz-sets/manual', methods=['POST'])
@login_required
def create_manual_quiz_set():
    payload = request.get_json(silent=True) or {}
    name = (payload.get('quizName') or payload.get('name') or '').strip()
    questions = payload.get('questions') or []
    category = (payload.get('category') or '').strip() or None
    difficulty = payload.get('difficulty') or 'medium'
    if not name:
        return jsonify({'success': False, 'error': 'Quiz name is required'}), 400
    if not isinstance(questions, list) or not questions:
        return jsonify({'success': False, 'error': 'At least one question is required'}), 400
    for q in questions:
        if not isinstance(q, dict) or not str(q.get('question') or '').strip():
            return jsonify({'success': False, 'error': 'All questions must have question text'}), 400
        if not str(q.get('correctAnswer') or '').strip():
            return jsonify({'success': False, 'error': 'All questions must have a correct answer'}), 400
        if q.get('type') == 'multiple_choice' and len(q.get('alternatives') or []) < 2:
            return jsonify({'success': False,
                            'error': 'Multiple choice questions must have at least 2 alternatives'}), 400

    stamp = int(time.time() * 1000)
    transformed = [_manual_question(q, i, stamp, category, difficulty) for i, q in enumerate(questions)]
    study_goal = (payload.get('studyGoal') or '').strip()
    qs = QuizSet(
        user_id=g.user.id,
        name=name,
        description=f"Study Goal: {study_goal}" if study_goal else None,
        questions_json=json.dumps(transformed),
        status='active',
        is_ai_generated=False,
        difficulty=ai_service.normalize_difficulty(difficulty),
        subject=category,
        time_limit=payload.get('timeLimit'),
    )
    db.session.add(qs)
    db.session.commit()
    return jsonify({'success': True, 'quizSet': qs.to_dict()}), 201
