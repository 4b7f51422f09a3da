import json
import math
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request, current_app, g

from extensions import db
from models import Document, Exam, ExamQuestion, ExamAttempt
from decorators import login_required
import ai_service
import grading
from ai_service import AIServiceError, GenerationError, EXAM_QUESTION_TYPES

exams = Blueprint('exams', __name__)

MAX_EXAM_QUESTIONS = 60


def _store_correct_answer(value):
    if isinstance(value, list):
        return json.dumps(value)
    return str(value)


@exams.route('/api/exam', methods=['POST'])
@login_required
def generate_exam():
    payload = request.get_json(silent=True) or {}
    document_ids = payload.get('documentIds') or []
    types = [t for t in (payload.get('questionTypes') or []) if t in EXAM_QUESTION_TYPES]
    difficulties = [ai_service.normalize_difficulty(d) for d in (payload.get('difficulties') or ['medium'])]
    try:
        question_count = int(payload.get('questionCount') or 10)
        duration_seconds = int(payload.get('duration') or 3600)
    except (TypeError, ValueError):
        return jsonify({'error': 'questionCount and duration must be numbers'}), 400

    if not types:
        return jsonify({'error': 'No question types selected. Please select at least one question type.'}), 400
    if question_count < len(types):
        return jsonify({
            'error': (f'Not enough questions requested for the selected types. You selected {len(types)} '
                      f'question types but only requested {question_count} questions.'),
            'solution': (f'Please increase the number of questions to at least {len(types)}, '
                         'or reduce the number of question types.'),
        }), 400
    if question_count > MAX_EXAM_QUESTIONS:
        return jsonify({'error': f'questionCount must be at most {MAX_EXAM_QUESTIONS}'}), 400
    if not document_ids:
        return jsonify({'error': 'At least one document is required'}), 400

    docs = Document.owned(g.user.id, document_ids, ready_only=True)
    if not docs:
        return jsonify({'error': 'No ready documents found or access denied'}), 404

    per_doc = math.ceil(question_count / len(docs))
    distribution = ai_service.question_type_distribution(per_doc, types)
    min_chars = current_app.config['MIN_DOCUMENT_CHARS']

    generated, processed, failed = [], [], []
    for doc in docs:
        if not doc.has_text(min_chars):
            failed.append(doc.id)
            continue
        try:
            language = ai_service.detect_language(doc.notes, sample_size=1000)
            questions = ai_service.generate_exam_questions(doc.notes, doc.display_title, distribution,
                                                           difficulties, language)
        except (AIServiceError, GenerationError) as e:
            current_app.logger.warning("Exam generation failed for document %s: %s", doc.id, e)
            failed.append(doc.id)
            continue
        generated.extend(questions)
        processed.append(doc.id)

    if not generated:
        return jsonify({
            'error': 'Failed to generate exam questions from any documents',
            'solution': 'Please ensure your documents contain readable educational content',
            'processedDocuments': processed,
            'failedDocuments': failed,
        }), 400

    final = ai_service.fisher_yates(generated)[:question_count]
    total_marks = sum(q['marks'] for q in final)
    titles = [d.display_title for d in docs if d.id in processed]

    exam = Exam(
        user_id=g.user.id,
        title=f"Exam: {', '.join(titles[:2])}" + (" and more" if len(titles) > 2 else ""),
        description=f"Generated from {len(processed)} document(s) with {len(final)} questions",
        duration=max(1, round(duration_seconds / 60)),
        total_marks=total_marks,
        visibility='private',
        settings_json=json.dumps({'questionTypes': types, 'difficulties': difficulties}),
        documents_json=json.dumps(processed),
    )
    db.session.add(exam)
    db.session.flush()
    for order, q in enumerate(final):
        db.session.add(ExamQuestion(
            exam_id=exam.id,
            question_type=q['type'],
            question=q['question'],
            options_json=json.dumps(q['options']) if q['options'] is not None else None,
            correct_answer=_store_correct_answer(q['correctAnswer']),
            explanation=q['explanation'],
            category=q['category'],
            difficulty=q['difficulty'],
            marks=q['marks'],
            order=order,
        ))
    db.session.commit()
    return jsonify({
        'success': True,
        'exam': exam.to_dict(with_questions=True),
        'processedDocuments': processed,
        'failedDocuments': failed,
    }), 201


@exams.route('/api/exams', methods=['GET'])
@login_required
def list_exams():
    items = Exam.query.filter_by(user_id=g.user.id).order_by(Exam.created_at.desc()).all()
    return jsonify({'success': True, 'exams': [e.to_dict() for e in items]})


@exams.route('/api/exams/<int:exam_id>', methods=['GET'])
@login_required
def get_exam(exam_id):
    exam = Exam.query.filter_by(id=exam_id, user_id=g.user.id).first()
    if not exam:
        return jsonify({'error': 'Exam not found'}), 404
    return jsonify({'success': True, 'exam': exam.to_dict(with_questions=True)})


@exams.route('/api/exams/attempt', methods=['POST'])
@login_required
def submit_exam_attempt():
    """
    Body: { examId, answers: [{questionId, answer}], totalTime }
    """
    payload = request.get_json(silent=True) or {}
    answers = payload.get('answers')
    if not payload.get('examId') or not isinstance(answers, list):
        return jsonify({'error': 'examId and answers are required'}), 400

    exam = Exam.query.filter_by(id=payload.get('examId'), user_id=g.user.id).first()
    if not exam:
        return jsonify({'error': 'Exam not found'}), 404

    submitted = [(a.get('questionId'), a.get('answer')) for a in answers if isinstance(a, dict)]
    result = grading.grade(grading.exam_questions_for_grading(exam.questions), submitted)

    now = datetime.utcnow()
    try:
        total_time = int(payload.get('totalTime') or 0)
    except (TypeError, ValueError):
        total_time = 0
    attempt = ExamAttempt(
        exam_id=exam.id,
        user_id=g.user.id,
        answers_json=json.dumps(result['answers']),
        score=result['score'],
        earned_marks=result['earned'],
        total_marks=result['total'],
        started_at=now - timedelta(seconds=total_time),
        completed_at=now,
    )
    db.session.add(attempt)
    db.session.commit()
    return jsonify({
        'success': True,
        'attempt': {
            'id': attempt.id,
            'score': attempt.score,
            'earnedMarks': attempt.earned_marks,
            'totalMarks': attempt.total_marks,
            'answers': result['answers'],
        },
    })
