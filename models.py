from extensions import db
from datetime import datetime, timedelta
import json

from grading import percentage
from document_utils import is_placeholder_text


def _loads(raw, default):
    if raw is None or raw == '':
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def _iso(dt):
    return dt.isoformat() if dt else None


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(150), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(150), nullable=True)
    role = db.Column(db.String(16), nullable=False, default='user')  # user/admin

    # Billing state mirrored from Stripe webhooks
    plan = db.Column(db.String(32), nullable=False, default='free_trial')  # free_trial/pro
    stripe_customer_id = db.Column(db.String(100), unique=True, nullable=True)
    subscription_id = db.Column(db.String(100), nullable=True)
    subscription_status = db.Column(db.String(32), nullable=True)  # active/canceled/past_due/incomplete/trialing/unpaid
    billing_period = db.Column(db.String(16), nullable=True)  # monthly/yearly
    current_period_end = db.Column(db.DateTime, nullable=True)

    chat_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    profile = db.relationship('Profile', backref='user', uselist=False, cascade="all, delete-orphan")
    documents = db.relationship('Document', backref='user', lazy=True, cascade="all, delete-orphan")

    @property
    def is_admin(self):
        return self.role == 'admin'

    @property
    def is_pro(self):
        return self.plan == 'pro' and self.subscription_status == 'active'

    @property
    def has_active_subscription(self):
        return bool(self.subscription_id and self.stripe_customer_id and self.subscription_status == 'active')

    def subscription_details(self):
        return {
            "plan": self.plan,
            "status": self.subscription_status,
            "billingPeriod": self.billing_period,
            "currentPeriodEnd": _iso(self.current_period_end),
            "subscriptionId": self.subscription_id,
        }


class Profile(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, unique=True)
    email = db.Column(db.String(150), unique=True, nullable=False)
    first_name = db.Column(db.String(100), nullable=False, default='')
    last_name = db.Column(db.String(100), nullable=False, default='')
    bio = db.Column(db.Text, nullable=True)
    location = db.Column(db.String(150), nullable=True)
    avatar_url = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "bio": self.bio,
            "location": self.location,
            "avatarUrl": self.avatar_url,
            "role": self.user.role if self.user else 'user',
        }


class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=True)  # mathematics/science/history/...
    study_goal = db.Column(db.String(32), nullable=True)  # exam_preparation/course_completion/...
    status = db.Column(db.String(16), nullable=False, default='active')  # active/in_progress/completed/on_hold
    progress = db.Column(db.Integer, nullable=False, default=0)  # 0..100
    target_date = db.Column(db.DateTime, nullable=True)
    estimated_hours = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    documents = db.relationship('Document', backref='project', lazy=True)

    def to_dict(self, with_documents=False):
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "study_goal": self.study_goal,
            "status": self.status,
            "progress": self.progress,
            "target_date": _iso(self.target_date),
            "estimated_hours": self.estimated_hours,
            "file_count": len(self.documents),
            "createdAt": _iso(self.created_at),
        }
        if with_documents:
            data["documents"] = [d.to_dict() for d in self.documents]
        return data


class Document(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    file_name = db.Column(db.String(255), nullable=True)
    file_type = db.Column(db.String(128), nullable=True)  # MIME type, or 'manual'
    file_size = db.Column(db.Integer, nullable=True)
    file_path = db.Column(db.String(512), nullable=True)
    subject = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)  # extracted plain text
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending/processing/ready/failed
    processing_progress = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def owned(cls, user_id, ids, ready_only=False):
        if not isinstance(ids, (list, tuple)):
            return []
        clean = []
        for i in ids:
            try:
                clean.append(int(i))
            except (TypeError, ValueError):
                continue
        if not clean:
            return []
        query = cls.query.filter(cls.id.in_(clean), cls.user_id == user_id).order_by(cls.id)
        if ready_only:
            query = query.filter(cls.status == 'ready')
        return query.all()

    @property
    def display_title(self):
        return self.title or self.file_name or "Untitled"

    def has_text(self, min_chars=50):
        if not self.notes or is_placeholder_text(self.notes):
            return False
        return len(self.notes.strip()) >= min_chars

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "subject": self.subject,
            "status": self.status,
            "processing_progress": self.processing_progress,
            "project": self.project_id,
            "textLength": len(self.notes or ''),
            "createdAt": _iso(self.created_at),
        }


class FlashcardSet(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=True)
    document_id = db.Column(db.Integer, db.ForeignKey('document.id'), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    subject = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    flashcards = db.relationship('Flashcard', backref='flashcard_set', lazy=True)

    @property
    def mastery_percentage(self):
        mastered = sum(1 for c in self.flashcards if c.mastered)
        return percentage(mastered, len(self.flashcards))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "project": self.project_id,
            "document": self.document_id,
            "subject": self.subject,
            "flashcardCount": len(self.flashcards),
            "masteryPercentage": self.mastery_percentage,
            "createdAt": _iso(self.created_at),
        }


class Flashcard(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    document_id = db.Column(db.Integer, db.ForeignKey('document.id'), nullable=True, index=True)
    set_id = db.Column(db.Integer, db.ForeignKey('flashcard_set.id'), nullable=True, index=True)
    question = db.Column(db.Text, nullable=False)
    answer = db.Column(db.Text, nullable=False)
    difficulty = db.Column(db.String(16), nullable=False, default='medium')  # easy/medium/hard
    subject = db.Column(db.String(100), nullable=True)
    mastered = db.Column(db.Boolean, nullable=False, default=False)
    review_count = db.Column(db.Integer, nullable=False, default=0)
    last_reviewed = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "question": self.question,
            "answer": self.answer,
            "difficulty": self.difficulty,
            "subject": self.subject,
            "mastered": self.mastered,
            "reviewCount": self.review_count,
            "lastReviewed": _iso(self.last_reviewed),
            "document": self.document_id,
            "flashcardSet": self.set_id,
        }


class Quiz(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    documents_json = db.Column(db.Text, nullable=False, default='[]')
    questions_json = db.Column(db.Text, nullable=False, default='[]')  # [{id, question, options, correctAnswer, explanation, difficulty, points}]
    settings_json = db.Column(db.Text, nullable=False, default='{}')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    attempts = db.relationship('QuizAttempt', backref='quiz', lazy=True, cascade="all, delete-orphan")

    @property
    def questions(self):
        return _loads(self.questions_json, [])

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "documents": _loads(self.documents_json, []),
            "questions": self.questions,
            "settings": _loads(self.settings_json, {}),
            "createdAt": _iso(self.created_at),
        }


class QuizAttempt(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    answers_json = db.Column(db.Text, nullable=False, default='[]')
    score = db.Column(db.Integer, nullable=False, default=0)  # 0..100
    correct_answers = db.Column(db.Integer, nullable=False, default=0)
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    time_spent = db.Column(db.Integer, nullable=False, default=0)  # seconds
    completed_at = db.Column(db.DateTime, default=datetime.utcnow)


class QuizSet(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    questions_json = db.Column(db.Text, nullable=False, default='[]')
    status = db.Column(db.String(16), nullable=False, default='completed')
    last_score = db.Column(db.Integer, nullable=True)
    is_ai_generated = db.Column(db.Boolean, nullable=False, default=False)
    difficulty = db.Column(db.String(16), nullable=False, default='medium')
    subject = db.Column(db.String(100), nullable=True)
    time_limit = db.Column(db.Integer, nullable=True)  # minutes
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        questions = _loads(self.questions_json, [])
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "questions": questions,
            "questionCount": len(questions),
            "status": self.status,
            "lastScore": self.last_score,
            "isAIGenerated": self.is_ai_generated,
            "difficulty": self.difficulty,
            "subject": self.subject,
            "timeLimit": self.time_limit,
            "project": self.project_id,
            "createdAt": _iso(self.created_at),
        }


class Exam(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    duration = db.Column(db.Integer, nullable=False, default=60)  # minutes
    total_marks = db.Column(db.Integer, nullable=False, default=0)
    visibility = db.Column(db.String(16), nullable=False, default='private')  # private/public
    settings_json = db.Column(db.Text, nullable=False, default='{}')
    documents_json = db.Column(db.Text, nullable=False, default='[]')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    questions = db.relationship('ExamQuestion', backref='exam', lazy=True,
                                cascade="all, delete-orphan", order_by='ExamQuestion.order')
    attempts = db.relationship('ExamAttempt', backref='exam', lazy=True, cascade="all, delete-orphan")

    def to_dict(self, with_questions=False):
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "duration": self.duration,
            "totalMarks": self.total_marks,
            "visibility": self.visibility,
            "settings": _loads(self.settings_json, {}),
            "documents": _loads(self.documents_json, []),
            "questionCount": len(self.questions),
            "createdAt": _iso(self.created_at),
        }
        if with_questions:
            data["questions"] = [q.to_dict() for q in self.questions]
        return data


class ExamQuestion(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    exam_id = db.Column(db.Integer, db.ForeignKey('exam.id'), nullable=False, index=True)
    question_type = db.Column(db.String(32), nullable=False)  # multiple-choice/true-false/written/multiple-select
    question = db.Column(db.Text, nullable=False)
    options_json = db.Column(db.Text, nullable=True)  # null for written questions
    correct_answer = db.Column(db.Text, nullable=False)  # JSON array for multiple-select
    explanation = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(100), nullable=True)
    difficulty = db.Column(db.String(16), nullable=False, default='medium')
    marks = db.Column(db.Integer, nullable=False, default=1)
    order = db.Column(db.Integer, nullable=False, default=0)

    @property
    def options(self):
        return _loads(self.options_json, None)

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.question_type,
            "question": self.question,
            "options": self.options,
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
            "category": self.category,
            "difficulty": self.difficulty,
            "marks": self.marks,
            "order": self.order,
        }


class ExamAttempt(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    exam_id = db.Column(db.Integer, db.ForeignKey('exam.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    answers_json = db.Column(db.Text, nullable=False, default='[]')
    score = db.Column(db.Integer, nullable=False, default=0)  # 0..100
    earned_marks = db.Column(db.Integer, nullable=False, default=0)
    total_marks = db.Column(db.Integer, nullable=False, default=0)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, default=datetime.utcnow)


class ChatConversation(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False, default="New Chat")
    documents_json = db.Column(db.Text, nullable=False, default='[]')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    messages = db.relationship('ChatMessage', backref='conversation', lazy=True,
                               cascade="all, delete-orphan", order_by='ChatMessage.id')

    def to_dict(self, with_messages=False):
        data = {
            "id": self.id,
            "title": self.title,
            "documents": _loads(self.documents_json, []),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if with_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


class ChatMessage(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey('chat_conversation.id'), nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False)  # user/assistant
    content = db.Column(db.Text, nullable=False)
    metadata_json = db.Column(db.Text, nullable=False, default='{}')
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "metadata": _loads(self.metadata_json, {}),
            "timestamp": _iso(self.timestamp),
        }


class Invitation(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    email = db.Column(db.String(150), nullable=False)
    first_name = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending/accepted
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    accepted_at = db.Column(db.DateTime, nullable=True)

    @classmethod
    def issue(cls, token, email, first_name=None, ttl_hours=24, now=None):
        now = now or datetime.utcnow()
        return cls(token=token, email=email, first_name=first_name, status='pending',
                   created_at=now, expires_at=now + timedelta(hours=ttl_hours))

    def is_expired(self, now=None):
        return (now or datetime.utcnow()) >= self.expires_at

    def to_dict(self):
        return {
            "token": self.token,
            "email": self.email,
            "firstName": self.first_name,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "expiresAt": _iso(self.expires_at),
            "acceptedAt": _iso(self.accepted_at),
        }
