import json
import logging
import random
import re

from flask import current_app
from openai import OpenAI, OpenAIError

from document_utils import is_placeholder_text

logger = logging.getLogger(__name__)

# === Model configuration (centralized) ===
MODEL_LANGUAGE_DETECT = "gpt-4o-mini"   # sv/en classification
MODEL_ANSWER = "gpt-4o"                 # Short grounded answers and MC alternatives
MODEL_QUIZ_GENERATION = "gpt-4o"        # Quiz questions and flashcards
MODEL_EXAM_GENERATION = "gpt-4o-mini"   # Mixed-type exam questions
MODEL_CHAT = "gpt-4o"                   # Document chat
MODEL_SUGGESTIONS = "gpt-4o-mini"       # Suggested chat questions

SERVICE_UNAVAILABLE = "AI service temporarily unavailable. Please try again."
DOCUMENT_SEPARATOR = "\n\n---\n\n"
LANGUAGE_NAMES = {"sv": "Swedish", "en": "English"}

EXAM_QUESTION_TYPES = ("multiple-choice", "true-false", "written", "multiple-select")
DIFFICULTIES = ("easy", "medium", "hard")
SUGGESTION_CATEGORIES = ("concept", "practice", "summary", "analysis")
SUGGESTION_LEVELS = ("beginner", "intermediate", "advanced")


class AIServiceError(Exception):
    """The LLM provider failed or could not be reached."""


class GenerationError(Exception):
    """The provider answered, but the output could not be used."""


def _openai_client():
    return OpenAI(api_key=current_app.config['OPENAI_API_KEY'])


def _ai_chat(messages, model=None, temperature=None, max_tokens=None, response_format=None):
    kwargs = {"model": model or MODEL_ANSWER, "messages": messages}
    if temperature is not None:
        kwargs["temperature"] = temperature
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if response_format is not None:
        kwargs["response_format"] = response_format
    try:
        resp = _openai_client().chat.completions.create(**kwargs)
    except OpenAIError as e:
        logger.warning("OpenAI call failed (model=%s): %s", kwargs["model"], e)
        raise AIServiceError(SERVICE_UNAVAILABLE) from e
    content = resp.choices[0].message.content if resp.choices else None
    return (content or "").strip()


def _coerce_jsonish(text):
    s = (text or "").strip()
    s = re.sub(r"^```(?:json)?\s*", "", s, flags=re.IGNORECASE)
    s = re.sub(r"\s*```$", "", s)
    return s.replace("“", '"').replace("”", '"')


def _ai_json(messages, model=None, temperature=None, max_tokens=None):
    """
    Ask the model for a JSON object. The reply is parsed tolerantly: fences are
    stripped, and as a last resort the first {...} block is used.
    """
    content = _ai_chat(messages, model=model, temperature=temperature, max_tokens=max_tokens,
                       response_format={"type": "json_object"})
    cleaned = _coerce_jsonish(content)
    data = None
    try:
        data = json.loads(cleaned)
    except ValueError:
        m = re.search(r"\{[\s\S]*\}", cleaned)
        if m:
            try:
                data = json.loads(m.group(0))
            except ValueError:
                pass
    if not isinstance(data, dict):
        raise GenerationError("Model did not return a JSON object")
    return data


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def clean_markdown(text):
    """Strip markdown so answers render as plain text."""
    if not text:
        return ""
    t = text
    t = re.sub(r"\*\*(.+?)\*\*", r"\1", t)
    t = re.sub(r"__(.+?)__", r"\1", t)
    t = re.sub(r"\*(.+?)\*", r"\1", t)
    t = re.sub(r"(?<!\w)_(.+?)_(?!\w)", r"\1", t)
    t = re.sub(r"^#{1,6}\s+", "", t, flags=re.MULTILINE)
    t = re.sub(r"```[\s\S]*?```", "", t)
    t = re.sub(r"`(.+?)`", r"\1", t)
    t = re.sub(r"^\s*[-*+]\s+", "", t, flags=re.MULTILINE)
    t = re.sub(r"^\s*\d+\.\s+", "", t, flags=re.MULTILINE)
    t = re.sub(r"^>\s+", "", t, flags=re.MULTILINE)
    t = re.sub(r"^[-*_]{3,}\s*$", "", t, flags=re.MULTILINE)
    t = re.sub(r"\n{3,}", "\n\n", t)
    return t.strip()


def fisher_yates(items, rng=None):
    """Return a shuffled copy of items."""
    rng = rng or random
    out = list(items)
    for i in range(len(out) - 1, 0, -1):
        j = rng.randint(0, i)
        out[i], out[j] = out[j], out[i]
    return out


def shuffle_alternatives(alternatives, rng=None):
    """
    Permute alternatives whose first entry is the correct one.
    Returns (shuffled, correct_index). Positions are tracked, so duplicate
    texts cannot confuse the reported index.
    """
    order = fisher_yates(range(len(alternatives)), rng)
    shuffled = [alternatives[i] for i in order]
    return shuffled, order.index(0)


def parse_alternatives(text):
    alternatives = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue
        low = line.lower()
        if "note:" in low or "obs:" in low:
            continue
        m = re.match(r"^\d+\.\s*(.+)$", line)
        if m:
            cleaned = clean_markdown(m.group(1).strip())
            if cleaned:
                alternatives.append(cleaned)
    return alternatives


def build_document_context(documents, min_chars=50):
    """Join extracted text of usable documents. Returns (context, count)."""
    parts = [d.notes for d in documents
             if d.notes and len(d.notes) > min_chars and not is_placeholder_text(d.notes)]
    return DOCUMENT_SEPARATOR.join(parts), len(parts)


def detect_language(text, sample_size=500):
    """Return 'sv' for Swedish, 'en' for everything else."""
    sample = (text or "")[:sample_size]
    if not sample.strip():
        return "en"
    try:
        out = _ai_chat(
            [
                {"role": "system", "content": "You are a language detector. Respond with ONLY 'sv' for Swedish or 'en' for English/other languages."},
                {"role": "user", "content": f"Detect the language: {sample}"},
            ],
            model=MODEL_LANGUAGE_DETECT, temperature=0, max_tokens=10,
        )
    except AIServiceError:
        return "en"
    return "sv" if out.strip().lower().startswith("sv") else "en"


def language_name(code):
    return LANGUAGE_NAMES.get(code, "English")


def general_note(language, kind="answer"):
    if kind == "alternatives":
        return ("OBS: Generella alternativ (inga dokument uppladdade)." if language == "sv"
                else "Note: General alternatives (no documents uploaded).")
    return ("OBS: Generellt svar (inga dokument uppladdade)." if language == "sv"
            else "Note: General answer (no documents uploaded).")


def not_found_note(language):
    return ("OBS: Generellt svar (information ej funnen i uppladdade dokument)." if language == "sv"
            else "Note: General answer (information not found in uploaded documents).")


def general_warning(language):
    if language == "sv":
        return "Detta är ett generellt svar. Ladda upp dokument för mer specifika svar."
    return "This is a general answer. Upload documents for more specific answers."


# ---------------------------------------------------------------------------
# Answer and alternative generation
# ---------------------------------------------------------------------------

def generate_answer(question, context="", documents_processed=0, max_tokens=250):
    has_documents = documents_processed > 0
    language = detect_language(context or question)
    lang_name = language_name(language)

    rules = (
        f"Respond in {lang_name}. Answer in 2-4 sentences. "
        "Use PLAIN TEXT ONLY: no bold, no italics, no bullet points, no numbered lists, no headings."
    )
    if has_documents:
        system = (
            "You are an expert educational assistant writing model answers for study questions.\n"
            f"{rules}\n"
            "Base the answer on the reference materials. If they do not contain the answer, "
            f"answer from general knowledge and start with: {not_found_note(language)}"
        )
        user = f"REFERENCE MATERIALS:\n{context}\n\nQUESTION:\n{question}"
    else:
        system = (
            "You are an expert educational assistant writing model answers for study questions.\n"
            f"{rules}\n"
            "The student has NOT uploaded reference materials. "
            f"Start with this note: {general_note(language)}"
        )
        user = f"QUESTION:\n{question}"

    raw = _ai_chat(
        [{"role": "system", "content": system}, {"role": "user", "content": user}],
        model=MODEL_ANSWER, temperature=0.3, max_tokens=max_tokens,
    )
    answer = clean_markdown(raw)
    if not answer:
        raise GenerationError("No answer generated")

    general_from_documents = has_documents and (
        "OBS: Generellt svar" in answer or "Note: General answer" in answer
    )
    return {
        "answer": answer,
        "hasDocuments": has_documents,
        "language": lang_name,
        "documentsProcessed": documents_processed,
        "isGeneralAnswer": not has_documents,
        "isGeneralFromDocuments": general_from_documents,
        "warningMessage": None if has_documents else general_warning(language),
    }


def generate_alternatives(question, context="", documents_processed=0, rng=None):
    has_documents = documents_processed > 0
    language = detect_language(context or question)
    lang_name = language_name(language)

    system = (
        "You are an expert educational assistant creating multiple-choice quiz alternatives.\n"
        f"LANGUAGE: Respond in {lang_name}.\n"
        "Generate EXACTLY 4 alternatives (one correct, three incorrect). "
        "The FIRST alternative MUST be the correct answer. "
        "Use PLAIN TEXT ONLY, keep each alternative to 1-2 sentences, "
        "and make the incorrect ones plausible but clearly wrong."
    )
    if has_documents:
        system += "\nBase alternatives ONLY on the provided reference materials."
        user = f"REFERENCE MATERIALS:\n{context}\n\nQUESTION:\n{question}\n\n"
    else:
        system += f"\nNo reference materials were uploaded. Start with this note: {general_note(language, 'alternatives')}"
        user = f"QUESTION:\n{question}\n\n"
    user += (
        f"Generate EXACTLY 4 alternatives in {lang_name}. Format as:\n"
        "1. [Correct answer]\n2. [Incorrect alternative]\n3. [Incorrect alternative]\n4. [Incorrect alternative]"
    )

    raw = _ai_chat(
        [{"role": "system", "content": system}, {"role": "user", "content": user}],
        model=MODEL_ANSWER, temperature=0.4, max_tokens=300,
    )
    alternatives = parse_alternatives(raw)
    if len(alternatives) < 4:
        raise GenerationError(f"Only generated {len(alternatives)} alternatives, need 4")

    shuffled, correct_index = shuffle_alternatives(alternatives[:4], rng)
    return {
        "alternatives": shuffled,
        "correctAnswerIndex": correct_index,
        "hasDocuments": has_documents,
        "language": lang_name,
        "documentsProcessed": documents_processed,
        "isGeneralAnswer": not has_documents,
        "warningMessage": None if has_documents else general_warning(language),
    }


# ---------------------------------------------------------------------------
# Structured generation: flashcards, quizzes, exams
# ---------------------------------------------------------------------------

def _language_instructions(language):
    if language == "sv":
        return "VIKTIGT: Skriv ALLT innehåll (frågor, svar, alternativ och förklaringar) på SVENSKA."
    return "IMPORTANT: Write ALL content (questions, answers, options and explanations) in ENGLISH."


def normalize_difficulty(value, default="medium"):
    v = str(value or "").strip().lower()
    return v if v in DIFFICULTIES else default


def generate_flashcards(text, title, language="en"):
    data = _ai_json(
        [
            {"role": "system", "content": (
                "You are an expert at creating study flashcards from educational material.\n"
                f"{_language_instructions(language)}\n"
                "Create 5-8 flashcards that cover the key concepts of the document. "
                'Return JSON: {"flashcards": [{"question": str, "answer": str, '
                '"difficulty": "easy"|"medium"|"hard", "subject": str}]}'
            )},
            {"role": "user", "content": f"Document Title: {title}\n\nDOCUMENT CONTENT:\n{text}"},
        ],
        model=MODEL_QUIZ_GENERATION, temperature=0.3,
    )
    cards = []
    for item in (data.get("flashcards") or []):
        if not isinstance(item, dict):
            continue
        q = str(item.get("question") or "").strip()
        a = str(item.get("answer") or "").strip()
        if not q or not a:
            continue
        cards.append({
            "question": q,
            "answer": a,
            "difficulty": normalize_difficulty(item.get("difficulty")),
            "subject": str(item.get("subject") or "General").strip() or "General",
        })
    if not cards:
        raise GenerationError("No flashcards in model output")
    return cards


def _valid_quiz_question(item):
    if not isinstance(item, dict) or not str(item.get("question") or "").strip():
        return False
    options = item.get("options")
    if not isinstance(options, list) or len(options) != 4:
        return False
    try:
        return 0 <= int(item.get("correctAnswer")) <= 3
    except (TypeError, ValueError):
        return False


def generate_quiz_questions(text, title, count, difficulty, language="en"):
    lang_name = language_name(language)
    data = _ai_json(
        [
            {"role": "system", "content": (
                "You are an expert quiz creator. Generate educational multiple-choice questions "
                "based ONLY on the provided document content.\n"
                f"{_language_instructions(language)}\n"
                f"Create exactly {count} questions with exactly 4 options each at {difficulty} difficulty. "
                "correctAnswer is the 0-based index of the correct option. "
                'Return JSON: {"questions": [{"question": str, "options": [str, str, str, str], '
                '"correctAnswer": int, "explanation": str, "subject": str, "difficulty": str}]}'
            )},
            {"role": "user", "content": (
                f"Document Title: {title}\nDifficulty Level: {difficulty}\n"
                f"Document Language: {lang_name}\n\nDOCUMENT CONTENT:\n{text}"
            )},
        ],
        model=MODEL_QUIZ_GENERATION, temperature=0.3,
    )
    questions = []
    for item in (data.get("questions") or []):
        if not _valid_quiz_question(item):
            continue
        questions.append({
            "question": str(item["question"]).strip(),
            "options": [str(o) for o in item["options"]],
            "correctAnswer": int(item["correctAnswer"]),
            "explanation": str(item.get("explanation") or ""),
            "subject": str(item.get("subject") or "General"),
            "difficulty": normalize_difficulty(item.get("difficulty"), difficulty),
            "points": 1,
        })
    if not questions:
        raise GenerationError("No valid quiz questions in model output")
    return questions


def question_type_distribution(total, types):
    """Spread total questions over types; the first types absorb the remainder."""
    if not types:
        return []
    base, remainder = divmod(total, len(types))
    return [{"type": t, "count": base + (1 if i < remainder else 0)} for i, t in enumerate(types)]


def _normalize_exam_question(item):
    if not isinstance(item, dict):
        return None
    qtype = str(item.get("type") or "").strip().lower()
    question = str(item.get("question") or "").strip()
    if qtype not in EXAM_QUESTION_TYPES or not question:
        return None
    options = item.get("options")
    correct = item.get("correctAnswer")
    if qtype == "written":
        options = None
        correct = str(correct or "").strip()
        if not correct:
            return None
    else:
        if not isinstance(options, list) or len(options) < 2:
            return None
        options = [str(o) for o in options]
        if qtype == "multiple-select":
            if not isinstance(correct, list) or len(correct) < 2:
                return None
            try:
                correct = sorted({int(c) for c in correct})
            except (TypeError, ValueError):
                return None
            if any(c < 0 or c >= len(options) for c in correct):
                return None
        else:
            try:
                correct = int(correct)
            except (TypeError, ValueError):
                return None
            if not 0 <= correct < len(options):
                return None
    try:
        marks = max(1, int(item.get("marks") or 1))
    except (TypeError, ValueError):
        marks = 1
    return {
        "type": qtype,
        "question": question,
        "options": options,
        "correctAnswer": correct,
        "explanation": str(item.get("explanation") or ""),
        "category": str(item.get("category") or "General"),
        "difficulty": normalize_difficulty(item.get("difficulty")),
        "marks": marks,
    }


def generate_exam_questions(text, title, distribution, difficulties, language="en"):
    total = sum(d["count"] for d in distribution)
    wanted = "\n".join(f"- EXACTLY {d['count']} \"{d['type']}\" questions" for d in distribution if d["count"])
    data = _ai_json(
        [
            {"role": "system", "content": (
                "You are an expert exam creator. Generate questions in the exact types and quantities requested.\n"
                f"{_language_instructions(language)}\n"
                f"REQUIRED DISTRIBUTION:\n{wanted}\nTOTAL: {total}\n\n"
                "Formats:\n"
                '- multiple-choice: 4 options, correctAnswer is an index 0-3\n'
                '- true-false: options ["True", "False"], correctAnswer is 0 or 1\n'
                '- written: options null, correctAnswer is a sample answer string\n'
                '- multiple-select: 4-5 options, correctAnswer is a list of 2+ indices\n'
                "Marks: easy 2-3, medium 4-5, hard 6-8.\n"
                'Return JSON: {"title": str, "description": str, "questions": [{"type": str, "question": str, '
                '"options": [str] | null, "correctAnswer": int | [int] | str, "explanation": str, '
                '"category": str, "difficulty": str, "marks": int}]}'
            )},
            {"role": "user", "content": (
                f"Document Title: {title}\nDifficulty mix: {', '.join(difficulties or ['medium'])}\n\n"
                f"DOCUMENT CONTENT:\n{text}"
            )},
        ],
        model=MODEL_EXAM_GENERATION, temperature=0.5, max_tokens=5000,
    )
    questions = [q for q in (_normalize_exam_question(i) for i in (data.get("questions") or [])) if q]
    if not questions:
        raise GenerationError("No valid exam questions in model output")

    got = {}
    for q in questions:
        got[q["type"]] = got.get(q["type"], 0) + 1
    if any(got.get(d["type"], 0) != d["count"] for d in distribution):
        logger.warning("Exam type distribution mismatch for %r: expected %s, got %s", title, distribution, got)
    return questions


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

def chat_reply(message, context, history=None):
    system = (
        "You are a helpful study assistant. Answer the student's question using the provided documents. "
        "If the documents do not cover the question, say so and then answer from general knowledge. "
        "Answer in the language of the question.\n\n"
        f"DOCUMENTS:\n{context}"
    )
    messages = [{"role": "system", "content": system}]
    for m in (history or [])[-10:]:
        messages.append({"role": m["role"], "content": m["content"]})
    messages.append({"role": "user", "content": message})
    reply = _ai_chat(messages, model=MODEL_CHAT, temperature=0.3, max_tokens=2000)
    if not reply:
        raise GenerationError("Empty chat reply")
    return reply


def suggest_questions(previews):
    """previews: list of (title, text_preview). Returns 3-4 suggestion dicts."""
    joined = "\n\n".join(f"[Document: {t}]\n{p}" for t, p in previews)
    data = _ai_json(
        [
            {"role": "system", "content": (
                "Suggest 3-4 questions a student could ask about these documents. "
                'Return JSON: {"questions": [{"question": str, '
                '"category": "concept"|"practice"|"summary"|"analysis", '
                '"difficulty": "beginner"|"intermediate"|"advanced"}]}'
            )},
            {"role": "user", "content": joined},
        ],
        model=MODEL_SUGGESTIONS, temperature=0.7,
    )
    out = []
    for item in (data.get("questions") or [])[:4]:
        if not isinstance(item, dict) or not str(item.get("question") or "").strip():
            continue
        category = str(item.get("category") or "").lower()
        level = str(item.get("difficulty") or "").lower()
        out.append({
            "question": str(item["question"]).strip(),
            "category": category if category in SUGGESTION_CATEGORIES else "concept",
            "difficulty": level if level in SUGGESTION_LEVELS else "intermediate",
        })
    if not out:
        raise GenerationError("No suggestions in model output")
    return out
