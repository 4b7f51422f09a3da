from extensions import db
from app import app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

"""
Widen MySQL text columns that hold extracted documents and AI-generated content to LONGTEXT
with utf8mb4. Safe to run multiple times. No-op on non-MySQL engines.

Usage:
  1) Set FLASK_ENV=production and DATABASE_URL to the MySQL DSN
  2) Run: python manual_db_upgrade_longtext.py
  3) Restart the server
"""

LONGTEXT = "LONGTEXT CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"

COLUMNS = [
    # Extracted document text
    ("document", "notes", True),
    # Chat transcripts
    ("chat_message", "content", False),
    # Generated question payloads
    ("quiz", "questions_json", False),
    ("quiz_set", "questions_json", False),
    ("exam_question", "question", False),
    ("exam_question", "correct_answer", False),
]


def alter_statements():
    return [
        f"ALTER TABLE `{table}` MODIFY `{column}` {LONGTEXT} {'NULL' if nullable else 'NOT NULL'}"
        for table, column, nullable in COLUMNS
    ]


def upgrade():
    with app.app_context():
        engine = db.engine
        if engine.dialect.name != 'mysql':
            app.logger.info("Skipping: engine is %s, not mysql.", engine.dialect.name)
            return []
        app.logger.info("Connected to MySQL: %s", engine.url.render_as_string(hide_password=True))

        applied = []
        with engine.begin() as conn:
            for sql in alter_statements():
                try:
                    app.logger.info("Applying: %s", sql)
                    conn.execute(text(sql))
                    applied.append(sql)
                except SQLAlchemyError as e:
                    # Most likely the table does not exist yet on an older schema
                    app.logger.warning("  -> Skipped: %s", e)

        app.logger.info("Upgrade to LONGTEXT complete.")
        return applied


if __name__ == '__main__':
    upgrade()
