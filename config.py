import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-change-me')
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URL', 'sqlite:///' + os.path.join(BASE_DIR, 'studyforge.db')
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True}

    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY', '')
    # Shared secret for server-to-server extraction calls
    INTERNAL_API_KEY = os.environ.get('INTERNAL_API_KEY', 'default-key-change-in-production')

    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'uploads'))
    MAX_UPLOAD_SIZE = 50 * 1024 * 1024
    MAX_CONTENT_LENGTH = MAX_UPLOAD_SIZE + 1024 * 1024

    FREE_CHAT_LIMIT = 5
    MIN_DOCUMENT_CHARS = 50
    # Documents joined into one answer prompt
    MAX_CONTEXT_DOCUMENTS = 10
    INVITATION_TTL_HOURS = 24
    APP_BASE_URL = os.environ.get('APP_BASE_URL', 'http://localhost:5000')

    CLICKUP_API_TOKEN = os.environ.get('CLICKUP_API_TOKEN')
    CLICKUP_LIST_ID = os.environ.get('CLICKUP_LIST_ID')

    SERVER_HOST = os.environ.get('SERVER_HOST', '127.0.0.1')
    SERVER_PORT = int(os.environ.get('SERVER_PORT', 5000))
    USE_WAITRESS = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False
    # Hosting platform caps request bodies, keep uploads well below it
    MAX_UPLOAD_SIZE = 4 * 1024 * 1024
    MAX_CONTENT_LENGTH = MAX_UPLOAD_SIZE + 1024 * 1024
    SERVER_HOST = os.environ.get('SERVER_HOST', '0.0.0.0')
    USE_WAITRESS = True
    SESSION_COOKIE_SECURE = True


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    OPENAI_API_KEY = 'test-openai-key'
    INTERNAL_API_KEY = 'test-internal-key'
    UPLOAD_FOLDER = os.path.join(BASE_DIR, 'tests', '_uploads')
    CLICKUP_API_TOKEN = None
    CLICKUP_LIST_ID = None


def get_config():
    env = (os.environ.get('FLASK_ENV') or 'development').lower()
    if env == 'production':
        return ProductionConfig
    if env == 'testing':
        return TestingConfig
    return DevelopmentConfig
