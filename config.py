import os
from dotenv import load_dotenv
load_dotenv()

class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///callgrade.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_ENABLED = os.getenv("RQ_ENABLED", "1") == "1"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # external scorer (OpenAI Chat Completions over plain HTTPS)
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_API_URL = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1/chat/completions")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
    OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.3"))
    OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", "4096"))
    OPENAI_TIMEOUT = float(os.getenv("OPENAI_TIMEOUT", "60"))

    # grading queue
    GRADING_QUEUE_BATCH_SIZE = int(os.getenv("GRADING_QUEUE_BATCH_SIZE", "10"))
    GRADING_MAX_ATTEMPTS = int(os.getenv("GRADING_MAX_ATTEMPTS", "3"))
    GRADING_BACKOFF_BASE_MINUTES = float(os.getenv("GRADING_BACKOFF_BASE_MINUTES", "1"))
    GRADING_MIN_TRANSCRIPT_CHARS = int(os.getenv("GRADING_MIN_TRANSCRIPT_CHARS", "50"))
    GRADING_DEFAULT_PASS_THRESHOLD = float(os.getenv("GRADING_DEFAULT_PASS_THRESHOLD", "70"))
    GRADING_POLL_INTERVAL_SEC = float(os.getenv("GRADING_POLL_INTERVAL_SEC", "30"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    RQ_ENABLED = False
    OPENAI_API_KEY = "test-key"
    LOG_LEVEL = "DEBUG"
