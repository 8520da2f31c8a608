import os

from dotenv import load_dotenv

load_dotenv()

ENV = os.getenv("ENV", "development")
PORT = int(os.getenv("PORT", 8000))
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "villasDB")

JWT_SECRET = os.getenv("JWT_SECRET", "your_secret_key")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", 24 * 60))
COOKIE_NAME = os.getenv("COOKIE_NAME", "token")

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

CORS_ORIGIN = os.getenv("CORS_ORIGIN", "http://localhost:3000")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")


def is_production() -> bool:
    return ENV == "production"
