import os
from pathlib import Path
from urllib.parse import quote_plus
from typing import List
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parent.parent
load_dotenv(ROOT_DIR / '.env')

HOURS_PER_LESSON = 2
MIN_GRADE = 1
MAX_GRADE = 5

DB_NAME = os.environ.get('DB_NAME', 'school_db')
SCHOOL_TIMEZONE = ZoneInfo(os.environ.get('SCHOOL_TIMEZONE', 'UTC'))
HIGH_ABSENCE_PERCENT = float(os.environ.get('HIGH_ABSENCE_PERCENT', '25'))

SPECIAL_PASSWORD_CHARS = ['@', '#', '$', '%', '&', '+', '=']


def encode_mongo_url(mongo_url: str) -> str:
    """URL-encode the password part of a Mongo URL if it holds reserved characters."""
    if '@' not in mongo_url or '://' not in mongo_url:
        return mongo_url
    protocol_end = mongo_url.find('://') + 3
    at_pos = mongo_url.rfind('@')
    if at_pos <= protocol_end:
        return mongo_url
    user_pass = mongo_url[protocol_end:at_pos]
    if ':' not in user_pass:
        return mongo_url
    username, password = user_pass.split(':', 1)
    if not any(c in password for c in SPECIAL_PASSWORD_CHARS):
        return mongo_url
    return mongo_url[:protocol_end] + f"{username}:{quote_plus(password)}" + mongo_url[at_pos:]


def get_mongo_url() -> str:
    mongo_url = os.environ.get('MONGO_URL')
    if not mongo_url:
        raise ValueError("MONGO_URL environment variable is not set. Please check your .env file.")
    return encode_mongo_url(mongo_url)


def get_cors_origins() -> List[str]:
    raw = os.environ.get("CORS_ORIGINS", "*").strip()
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]
