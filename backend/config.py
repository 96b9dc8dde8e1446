"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import secrets
from datetime import datetime, timezone
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'omniflow')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

print(f"[CONFIG] Using database: {DB_NAME}")

# Public URL (digital cards, lead capture links)
APP_URL = os.environ.get('APP_URL', 'http://localhost:3000')

# AES-256-GCM key for company API keys (base64, 32 bytes)
ENCRYPTION_KEY = os.environ.get('ENCRYPTION_KEY', '')

# Bearer secret for the cron endpoints
CRON_SECRET = os.environ.get('CRON_SECRET', '')

# Generative AI
OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY', '')
OPENAI_MODEL = os.environ.get('OPENAI_MODEL', 'gpt-4o-mini')

# Scheduler
SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'true').lower() == 'true'
AUTOMATION_INTERVAL_MINUTES = int(os.environ.get('AUTOMATION_INTERVAL_MINUTES', '15'))
CAMPAIGN_INTERVAL_MINUTES = int(os.environ.get('CAMPAIGN_INTERVAL_MINUTES', '5'))


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()

def parse_iso(value) -> Optional[datetime]:
    """
    Parse an ISO string (or pass a datetime through).
    Naive values are assumed UTC. Returns None on empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def current_month() -> str:
    """YYYY-MM (UTC)"""
    return datetime.now(timezone.utc).strftime("%Y-%m")
