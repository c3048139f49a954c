"""
Configuration management.
"""
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Identity provider (Firebase Authentication REST API)
FIREBASE_API_KEY = os.getenv("FIREBASE_API_KEY", "")
IDENTITY_BASE_URL = os.getenv("IDENTITY_BASE_URL", "https://identitytoolkit.googleapis.com/v1")
IDENTITY_TIMEOUT = float(os.getenv("IDENTITY_TIMEOUT", "10"))
# Seconds a sign-in stays valid; matches the provider's ID token lifetime
SESSION_TTL = int(os.getenv("SESSION_TTL", "3600"))

# Club
CLUB_NAME = os.getenv("CLUB_NAME", "FFC")

# HTTP
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", "8000"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
