"""Transactional email (Resend) configuration."""

import os

from dotenv import load_dotenv

load_dotenv()

RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
EMAIL_SENDER = os.getenv("EMAIL_SENDER", "RestaurantIQ <onboarding@resend.dev>")
APP_URL = os.getenv("APP_URL", "http://localhost:5173")

__all__ = ["RESEND_API_KEY", "RESEND_API_URL", "EMAIL_SENDER", "APP_URL"]
