"""
Gym CRM Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env file
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)


class Config:
    """Application configuration."""

    # Database, must be set in .env
    DATABASE_URL = os.getenv('DATABASE_URL')
    if not DATABASE_URL:
        _logger.critical("DATABASE_URL is not set, cannot start. Copy .env.example to .env and configure it.")
        raise ValueError("DATABASE_URL environment variable is not set. Copy .env.example to .env and configure it.")

    # Timezone used to decide what "today" is for every reminder check
    TIMEZONE = os.getenv('TIMEZONE', 'Asia/Beirut')

    # Branding used in rendered messages
    GYM_NAME = os.getenv('GYM_NAME', 'Gymnastika')

    # Trainer directory (JSON list of {name, email, phone})
    TRAINERS_FILE = os.getenv('TRAINERS_FILE', str(Path(__file__).parent.parent / 'data' / 'trainers.json'))

    # Email (SMTP)
    SMTP_HOST = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    SMTP_PORT = int(os.getenv('SMTP_PORT', '587'))
    SMTP_USERNAME = os.getenv('SMTP_USERNAME', '')
    SMTP_PASSWORD = os.getenv('SMTP_PASSWORD', '')
    SMTP_FROM = os.getenv('SMTP_FROM', '')
    SMTP_FROM_NAME = os.getenv('SMTP_FROM_NAME', GYM_NAME)

    # WhatsApp (Meta Cloud API)
    WHATSAPP_API_URL = os.getenv('WHATSAPP_API_URL', 'https://graph.facebook.com/v18.0')
    WHATSAPP_PHONE_NUMBER_ID = os.getenv('WHATSAPP_PHONE_NUMBER_ID', '')
    WHATSAPP_ACCESS_TOKEN = os.getenv('WHATSAPP_ACCESS_TOKEN', '')
    DEFAULT_COUNTRY_CODE = os.getenv('DEFAULT_COUNTRY_CODE', '961')

    # Delivery
    SEND_TIMEOUT_SECONDS = float(os.getenv('SEND_TIMEOUT_SECONDS', '30'))
    BROADCAST_DELAY_SECONDS = float(os.getenv('BROADCAST_DELAY_SECONDS', '0.1'))

    # Scheduler
    RECURRING_CHECK_MINUTES = int(os.getenv('RECURRING_CHECK_MINUTES', '30'))
    PT_REMINDER_TIME = os.getenv('PT_REMINDER_TIME', '08:00')
    FOLLOW_UP_REMINDER_TIME = os.getenv('FOLLOW_UP_REMINDER_TIME', '09:00')
    ADVANCE_DATES_TIME = os.getenv('ADVANCE_DATES_TIME', '00:05')


# Singleton instance
config = Config()
