import os
from dotenv import load_dotenv

load_dotenv()

VIDEO_STORE_API_KEY = os.getenv("VIDEO_STORE_API_KEY", "")
VIDEO_STORE_BASE_URL = os.getenv("VIDEO_STORE_BASE_URL", "http://localhost:8080")
VIDEO_STORE_TIMEOUT = float(os.getenv("VIDEO_STORE_TIMEOUT", "30"))
VIDEO_STORE_PAGE_LIMIT = int(os.getenv("VIDEO_STORE_PAGE_LIMIT", "100"))
WEEK_START_DAY = int(os.getenv("WEEK_START_DAY", "0"))  # 0 = Sunday
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "") or None
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
