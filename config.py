import os

from dotenv import load_dotenv

load_dotenv()

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
LOG_FILE = os.getenv("LOG_FILE", os.path.join(BASE_DIR, "exam_portal.log"))

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# Supabase 설정
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# 시험 세션 설정
TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "1.0"))  # 카운트다운 주기 (1 Hz)
SESSION_TTL = int(os.getenv("SESSION_TTL", "10800"))                     # 3시간
SESSION_CLEANUP_INTERVAL = int(os.getenv("SESSION_CLEANUP_INTERVAL", "300"))
SESSION_COOKIE = "exam_session"
