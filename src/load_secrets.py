import os
from dotenv import load_dotenv

load_dotenv()

user = os.getenv("DB_USER")
password = os.getenv("DB_PASSWORD")
host = os.getenv("DB_HOST")
port = os.getenv("DB_PORT", "5432")
db_name = os.getenv("DB_NAME")
sqlite_path = os.getenv("SQLITE_PATH")

redis_host = os.getenv("REDIS_HOST", "redis")
redis_port = int(os.getenv("REDIS_PORT", "6379"))

room_duration_minutes = int(os.getenv("ROOM_DURATION_MINUTES", "30"))
expiration_sweep_seconds = int(os.getenv("EXPIRATION_SWEEP_SECONDS", "30"))
option_text_max_length = int(os.getenv("OPTION_TEXT_MAX_LENGTH", "200"))
room_code_attempts = int(os.getenv("ROOM_CODE_ATTEMPTS", "10"))

if __name__ == "__main__":
    print(user, host, port, db_name, sqlite_path, redis_host, redis_port)
