import os
from dotenv import load_dotenv

load_dotenv()

user = os.getenv("DB_USER")
password = os.getenv("DB_PASSWORD")
host = os.getenv("DB_HOST")
port = os.getenv("DB_PORT")
db_name = os.getenv("DB_NAME")
db_backend = os.getenv("CELL_DB_BACKEND", "postgres")

redis_host = os.getenv("REDIS_HOST", "redis")
redis_port = int(os.getenv("REDIS_PORT", "6379"))

min_stake = int(os.getenv("MIN_STAKE", "0"))
owner_address = os.getenv("OWNER_ADDRESS", "0x" + "00" * 19 + "01")
payout_retry_minutes = int(os.getenv("PAYOUT_RETRY_MINUTES", "10"))
log_level = os.getenv("LOG_LEVEL", "INFO").upper()

if __name__ == "__main__":
    print(user, host, port, db_name, db_backend, redis_host, redis_port, min_stake, owner_address)
