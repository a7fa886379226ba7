import os
from dotenv import load_dotenv
from pathlib import Path
from sqlalchemy import text

load_dotenv(dotenv_path=Path(__file__).with_name(".env"), override=True)

from cpops.db.engine import init_db, make_engine  # import AFTER load_dotenv

def main():
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise SystemExit("DATABASE_URL is not set. Put it in your .env")
    engine = make_engine(url)
    print("Creating tables…")
    init_db(engine)
    # simple connectivity check
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    print("Done.")

if __name__ == "__main__":
    main()
