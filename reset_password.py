import json
import os

import psycopg2
from dotenv import load_dotenv
from werkzeug.security import generate_password_hash

USERS_KEY = "cdss_users"


def main():
    load_dotenv()
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    email = (os.getenv("RESET_EMAIL") or "").strip()
    raw_password = os.getenv("RESET_PASSWORD") or ""

    if not database_url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    if not email:
        raise RuntimeError("RESET_EMAIL is required.")
    if not raw_password:
        raise RuntimeError("RESET_PASSWORD is required.")

    password_hash = generate_password_hash(raw_password)
    updated = 0

    with psycopg2.connect(database_url) as conn:
        with conn.cursor() as c:
            c.execute("SELECT value FROM record_store WHERE key = %s FOR UPDATE", (USERS_KEY,))
            row = c.fetchone()
            users = json.loads(row[0]) if row else []
            for user in users:
                if (user.get("email") or "").lower() == email.lower():
                    user["password_hash"] = password_hash
                    updated += 1
            if updated:
                c.execute(
                    "UPDATE record_store SET value = %s, updated_at = CURRENT_TIMESTAMP WHERE key = %s",
                    (json.dumps(users), USERS_KEY),
                )
        conn.commit()

    if updated:
        print(f"Password reset successfully for {email}.")
    else:
        print(f"No user found for {email}.")


if __name__ == "__main__":
    main()
