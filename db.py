from dotenv import load_dotenv
import logging
import os
import psycopg2

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL not found. Set it in .env")

def db_execute(cursor, query):
    """
    Executes a SQL query safely using the provided cursor.
    Rolls back if there is an error.
    """
    try:
        cursor.execute(query)
    except Exception as e:
        cursor.connection.rollback()
        logger.error("SQL error in record_store bootstrap: %s", e)
        raise

def init_db():
    """
    Creates the record store table in PostgreSQL if it doesn't exist.
    """
    with psycopg2.connect(DATABASE_URL) as conn:
        with conn.cursor() as cursor:
            db_execute(cursor, '''
                CREATE TABLE IF NOT EXISTS record_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            conn.commit()
            print("✅ Database initialized successfully.")

def list_collections():
    """Print each stored collection key with its blob size."""
    with psycopg2.connect(DATABASE_URL) as conn:
        with conn.cursor() as cursor:
            cursor.execute("SELECT key, LENGTH(value), updated_at FROM record_store ORDER BY key;")
            for row in cursor.fetchall():
                print(row)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    init_db()
    list_collections()
