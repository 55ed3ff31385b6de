from admission_desk.core.database import db
import logging
import sys
from neo4j.exceptions import Neo4jError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SCHEMA_QUERIES = [
    # --- 1. Uniqueness Constraints ---
    "CREATE CONSTRAINT application_id_unique IF NOT EXISTS FOR (a:Application) REQUIRE a.id IS UNIQUE",
    "CREATE CONSTRAINT application_number_unique IF NOT EXISTS FOR (a:Application) REQUIRE a.application_number IS UNIQUE",
    "CREATE CONSTRAINT student_id_unique IF NOT EXISTS FOR (s:Student) REQUIRE s.id IS UNIQUE",
    "CREATE CONSTRAINT student_admission_number_unique IF NOT EXISTS FOR (s:Student) REQUIRE s.admission_number IS UNIQUE",
    # One student per application
    "CREATE CONSTRAINT student_application_unique IF NOT EXISTS FOR (s:Student) REQUIRE s.application_id IS UNIQUE",
    "CREATE CONSTRAINT notification_id_unique IF NOT EXISTS FOR (n:Notification) REQUIRE n.id IS UNIQUE",

    # --- 2. Lookup Indexes ---
    "CREATE INDEX application_status IF NOT EXISTS FOR (a:Application) ON (a.status)",
    "CREATE INDEX application_created_at IF NOT EXISTS FOR (a:Application) ON (a.created_at)",
    "CREATE INDEX student_class_section IF NOT EXISTS FOR (s:Student) ON (s.class_name, s.section)",
    "CREATE INDEX notification_read_created IF NOT EXISTS FOR (n:Notification) ON (n.is_read, n.created_at)",
]


def create_constraints():
    """
    Runs the schema setup for the admission desk.
    The unique constraints back application/admission number generation
    and the one-student-per-application rule.
    """
    session = None
    logger.info("Starting Database Schema Setup...")

    try:
        session = db.get_session()

        for q in SCHEMA_QUERIES:
            clean_query = " ".join(q.split())
            try:
                session.run(q)
                logger.info(f"Success: {clean_query[:60]}...")
            except Neo4jError:
                logger.exception(
                    f"Neo4j error while running query: {clean_query[:200]}..."
                )
                # Fail fast, schema must be consistent
                raise

        logger.info("Database Schema Setup Completed Successfully!")

    finally:
        if session is not None:
            session.close()
            logger.info("Database session closed.")


if __name__ == "__main__":
    try:
        db.connect()
        create_constraints()
    except Exception:
        logger.exception("Database schema setup failed. Aborting.")
        sys.exit(1)
    finally:
        db.close()
