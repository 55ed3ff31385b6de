import logging

from neo4j import GraphDatabase
from neo4j.exceptions import Neo4jError, DriverError
from admission_desk.core.config import settings

logger = logging.getLogger(__name__)


class Neo4jDriver:
    def __init__(self):
        self._driver = None

    def connect(self):
        if self._driver is not None:
            return  # already connected

        try:
            self._driver = GraphDatabase.driver(
                settings.NEO4J_URI,
                auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
                max_connection_lifetime=200,
                keep_alive=True,
                connection_timeout=settings.STORE_TIMEOUT_SECONDS,
                connection_acquisition_timeout=settings.STORE_TIMEOUT_SECONDS,
            )
            self._driver.verify_connectivity()
            logger.info("Connected to Neo4j Graph Database")
        except (Neo4jError, DriverError) as e:
            self._driver = None
            # Stores reconnect lazily through get_session
            logger.error(f"Failed to connect to Neo4j: {e}")

    def close(self):
        if self._driver:
            self._driver.close()
            self._driver = None
            logger.info("Disconnected from Neo4j")

    def get_session(self):
        if self._driver is None:
            logger.warning("Driver not found, attempting reconnect...")
            self.connect()

        if self._driver is None:
            raise RuntimeError("Database driver is unavailable.")

        return self._driver.session()

db = Neo4jDriver()
