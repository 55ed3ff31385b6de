import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from neo4j import unit_of_work
from neo4j.exceptions import ConstraintError, DriverError, Neo4jError

from admission_desk.core.database import Neo4jDriver, db
from admission_desk.core.errors import AdmissionError, DuplicateKeyError, InvalidStateError, NotFoundError, StorageError
from admission_desk.models.application import Application, ApplicationStatus, ClassName
from admission_desk.models.notification import Notification
from admission_desk.models.student import Student
from admission_desk.stores.base import ApplicationStore, NotificationStore, StudentStore

logger = logging.getLogger(__name__)

# =========================================================
# HELPER FUNCTIONS
# =========================================================

def _to_native(value):
    """Neo4j Date/DateTime -> python date/datetime"""
    return value.to_native() if hasattr(value, "to_native") else value


def _flatten(model) -> dict:
    """Node properties cannot be maps, so the address is stored as address_* keys."""
    props = model.model_dump()
    address = props.pop("address", None) or {}
    for key, value in address.items():
        props[f"address_{key}"] = value
    return {
        k: (v.value if isinstance(v, Enum) else v)
        for k, v in props.items()
        if v is not None
    }


def _inflate(props) -> dict:
    data = {}
    address = {}
    for key, value in dict(props).items():
        if key.startswith("_"):
            continue
        if key.startswith("address_"):
            address[key[len("address_"):]] = value
        else:
            data[key] = _to_native(value)
    if address:
        data["address"] = address
    return data


def _duplicate_key(error: ConstraintError, keys) -> DuplicateKeyError:
    # keys are ordered most specific first: "application_id" also contains "id"
    message = error.message or ""
    for key in keys:
        if key in message:
            return DuplicateKeyError(key, message)
    return DuplicateKeyError(keys[0], message)


class _GraphStore:
    """Runs transaction functions with a bounded timeout and maps driver errors."""

    unique_keys: tuple = ("id",)

    def __init__(self, driver: Neo4jDriver = db, timeout: float = 10.0):
        self._driver = driver
        self._timeout = timeout

    def _execute(self, mode: str, work, **params):
        try:
            session = self._driver.get_session()
        except (RuntimeError, DriverError, Neo4jError) as e:
            raise StorageError(f"Neo4j unavailable: {e}")

        bounded = unit_of_work(timeout=self._timeout)(work)
        try:
            if mode == "write":
                return session.execute_write(bounded, **params)
            return session.execute_read(bounded, **params)
        except AdmissionError:
            raise
        except ConstraintError as e:
            raise _duplicate_key(e, self.unique_keys)
        except (Neo4jError, DriverError) as e:
            logger.exception("Neo4j transaction failed")
            raise StorageError(f"Neo4j transaction failed: {e}")
        finally:
            session.close()


# =========================================================
# APPLICATIONS
# =========================================================

class GraphApplicationStore(_GraphStore, ApplicationStore):
    unique_keys = ("application_number", "id")

    def insert(self, application: Application) -> None:
        def work(tx, props):
            tx.run("CREATE (a:Application) SET a = $props", props=props).consume()

        self._execute("write", work, props=_flatten(application))

    def get(self, application_id: str) -> Optional[Application]:
        def work(tx, application_id):
            record = tx.run(
                "MATCH (a:Application {id: $application_id}) RETURN a",
                application_id=application_id,
            ).single()
            return _inflate(record["a"]) if record else None

        data = self._execute("read", work, application_id=application_id)
        return Application.model_validate(data) if data else None

    _FILTER = """
    MATCH (a:Application)
    WHERE ($status IS NULL OR a.status = $status)
      AND ($class_applied IS NULL OR a.class_applied = $class_applied)
    """

    def list(self, status=None, class_applied=None, limit=None, offset=0) -> List[Application]:
        def work(tx, status, class_applied, limit, offset):
            query = self._FILTER + """
            RETURN a
            ORDER BY a.created_at DESC
            SKIP $offset
            """
            if limit is not None:
                query += " LIMIT $limit"
            result = tx.run(query, status=status, class_applied=class_applied, limit=limit, offset=offset)
            return [_inflate(record["a"]) for record in result]

        rows = self._execute(
            "read", work,
            status=status.value if status else None,
            class_applied=class_applied.value if class_applied else None,
            limit=limit,
            offset=offset,
        )
        return [Application.model_validate(row) for row in rows]

    def count(self, status=None, class_applied=None) -> int:
        def work(tx, status, class_applied):
            record = tx.run(
                self._FILTER + " RETURN count(a) AS total",
                status=status, class_applied=class_applied,
            ).single()
            return record["total"] if record else 0

        return self._execute(
            "read", work,
            status=status.value if status else None,
            class_applied=class_applied.value if class_applied else None,
        )

    def count_by_status(self) -> Dict[str, int]:
        def work(tx):
            result = tx.run("MATCH (a:Application) RETURN a.status AS status, count(a) AS total")
            return {record["status"]: record["total"] for record in result}

        found = self._execute("read", work)
        return {s.value: found.get(s.value, 0) for s in ApplicationStatus}

    def transition(self, application_id, expected, target, decided_at, decided_by, rejection_remarks=None):
        def work(tx, application_id, expected, changes):
            # Take the node write lock before reading the status so two
            # concurrent decisions cannot both observe "pending".
            record = tx.run(
                """
                MATCH (a:Application {id: $application_id})
                SET a._lock = true
                RETURN a.status AS status
                """,
                application_id=application_id,
            ).single()
            if record is None:
                raise NotFoundError("Application", application_id)
            if record["status"] != expected:
                raise InvalidStateError(
                    f"Application is already {record['status']}", current_status=record["status"]
                )
            updated = tx.run(
                """
                MATCH (a:Application {id: $application_id})
                SET a += $changes
                REMOVE a._lock
                RETURN a
                """,
                application_id=application_id,
                changes=changes,
            ).single()
            return _inflate(updated["a"])

        changes = {
            "status": target.value,
            "decided_at": decided_at,
            "decided_by": decided_by,
        }
        if target == ApplicationStatus.REJECTED:
            changes["rejection_remarks"] = rejection_remarks or ""

        data = self._execute(
            "write", work,
            application_id=application_id,
            expected=expected.value,
            changes=changes,
        )
        return Application.model_validate(data)


# =========================================================
# STUDENTS
# =========================================================

class GraphStudentStore(_GraphStore, StudentStore):
    unique_keys = ("application_id", "admission_number", "id")

    def insert(self, student: Student) -> None:
        def work(tx, props):
            tx.run(
                """
                CREATE (s:Student) SET s = $props
                WITH s
                OPTIONAL MATCH (a:Application {id: $props.application_id})
                FOREACH (ignored IN CASE WHEN a IS NULL THEN [] ELSE [1] END |
                    MERGE (a)-[:ENROLLED_AS]->(s))
                """,
                props=props,
            ).consume()

        self._execute("write", work, props=_flatten(student))

    def get(self, student_id: str) -> Optional[Student]:
        return self._get_one("MATCH (s:Student {id: $value}) RETURN s", student_id)

    def get_by_application(self, application_id: str) -> Optional[Student]:
        return self._get_one("MATCH (s:Student {application_id: $value}) RETURN s", application_id)

    def _get_one(self, query: str, value: str) -> Optional[Student]:
        def work(tx, value):
            record = tx.run(query, value=value).single()
            return _inflate(record["s"]) if record else None

        data = self._execute("read", work, value=value)
        return Student.model_validate(data) if data else None

    def list(self, class_name: Optional[ClassName] = None, section: Optional[str] = None) -> List[Student]:
        def work(tx, class_name, section):
            query = """
            MATCH (s:Student)
            WHERE ($class_name IS NULL OR s.class_name = $class_name)
              AND ($section IS NULL OR s.section = $section)
            RETURN s
            ORDER BY s.class_name, s.section, s.roll_number, s.admission_number
            """
            result = tx.run(query, class_name=class_name, section=section)
            return [_inflate(record["s"]) for record in result]

        rows = self._execute(
            "read", work,
            class_name=class_name.value if class_name else None,
            section=section,
        )
        return [Student.model_validate(row) for row in rows]

    def delete_for_application(self, application_id: str) -> bool:
        def work(tx, application_id):
            record = tx.run(
                """
                MATCH (s:Student {application_id: $application_id})
                DETACH DELETE s
                RETURN count(*) AS deleted
                """,
                application_id=application_id,
            ).single()
            return bool(record and record["deleted"])

        return self._execute("write", work, application_id=application_id)


# =========================================================
# NOTIFICATIONS
# =========================================================

class GraphNotificationStore(_GraphStore, NotificationStore):

    def add(self, notification: Notification) -> None:
        def work(tx, props):
            tx.run("CREATE (n:Notification) SET n = $props", props=props).consume()

        self._execute("write", work, props=_flatten(notification))

    def list(self, limit, offset=0, is_read=None, type=None) -> List[Notification]:
        def work(tx, limit, offset, is_read, type):
            query = """
            MATCH (n:Notification)
            WHERE ($is_read IS NULL OR n.is_read = $is_read)
              AND ($type IS NULL OR n.type = $type)
            RETURN n
            ORDER BY n.created_at DESC
            SKIP $offset LIMIT $limit
            """
            result = tx.run(query, limit=limit, offset=offset, is_read=is_read, type=type)
            return [_inflate(record["n"]) for record in result]

        rows = self._execute(
            "read", work,
            limit=limit, offset=offset, is_read=is_read,
            type=type.value if type else None,
        )
        return [Notification.model_validate(row) for row in rows]

    def unread_count(self) -> int:
        def work(tx):
            record = tx.run("MATCH (n:Notification {is_read: false}) RETURN count(n) AS total").single()
            return record["total"] if record else 0

        return self._execute("read", work)

    def mark_read(self, notification_id: str, read_at: datetime) -> Optional[Notification]:
        def work(tx, notification_id, read_at):
            record = tx.run(
                """
                MATCH (n:Notification {id: $notification_id})
                SET n.read_at = CASE WHEN n.is_read THEN n.read_at ELSE $read_at END,
                    n.is_read = true
                RETURN n
                """,
                notification_id=notification_id,
                read_at=read_at,
            ).single()
            return _inflate(record["n"]) if record else None

        data = self._execute("write", work, notification_id=notification_id, read_at=read_at)
        return Notification.model_validate(data) if data else None

    def mark_all_read(self, read_at: datetime) -> int:
        def work(tx, read_at):
            record = tx.run(
                """
                MATCH (n:Notification)
                WHERE n.is_read = false
                SET n.is_read = true, n.read_at = $read_at
                RETURN count(n) AS marked_count
                """,
                read_at=read_at,
            ).single()
            return record["marked_count"] if record else 0

        return self._execute("write", work, read_at=read_at)

    def delete(self, notification_id: str) -> bool:
        def work(tx, notification_id):
            record = tx.run(
                """
                MATCH (n:Notification {id: $notification_id})
                DELETE n
                RETURN count(*) AS deleted
                """,
                notification_id=notification_id,
            ).single()
            return bool(record and record["deleted"])

        return self._execute("write", work, notification_id=notification_id)
