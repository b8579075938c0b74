import json
import logging
import os
import threading
from typing import Optional, Dict, Any, List, Callable

import config
from exceptions import DuplicateAttendanceError
from helpers import utc_now

logger = logging.getLogger(__name__)

# Primary key attribute for each table
TABLE_KEYS = {
    "teachers": "teacherId",
    "classes": "classId",
    "sessions": "sessionId",
    "students": "studentId",
    "attendance": "attendanceId",
}


class DatabaseManager:
    """Manages file-based storage: one directory per table, one JSON file per item"""

    def __init__(self, base_dir: str = "data"):
        self.base_dir = base_dir
        self.table_dirs = {
            table: os.path.join(base_dir, config.TABLES[table]) for table in TABLE_KEYS
        }
        # Serializes read-modify-write cycles (updates and counters) within this process
        self._lock = threading.Lock()
        self._ensure_directories()

    def _ensure_directories(self):
        """Ensure all table directories exist"""
        for table_dir in self.table_dirs.values():
            os.makedirs(table_dir, exist_ok=True)

    def get_item_file(self, table: str, key: str) -> Optional[str]:
        """Get the JSON file path for an item, None for keys that cannot be file names"""
        if not key or not isinstance(key, str) or os.sep in key or "/" in key or key.startswith("."):
            return None
        return os.path.join(self.table_dirs[table], f"{key}.json")

    def read_json(self, file_path: Optional[str]) -> Optional[Dict[str, Any]]:
        """Read JSON file safely"""
        if not file_path or not os.path.exists(file_path):
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error reading %s: %s", file_path, e)
            return None

    def write_json(self, file_path: str, data: Dict[str, Any], exclusive: bool = False):
        """Write JSON file; exclusive=True fails with FileExistsError if the file exists"""
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        mode = 'x' if exclusive else 'w'
        with open(file_path, mode, encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    # ==================== GENERIC ITEM OPERATIONS ====================

    def _put(self, table: str, item: Dict[str, Any], exclusive: bool = False) -> Dict[str, Any]:
        file_path = self.get_item_file(table, item[TABLE_KEYS[table]])
        if not file_path:
            raise ValueError(f"Invalid {TABLE_KEYS[table]}: {item[TABLE_KEYS[table]]}")
        self.write_json(file_path, item, exclusive=exclusive)
        return item

    def _get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        return self.read_json(self.get_item_file(table, key))

    def _scan(self, table: str, predicate: Optional[Callable[[Dict[str, Any]], bool]] = None) -> List[Dict[str, Any]]:
        table_dir = self.table_dirs[table]
        if not os.path.exists(table_dir):
            return []

        items = []
        for filename in sorted(os.listdir(table_dir)):
            if not filename.endswith(".json"):
                continue
            item = self.read_json(os.path.join(table_dir, filename))
            if item and (predicate is None or predicate(item)):
                items.append(item)
        return items

    def _update(self, table: str, key: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            item = self._get(table, key)
            if not item:
                raise ValueError(f"{TABLE_KEYS[table]} {key} not found")
            item.update(updates)
            return self._put(table, item)

    def _increment(self, table: str, key: str, field: str, amount: int = 1,
                   extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        with self._lock:
            item = self._get(table, key)
            if not item:
                raise ValueError(f"{TABLE_KEYS[table]} {key} not found")
            item[field] = int(item.get(field) or 0) + amount
            if extra:
                item.update(extra)
            return self._put(table, item)

    def _delete(self, table: str, key: str) -> bool:
        file_path = self.get_item_file(table, key)
        if not file_path or not os.path.exists(file_path):
            return False
        os.remove(file_path)
        return True

    # ==================== TEACHER OPERATIONS ====================

    def create_teacher(self, teacher: Dict[str, Any]) -> Dict[str, Any]:
        return self._put("teachers", teacher)

    def get_teacher(self, teacher_id: str) -> Optional[Dict[str, Any]]:
        return self._get("teachers", teacher_id)

    def get_teacher_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Get teacher by email (case-insensitive)"""
        email = email.strip().lower()
        matches = self._scan("teachers", lambda t: (t.get("email") or "").lower() == email)
        return matches[0] if matches else None

    def get_teacher_by_verification_token(self, token: str) -> Optional[Dict[str, Any]]:
        matches = self._scan("teachers", lambda t: token and t.get("verificationToken") == token)
        return matches[0] if matches else None

    def update_teacher(self, teacher_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._update("teachers", teacher_id, {**updates, "updatedAt": utc_now().isoformat()})

    # ==================== CLASS OPERATIONS ====================

    def create_class(self, class_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._put("classes", class_data)

    def get_class(self, class_id: str) -> Optional[Dict[str, Any]]:
        return self._get("classes", class_id)

    def get_classes_for_teacher(self, teacher_id: str) -> List[Dict[str, Any]]:
        return self._scan("classes", lambda c: c.get("teacherId") == teacher_id)

    def update_class(self, class_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._update("classes", class_id, {**updates, "updatedAt": utc_now().isoformat()})

    def delete_class(self, class_id: str) -> bool:
        return self._delete("classes", class_id)

    def increment_class_sessions(self, class_id: str) -> Dict[str, Any]:
        return self._increment("classes", class_id, "totalSessions")

    # ==================== SESSION OPERATIONS ====================

    def create_session(self, session: Dict[str, Any]) -> Dict[str, Any]:
        return self._put("sessions", session)

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._get("sessions", session_id)

    def get_sessions_for_class(self, class_id: str) -> List[Dict[str, Any]]:
        return self._scan("sessions", lambda s: s.get("classId") == class_id)

    def end_session(self, session_id: str) -> Dict[str, Any]:
        return self._update("sessions", session_id, {
            "isActive": False,
            "endedAt": utc_now().isoformat(),
        })

    def increment_session_attendance(self, session_id: str) -> Dict[str, Any]:
        return self._increment("sessions", session_id, "attendanceCount")

    # ==================== STUDENT OPERATIONS ====================

    def create_student(self, student: Dict[str, Any]) -> Dict[str, Any]:
        return self._put("students", student)

    def get_student(self, student_id: str) -> Optional[Dict[str, Any]]:
        return self._get("students", student_id)

    def get_students_for_class(self, class_id: str) -> List[Dict[str, Any]]:
        return self._scan("students", lambda s: s.get("classId") == class_id)

    def find_student(self, roll_number: str, class_id: str) -> Optional[Dict[str, Any]]:
        """Find a student by roll number within a class"""
        matches = self._scan(
            "students",
            lambda s: s.get("rollNumber") == roll_number and s.get("classId") == class_id,
        )
        return matches[0] if matches else None

    def increment_student_attendance(self, student_id: str, marked_at: Optional[str] = None) -> Dict[str, Any]:
        return self._increment(
            "students", student_id, "attendanceCount",
            extra={"lastAttendance": marked_at or utc_now().isoformat()},
        )

    # ==================== ATTENDANCE OPERATIONS ====================

    def create_attendance(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert an attendance record; an existing record with the same id is a duplicate"""
        try:
            return self._put("attendance", record, exclusive=True)
        except FileExistsError:
            raise DuplicateAttendanceError()

    def find_attendance(self, session_id: str, roll_number: str) -> Optional[Dict[str, Any]]:
        matches = self._scan(
            "attendance",
            lambda a: a.get("sessionId") == session_id and a.get("rollNumber") == roll_number,
        )
        return matches[0] if matches else None

    def get_session_attendance(self, session_id: str) -> List[Dict[str, Any]]:
        return self._scan("attendance", lambda a: a.get("sessionId") == session_id)

    def get_student_attendance(self, student_id: str) -> List[Dict[str, Any]]:
        return self._scan("attendance", lambda a: a.get("studentId") == student_id)

    # ==================== STATS ====================

    def get_database_stats(self) -> Dict[str, Any]:
        """Get overall database statistics"""
        stats: Dict[str, Any] = {"database": "file"}
        for table, table_dir in self.table_dirs.items():
            count = len([f for f in os.listdir(table_dir) if f.endswith(".json")]) if os.path.exists(table_dir) else 0
            stats[table] = count
        stats["timestamp"] = utc_now().isoformat()
        return stats
