import logging
from decimal import Decimal
from typing import Optional, Dict, Any, List

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

import config
from aws_clients import get_resource
from db_manager import TABLE_KEYS
from exceptions import DuplicateAttendanceError
from helpers import utc_now

logger = logging.getLogger(__name__)


def _from_dynamo(value):
    """DynamoDB returns numbers as Decimal; convert back to int/float for JSON responses"""
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


def _to_dynamo(value):
    """boto3 rejects float; store as Decimal"""
    if isinstance(value, list):
        return [_to_dynamo(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class DynamoDBManager:
    """Manages DynamoDB operations for the attendance tables"""

    def __init__(self, dynamodb=None):
        """
        Initialize DynamoDB tables

        Args:
            dynamodb: boto3 DynamoDB service resource; built from config when omitted
        """
        try:
            self.dynamodb = dynamodb or get_resource("dynamodb")
            self.tables = {
                table: self.dynamodb.Table(config.TABLES[table]) for table in TABLE_KEYS
            }
            logger.info("DynamoDB tables bound: %s", ", ".join(config.TABLES.values()))
        except Exception as e:
            logger.error("Failed to initialise DynamoDB: %s", e)
            raise

    def setup_tables(self) -> List[str]:
        """Create any missing table (string hash key, on-demand billing). Returns created names."""
        existing = set()
        for page in self.dynamodb.meta.client.get_paginator("list_tables").paginate():
            existing.update(page.get("TableNames", []))

        created = []
        for table, key in TABLE_KEYS.items():
            name = config.TABLES[table]
            if name in existing:
                logger.info("Table %s already exists", name)
                continue
            new_table = self.dynamodb.create_table(
                TableName=name,
                KeySchema=[{"AttributeName": key, "KeyType": "HASH"}],
                AttributeDefinitions=[{"AttributeName": key, "AttributeType": "S"}],
                BillingMode="PAY_PER_REQUEST",
            )
            new_table.wait_until_exists()
            logger.info("Created table %s", name)
            created.append(name)
        return created

    # ==================== GENERIC ITEM OPERATIONS ====================

    def _put(self, table: str, item: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        self.tables[table].put_item(Item=_to_dynamo(item), **kwargs)
        return item

    def _get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        if not key:
            return None
        response = self.tables[table].get_item(Key={TABLE_KEYS[table]: key})
        item = response.get("Item")
        return _from_dynamo(item) if item else None

    def _scan(self, table: str, filter_expression=None) -> List[Dict[str, Any]]:
        """Full scan with pagination over LastEvaluatedKey"""
        kwargs = {}
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression

        items = []
        while True:
            response = self.tables[table].scan(**kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return _from_dynamo(items)

    def _update(self, table: str, key: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        key_name = TABLE_KEYS[table]
        names = {}
        values = {}
        assignments = []
        for i, (field, value) in enumerate(updates.items()):
            names[f"#f{i}"] = field
            values[f":v{i}"] = _to_dynamo(value)
            assignments.append(f"#f{i} = :v{i}")

        try:
            response = self.tables[table].update_item(
                Key={key_name: key},
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression=Attr(key_name).exists(),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ValueError(f"{key_name} {key} not found")
            raise
        return _from_dynamo(response["Attributes"])

    def _increment(self, table: str, key: str, field: str, amount: int = 1,
                   extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Atomic ADD on a counter, optionally SETting other attributes in the same call"""
        names = {"#c": field}
        values = {":inc": amount}
        expression = "ADD #c :inc"
        if extra:
            sets = []
            for i, (name, value) in enumerate(extra.items()):
                names[f"#s{i}"] = name
                values[f":s{i}"] = _to_dynamo(value)
                sets.append(f"#s{i} = :s{i}")
            expression += " SET " + ", ".join(sets)

        key_name = TABLE_KEYS[table]
        try:
            response = self.tables[table].update_item(
                Key={key_name: key},
                UpdateExpression=expression,
                ConditionExpression=Attr(key_name).exists(),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ValueError(f"{key_name} {key} not found")
            raise
        return _from_dynamo(response["Attributes"])

    # ==================== TEACHER OPERATIONS ====================

    def create_teacher(self, teacher: Dict[str, Any]) -> Dict[str, Any]:
        return self._put("teachers", teacher)

    def get_teacher(self, teacher_id: str) -> Optional[Dict[str, Any]]:
        return self._get("teachers", teacher_id)

    def get_teacher_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        # Emails are stored lower-cased
        matches = self._scan("teachers", Attr("email").eq(email.strip().lower()))
        return matches[0] if matches else None

    def get_teacher_by_verification_token(self, token: str) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        matches = self._scan("teachers", Attr("verificationToken").eq(token))
        return matches[0] if matches else None

    def update_teacher(self, teacher_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._update("teachers", teacher_id, {**updates, "updatedAt": utc_now().isoformat()})

    # ==================== CLASS OPERATIONS ====================

    def create_class(self, class_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._put("classes", class_data)

    def get_class(self, class_id: str) -> Optional[Dict[str, Any]]:
        return self._get("classes", class_id)

    def get_classes_for_teacher(self, teacher_id: str) -> List[Dict[str, Any]]:
        return self._scan("classes", Attr("teacherId").eq(teacher_id))

    def update_class(self, class_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._update("classes", class_id, {**updates, "updatedAt": utc_now().isoformat()})

    def delete_class(self, class_id: str) -> bool:
        response = self.tables["classes"].delete_item(
            Key={"classId": class_id}, ReturnValues="ALL_OLD"
        )
        return bool(response.get("Attributes"))

    def increment_class_sessions(self, class_id: str) -> Dict[str, Any]:
        return self._increment("classes", class_id, "totalSessions")

    # ==================== SESSION OPERATIONS ====================

    def create_session(self, session: Dict[str, Any]) -> Dict[str, Any]:
        return self._put("sessions", session)

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._get("sessions", session_id)

    def get_sessions_for_class(self, class_id: str) -> List[Dict[str, Any]]:
        return self._scan("sessions", Attr("classId").eq(class_id))

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
        return self._scan("students", Attr("classId").eq(class_id))

    def find_student(self, roll_number: str, class_id: str) -> Optional[Dict[str, Any]]:
        matches = self._scan(
            "students", Attr("rollNumber").eq(roll_number) & Attr("classId").eq(class_id)
        )
        return matches[0] if matches else None

    def increment_student_attendance(self, student_id: str, marked_at: Optional[str] = None) -> Dict[str, Any]:
        return self._increment(
            "students", student_id, "attendanceCount",
            extra={"lastAttendance": marked_at or utc_now().isoformat()},
        )

    # ==================== ATTENDANCE OPERATIONS ====================

    def create_attendance(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Conditional insert: fails when an item with this attendanceId already exists"""
        try:
            return self._put(
                "attendance", record,
                ConditionExpression=Attr("attendanceId").not_exists(),
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise DuplicateAttendanceError()
            raise

    def find_attendance(self, session_id: str, roll_number: str) -> Optional[Dict[str, Any]]:
        matches = self._scan(
            "attendance", Attr("sessionId").eq(session_id) & Attr("rollNumber").eq(roll_number)
        )
        return matches[0] if matches else None

    def get_session_attendance(self, session_id: str) -> List[Dict[str, Any]]:
        return self._scan("attendance", Attr("sessionId").eq(session_id))

    def get_student_attendance(self, student_id: str) -> List[Dict[str, Any]]:
        return self._scan("attendance", Attr("studentId").eq(student_id))

    # ==================== STATS ====================

    def get_database_stats(self) -> Dict[str, Any]:
        """Approximate item counts (DescribeTable, refreshed by AWS every ~6 hours)"""
        stats: Dict[str, Any] = {"database": "dynamodb"}
        for table, table_obj in self.tables.items():
            try:
                stats[table] = int(table_obj.item_count)
            except ClientError as e:
                logger.warning("Could not describe %s: %s", table_obj.name, e)
                stats[table] = None
        stats["timestamp"] = utc_now().isoformat()
        return stats
