class AttendanceError(Exception):
    """A submission or registration rejected with an HTTP status and message"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class DuplicateAttendanceError(AttendanceError):
    def __init__(self, message: str = "Attendance already marked for this session"):
        super().__init__(409, message)


class FaceNotDetectedError(Exception):
    pass
