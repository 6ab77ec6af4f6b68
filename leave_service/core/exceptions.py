from fastapi import status


class LeaveServiceError(Exception):
    """
    API 호출자에게 돌려주는 에러의 기본 클래스.
    kind = 기계용 구분값, status_code = HTTP 응답 코드, message = 사람용 메시지
    """

    kind = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": self.message}


class ValidationError(LeaveServiceError):
    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, rule: str = None) -> None:
        super().__init__(message)
        # 실패한 검증 규칙 이름
        self.rule = rule


class ConflictError(LeaveServiceError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(LeaveServiceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class StoreError(LeaveServiceError):
    """DB 연결 / 쿼리 실패. 내용은 호출자에게 그대로 보여주지 않는다."""

    kind = "store_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": "Internal server error"}


class ConfigurationError(LeaveServiceError):
    """기동 시 치명적 오류 (재시도를 다 해도 DB에 붙지 못한 경우 등)"""

    kind = "configuration_error"
