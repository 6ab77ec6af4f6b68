"""
휴가 신청서 필드 / 필드 간 검증.

규칙은 VALIDATION_RULES 순서대로 실행되고, 처음 실패한 규칙의 메시지 하나만
돌려준다. 그래서 아래 순서 자체가 API 계약이다.
"""
import calendar
import re
from dataclasses import asdict, dataclass
from datetime import date, datetime, time
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from leave_service.core.exceptions import ValidationError
from leave_service.models.leave import LeaveStatus, TERMINAL_STATUSES

EMP_ID_PATTERN = re.compile(r"^[A-Z]{3}0[0-9]{3}$")
NAME_PATTERN = re.compile(
    r"^[A-Za-z]+(?:\.[A-Za-z]+)*(?: [A-Za-z]+)*(?:\.[A-Za-z]+){0,3}$"
)
EMAIL_LOCAL_PART = r"[A-Za-z0-9._%+\-]+"
OPEN_EMAIL_DOMAIN = r"[A-Za-z]{2,15}\.[A-Za-z]{2,3}"

REQUIRED_FIELDS = (
    "emp_id",
    "name",
    "email",
    "leave_type",
    "from_date",
    "to_date",
    "reason",
)

REASON_MIN_LENGTH = 5
REASON_MAX_LENGTH = 100
# leaves.name / leaves.email 컬럼 길이 (String(50))
NAME_MAX_LENGTH = 50
EMAIL_MAX_LENGTH = 50

MSG_REQUIRED = "All required fields must be provided"
MSG_EMP_ID = "Invalid Employee ID format (e.g., ABC0123)"
MSG_NAME = "Invalid name format"
MSG_EMAIL = "Invalid email format"
MSG_LEAVE_TYPE = "Invalid leave type"
MSG_DATE_FORMAT = "Invalid date format (expected YYYY-MM-DD)"
MSG_TO_BEFORE_FROM = "To Date cannot be earlier than From Date"
MSG_FROM_WINDOW = "From Date must be within the last 3 months or up to 1 year from now"
MSG_TO_WINDOW = "To Date cannot be more than 1 year from now"
MSG_HOUR_FORMAT = "Invalid hour format (expected HH:MM)"
MSG_HOUR_ORDER = "To Hour must be after From Hour"
MSG_REASON = (
    f"Reason must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters"
)
MSG_STATUS = "Invalid status"


@dataclass
class NormalizedLeaveRequest:
    emp_id: str
    name: str
    email: str
    leave_type: str
    from_date: date
    to_date: date
    from_hour: Optional[time]
    to_hour: Optional[time]
    reason: str

    def to_record_data(self) -> dict:
        return asdict(self)


@dataclass
class ValidationContext:
    today: date
    allowed_leave_types: Iterable[str]
    email_domain: Optional[str] = None


def shift_months(value: date, months: int) -> date:
    """월 단위로 이동. 해당 월에 없는 날짜면 말일로 맞춘다 (1/31 + 1개월 = 2/28)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def parse_date(value: Any) -> Optional[date]:
    # datetime 은 날짜만 남긴다 (date 의 하위 클래스)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError:
        return None


def parse_hour(value: Any) -> Optional[time]:
    if isinstance(value, time):
        return value
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(str(value), fmt).time()
        except ValueError:
            continue
    return None


def email_pattern(domain: Optional[str] = None) -> "re.Pattern[str]":
    domain_part = re.escape(domain) if domain else OPEN_EMAIL_DOMAIN
    return re.compile(rf"^{EMAIL_LOCAL_PART}@{domain_part}$")


# ---------------------------------------------------------------------------
# 규칙: 실패하면 에러 메시지, 통과하면 None
# ---------------------------------------------------------------------------

def _check_required(data: Mapping[str, Any], ctx: ValidationContext) -> Optional[str]:
    if any(not data.get(field) for field in REQUIRED_FIELDS):
        return MSG_REQUIRED
    return None


def _check_emp_id(data, ctx):
    if not EMP_ID_PATTERN.match(data["emp_id"]):
        return MSG_EMP_ID
    return None


def _check_name(data, ctx):
    name = data["name"]
    if len(name) > NAME_MAX_LENGTH or not NAME_PATTERN.match(name):
        return MSG_NAME
    return None


def _check_email(data, ctx):
    email = data["email"]
    if len(email) > EMAIL_MAX_LENGTH or not email_pattern(ctx.email_domain).match(email):
        return MSG_EMAIL
    return None


def _check_leave_type(data, ctx):
    if data["leave_type"] not in set(ctx.allowed_leave_types):
        return MSG_LEAVE_TYPE
    return None


def _check_dates(data, ctx):
    from_date = parse_date(data["from_date"])
    to_date = parse_date(data["to_date"])
    if from_date is None or to_date is None:
        return MSG_DATE_FORMAT

    earliest = shift_months(ctx.today, -3)
    latest = shift_months(ctx.today, 12)

    if to_date < from_date:
        return MSG_TO_BEFORE_FROM
    if from_date < earliest or from_date > latest:
        return MSG_FROM_WINDOW
    if to_date > latest:
        return MSG_TO_WINDOW
    return None


def _check_hours(data, ctx):
    raw_from, raw_to = data.get("from_hour"), data.get("to_hour")
    from_hour = parse_hour(raw_from) if raw_from else None
    to_hour = parse_hour(raw_to) if raw_to else None
    if (raw_from and from_hour is None) or (raw_to and to_hour is None):
        return MSG_HOUR_FORMAT

    # 시간은 하루짜리 휴가일 때만 의미가 있다
    same_day = parse_date(data["from_date"]) == parse_date(data["to_date"])
    if same_day and from_hour and to_hour and to_hour <= from_hour:
        return MSG_HOUR_ORDER
    return None


def _check_reason(data, ctx):
    if not REASON_MIN_LENGTH <= len(data["reason"]) <= REASON_MAX_LENGTH:
        return MSG_REASON
    return None


Rule = Callable[[Mapping[str, Any], ValidationContext], Optional[str]]

VALIDATION_RULES: List[Tuple[str, Rule]] = [
    ("required", _check_required),
    ("emp_id", _check_emp_id),
    ("name", _check_name),
    ("email", _check_email),
    ("leave_type", _check_leave_type),
    ("dates", _check_dates),
    ("hours", _check_hours),
    ("reason", _check_reason),
]


def validate_leave_request(
    data: Mapping[str, Any],
    *,
    today: date,
    allowed_leave_types: Iterable[str],
    email_domain: Optional[str] = None,
) -> NormalizedLeaveRequest:
    """
    모든 규칙을 순서대로 돌리고 타입이 정리된 신청서를 돌려준다.
    처음 실패한 규칙에서 ValidationError (error.rule 에 규칙 이름).
    """
    ctx = ValidationContext(
        today=today,
        allowed_leave_types=list(allowed_leave_types),
        email_domain=email_domain,
    )
    for rule_name, rule in VALIDATION_RULES:
        message = rule(data, ctx)
        if message is not None:
            raise ValidationError(message, rule=rule_name)

    return NormalizedLeaveRequest(
        emp_id=data["emp_id"],
        name=data["name"],
        email=data["email"],
        leave_type=data["leave_type"],
        from_date=parse_date(data["from_date"]),
        to_date=parse_date(data["to_date"]),
        from_hour=parse_hour(data["from_hour"]) if data.get("from_hour") else None,
        to_hour=parse_hour(data["to_hour"]) if data.get("to_hour") else None,
        reason=data["reason"],
    )


def validate_emp_id(emp_id: str) -> str:
    """직원별 엔드포인트의 path 파라미터 검사"""
    if not emp_id or not EMP_ID_PATTERN.match(emp_id):
        raise ValidationError("Invalid Employee ID format", rule="emp_id")
    return emp_id


def parse_status(value: Optional[str]) -> str:
    """상태 변경 목표값. Approved / Rejected 만 허용"""
    if value not in TERMINAL_STATUSES:
        raise ValidationError(MSG_STATUS, rule="status")
    return value


def parse_status_filter(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if value not in {s.value for s in LeaveStatus}:
        raise ValidationError(MSG_STATUS, rule="status")
    return value
