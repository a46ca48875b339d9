from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.settings import settings


def client_and_loan_key(request: Request) -> str:
    """Budget per caller per application link, so one borrower cannot drain another's SMS quota."""
    loan_id = request.path_params.get("loan_id", "-")
    return f"{get_remote_address(request)}:{loan_id}"


limiter = Limiter(
    key_func=get_remote_address,
    key_prefix=settings.redis_key_prefix,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
)

# OTP sends cost money per message.
PHONE_SEND_LIMIT = "5/minute"
