from fastapi_limiter.depends import RateLimiter

from .auth import get_key_by_user_id_or_ip

write_limiter = RateLimiter(times=30, minutes=1, identifier=get_key_by_user_id_or_ip)
read_limiter = RateLimiter(times=120, minutes=1, identifier=get_key_by_user_id_or_ip)
payment_limiter = RateLimiter(times=10, minutes=1, identifier=get_key_by_user_id_or_ip)
