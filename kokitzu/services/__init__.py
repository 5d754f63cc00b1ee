"""External collaborators: on-chain gateway, price oracle and the shared RPC budget."""

from .rate_limit import RateLimited, RateLimiter, is_rate_limit_error

__all__ = ["RateLimited", "RateLimiter", "is_rate_limit_error"]
