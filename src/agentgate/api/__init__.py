# HTTP integration for admission control.

from .middleware import AdmissionMiddleware, get_client_ip, rate_limit_headers

__all__ = ["AdmissionMiddleware", "get_client_ip", "rate_limit_headers"]
