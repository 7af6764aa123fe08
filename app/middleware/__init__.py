"""
Middleware package for the storefront pricing API.
"""
from .auth import require_user, require_admin, get_user_id_from_request
