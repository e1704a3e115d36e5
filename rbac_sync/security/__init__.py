# Security module
from rbac_sync.security.auth import (
    create_access_token, decode_token, get_current_user_id,
    get_policy_store, require_api_permission,
)

__all__ = [
    'create_access_token', 'decode_token', 'get_current_user_id',
    'get_policy_store', 'require_api_permission',
]
