"""
Capability gate for inventory operations

Authentication happens upstream; the gateway forwards the caller's role in a
header. These checks run before a service is invoked. Services themselves
never check permissions.
"""
from typing import Callable, Dict, List, Optional

from fastapi import HTTPException, Request, status

from app.core.config import Settings, get_settings
from app.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)


class Capability:
    """Capability constants"""
    BLOCK_REGISTER = "block:register"
    BLOCK_EDIT = "block:edit"
    BLOCK_REMOVE = "block:remove"
    BLOCK_DISPATCH = "block:dispatch"


# Role group -> capabilities; role names come from settings.role_map
GROUP_CAPABILITIES: Dict[str, List[str]] = {
    "admin": [
        Capability.BLOCK_REGISTER,
        Capability.BLOCK_EDIT,
        Capability.BLOCK_REMOVE,
        Capability.BLOCK_DISPATCH,
    ],
    "dispatcher": [
        Capability.BLOCK_DISPATCH,
    ],
}


def has_capability(role: Optional[str], capability: str, settings: Optional[Settings] = None) -> bool:
    """
    Check whether a role carries a capability

    Args:
        role: Role asserted by the auth gateway (case-insensitive)
        capability: Capability string (e.g., "block:dispatch")

    Returns:
        True if any role group containing the role grants the capability
    """
    if not role:
        return False
    settings = settings or get_settings()
    role = role.strip().lower()
    for group, roles in settings.role_map.items():
        if role in roles and capability in GROUP_CAPABILITIES.get(group, []):
            return True
    return False


def require_capability(capability: str) -> Callable[[Request], None]:
    """
    Dependency factory gating a route on a capability

    Usage:
        @router.post("/dispatch", dependencies=[Depends(require_capability(Capability.BLOCK_DISPATCH))])
    """
    def dependency(request: Request) -> None:
        settings = get_settings()
        if not settings.enforce_roles:
            return
        role = request.headers.get(settings.role_header)
        if not has_capability(role, capability, settings):
            logger.warning(
                "Capability check failed",
                extra={"role": role, "capability": capability, "path": request.url.path}
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied"
            )

    return dependency
