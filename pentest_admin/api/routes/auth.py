"""
认证接口

登录/登出/会话/权限查询/修改密码。这些接口在门禁中间件中是公开路径，
需要登录的接口自己通过依赖判断；临时密码未修改的用户也可以访问。
"""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pentest_admin.api.deps import (
    get_audit_context,
    get_auth_service,
    get_current_user_id,
    get_db_session,
    get_session_manager_dep,
    require_user,
)
from pentest_admin.auth.permissions import PermissionResolver
from pentest_admin.auth.session import SessionManager
from pentest_admin.exceptions import ValidationError
from pentest_admin.models import User
from pentest_admin.schemas.auth import (
    ChangePasswordRequest,
    CheckPermissionsRequest,
    CheckPermissionsResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PermissionCheckResult,
    PermissionQuery,
    PermissionsResponse,
    SessionResponse,
    UserPublic,
)
from pentest_admin.services.auth import AuthService, get_current_user
from pentest_admin.services.user import AuditContext

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    manager: SessionManager = Depends(get_session_manager_dep),
    ctx: AuditContext = Depends(get_audit_context),
) -> LoginResponse:
    """
    用户名或邮箱登录

    成功后写入会话 Cookie；requires_password_change 为 true 时前端应跳转改密页面。
    """
    result = await service.login(data.username, data.password, ctx)
    manager.set_cookie(response, manager.issue(result.user["id"]))
    return LoginResponse(
        user=UserPublic.model_validate(result.user),
        requires_password_change=result.requires_password_change,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    user_id: int | None = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
    manager: SessionManager = Depends(get_session_manager_dep),
    ctx: AuditContext = Depends(get_audit_context),
) -> MessageResponse:
    """登出，未登录时调用也返回成功"""
    await service.logout(user_id, ctx)
    manager.clear(response)
    return MessageResponse(message="Logged out")


@router.get("/session", response_model=SessionResponse)
async def get_session(
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db_session),
) -> SessionResponse:
    """当前会话信息，未登录返回 authenticated=false"""
    user = await get_current_user(db, user_id)
    if user is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(
        authenticated=True,
        user=UserPublic.model_validate(user),
        requires_password_change=user.must_change_password,
    )


@router.get("/permissions", response_model=PermissionsResponse)
async def list_my_permissions(
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> PermissionsResponse:
    """当前用户的有效权限列表"""
    permissions = await PermissionResolver(db).get_user_permissions(user.id)
    return PermissionsResponse(user_id=user.id, permissions=permissions)


@router.post("/permissions")
async def query_permissions(
    query: PermissionQuery,
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db_session),
) -> PermissionCheckResult | CheckPermissionsResponse:
    """
    单个或批量权限查询

    未登录时不报错，所有结果为 false。
    """
    resolver = PermissionResolver(db)
    if query.type == "permission":
        if not query.permission:
            raise ValidationError("permission is required", {"permission": "Required"})
        granted = await resolver.check_permission(user_id, query.permission)
        return PermissionCheckResult(permission=query.permission, granted=granted)

    if not query.permissions:
        raise ValidationError("permissions is required", {"permissions": "Required"})
    results = await resolver.check_multiple_permissions(user_id, query.permissions)
    return CheckPermissionsResponse(user_id=user_id, results=results)


@router.post("/check-permissions", response_model=CheckPermissionsResponse)
async def check_permissions(
    data: CheckPermissionsRequest,
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db_session),
) -> CheckPermissionsResponse:
    """批量权限检查，最多 20 个，每个权限名必须是 resource.action 形式"""
    results = await PermissionResolver(db).check_multiple_permissions(user_id, data.permissions)
    return CheckPermissionsResponse(user_id=user_id, results=results)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: ChangePasswordRequest,
    user: User = Depends(require_user),
    service: AuthService = Depends(get_auth_service),
    ctx: AuditContext = Depends(get_audit_context),
) -> MessageResponse:
    """修改自己的密码，完成后解除强制改密限制"""
    await service.change_password(user.id, data.current_password, data.new_password, ctx)
    return MessageResponse(message="Password changed")
