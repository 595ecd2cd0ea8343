"""
用户管理接口

每个接口都通过 require_permission 授权，写操作交给 UserLifecycleService，
由它负责事务和审计。
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pentest_admin.api.deps import (
    get_audit_context,
    get_db_session,
    get_user_service,
    require_permission,
)
from pentest_admin.api.routes.audit import parse_date_param
from pentest_admin.auth.permissions import PERMISSIONS
from pentest_admin.exceptions import ValidationError
from pentest_admin.models import User
from pentest_admin.schemas.audit import UserAuditLogsResponse
from pentest_admin.schemas.user import (
    PasswordResetResponse,
    RoleChanges,
    UserCreate,
    UserCreateResponse,
    UserDetail,
    UserListResponse,
    UserStatusResponse,
    UserUpdate,
    UserUpdateResponse,
)
from pentest_admin.services.audit import USER_DEFAULT_LIMIT, query_user_audit_logs
from pentest_admin.services.user import (
    USER_LIST_DEFAULT_LIMIT,
    AuditContext,
    CreateUserData,
    UpdateUserProfileData,
    UpdateUserRolesData,
    UserLifecycleService,
    get_user_with_details,
    list_users,
)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=UserListResponse)
async def list_users_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(USER_LIST_DEFAULT_LIMIT, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = Query(None),
    role_id: int | None = Query(None),
    _: User = Depends(require_permission(PERMISSIONS.USER_READ)),
    db: AsyncSession = Depends(get_db_session),
) -> UserListResponse:
    """用户列表"""
    result = await list_users(
        db, page=page, limit=limit, search=search, is_active=is_active, role_id=role_id
    )
    return UserListResponse.model_validate(result)


@router.post("", response_model=UserCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreate,
    admin: User = Depends(require_permission(PERMISSIONS.USER_CREATE)),
    service: UserLifecycleService = Depends(get_user_service),
    ctx: AuditContext = Depends(get_audit_context),
) -> UserCreateResponse:
    """
    创建用户

    临时密码仅在此响应中返回一次，需由管理员线下告知用户。
    """
    created = await service.create_user(
        admin.id,
        CreateUserData(
            email=data.email,
            username=data.username,
            full_name=data.full_name,
            role_ids=data.role_ids,
        ),
        ctx,
    )
    return UserCreateResponse.model_validate(created, from_attributes=True)


@router.get("/{user_id}", response_model=UserDetail)
async def get_user(
    user_id: int,
    _: User = Depends(require_permission(PERMISSIONS.USER_READ)),
    db: AsyncSession = Depends(get_db_session),
) -> UserDetail:
    """用户详情（角色、权限）"""
    return UserDetail.model_validate(await get_user_with_details(db, user_id))


@router.patch("/{user_id}", response_model=UserUpdateResponse)
async def update_user(
    user_id: int,
    data: UserUpdate,
    admin: User = Depends(require_permission(PERMISSIONS.USER_UPDATE)),
    service: UserLifecycleService = Depends(get_user_service),
    ctx: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db_session),
) -> UserUpdateResponse:
    """
    修改用户资料和/或角色

    资料和角色分别在各自的事务中处理，先资料后角色。
    """
    profile_changes: dict = {}
    if any(v is not None for v in (data.email, data.username, data.full_name)):
        profile = await service.update_user_profile(
            admin.id,
            user_id,
            UpdateUserProfileData(email=data.email, username=data.username, full_name=data.full_name),
            ctx,
        )
        profile_changes = profile.changes

    role_changes = None
    if data.role_ids is not None:
        result = await service.update_user_roles(
            admin.id,
            UpdateUserRolesData(user_id=user_id, role_ids=data.role_ids, reason=data.reason),
            ctx,
        )
        role_changes = RoleChanges.model_validate(result, from_attributes=True)

    # 读会话可能在写事务之前已打开快照，重新读取最新状态
    await db.rollback()
    return UserUpdateResponse(
        user=UserDetail.model_validate(await get_user_with_details(db, user_id)),
        profile_changes=profile_changes,
        role_changes=role_changes,
    )


@router.delete("/{user_id}", response_model=UserStatusResponse)
async def change_user_status(
    user_id: int,
    action: str = Query(..., description="deactivate | reactivate"),
    reason: str | None = Query(None, max_length=500),
    admin: User = Depends(require_permission(PERMISSIONS.USER_DELETE)),
    service: UserLifecycleService = Depends(get_user_service),
    ctx: AuditContext = Depends(get_audit_context),
) -> UserStatusResponse:
    """停用或重新启用用户（不删除数据）"""
    if action == "deactivate":
        if user_id == admin.id:
            raise ValidationError("Cannot deactivate yourself", {"user_id": "Cannot deactivate yourself"})
        result = await service.deactivate_user(admin.id, user_id, reason, ctx)
    elif action == "reactivate":
        result = await service.reactivate_user(admin.id, user_id, reason, ctx)
    else:
        raise ValidationError(
            "action must be deactivate or reactivate",
            {"action": "action must be deactivate or reactivate"},
        )
    return UserStatusResponse.model_validate(result, from_attributes=True)


@router.post("/{user_id}/reset-password", response_model=PasswordResetResponse)
async def reset_password(
    user_id: int,
    admin: User = Depends(require_permission(PERMISSIONS.USER_UPDATE)),
    service: UserLifecycleService = Depends(get_user_service),
    ctx: AuditContext = Depends(get_audit_context),
) -> PasswordResetResponse:
    """重置密码，临时密码仅在此响应中返回一次"""
    result = await service.reset_password(admin.id, user_id, ctx)
    return PasswordResetResponse.model_validate(result, from_attributes=True)


@router.get("/{user_id}/audit-logs", response_model=UserAuditLogsResponse)
async def user_audit_logs(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(USER_DEFAULT_LIMIT, ge=1),
    action: str | None = Query(None),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    _: User = Depends(require_permission(PERMISSIONS.SYSTEM_AUDIT)),
    db: AsyncSession = Depends(get_db_session),
) -> UserAuditLogsResponse:
    """某个用户作为操作者或被操作对象的审计日志，每页最多 100 条"""
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date")
    if start and end and start > end:
        raise ValidationError("start_date must not be after end_date",
                              {"start_date": "start_date must not be after end_date"})
    result = await query_user_audit_logs(
        db, user_id, page=page, limit=limit, action=action, start_date=start, end_date=end
    )
    return UserAuditLogsResponse.model_validate(result)
