"""
RBAC 初始化数据

权限目录、内置角色及其权限、初始管理员。重复执行是安全的：
已存在的权限/角色/分配不会被修改。
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pentest_admin.auth.password import hash_password, validate_password
from pentest_admin.auth.permissions import PERMISSIONS, ROLES
from pentest_admin.db.session import transaction
from pentest_admin.exceptions import ValidationError
from pentest_admin.infra.logging import get_logger
from pentest_admin.models import Permission, Role, RolePermission, User, UserRole
from pentest_admin.services.audit import record_audit_log

logger = get_logger(__name__)

P = PERMISSIONS

# (name, display_name, description, category)
PERMISSION_CATALOG: list[tuple[str, str, str, str]] = [
    (P.PROJECT_CREATE, "创建项目", "创建新的渗透测试项目", "project"),
    (P.PROJECT_READ, "查看项目", "查看项目信息和进度", "project"),
    (P.PROJECT_UPDATE, "编辑项目", "修改项目信息和配置", "project"),
    (P.PROJECT_DELETE, "删除项目", "删除项目及其相关数据", "project"),
    (P.PROJECT_ASSIGN_USERS, "分配项目成员", "为项目分配测试人员", "project"),
    (P.VULNERABILITY_CREATE, "创建漏洞", "记录新发现的漏洞", "vulnerability"),
    (P.VULNERABILITY_READ, "查看漏洞", "查看漏洞详情", "vulnerability"),
    (P.VULNERABILITY_UPDATE, "编辑漏洞", "修改漏洞信息", "vulnerability"),
    (P.VULNERABILITY_DELETE, "删除漏洞", "删除漏洞记录", "vulnerability"),
    (P.VULNERABILITY_APPROVE, "审核漏洞", "审核并确认漏洞", "vulnerability"),
    (P.REPORT_CREATE, "创建报告", "生成测试报告", "report"),
    (P.REPORT_READ, "查看报告", "查看测试报告", "report"),
    (P.REPORT_UPDATE, "编辑报告", "修改报告内容", "report"),
    (P.REPORT_EXPORT, "导出报告", "导出报告文件", "report"),
    (P.REPORT_PUBLISH, "发布报告", "向客户发布报告", "report"),
    (P.USER_CREATE, "创建用户", "创建新用户账号", "user"),
    (P.USER_READ, "查看用户", "查看用户信息", "user"),
    (P.USER_UPDATE, "编辑用户", "修改用户信息、重置密码", "user"),
    (P.USER_DELETE, "停用用户", "停用或启用用户账号", "user"),
    (P.USER_MANAGE, "管理用户", "查看可分配角色等用户管理功能", "user"),
    (P.USER_MANAGE_ROLES, "管理角色", "为用户分配或移除角色", "user"),
    (P.SYSTEM_AUDIT, "查看审计日志", "查看系统审计日志", "system"),
    (P.SYSTEM_SETTINGS, "系统设置", "修改系统配置", "system"),
]

# (name, display_name, description, is_system)
ROLE_CATALOG: list[tuple[str, str, str, bool]] = [
    (ROLES.SYSTEM_ADMIN, "系统管理员", "系统超级用户，拥有所有权限，负责系统维护和用户管理", True),
    (ROLES.SECURITY_MANAGER, "安全经理", "安全团队负责人，负责项目管理、团队协调和质量把控", True),
    (ROLES.PENETRATION_TESTER, "渗透测试工程师", "执行渗透测试，记录漏洞，编写技术报告", False),
    (ROLES.DEVELOPER, "开发者", "系统开发和维护人员，拥有调试和只读权限", False),
]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    ROLES.SYSTEM_ADMIN: [name for name, *_ in PERMISSION_CATALOG],
    ROLES.SECURITY_MANAGER: [
        P.PROJECT_CREATE, P.PROJECT_READ, P.PROJECT_UPDATE, P.PROJECT_DELETE,
        P.PROJECT_ASSIGN_USERS, P.VULNERABILITY_READ, P.VULNERABILITY_APPROVE,
        P.REPORT_CREATE, P.REPORT_READ, P.REPORT_UPDATE, P.REPORT_EXPORT,
        P.REPORT_PUBLISH, P.USER_READ,
    ],
    ROLES.PENETRATION_TESTER: [
        P.PROJECT_READ, P.VULNERABILITY_CREATE, P.VULNERABILITY_READ,
        P.VULNERABILITY_UPDATE, P.VULNERABILITY_DELETE, P.REPORT_CREATE,
        P.REPORT_READ, P.REPORT_UPDATE,
    ],
    ROLES.DEVELOPER: [P.PROJECT_READ, P.VULNERABILITY_READ, P.REPORT_READ, P.SYSTEM_AUDIT],
}

ADMIN_EMAIL = "admin@pentest.local"
ADMIN_USERNAME = "admin"


@dataclass
class SeedSummary:
    permissions: int
    roles: int
    admin_user_id: int
    admin_created: bool


async def seed_rbac(
    session_factory: async_sessionmaker[AsyncSession],
    admin_password: str,
    *,
    admin_email: str = ADMIN_EMAIL,
    admin_username: str = ADMIN_USERNAME,
) -> SeedSummary:
    """
    写入权限、角色、角色权限和初始管理员，记录 system_initialize 审计

    Raises:
        ValidationError: 管理员密码不满足复杂度要求
    """
    is_valid, messages = validate_password(admin_password)
    if not is_valid:
        raise ValidationError("Admin password does not meet complexity requirements",
                              {"admin_password": "; ".join(messages)})

    async with transaction(session_factory) as tx:
        existing = {p.name: p for p in (await tx.execute(select(Permission))).scalars().all()}
        for name, display_name, description, category in PERMISSION_CATALOG:
            if name not in existing:
                perm = Permission(name=name, display_name=display_name,
                                  description=description, category=category)
                tx.add(perm)
                existing[name] = perm

        roles = {r.name: r for r in (await tx.execute(select(Role))).scalars().all()}
        for name, display_name, description, is_system in ROLE_CATALOG:
            if name not in roles:
                role = Role(name=name, display_name=display_name,
                            description=description, is_system=is_system)
                tx.add(role)
                roles[name] = role
        await tx.flush()

        assigned = set(
            (await tx.execute(select(RolePermission.role_id, RolePermission.permission_id))).all()
        )
        for role_name, permission_names in ROLE_PERMISSIONS.items():
            role_id = roles[role_name].id
            for permission_name in permission_names:
                pair = (role_id, existing[permission_name].id)
                if pair not in assigned:
                    tx.add(RolePermission(role_id=pair[0], permission_id=pair[1]))
                    assigned.add(pair)

        admin = (
            await tx.execute(select(User).where(User.email == admin_email))
        ).scalar_one_or_none()
        admin_created = admin is None
        if admin_created:
            admin = User(
                email=admin_email,
                username=admin_username,
                full_name="系统管理员",
                password_hash=await hash_password(admin_password),
                is_active=True,
            )
            tx.add(admin)
            await tx.flush()

        admin_role_id = roles[ROLES.SYSTEM_ADMIN].id
        has_admin_role = (
            await tx.execute(
                select(UserRole).where(UserRole.user_id == admin.id, UserRole.role_id == admin_role_id)
            )
        ).scalar_one_or_none()
        if has_admin_role is None:
            tx.add(UserRole(user_id=admin.id, role_id=admin_role_id, assigned_by=admin.id))

        await record_audit_log(
            tx,
            user_id=admin.id,
            action="system_initialize",
            resource_type="system",
            changes={
                "permissions": len(PERMISSION_CATALOG),
                "roles": len(ROLE_CATALOG),
                "admin_created": admin_created,
                "message": "RBAC系统初始化完成",
            },
            ip_address="127.0.0.1",
            user_agent="seed_rbac",
        )
        await tx.flush()
        summary = SeedSummary(
            permissions=len(PERMISSION_CATALOG),
            roles=len(ROLE_CATALOG),
            admin_user_id=admin.id,
            admin_created=admin_created,
        )

    logger.info(
        f"RBAC 初始化完成: {summary.permissions} 个权限, {summary.roles} 个角色",
        extra={"admin_user_id": summary.admin_user_id},
    )
    return summary
