"""AI-context policy: what each role may ask the AI assistant about.

The prompt filter is a plain keyword-substring check, not a semantic
classifier: "cost" also blocks "costume". That is accepted behavior.
"""
from dataclasses import dataclass, field
from typing import Optional

from api.roles import Role, RoleSet

ALL_RESTRICTED = "all"

FOREMAN_RESTRICTED = ("budget", "salary", "profit", "cost", "expense", "payment")


@dataclass(frozen=True)
class AIContext:
    role: Role
    allowed_data_types: tuple = ()
    max_complexity: str = "basic"  # basic | intermediate | advanced
    can_access_financials: bool = False
    can_access_worker_data: bool = False
    can_access_project_data: bool = False
    can_access_analytics: bool = False
    allowed_prompt_types: tuple = ()
    restricted_words: tuple = ()

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "allowed_data_types": list(self.allowed_data_types),
            "max_complexity": self.max_complexity,
            "can_access_financials": self.can_access_financials,
            "can_access_worker_data": self.can_access_worker_data,
            "can_access_project_data": self.can_access_project_data,
            "can_access_analytics": self.can_access_analytics,
            "allowed_prompt_types": list(self.allowed_prompt_types),
            "restricted_words": list(self.restricted_words),
        }


_CONTEXTS = {
    Role.admin: AIContext(
        role=Role.admin,
        allowed_data_types=("projects", "workers", "finances", "analytics", "clients", "reports"),
        max_complexity="advanced",
        can_access_financials=True,
        can_access_worker_data=True,
        can_access_project_data=True,
        can_access_analytics=True,
        allowed_prompt_types=("analysis", "recommendations", "reports", "predictions", "management"),
        restricted_words=(),
    ),
    Role.foreman: AIContext(
        role=Role.foreman,
        allowed_data_types=("projects", "workers", "attendance", "tasks", "basic_analytics"),
        max_complexity="intermediate",
        can_access_worker_data=True,
        can_access_project_data=True,
        allowed_prompt_types=("project_management", "worker_assignment", "scheduling"),
        restricted_words=FOREMAN_RESTRICTED,
    ),
    Role.worker: AIContext(
        role=Role.worker,
        allowed_data_types=("own_tasks", "own_schedule", "own_attendance"),
        max_complexity="basic",
        allowed_prompt_types=("task_help", "schedule_check"),
        restricted_words=FOREMAN_RESTRICTED + ("other_workers", "management"),
    ),
    Role.guest: AIContext(
        role=Role.guest,
        restricted_words=(ALL_RESTRICTED,),
    ),
}


def get_ai_context(role: Role) -> AIContext:
    return _CONTEXTS[Role(role)]


@dataclass(frozen=True)
class PromptFilterResult:
    allowed: bool
    filtered_prompt: Optional[str] = None
    reason: Optional[str] = None
    restricted_terms: tuple = field(default_factory=tuple)


def filter_prompt(context: AIContext, text: str, authenticated: bool = True) -> PromptFilterResult:
    """Reject prompts that mention a denylisted term; tag allowed ones with the role context."""
    if not authenticated:
        return PromptFilterResult(allowed=False, reason="Пользователь не авторизован")

    if ALL_RESTRICTED in context.restricted_words:
        return PromptFilterResult(
            allowed=False,
            reason="Доступ к ИИ ограничен для вашей роли",
            restricted_terms=(ALL_RESTRICTED,),
        )

    lowered = text.lower()
    found = tuple(word for word in context.restricted_words if word in lowered)
    if found:
        return PromptFilterResult(
            allowed=False,
            reason=f"Запрос содержит ограниченную информацию: {', '.join(found)}",
            restricted_terms=found,
        )

    suffix = (
        f"\n\n[SYSTEM CONTEXT: Role={context.role.value}, "
        f"Allowed data={', '.join(context.allowed_data_types)}]"
    )
    return PromptFilterResult(allowed=True, filtered_prompt=text + suffix)


BASE_SYSTEM_PROMPT = (
    "Ты помощник системы управления строительной компанией. "
    "Отвечай кратко, по-русски, используя только предоставленные данные."
)

ROLE_SYSTEM_PROMPTS = {
    Role.admin: (
        "Пользователь - администратор. Доступны все данные: проекты, работники, "
        "финансы, клиенты, аналитика и отчёты."
    ),
    Role.foreman: (
        "Пользователь - прораб. Доступны проекты, работники, посещаемость и задачи. "
        "Не раскрывай бюджеты, зарплаты, прибыль, расходы и платежи."
    ),
    Role.worker: (
        "Пользователь - работник. Отвечай только о его собственных задачах, "
        "графике и посещаемости. Не раскрывай данные других работников и финансы."
    ),
    Role.guest: "Пользователь не авторизован. Не раскрывай никаких данных.",
}


def system_prompt(context: AIContext, purpose: str = "") -> str:
    """Base prompt + role paragraph + purpose, blank-line separated."""
    parts = [BASE_SYSTEM_PROMPT, ROLE_SYSTEM_PROMPTS[context.role]]
    if purpose:
        parts.append(f"Задача: {purpose}")
    return "\n\n".join(parts)


# feature → roles any of which unlocks it; None means any authenticated user
AI_FEATURES = {
    "recommendations": (Role.admin, Role.foreman),
    "analytics": (Role.admin,),
    "reports": (Role.admin, Role.foreman),
    "chat": None,
    "telegram_bot": None,
    "project_analysis": (Role.admin,),
}


def can_access_ai_feature(role_set: RoleSet, feature: str, authenticated: bool = True) -> bool:
    if not authenticated or feature not in AI_FEATURES:
        return False
    required = AI_FEATURES[feature]
    if required is None:
        return True
    return any(role_set.has_role(role) for role in required)
