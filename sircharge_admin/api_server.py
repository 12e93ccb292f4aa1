"""
管理API（FastAPI）

/api/admin 以下の全ルートは admin ロールのIDトークンが必要。
サービス層の AdminError はステータスコード付きの {"error": ...} に変換する。

起動:
    uvicorn sircharge_admin.api_server:app --port 8000
"""

import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sircharge_admin import __version__
from sircharge_admin.auth import AuthenticatedUser, require_admin
from sircharge_admin.behavior_analytics import BehaviorAnalytics
from sircharge_admin.config import configure_logging, get_setting
from sircharge_admin.cost_alerts import CostAlerts
from sircharge_admin.errors import AdminError, BadRequestError, NotFoundError
from sircharge_admin.firestore_db import get_db
from sircharge_admin.notification_history import NotificationHistory
from sircharge_admin.performance_analytics import PerformanceAnalytics
from sircharge_admin.prompt_service import PromptService
from sircharge_admin.subscription_config import SubscriptionConfigService
from sircharge_admin.usage_analytics import UsageAnalytics
from sircharge_admin.user_admin import UserAdmin
from sircharge_admin.vocabulary_admin import VocabularyAdmin

logger = logging.getLogger(__name__)


# --- リクエストボディ ---

class AggregateRequest(BaseModel):
    date: Optional[str] = None


class PurgeRequest(BaseModel):
    olderThanDays: Any = None


class PromptConfigRequest(BaseModel):
    language: str
    version: str = "1.0.0"
    status: str = "draft"
    enabled: bool = False
    prompts: Dict[str, Any] = {}
    notes: Optional[str] = None


class PromptPatchRequest(BaseModel):
    language: Optional[str] = None
    promptId: Optional[str] = None
    updates: Optional[Dict[str, Any]] = None
    status: Optional[str] = None
    enabled: Optional[bool] = None
    notes: Optional[str] = None


class SubscriptionConfigPatch(BaseModel):
    tiers: Optional[Dict[str, Dict[str, Any]]] = None
    enableDynamicConfig: Optional[bool] = None
    changeNotes: Optional[str] = None


class UserPatchRequest(BaseModel):
    accountStatus: Optional[str] = None
    subscription: Optional[str] = None
    customLimits: Any = None


class UserSubscriptionPatch(BaseModel):
    tier: Optional[str] = None
    quotaOverrides: Optional[Dict[str, Any]] = None
    resetUsage: Optional[bool] = None


class VocabularyActionRequest(BaseModel):
    action: Optional[str] = None
    userId: Optional[str] = None
    suggestionId: Optional[str] = None
    suggestionIds: Optional[List[str]] = None


class AlertActionRequest(BaseModel):
    action: Optional[str] = None
    alertId: Optional[str] = None


class AlertConfigRequest(BaseModel):
    config: Optional[Dict[str, Any]] = None


# --- 依存関係 ---

def get_database():
    return get_db()


def admin_user(
    authorization: Optional[str] = Header(None),
    db=Depends(get_database),
) -> AuthenticatedUser:
    return require_admin(authorization, db)


router = APIRouter(prefix="/api/admin", dependencies=[Depends(admin_user)])


# --- 利用量 ---

@router.get("/usage")
def get_usage(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    group_by: str = Query("day", alias="groupBy"),
    service: Optional[str] = None,
    db=Depends(get_database),
):
    return UsageAnalytics(db).get_overview(start_date, end_date, group_by, service)


@router.get("/usage/{user_id}")
def get_user_usage(user_id: str, period: str = "month", db=Depends(get_database)):
    return UsageAnalytics(db).get_user_usage(user_id, period)


# --- パフォーマンス ---

@router.get("/performance")
def get_performance(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    mode: str = "aggregated",
    metric_type: Optional[str] = Query(None, alias="metricType"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db=Depends(get_database),
):
    return PerformanceAnalytics(db).get(start_date, end_date, mode, metric_type, user_id)


@router.post("/performance")
def aggregate_performance(body: AggregateRequest, db=Depends(get_database)):
    return PerformanceAnalytics(db).aggregate_day(body.date)


@router.delete("/performance")
def purge_performance(body: PurgeRequest, db=Depends(get_database)):
    return PerformanceAnalytics(db).purge_raw_metrics(body.olderThanDays)


# --- 行動分析 ---

@router.get("/behavior")
def get_behavior(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db=Depends(get_database),
):
    return BehaviorAnalytics(db).get_overview(start_date, end_date)


@router.get("/behavior/{user_id}")
def get_user_behavior(
    user_id: str,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db=Depends(get_database),
):
    return BehaviorAnalytics(db).get_user_behavior(user_id, start_date, end_date)


# --- プロンプト ---

@router.get("/prompts")
def list_prompts(language: Optional[str] = None, service: Optional[str] = None, db=Depends(get_database)):
    prompt_service = PromptService(db)
    return {
        "configs": prompt_service.list_configs(language, service),
        "services": prompt_service.get_services(),
        "languages": prompt_service.get_languages(),
    }


@router.get("/prompts/{service}")
def get_prompt(service: str, language: Optional[str] = None, db=Depends(get_database)):
    if not language:
        raise BadRequestError("Missing required query param: language")
    prompt_service = PromptService(db)
    config = prompt_service.get_config(language, service)
    versions = prompt_service.get_version_history(service, language, limit=10) if config else []
    return {"config": config, "versions": versions}


@router.post("/prompts/{service}", status_code=201)
def save_prompt(
    service: str,
    body: PromptConfigRequest,
    user: AuthenticatedUser = Depends(admin_user),
    db=Depends(get_database),
):
    config = body.model_dump(exclude={"notes"})
    config["service"] = service
    return {"config": PromptService(db).save_config(config, user.uid, body.notes)}


@router.patch("/prompts/{service}")
def update_prompt(
    service: str,
    body: PromptPatchRequest,
    user: AuthenticatedUser = Depends(admin_user),
    db=Depends(get_database),
):
    if not body.language:
        raise BadRequestError("Missing required field: language")

    prompt_service = PromptService(db)
    if prompt_service.get_config(body.language, service) is None:
        raise NotFoundError(f"Prompt config not found: {service}/{body.language}")

    if body.promptId and body.updates:
        return prompt_service.update_prompt(
            body.language, service, body.promptId, body.updates, user.uid, body.notes
        )
    if body.status is not None:
        return {"config": prompt_service.set_status(body.language, service, body.status, user.uid)}
    if body.enabled is not None:
        return {"config": prompt_service.set_enabled(body.language, service, body.enabled, user.uid)}

    raise BadRequestError("No updates provided. Specify promptId+updates, status, or enabled.")


@router.delete("/prompts/{service}")
def delete_prompt(service: str, language: Optional[str] = None, db=Depends(get_database)):
    if not language:
        raise BadRequestError("Missing required query param: language")
    PromptService(db).delete_config(language, service)
    return {"success": True}


# --- サブスクリプション ---

@router.get("/subscriptions")
def get_subscriptions(db=Depends(get_database)):
    return SubscriptionConfigService(db).get_config()


@router.post("/subscriptions", status_code=201)
def initialize_subscriptions(user: AuthenticatedUser = Depends(admin_user), db=Depends(get_database)):
    return {"config": SubscriptionConfigService(db).initialize(user)}


@router.patch("/subscriptions")
def update_subscriptions(
    body: SubscriptionConfigPatch,
    user: AuthenticatedUser = Depends(admin_user),
    db=Depends(get_database),
):
    config = SubscriptionConfigService(db).update(
        user,
        tiers=body.tiers,
        enable_dynamic_config=body.enableDynamicConfig,
        change_notes=body.changeNotes,
    )
    return {"config": config}


# --- ユーザー ---

@router.get("/users")
def list_users(page: int = 1, limit: int = 50, search: Optional[str] = None, db=Depends(get_database)):
    return UserAdmin(db).list_users(page, limit, search)


@router.get("/users/{user_id}")
def get_user(user_id: str, db=Depends(get_database)):
    return UserAdmin(db).get_user(user_id)


@router.patch("/users/{user_id}")
def update_user(
    user_id: str,
    body: UserPatchRequest,
    user: AuthenticatedUser = Depends(admin_user),
    db=Depends(get_database),
):
    return UserAdmin(db).update_user(user_id, body.model_dump(exclude_unset=True), user)


@router.get("/users/{user_id}/subscription")
def get_user_subscription(user_id: str, db=Depends(get_database)):
    return SubscriptionConfigService(db).get_user_subscription(user_id)


@router.patch("/users/{user_id}/subscription")
def update_user_subscription(
    user_id: str,
    body: UserSubscriptionPatch,
    user: AuthenticatedUser = Depends(admin_user),
    db=Depends(get_database),
):
    # quotaOverrides: null（解除）と未指定を区別する
    return SubscriptionConfigService(db).update_user_subscription(
        user_id, body.model_dump(exclude_unset=True), user
    )


# --- 通知履歴 ---

@router.get("/notifications")
def list_notifications(
    user_id: Optional[str] = Query(None, alias="userId"),
    notification_type: Optional[str] = Query(None, alias="type"),
    status: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    limit: int = 100,
    db=Depends(get_database),
):
    return NotificationHistory(db).get_history(
        user_id=user_id,
        notification_type=notification_type,
        status=status,
        start_date=start_date,
        limit=limit,
    )


# --- 語彙候補 ---

@router.get("/vocabulary/suggestions")
def list_vocabulary_suggestions(
    user_id: Optional[str] = Query(None, alias="userId"),
    limit: int = 50,
    db=Depends(get_database),
):
    return VocabularyAdmin(db).list_suggestions(user_id, limit)


@router.post("/vocabulary/suggestions")
def apply_vocabulary_action(body: VocabularyActionRequest, db=Depends(get_database)):
    return VocabularyAdmin(db).apply_action(body.model_dump(exclude_none=True))


# --- コストアラート ---

@router.get("/alerts")
def list_alerts(
    status: Optional[str] = None,
    limit: int = 50,
    include_config: bool = Query(False, alias="includeConfig"),
    db=Depends(get_database),
):
    return CostAlerts(db).list_alerts(status, limit, include_config)


@router.post("/alerts")
def resolve_alert(
    body: AlertActionRequest,
    user: AuthenticatedUser = Depends(admin_user),
    db=Depends(get_database),
):
    return CostAlerts(db).resolve(body.model_dump(exclude_none=True), user)


@router.put("/alerts")
def update_alert_config(
    body: AlertConfigRequest,
    user: AuthenticatedUser = Depends(admin_user),
    db=Depends(get_database),
):
    return CostAlerts(db).update_config(body.config, user)


# --- アプリ本体 ---

app = FastAPI(title="SirCharge Admin API", version=__version__)
app.include_router(router)


@app.exception_handler(AdminError)
async def handle_admin_error(request: Request, exc: AdminError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'Invalid request')}" if location else "Invalid request body"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception(f"[API] {request.method} {request.url.path} で予期しないエラー")
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


def main():
    configure_logging()
    host = get_setting("api_host", "0.0.0.0")
    port = int(get_setting("api_port", 8000))
    logger.info(f"管理APIを起動します: {host}:{port}")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
