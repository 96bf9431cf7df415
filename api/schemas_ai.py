"""AI relay, provider, report-export and notification schemas."""
from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ProviderType = Literal["openai", "anthropic", "deepseek", "google", "azure"]


class ChatQueryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1, max_length=4000)
    system_prompt: Optional[str] = Field(None, alias="systemPrompt", max_length=4000)
    context: dict[str, Any] | None = None


class ChatQueryOut(BaseModel):
    response: str
    filtered: bool = False
    truncated: bool = False
    preview: str
    provider: Optional[str] = None
    model: Optional[str] = None
    restricted_terms: list[str] = []


class ProviderCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    provider_type: ProviderType
    api_endpoint: Optional[str] = Field(None, max_length=500)
    model_name: Optional[str] = Field(None, max_length=100)
    priority: int = Field(1, ge=1)
    is_active: bool = True
    max_tokens: Optional[int] = Field(1000, ge=1, le=32000)
    temperature: Optional[float] = Field(0.7, ge=0, le=2)


class ProviderUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    api_endpoint: Optional[str] = Field(None, max_length=500)
    model_name: Optional[str] = Field(None, max_length=100)
    priority: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    max_tokens: Optional[int] = Field(None, ge=1, le=32000)
    temperature: Optional[float] = Field(None, ge=0, le=2)


class ProviderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    provider_type: str
    api_endpoint: Optional[str] = None
    model_name: Optional[str] = None
    priority: int
    is_active: bool
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    last_status: Optional[str] = None
    last_tested_at: Optional[datetime] = None
    last_response_time_ms: Optional[int] = None
    last_error: Optional[str] = None


class ProviderTestIn(BaseModel):
    provider_id: Optional[int] = None
    provider_type: ProviderType
    api_endpoint: Optional[str] = None
    model_name: Optional[str] = None


class ReportFilters(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    project_id: Optional[int] = Field(None, alias="projectId")


class ReportExportIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_type: str = Field(..., alias="reportType")
    format: str = "csv"
    filters: ReportFilters = ReportFilters()


class NotifyIn(BaseModel):
    """Outbound Telegram notification request."""
    action: str
    data: dict[str, Any] = {}
    chat_id: Optional[str] = None
