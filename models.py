"""
Pydantic models shared by the services and the Streamlit views.

Field names are Python style; the aliases are the camelCase keys used in the
Gemini JSON replies and in the persisted configuration record.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ChartType = Literal["area", "line", "bar", "pie", "composed"]
CHART_TYPES = ("area", "line", "bar", "pie", "composed")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class KPI(_Frozen):
    label: str
    value: str
    trend: float
    trend_label: str = Field(alias="trendLabel")

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, value):
        # The model sometimes answers with a bare number for the display value.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class ChartPoint(_Frozen):
    name: str
    value: float
    value2: Optional[float] = None


class Actions(_Frozen):
    short_term: List[str] = Field(alias="shortTerm")
    mid_term: List[str] = Field(alias="midTerm")


class AnalysisReport(_Frozen):
    category_id: str = Field(alias="categoryId")
    summary: str
    kpis: List[KPI]
    chart_data: List[ChartPoint] = Field(alias="chartData")
    chart_type: ChartType = Field(alias="chartType")
    insights: List[str]
    actions: Actions

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ConversationTurn(_Frozen):
    id: str
    question: str
    answer: str
    created_at: datetime

    @classmethod
    def create(cls, question: str, answer: str) -> "ConversationTurn":
        return cls(
            id=uuid.uuid4().hex,
            question=question,
            answer=answer,
            created_at=datetime.now(timezone.utc),
        )


class AppConfig(_Frozen):
    is_configured: bool = Field(default=False, alias="isConfigured")
    data_file_name: Optional[str] = Field(default=None, alias="excelFileName")
    data_file_payload: Optional[str] = Field(default=None, alias="uploadedFileData")
    data_file_media_type: Optional[str] = Field(default=None, alias="uploadedFileMimeType")
    sheet_url: Optional[str] = Field(default=None, alias="googleSheetUrl")
    notebook_url: Optional[str] = Field(default=None, alias="notebookLmUrl")
    last_verified_at: Optional[datetime] = Field(default=None, alias="lastVerified")
    api_key: Optional[str] = Field(default=None, alias="geminiApiKey")

    def merged(self, **updates) -> "AppConfig":
        """Returns a new config with `updates` applied on top of this one."""
        unknown = set(updates) - set(AppConfig.model_fields)
        if unknown:
            raise TypeError(f"Unknown configuration fields: {sorted(unknown)}")
        data = self.model_dump()
        data.update(updates)
        return AppConfig.model_validate(data)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
