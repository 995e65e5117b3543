from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, RootModel, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

# ---------------------------------------------------------------------------
# Base model / shared field types
# ---------------------------------------------------------------------------


class WireModel(BaseModel):
    """Base for every flow contract.

    Python attributes are snake_case; the JSON boundary is camelCase.
    Unknown keys are ignored so structurally compatible values pass through.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>[A-Za-z0-9+/=\s]+)$")


def _check_data_uri(value: str) -> str:
    m = _DATA_URI_RE.match(value or "")
    if not m:
        raise ValueError("expected a data URI: data:<mime-type>;base64,<payload>")
    try:
        base64.b64decode(m.group("payload"), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"data URI payload is not base64: {e}") from e
    return value


DataUri = Annotated[str, AfterValidator(_check_data_uri)]

_WEB_URL_RE = re.compile(r"^https?://[^\s/?#]+\S*$", re.IGNORECASE)


def _check_web_url(value: str) -> str:
    if not _WEB_URL_RE.match(value or ""):
        raise ValueError("expected an http(s) URL")
    return value


WebUrl = Annotated[str, AfterValidator(_check_web_url)]


@dataclass(frozen=True)
class MediaPart:
    """Binary media crossing the model boundary (parsed data URI)."""

    content_type: str
    data: str  # base64 payload

    @property
    def url(self) -> str:
        return f"data:{self.content_type};base64,{self.data}"

    @classmethod
    def from_data_uri(cls, value: str) -> "MediaPart":
        m = _DATA_URI_RE.match(value or "")
        if not m:
            raise ValueError("expected a data URI: data:<mime-type>;base64,<payload>")
        return cls(content_type=m.group("mime"), data=re.sub(r"\s+", "", m.group("payload")))


# ---------------------------------------------------------------------------
# Model invocation
# ---------------------------------------------------------------------------

ResponseModality = Literal["TEXT", "IMAGE"]


class GenerationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    response_modalities: List[ResponseModality] = Field(default_factory=lambda: ["TEXT"])
    max_output_tokens: Optional[int] = Field(default=None, gt=0)

    def wants_image(self) -> bool:
        return "IMAGE" in self.response_modalities


@dataclass(frozen=True)
class ModelRequest:
    prompt: str
    model: str
    media: tuple[MediaPart, ...] = ()
    config: GenerationConfig | None = None
    # JSON schema of the expected output; when set, backends are asked for JSON.
    json_schema: Dict[str, Any] | None = None


@dataclass(frozen=True)
class RawResponse:
    """Unvalidated backend answer. Exactly one of text/data/media is meaningful."""

    model: str
    text: str | None = None
    data: Any = None
    media: MediaPart | None = None

    def is_empty(self) -> bool:
        return not (self.text and self.text.strip()) and self.data is None and self.media is None


# ---------------------------------------------------------------------------
# Prompt records (document store)
# ---------------------------------------------------------------------------

PromptScope = Literal["general", "exclusive"]


class PromptMetadata(WireModel):
    scope: Optional[str] = None
    recommended_model: Optional[str] = None
    constraints: Optional[str] = None
    scenario: Optional[str] = None


def _check_tenant_scope(scope: Optional[str], tenant_id: Optional[str]) -> None:
    if tenant_id and scope == "general":
        raise ValueError("tenantId is only allowed for exclusive prompts")


class PromptRecord(WireModel):
    id: str
    name: str = "未命名"
    scope: PromptScope = "general"
    tenant_id: Optional[str] = None
    expert_id: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    user_prompt: str = ""
    context: Optional[str] = None
    negative_prompt: Optional[str] = None
    metadata: Optional[PromptMetadata] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    archived: bool = False

    @model_validator(mode="after")
    def _tenant_only_when_exclusive(self) -> "PromptRecord":
        _check_tenant_scope(self.scope, self.tenant_id)
        return self


class PromptList(RootModel[List[PromptRecord]]):
    """Ordered prompt listing (newest update first)."""


class ListPromptsInput(WireModel):
    pass


class SavePromptInput(WireModel):
    """Full or partial prompt record. Only supplied fields are written."""

    id: Optional[str] = None
    name: Optional[str] = None
    scope: Optional[PromptScope] = None
    tenant_id: Optional[str] = None
    expert_id: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    context: Optional[str] = None
    negative_prompt: Optional[str] = None
    metadata: Optional[PromptMetadata] = None

    @field_validator("name", "scope", "user_prompt", mode="before")
    @classmethod
    def _not_null(cls, v: Any) -> Any:
        # Omit a field to leave it unchanged; null would erase a required value.
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

    @model_validator(mode="after")
    def _tenant_only_when_exclusive(self) -> "SavePromptInput":
        _check_tenant_scope(self.scope, self.tenant_id)
        return self

    def changes(self) -> Dict[str, Any]:
        """Supplied fields (wire names), without the id."""
        data = self.model_dump(by_alias=True, mode="json", exclude_unset=True)
        data.pop("id", None)
        return data


class SaveResult(WireModel):
    id: str
    success: bool
    message: str


class ArchivePromptInput(WireModel):
    id: str = Field(min_length=1)


class ArchiveResult(WireModel):
    success: bool
    message: str


# ---------------------------------------------------------------------------
# Generative flow contracts
# ---------------------------------------------------------------------------


class ScenarioArchitectInput(WireModel):
    user_requirements: str = Field(min_length=1)


class ScenarioArchitectOutput(WireModel):
    optimized_scenario: str
    ai_automatable_tasks: str
    improvement_suggestions: str


class IdentifyImageObjectsInput(WireModel):
    image_data_uri: DataUri


class IdentifyImageObjectsOutput(WireModel):
    identified_object: str
    tags: List[str] = Field(default_factory=list)


class IntelligentSearchInput(WireModel):
    query: str = Field(min_length=1)
    knowledge_base: str


class SearchResultItem(WireModel):
    title: str
    snippet: str
    relevance: float = Field(ge=0, le=1)


class IntelligentSearchOutput(WireModel):
    results: List[SearchResultItem] = Field(default_factory=list)


_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d", "%Y%m%d", "%d/%m/%Y", "%Y年%m月%d日")


def normalize_date(value: Any) -> str:
    """Normalize a date-ish value to YYYY-MM-DD."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    raw = str(value or "").strip()
    if not raw:
        raise ValueError("date is empty")
    head = raw.split("T", 1)[0].split(" ", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(head, fmt).date().isoformat()
        except ValueError:
            continue
    raise ValueError(f"unrecognized date: {raw!r}")


class SupplierDataInput(WireModel):
    csv_data: str = Field(min_length=1)
    reference_date: date = Field(default_factory=date.today)


class SupplierRecord(WireModel):
    name: str
    category: str
    match_rate: float = Field(ge=0, le=100)
    added_date: str

    @field_validator("added_date", mode="before")
    @classmethod
    def _normalize_added_date(cls, v: Any) -> str:
        return normalize_date(v)


class SupplierDataOutput(WireModel):
    suppliers: List[SupplierRecord] = Field(default_factory=list)


class Generate3dModelInput(WireModel):
    prompt: str = Field(min_length=1)


class Generate3dModelOutput(WireModel):
    model_data_uri: DataUri


class GeneratePromptInput(WireModel):
    user_input: str = Field(min_length=1)
    prompt_template: str


class GeneratePromptOutput(WireModel):
    generated_prompt: str


class AnalyzePromptMetadataInput(WireModel):
    system_prompt: Optional[str] = None
    user_prompt: str = Field(min_length=1)
    context: Optional[str] = None
    negative_prompt: Optional[str] = None


class AnalyzePromptMetadataOutput(WireModel):
    scope: str
    recommended_model: str
    constraints: str
    scenario: str


class PromptExecutionInput(WireModel):
    model_id: Optional[str] = None
    system_prompt: Optional[str] = None
    user_prompt: str = Field(min_length=1)
    context: Optional[str] = None
    negative_prompt: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)
    temperature: Optional[float] = Field(default=None, ge=0, le=1)


class PromptExecutionOutput(WireModel):
    response: str


class DigitalEmployeeInput(WireModel):
    prompt_id: Optional[str] = None
    model_id: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)
    temperature: Optional[float] = Field(default=None, ge=0, le=1)
    # Unsaved prompt under test.
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    context: Optional[str] = None
    negative_prompt: Optional[str] = None

    @model_validator(mode="after")
    def _prompt_source(self) -> "DigitalEmployeeInput":
        if not (self.prompt_id or self.user_prompt):
            raise ValueError("Either promptId or userPrompt must be provided.")
        return self


class CreateReminderInput(WireModel):
    user_input: str = Field(min_length=1)


class CreateReminderOutput(WireModel):
    title: str
    date_time: str


class ConversationTurn(WireModel):
    role: Literal["user", "assistant"]
    content: str


class RequirementsNavigatorInput(WireModel):
    user_input: str = Field(min_length=1)
    conversation_history: List[ConversationTurn] = Field(default_factory=list)


class RequirementsNavigatorOutput(WireModel):
    ai_response: str
    extracted_requirements: Optional[str] = None
    suggested_prompt_id: Optional[str] = None
    is_finished: bool = False


class RecommendProductsInput(WireModel):
    user_needs: str = Field(min_length=1)
    user_profile: Optional[str] = None
    available_knowledge: str
    public_resources: str
    supplier_databases: str


class ProductRecommendation(WireModel):
    name: str
    description: str
    image: WebUrl
    price: str
    purchase_url: WebUrl


class RecommendProductsOutput(WireModel):
    # Three to five items are asked for; the count is not enforced.
    recommendations: List[ProductRecommendation] = Field(default_factory=list)
    reasoning: str


class GetRecommendationsInput(WireModel):
    user_needs: str = Field(min_length=1)
    user_profile: Optional[str] = None
    knowledge_base: str
    public_resources: str
    supplier_databases: str


class GenerateUserProfileInput(WireModel):
    text_input: str
    image_data_uri: Optional[DataUri] = None

    @model_validator(mode="after")
    def _text_or_image(self) -> "GenerateUserProfileInput":
        if not (self.text_input.strip() or self.image_data_uri):
            raise ValueError("Either textInput or imageDataUri must be provided.")
        return self


class GenerateUserProfileOutput(WireModel):
    profile_summary: str
    tags: List[str] = Field(default_factory=list)


class AnalyzeOrgStructureInput(WireModel):
    org_info: str = Field(min_length=1)
    company_context: str


class AnalyzeOrgStructureOutput(WireModel):
    decision_points: str
    potential_bottlenecks: str
    improvement_suggestions: str


# ---------------------------------------------------------------------------
# Env files
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnvFileSpec:
    """Spec for loading env vars from disk.

    Supported types:
      - dotenv: KEY=VALUE lines, UTF-8, '#' comments.
      - json: top-level object {"KEY": "VALUE", ...}
      - dir: directory where each file name is a key; file content is the value.
    """

    type: str
    path: str
    optional: bool = False
    prefix: str = ""


__all__ = [
    # shared
    "WireModel",
    "DataUri",
    "WebUrl",
    "MediaPart",
    "normalize_date",
    # invocation
    "ResponseModality",
    "GenerationConfig",
    "ModelRequest",
    "RawResponse",
    # prompt records
    "PromptScope",
    "PromptMetadata",
    "PromptRecord",
    "PromptList",
    "ListPromptsInput",
    "SavePromptInput",
    "SaveResult",
    "ArchivePromptInput",
    "ArchiveResult",
    # generative flows
    "ScenarioArchitectInput",
    "ScenarioArchitectOutput",
    "IdentifyImageObjectsInput",
    "IdentifyImageObjectsOutput",
    "IntelligentSearchInput",
    "SearchResultItem",
    "IntelligentSearchOutput",
    "SupplierDataInput",
    "SupplierRecord",
    "SupplierDataOutput",
    "Generate3dModelInput",
    "Generate3dModelOutput",
    "GeneratePromptInput",
    "GeneratePromptOutput",
    "AnalyzePromptMetadataInput",
    "AnalyzePromptMetadataOutput",
    "PromptExecutionInput",
    "PromptExecutionOutput",
    "DigitalEmployeeInput",
    "CreateReminderInput",
    "CreateReminderOutput",
    "ConversationTurn",
    "RequirementsNavigatorInput",
    "RequirementsNavigatorOutput",
    "RecommendProductsInput",
    "ProductRecommendation",
    "RecommendProductsOutput",
    "GetRecommendationsInput",
    "GenerateUserProfileInput",
    "GenerateUserProfileOutput",
    "AnalyzeOrgStructureInput",
    "AnalyzeOrgStructureOutput",
    # env
    "EnvFileSpec",
]
