from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for wire models: camelCase JSON, snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AskRequest(ApiModel):
    question: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=100)  # Only ever raises the over-fetch


class SourceItem(ApiModel):
    file_name: str
    line_number: str | int
    text: str  # Preview, truncated for display
    score: float | None = None


class StepSummary(ApiModel):
    name: str
    duration: int  # ms


class QueryLogSummary(ApiModel):
    query_id: str
    total_duration: int  # ms
    cache_hit: bool
    steps: list[StepSummary] = Field(default_factory=list)


class AskResponse(ApiModel):
    success: bool = True
    answer: str
    sources: list[SourceItem]
    query_log: QueryLogSummary | None = None


class StreamDonePayload(ApiModel):
    """Payload of the terminal "done" event on the chat stream."""
    sources: list[SourceItem]
    query_log: QueryLogSummary | None = None


class ErrorResponse(ApiModel):
    success: bool = False
    error: str


# ============== Search ==============

class SearchRequest(ApiModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=20, ge=1, le=100)


class SearchMatch(ApiModel):
    text: str
    line_number: int
    score: float


class SearchResultGroup(ApiModel):
    """Matches from one document, ordered by line number."""
    file_name: str
    folder: str | None = None
    display_path: str
    matches: list[SearchMatch]


class SearchResponse(ApiModel):
    success: bool = True
    query: str
    count: int
    message: str | None = None
    results: list[SearchResultGroup]


# ============== Cache ==============

class CacheWarmResponse(ApiModel):
    success: bool
    message: str
    questions_processed: int
    errors: list[str] | None = None


class CacheStatsModel(ApiModel):
    total_questions: int
    cached_questions: int
    hit_count: int
    miss_count: int
    evictions: int
    hit_rate: str  # "12.50%" or "N/A"
    last_warm_time: str | None = None  # ISO 8601


class CacheStatusResponse(ApiModel):
    success: bool = True
    stats: CacheStatsModel


class CacheQuestionsResponse(ApiModel):
    success: bool = True
    questions: list[str]


class MessageResponse(ApiModel):
    success: bool = True
    message: str


# ============== Query logs ==============

class OperationStepModel(ApiModel):
    name: str
    start_time: int
    end_time: int | None = None
    duration: int | None = None
    details: dict = Field(default_factory=dict)


class QueryLogModel(ApiModel):
    query_id: str
    original_query: str
    refined_query: str | None = None
    start_time: int
    end_time: int | None = None
    total_duration: int | None = None
    steps: list[OperationStepModel] = Field(default_factory=list)
    cache_hit: bool = False
    result_count: int = 0


class QueryLogsResponse(ApiModel):
    success: bool = True
    logs: list[QueryLogModel]


class QueryLogResponse(ApiModel):
    success: bool = True
    log: QueryLogModel


class TimingStatsModel(ApiModel):
    avg_total_duration: int
    avg_step_durations: dict[str, int]
    cache_hit_rate: float


class TimingStatsResponse(ApiModel):
    success: bool = True
    stats: TimingStatsModel
