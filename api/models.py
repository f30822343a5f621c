"""
Pydantic request/response schemas for the Watchlist Screening API

Field names are snake_case in Python and camelCase on the wire.
Name, type and option checks are left to the screening engine so that
every rejection carries the engine's error code.
"""

from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


class RecordRequest(BaseModel):
    """A party record submitted for screening."""
    id: str = Field(..., max_length=100, description="Caller-side record id, unique within the batch")
    name: str = Field(..., description="Full name of the individual or company")
    type: str = Field(default="individual", description="individual or company")
    dob: Optional[str] = Field(
        default=None,
        description="Date of birth, ISO 8601 (YYYY, YYYY-MM or YYYY-MM-DD)"
    )
    country: Optional[str] = Field(default=None, description="Country name or ISO code")
    aliases: List[str] = Field(default_factory=list, description="Other known names")


class ScreeningOptionsRequest(BaseModel):
    """Per-batch screening options; omitted fields use configured defaults."""
    threshold: Optional[float] = Field(default=None, description="Match threshold in [0, 1]")
    lists: Optional[List[str]] = Field(default=None, description="List codes to screen against")
    include_aliases: Optional[bool] = Field(default=None, alias="includeAliases")
    check_dob: Optional[bool] = Field(default=None, alias="checkDob")
    check_country: Optional[bool] = Field(default=None, alias="checkCountry")

    model_config = {"populate_by_name": True}

    def to_options_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class BatchScreeningRequest(BaseModel):
    """Request schema for JSON batch screening."""
    records: List[RecordRequest] = Field(..., description="Records to screen")
    options: Optional[ScreeningOptionsRequest] = Field(default=None)


class ReviewRequest(BaseModel):
    """Request schema for resolving a match."""
    actor: str = Field(..., max_length=200, description="Reviewer id or name for the audit trail")
    notes: Optional[str] = Field(default=None, max_length=2000, description="Review notes")

    @field_validator('actor')
    @classmethod
    def strip_actor(cls, v: str) -> str:
        return v.strip()


class WatchlistEntryResponse(BaseModel):
    """Matched watchlist entry."""
    id: str
    name: str
    type: str
    dob: Optional[str] = None
    countries: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)
    list_code: str = Field(..., alias="listCode")
    list_name: str = Field(..., alias="listName")
    list_type: str = Field(..., alias="listType")
    reason: Optional[str] = None
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")

    model_config = {"populate_by_name": True}


class DobMatchResponse(BaseModel):
    matches: bool
    confidence: str = Field(..., description="exact, partial, year_only or none")


class MatchDetailsResponse(BaseModel):
    """Per-factor evidence behind a match score."""
    name_score: float = Field(..., alias="nameScore")
    dob_match: DobMatchResponse = Field(..., alias="dobMatch")
    country_match: bool = Field(..., alias="countryMatch")
    alias_matched: Optional[str] = Field(default=None, alias="aliasMatched")

    model_config = {"populate_by_name": True}


class MatchResponse(BaseModel):
    """A match and its review state."""
    id: Optional[str] = Field(default=None, description="Match id for review calls")
    record_id: str = Field(..., alias="recordId")
    matched_entry: WatchlistEntryResponse = Field(..., alias="matchedEntry")
    match_score: float = Field(..., ge=0, le=1, alias="matchScore")
    match_details: MatchDetailsResponse = Field(..., alias="matchDetails")
    status: str = Field(..., description="pending_review, confirmed_match or false_positive")
    reviewed_by: Optional[str] = Field(default=None, alias="reviewedBy")
    reviewed_at: Optional[str] = Field(default=None, alias="reviewedAt")
    review_notes: Optional[str] = Field(default=None, alias="reviewNotes")

    model_config = {"populate_by_name": True}


class DiagnosticResponse(BaseModel):
    code: str
    field: str
    message: str


class RecordResultResponse(BaseModel):
    """Screening outcome for one record."""
    record_id: str = Field(..., alias="recordId")
    record_name: str = Field(..., alias="recordName")
    status: str = Field(..., description="clear, pending_review, confirmed_match or false_positive")
    matches: List[MatchResponse] = Field(default_factory=list)
    diagnostics: List[DiagnosticResponse] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class BatchSummaryResponse(BaseModel):
    total: int = Field(..., ge=0)
    clear: int = Field(..., ge=0)
    potential_matches: int = Field(..., ge=0, alias="potentialMatches")
    confirmed_matches: int = Field(..., ge=0, alias="confirmedMatches")
    total_matches: int = Field(..., ge=0, alias="totalMatches")

    model_config = {"populate_by_name": True}


class BatchScreeningResponse(BaseModel):
    """Response schema for a screened batch."""
    batch_id: str = Field(..., alias="batchId")
    summary: BatchSummaryResponse
    results: List[RecordResultResponse] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class ReviewOutcomeResponse(BaseModel):
    """Response schema for review calls."""
    match_id: str = Field(..., alias="matchId")
    status: str
    applied: bool = Field(..., description="False when the match was already resolved")
    previous_status: str = Field(..., alias="previousStatus")
    reviewed_by: Optional[str] = Field(default=None, alias="reviewedBy")
    reviewed_at: Optional[str] = Field(default=None, alias="reviewedAt")

    model_config = {"populate_by_name": True}


class ListInfoResponse(BaseModel):
    code: str
    name: str
    list_type: str = Field(..., alias="listType")
    entries: int = Field(..., ge=0, description="Entries loaded for this list")

    model_config = {"populate_by_name": True}


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    entries_loaded: int = Field(..., ge=0, description="Number of watchlist entries loaded")
    lists: List[ListInfoResponse] = Field(default_factory=list)
    algorithm_version: str = Field(..., description="Algorithm version")
    storage: str = Field(default="memory", description="memory or database")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = Field(default=None)


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
