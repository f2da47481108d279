from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional, Dict, Any, Literal
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"
    PENDING = "pending"


class MigrationState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class AnalysisStatus(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    ERROR = "error"


ConditionType = Literal["General", "Particular"]


class Clause(BaseModel):
    """A single numbered provision, optionally in a general and a particular variant"""
    clause_number: str
    clause_title: str = ""
    clause_text: str = ""
    condition_type: ConditionType = "General"
    general_condition: Optional[str] = None
    particular_condition: Optional[str] = None
    comparison: List[Any] = []
    time_frames: List[Any] = []
    has_time_frame: bool = False

    @field_validator("clause_number", mode="before")
    @classmethod
    def _number_as_text(cls, value):
        return "" if value is None else str(value).strip()

    @field_validator("clause_title", "clause_text", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return "" if value is None else value

    @field_validator("condition_type", mode="before")
    @classmethod
    def _normalize_condition_type(cls, value):
        if isinstance(value, str) and value.strip().lower() == "particular":
            return "Particular"
        return "General"

    @field_validator("comparison", "time_frames", mode="before")
    @classmethod
    def _none_as_list(cls, value):
        return [] if value is None else value

    @model_validator(mode="after")
    def _derive_time_frame_flag(self):
        self.has_time_frame = len(self.time_frames) > 0
        return self

    @property
    def is_modified(self) -> bool:
        return len(self.comparison) > 0


class ContractMeta(BaseModel):
    title: str
    created_by: str
    created_at: Optional[datetime] = None


class ContractSummary(BaseModel):
    id: str
    meta: ContractMeta


class SavedContractMetadata(BaseModel):
    """Derived counts; recomputed on every save, never trusted from input"""
    totalClauses: int = 0
    generalCount: int = 0
    particularCount: int = 0
    highRiskCount: int = 0
    conflictCount: int = 0
    timeSensitiveCount: int = 0

    @classmethod
    def from_clauses(cls, clauses: List[Clause]) -> "SavedContractMetadata":
        return cls(
            totalClauses=len(clauses),
            generalCount=sum(1 for c in clauses if c.condition_type == "General"),
            particularCount=sum(1 for c in clauses if c.condition_type == "Particular"),
            highRiskCount=0,
            conflictCount=sum(1 for c in clauses if c.is_modified),
            timeSensitiveCount=sum(1 for c in clauses if c.time_frames),
        )


class SavedContract(BaseModel):
    """Legacy archive unit and backup file shape"""
    id: Optional[str] = None
    name: str
    timestamp: int = Field(default_factory=lambda: int(datetime.now().timestamp() * 1000))
    clauses: List[Clause] = []
    metadata: SavedContractMetadata = Field(default_factory=SavedContractMetadata)

    @model_validator(mode="after")
    def _recompute_metadata(self):
        self.metadata = SavedContractMetadata.from_clauses(self.clauses)
        return self


class UserProfile(BaseModel):
    uid: str
    email: str
    role: Role
    created_at: Optional[datetime] = None


class Identity(BaseModel):
    """What the identity provider knows about a signed-in account"""
    uid: str
    email: str


class AuthResult(BaseModel):
    token: str
    identity: Identity


class SearchResult(BaseModel):
    clause_id: str
    clause_number: str
    title: str = ""
    condition_type: str = "General"
    relevance_score: float = 0.0
    reason: str = ""


class ImportResult(BaseModel):
    contract_id: str
    name: str
    imported: int
    total: int
    clauses: List[Clause] = []


class FinalizeResult(BaseModel):
    contract_id: str
    name: str
    saved: int
    failed: int
    clauses: List[Clause] = []
    contracts: List[ContractSummary] = []


class MigrationReport(BaseModel):
    contracts: int = 0
    clauses_saved: int = 0
    clauses_failed: int = 0
    details: Dict[str, Dict[str, int]] = {}
