from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ─── Status vocabularies ───

STEP_STATUSES = ("pending", "current", "completed")
TX_STATUSES = ("pending", "success", "failed")
TX_TERMINAL = frozenset({"success", "failed"})
MILESTONE_STATUSES = ("pending", "completed", "approved", "disputed", "released", "cancelled")
RESOLUTIONS = ("approve", "reject", "modify")
ROLES = ("worker", "client", "arbitrator")

# ─── Demo Definition IR (parsed from YAML) ───

@dataclass
class StepDefinition:
    id: str
    title: str = ""
    action: str = ""  # operation type submitted to the ledger client
    requires: list[str] = field(default_factory=list)  # named preconditions, e.g. "wallet"
    config: dict[str, Any] = field(default_factory=dict)

@dataclass
class MilestoneDefinition:
    id: str
    title: str
    amount: str = "0"

@dataclass
class ScoringRule:
    base: int = 85
    quick_bonus: int = 0
    quick_seconds: int = 0
    bonus: int = 0
    fixed: int | None = None

    def score(self, elapsed_seconds: float) -> int:
        if self.fixed is not None:
            return self.fixed
        score = self.base
        if self.quick_seconds and elapsed_seconds < self.quick_seconds:
            score += self.quick_bonus
        score += self.bonus
        return min(100, score)

@dataclass
class DemoDefinition:
    id: str
    name: str
    description: str = ""
    kind: str = "linear"  # linear | dispute
    base_points: int = 100
    steps: list[StepDefinition] = field(default_factory=list)
    milestones: list[MilestoneDefinition] = field(default_factory=list)
    scoring: ScoringRule = field(default_factory=ScoringRule)

# ─── Runtime records ───

@dataclass
class TransactionRecord:
    id: str
    step_id: str
    status: str = "pending"  # pending | success | failed
    created_at: float = 0.0
    auto_resolve_deadline: float | None = None
    message: str = ""
    resolved_at: float | None = None

    @property
    def terminal(self) -> bool:
        return self.status in TX_TERMINAL

@dataclass
class Step:
    id: str
    order: int
    status: str = "pending"  # pending | current | completed
    pending_transaction_id: str | None = None
    title: str = ""
    action: str = ""
    requires: list[str] = field(default_factory=list)

@dataclass
class Milestone:
    id: str
    title: str
    amount: str = "0"
    status: str = "pending"  # pending | completed | approved | disputed | released | cancelled

@dataclass
class Dispute:
    id: str
    milestone_id: str
    raised_by_role: str
    reason: str
    status: str = "open"  # open | resolved
    resolution: str | None = None  # approve | reject | modify
    resolution_reason: str | None = None
    resolved_at: str | None = None

@dataclass
class DemoSession:
    id: str
    demo_id: str
    steps: list[Step] = field(default_factory=list)
    current_step_index: int = 0
    completion_triggered: bool = False
    started_at: float | None = None
    generation: int = 0

    @property
    def finished_steps(self) -> bool:
        return self.current_step_index >= len(self.steps)

    @property
    def current_step(self) -> Step | None:
        if self.finished_steps:
            return None
        return self.steps[self.current_step_index]

# ─── Account & rewards ───

@dataclass
class Account:
    wallet_id: str
    display_name: str = ""
    network: str = "testnet"
    level: int = 1
    experience: int = 0
    total_points: int = 0
    completed_demos: set[str] = field(default_factory=set)
    earned_badges: set[str] = field(default_factory=set)
    clapped_demos: set[str] = field(default_factory=set)
    completed_quests: set[str] = field(default_factory=set)
    created_at: str = ""

@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    point_value: int
    rarity: str = "common"
    category: str = "main_achievement"
    unlock: str = "demo"  # demo | claim | account | quest
    description: str = ""

@dataclass(frozen=True)
class Quest:
    id: str
    title: str
    experience: int
    points: int
    badge_id: str | None = None
    repeatable: bool = False
    active: bool = True
    unlock_requirements: tuple[str, ...] = ()

@dataclass(frozen=True)
class WorkflowCompleted:
    demo_id: str
    score: int
    elapsed_seconds: int
    session_id: str = ""

@dataclass
class CompletionReceipt:
    demo_id: str
    score: int
    points_earned: int
    experience_earned: int
    is_first_completion: bool
    badge_awarded: str | None = None

@dataclass
class CompletionRecord:
    demo_id: str
    score: int
    points_earned: int
    completion_seconds: int
    is_first_completion: bool
    completed_at: str = ""

@dataclass
class DemoStats:
    demo_id: str
    total_completions: int = 0
    total_claps: int = 0
    average_completion_minutes: float = 0.0
    average_score: float = 0.0
