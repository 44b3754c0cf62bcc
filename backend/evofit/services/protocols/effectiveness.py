"""
Protocol Effectiveness Tracker

Correlates client progress with assigned protocols. Tracking data lives in the
assignment's ``progress_data`` JSON column:

    {
        "baseline_metrics": {...},
        "weekly_progress": [{"week": 1, "metrics": {...}, "adherence": 80, ...}],
        "overall_effectiveness": 0-100,
        "completion": {...}            # set by complete()
    }

Scoring while a protocol runs (latest week only):
- 40% adherence
- 30% energy gain over baseline on the 1-10 scale
- 30% of (improvements - challenges) * 10, capped at 30

Final scoring on completion:
- 40% goal achievement, 30% satisfaction, 20% average adherence,
  10% objective improvement (weight, energy)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import copy
import logging

from pydantic import BaseModel, Field

from evofit.core.errors import ValidationError
from evofit.services.protocols.schemas import AssignmentStatus, Intensity
from evofit.services.protocols.storage import ProtocolStore

logger = logging.getLogger(__name__)

MIN_DURATION_SUGGESTION = 14


class ProtocolMetrics(BaseModel):
    protocol_id: str
    protocol_name: str
    total_assignments: int = 0
    active_assignments: int = 0
    paused_assignments: int = 0
    completed_assignments: int = 0
    cancelled_assignments: int = 0
    completion_rate: float = 0.0  # % of assignments completed
    average_effectiveness: float = 0.0
    average_adherence: float = 0.0
    average_client_satisfaction: Optional[float] = None
    common_challenges: List[str] = Field(default_factory=list)


class OptimizationSuggestion(BaseModel):
    area: str
    current: Any = None
    suggested: Any = None
    rationale: str
    expected_impact: str
    confidence: int


def current_effectiveness(weekly_progress: List[Dict[str, Any]], baseline: Dict[str, Any]) -> float:
    if not weekly_progress:
        return 0.0
    latest = weekly_progress[-1]
    metrics = latest.get("metrics") or {}
    score = (latest.get("adherence") or 0) * 0.4

    if metrics.get("energy") and baseline.get("energy"):
        energy_gain = (metrics["energy"] - baseline["energy"]) / 10 * 100
        score += max(0.0, energy_gain) * 0.3

    balance = len(metrics.get("improvements") or []) - len(metrics.get("challenges") or [])
    score += min(max(0, balance * 10), 30) * 0.3
    return round(min(100.0, max(0.0, score)), 2)


def objective_improvement(baseline: Dict[str, Any], final: Dict[str, Any]) -> float:
    """Average of weight-loss and energy scores; neutral 50 with nothing to compare"""
    score = 0.0
    counted = 0
    if baseline.get("weight") and final.get("weight"):
        loss = baseline["weight"] - final["weight"]
        if loss > 0:
            # 10% body-weight loss scores 100
            score += min(100.0, loss / baseline["weight"] * 1000)
            counted += 1
    if baseline.get("energy") and final.get("energy"):
        gain = final["energy"] - baseline["energy"]
        if gain > 0:
            score += gain / 10 * 100
            counted += 1
    return score / counted if counted else 50.0


def final_effectiveness(
    weekly_progress: List[Dict[str, Any]],
    baseline: Dict[str, Any],
    final_metrics: Dict[str, Any],
    client_satisfaction: int,
    goals_achieved: int,
    total_goals: int,
) -> float:
    goal_rate = goals_achieved / max(total_goals, 1) * 100
    score = goal_rate * 0.4
    score += (client_satisfaction - 1) / 4 * 100 * 0.3
    adherence = sum(w.get("adherence") or 0 for w in weekly_progress) / max(len(weekly_progress), 1)
    score += adherence * 0.2
    score += objective_improvement(baseline, final_metrics) * 0.1
    return round(min(100.0, max(0.0, score)), 2)


class EffectivenessTracker:
    def __init__(self, store: ProtocolStore):
        self.store = store

    def initialize(self, assignment_id: str, baseline_metrics: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Start tracking with the client's baseline metrics"""
        self.store.get_assignment(assignment_id)
        tracking = {
            "baseline_metrics": dict(baseline_metrics or {}),
            "weekly_progress": [],
            "overall_effectiveness": 0.0,
            "started_at": datetime.now(timezone.utc).isoformat(),
        }
        with self.store.unit_of_work():
            self.store.update_assignment(assignment_id, {"progress_data": tracking})
        logger.info(f"Effectiveness tracking started for assignment {assignment_id}")
        return tracking

    def record_weekly_progress(
        self,
        assignment_id: str,
        week: int,
        metrics: Dict[str, Any],
        notes: Optional[str] = None,
    ) -> float:
        """Store one week of progress (replacing that week if present) and return current effectiveness"""
        if not isinstance(week, int) or week < 1:
            raise ValidationError("week", "Week must be a positive integer")
        adherence = metrics.get("adherence")
        if adherence is not None and not (0 <= adherence <= 100):
            raise ValidationError("adherence", "Adherence must be between 0 and 100")
        energy = metrics.get("energy")
        if energy is not None and not (1 <= energy <= 10):
            raise ValidationError("energy", "Energy must be between 1 and 10")

        assignment = self.store.get_assignment(assignment_id)
        status = AssignmentStatus(assignment.status)
        if status in (AssignmentStatus.completed, AssignmentStatus.cancelled):
            raise ValidationError("status", f"Cannot record progress on a {status.value} assignment")
        # New dicts so the JSON column registers the change
        tracking = copy.deepcopy(assignment.progress_data or {})
        tracking.setdefault("baseline_metrics", {})
        progress = [p for p in tracking.get("weekly_progress", []) if p.get("week") != week]
        progress.append({
            "week": week,
            "recorded_at": datetime.now(timezone.utc).isoformat(),
            "metrics": dict(metrics),
            "notes": notes,
            "adherence": adherence or 0,
        })
        progress.sort(key=lambda p: p["week"])
        tracking["weekly_progress"] = progress
        tracking["overall_effectiveness"] = current_effectiveness(progress, tracking["baseline_metrics"])

        with self.store.unit_of_work():
            self.store.update_assignment(assignment_id, {"progress_data": tracking})
        logger.info(
            f"Assignment {assignment_id}: week {week} recorded, "
            f"effectiveness {tracking['overall_effectiveness']}"
        )
        return tracking["overall_effectiveness"]

    def complete(
        self,
        assignment_id: str,
        final_metrics: Dict[str, Any],
        client_satisfaction: int,
        goals_achieved: int,
        total_goals: int,
        would_recommend: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Close tracking with final outcome data and mark the assignment completed"""
        if not (1 <= client_satisfaction <= 5):
            raise ValidationError("client_satisfaction", "Satisfaction must be between 1 and 5")
        if goals_achieved < 0 or total_goals < 0 or goals_achieved > max(total_goals, 0):
            raise ValidationError("goals_achieved", "Goals achieved must be between 0 and the goal total")

        assignment = self.store.get_assignment(assignment_id)
        status = AssignmentStatus(assignment.status)
        if status in (AssignmentStatus.completed, AssignmentStatus.cancelled):
            raise ValidationError("status", f"Assignment is already {status.value}")

        tracking = copy.deepcopy(assignment.progress_data or {})
        baseline = tracking.setdefault("baseline_metrics", {})
        progress = tracking.setdefault("weekly_progress", [])
        success_factors, challenges = self._analyze_outcome(progress, client_satisfaction)
        tracking["overall_effectiveness"] = final_effectiveness(
            progress, baseline, final_metrics, client_satisfaction, goals_achieved, total_goals
        )
        now = datetime.now(timezone.utc)
        tracking["completion"] = {
            "final_metrics": dict(final_metrics),
            "client_satisfaction": client_satisfaction,
            "would_recommend": would_recommend,
            "goals_achieved": goals_achieved,
            "total_goals": total_goals,
            "completion_rate": round(goals_achieved / max(total_goals, 1) * 100, 2),
            "success_factors": success_factors,
            "challenges": challenges,
            "completed_at": now.isoformat(),
        }

        with self.store.unit_of_work():
            self.store.update_assignment(assignment_id, {
                "progress_data": tracking,
                "status": AssignmentStatus.completed.value,
                "completed_date": now,
            })
        logger.info(
            f"Assignment {assignment_id} completed with effectiveness {tracking['overall_effectiveness']}"
        )
        return tracking

    def protocol_metrics(self, protocol_id: str) -> ProtocolMetrics:
        protocol = self.store.get_protocol(protocol_id)
        assignments = self.store.list_assignments(protocol_id=protocol_id)
        metrics = ProtocolMetrics(protocol_id=protocol.id, protocol_name=protocol.name)
        metrics.total_assignments = len(assignments)
        if not assignments:
            return metrics

        counts = {status: 0 for status in AssignmentStatus}
        scores: List[float] = []
        adherence: List[float] = []
        satisfaction: List[int] = []
        challenge_counts: Dict[str, int] = {}
        for assignment in assignments:
            counts[AssignmentStatus(assignment.status)] += 1
            tracking = assignment.progress_data or {}
            progress = tracking.get("weekly_progress") or []
            if progress or tracking.get("completion"):
                scores.append(tracking.get("overall_effectiveness") or 0.0)
            adherence.extend(p.get("adherence") or 0 for p in progress)
            completion = tracking.get("completion")
            if completion:
                satisfaction.append(completion["client_satisfaction"])
                for challenge in completion.get("challenges", []):
                    challenge_counts[challenge] = challenge_counts.get(challenge, 0) + 1
            for week in progress:
                for challenge in (week.get("metrics") or {}).get("challenges") or []:
                    challenge_counts[challenge] = challenge_counts.get(challenge, 0) + 1

        metrics.active_assignments = counts[AssignmentStatus.active]
        metrics.paused_assignments = counts[AssignmentStatus.paused]
        metrics.completed_assignments = counts[AssignmentStatus.completed]
        metrics.cancelled_assignments = counts[AssignmentStatus.cancelled]
        metrics.completion_rate = round(metrics.completed_assignments / metrics.total_assignments * 100, 2)
        if scores:
            metrics.average_effectiveness = round(sum(scores) / len(scores), 2)
        if adherence:
            metrics.average_adherence = round(sum(adherence) / len(adherence), 2)
        if satisfaction:
            metrics.average_client_satisfaction = round(sum(satisfaction) / len(satisfaction), 2)
        metrics.common_challenges = [
            name for name, _ in sorted(challenge_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:5]
        ]
        return metrics

    def optimization_suggestions(self, protocol_id: str) -> List[OptimizationSuggestion]:
        """Rule-based tuning hints once a protocol has completed assignments"""
        protocol = self.store.get_protocol(protocol_id)
        metrics = self.protocol_metrics(protocol_id)
        if metrics.completed_assignments == 0:
            return []

        suggestions = []
        if metrics.completion_rate < 70:
            suggestions.append(OptimizationSuggestion(
                area="duration",
                current=protocol.duration,
                suggested=max(MIN_DURATION_SUGGESTION, protocol.duration * 7 // 10),
                rationale="Low completion rate suggests the protocol may be too long",
                expected_impact="high",
                confidence=85,
            ))
        if metrics.average_effectiveness < 60:
            current = Intensity.parse(protocol.intensity)
            suggestions.append(OptimizationSuggestion(
                area="intensity",
                current=current.value,
                suggested=(Intensity.moderate if current == Intensity.intensive else Intensity.gentle).value,
                rationale="Low effectiveness may indicate the intensity is too high for the audience",
                expected_impact="medium",
                confidence=70,
            ))
        if metrics.average_client_satisfaction is not None and metrics.average_client_satisfaction < 3.5:
            suggestions.append(OptimizationSuggestion(
                area="experience",
                current="current approach",
                suggested="Add more flexibility and personalization options",
                rationale="Low satisfaction scores",
                expected_impact="high",
                confidence=80,
            ))
        return suggestions

    def _analyze_outcome(self, progress: List[Dict[str, Any]], client_satisfaction: int):
        success_factors: List[str] = []
        challenges: List[str] = []
        adherence = sum(p.get("adherence") or 0 for p in progress) / max(len(progress), 1)
        if adherence > 80:
            success_factors.append("High protocol adherence")
        elif adherence < 50:
            challenges.append("Low protocol adherence")
        if client_satisfaction >= 4:
            success_factors.append("High client satisfaction")
        elif client_satisfaction <= 2:
            challenges.append("Low client satisfaction")
        improvements = sum(len((p.get("metrics") or {}).get("improvements") or []) for p in progress)
        reported = sum(len((p.get("metrics") or {}).get("challenges") or []) for p in progress)
        if improvements > reported:
            success_factors.append("More improvements than challenges reported")
        return success_factors, challenges
