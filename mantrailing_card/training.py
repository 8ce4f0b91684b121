"""
Training Progression Module

The five-stage Mantrailing curriculum: the per-customer section list, the
progression step applied for every booked training session, the rebuild used
when existing customers are taken over with a known trail count, and the
badge/level helpers shown on the customer card.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple, Any

from .errors import ValidationError


class TrainingLevel(Enum):
    """Named training levels in curriculum order"""
    EINSTEIGER = "Einsteiger"
    GRUNDLAGEN = "Grundlagen"
    FORTGESCHRITTENE = "Fortgeschrittene"
    MASTERCLASS = "Masterclass"
    EXPERT = "Expert"


class SectionStatus(Enum):
    """Status of a single training section"""
    LOCKED = "Gesperrt"
    CURRENT = "Aktuell"
    COMPLETED = "Abgeschlossen"


# Required trails per level for a newly registered customer
REGISTRATION_TEMPLATE: List[Tuple[TrainingLevel, int]] = [
    (TrainingLevel.EINSTEIGER, 6),
    (TrainingLevel.GRUNDLAGEN, 12),
    (TrainingLevel.FORTGESCHRITTENE, 12),
    (TrainingLevel.MASTERCLASS, 12),
    (TrainingLevel.EXPERT, 100),
]

# Level sizes used when rebuilding progress from a total trail count.
# None marks the uncapped Expert tier.
TAKEOVER_LEVELS: List[Tuple[TrainingLevel, Optional[int]]] = [
    (TrainingLevel.EINSTEIGER, 12),
    (TrainingLevel.GRUNDLAGEN, 12),
    (TrainingLevel.FORTGESCHRITTENE, 12),
    (TrainingLevel.MASTERCLASS, 13),
    (TrainingLevel.EXPERT, None),
]

EXPERT_MILESTONE = 100

# (upper bound inclusive, level) for the level shown by total trails
LEVEL_THRESHOLDS: List[Tuple[int, TrainingLevel]] = [
    (12, TrainingLevel.EINSTEIGER),
    (24, TrainingLevel.GRUNDLAGEN),
    (36, TrainingLevel.FORTGESCHRITTENE),
    (49, TrainingLevel.MASTERCLASS),
]

BADGE_SIZES = (500, 100, 50, 10)


@dataclass(frozen=True)
class TrainingSection:
    """One level of a customer's curriculum"""
    position: int
    name: TrainingLevel
    required_hours: int
    completed_hours: int = 0
    status: SectionStatus = SectionStatus.LOCKED

    @property
    def is_expert(self) -> bool:
        return self.name == TrainingLevel.EXPERT

    def to_dict(self) -> Dict[str, Any]:
        return {
            'position': self.position,
            'name': self.name.value,
            'required_hours': self.required_hours,
            'completed_hours': self.completed_hours,
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrainingSection':
        return cls(
            position=int(data['position']),
            name=TrainingLevel(data['name']),
            required_hours=int(data['required_hours']),
            completed_hours=int(data.get('completed_hours', 0)),
            status=SectionStatus(data.get('status', SectionStatus.LOCKED.value)),
        )


@dataclass(frozen=True)
class TrainingInfo:
    """Level tier and display bucket for a total trail count"""
    level: TrainingLevel
    total_trails: int
    level_display: str


@dataclass(frozen=True)
class Badge:
    """A group of identical milestone badges"""
    size: int
    count: int


def initial_progress() -> List[TrainingSection]:
    """Fresh curriculum: first section current, all others locked"""
    return [
        TrainingSection(
            position=index,
            name=level,
            required_hours=required,
            completed_hours=0,
            status=SectionStatus.CURRENT if index == 1 else SectionStatus.LOCKED,
        )
        for index, (level, required) in enumerate(REGISTRATION_TEMPLATE, start=1)
    ]


def current_section(progress: List[TrainingSection]) -> Optional[TrainingSection]:
    for section in progress:
        if section.status == SectionStatus.CURRENT:
            return section
    return None


def advance_progress(
    progress: List[TrainingSection]
) -> Tuple[List[TrainingSection], Optional[TrainingLevel]]:
    """
    Apply one completed training session to a section list

    The input list is left untouched. The current section gains one trail;
    reaching its requirement completes it and unlocks the next section. The
    Expert tier accumulates without limit and never completes.

    Args:
        progress: Sections in curriculum order

    Returns:
        Tuple of (new section list, level of the newly unlocked section or
        None when no level change happened)
    """
    sections = list(progress)
    index = next(
        (i for i, s in enumerate(sections) if s.status == SectionStatus.CURRENT),
        None
    )
    if index is None:
        return sections, None

    section = sections[index]
    if section.is_expert:
        sections[index] = replace(section, completed_hours=section.completed_hours + 1)
        return sections, None

    if section.completed_hours >= section.required_hours:
        return sections, None

    completed = section.completed_hours + 1
    if completed < section.required_hours:
        sections[index] = replace(section, completed_hours=completed)
        return sections, None

    sections[index] = replace(section, completed_hours=completed, status=SectionStatus.COMPLETED)
    if index + 1 >= len(sections):
        # Last section done; the customer stays on it
        return sections, None

    next_section = sections[index + 1]
    sections[index + 1] = replace(next_section, status=SectionStatus.CURRENT)
    return sections, next_section.name


def rebuild_progress(total: int) -> List[TrainingSection]:
    """
    Rebuild a section list from an absolute trail count

    Levels are filled in order using the takeover level sizes. The first
    partially filled level (or Expert, once reached) becomes current; if every
    filled level is complete the following one becomes current. Zero trails
    leaves the first section current.

    Raises:
        ValidationError: If total is negative
    """
    if total is None or total < 0:
        raise ValidationError("Anzahl der Trails darf nicht negativ sein")

    remaining = total
    sections: List[TrainingSection] = []
    found_current = False

    for index, (level, required) in enumerate(TAKEOVER_LEVELS, start=1):
        completed = remaining if required is None else min(remaining, required)
        remaining -= completed

        status = SectionStatus.LOCKED
        if completed > 0 and not found_current:
            if required is None or completed < required:
                status = SectionStatus.CURRENT
                found_current = True
            else:
                status = SectionStatus.COMPLETED

        if not found_current and sections and sections[-1].status == SectionStatus.COMPLETED \
                and status == SectionStatus.LOCKED:
            status = SectionStatus.CURRENT
            found_current = True

        sections.append(TrainingSection(
            position=index,
            name=level,
            required_hours=EXPERT_MILESTONE if required is None else required,
            completed_hours=completed,
            status=status,
        ))

    if not found_current:
        sections[0] = replace(sections[0], status=SectionStatus.CURRENT)

    return sections


def total_trails(progress: List[TrainingSection]) -> int:
    """Sum of completed trails over all sections"""
    return sum(section.completed_hours for section in progress)


def training_info(total: int) -> TrainingInfo:
    """Level tier by total trails and its ``N0+`` display bucket"""
    level = TrainingLevel.EXPERT
    for upper, tier in LEVEL_THRESHOLDS:
        if total <= upper:
            level = tier
            break
    return TrainingInfo(level=level, total_trails=total, level_display=f"{total // 10 * 10}+")


def trail_badges(total: int, display_cap: Optional[int] = None) -> List[Badge]:
    """
    Greedy milestone decomposition of a trail count

    Fewer than 10 trails yields no milestone badges (the "on the way" badge is
    shown instead). ``display_cap`` limits how many trails are considered for
    display only; it never affects the stored count.
    """
    if display_cap is not None:
        total = min(total, display_cap)

    badges = []
    remaining = total
    for size in BADGE_SIZES:
        count, remaining = divmod(remaining, size)
        if count:
            badges.append(Badge(size=size, count=count))
    return badges


def is_on_the_way(total: int) -> bool:
    return total < BADGE_SIZES[-1]


def level_of(progress: List[TrainingSection]) -> TrainingLevel:
    """Level named by the current section, or the last completed one"""
    section = current_section(progress)
    if section:
        return section.name
    completed = [s for s in progress if s.status == SectionStatus.COMPLETED]
    if completed:
        return completed[-1].name
    return TrainingLevel.EINSTEIGER


def progress_to_list(progress: List[TrainingSection]) -> List[Dict[str, Any]]:
    return [section.to_dict() for section in progress]


def progress_from_list(data: List[Dict[str, Any]]) -> List[TrainingSection]:
    return sorted((TrainingSection.from_dict(d) for d in data), key=lambda s: s.position)
