"""Turn Timewarrior intervals into MOCO activities."""

from __future__ import annotations

from dataclasses import replace
from datetime import timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from moco_common import (
    DEFAULT_CONTEXT_TAG,
    DEFAULT_FUZZY_THRESHOLD,
    DEFAULT_TASK_TERM,
    ConfigError,
    Interval,
    MocoActivity,
    MocoProject,
    MocoTask,
    NotFoundError,
    ValidationError,
    debug,
    parse_timew_timestamp,
    warn,
)
from moco_search import fuzzy_find, fuzzy_rank

NO_BILL_TAGS = frozenset(
    {
        "vacation",
        "holiday",
        "sick",
        "illness",
        "ill",
        "non-billabe",
        "nobi",
        "nobill",
        "no-bill",
        "unbillable",
        "unbill",
        "un-bill",
        "nonbillable",
        "nonbill",
        "non-bill",
        "non-billable",
    }
)


def is_no_bill_tag(tag: str) -> bool:
    return tag.strip().lower() in NO_BILL_TAGS


def compute_seconds(start: str, end: str) -> int:
    """Return the elapsed seconds between two timew timestamps."""

    start_dt = parse_timew_timestamp(start)
    end_dt = parse_timew_timestamp(end)
    if end_dt < start_dt:
        raise ValidationError(f"End {end} is before start {start}")
    return int((end_dt - start_dt).total_seconds())


def activity_date(start: str) -> str:
    return parse_timew_timestamp(start).astimezone(timezone.utc).strftime("%Y-%m-%d")


class IntervalTransformer:
    """Match intervals against a fixed project catalog and build activities.

    The catalog is read once at construction and never modified.
    """

    def __init__(
        self,
        projects: Sequence[Union[MocoProject, Mapping]],
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
        default_task: str = DEFAULT_TASK_TERM,
        context_tag: str = DEFAULT_CONTEXT_TAG,
        fail_on_missing_task: bool = False,
    ) -> None:
        self.projects = self._validate_projects(projects)
        self.fuzzy_threshold = fuzzy_threshold
        self.default_task = default_task
        self.context_tag = context_tag
        self.fail_on_missing_task = fail_on_missing_task

    @staticmethod
    def _validate_projects(
        projects: Sequence[Union[MocoProject, Mapping]],
    ) -> Tuple[MocoProject, ...]:
        if not isinstance(projects, (list, tuple)):
            raise ConfigError("Projects must be a list of MOCO projects")

        validated = []
        for project in projects:
            if isinstance(project, MocoProject):
                validated.append(project)
            elif isinstance(project, Mapping):
                validated.append(MocoProject.from_dict(project))
            else:
                raise ConfigError(f"Not a MOCO project: {project!r}")

        if not validated:
            warn("No projects provided to IntervalTransformer")
        return tuple(validated)

    def to_activity(self, interval: Interval) -> Optional[MocoActivity]:
        """Build the activity for one interval, or ``None`` if no task can take it."""

        self._validate_interval(interval)

        project = self.find_project(interval.project)
        task = self.find_task(interval.tags, project)
        if task is None:
            debug(f"interval {interval.id} skipped, no active task")
            return None

        activity = MocoActivity(
            project_id=project.id,
            task_id=task.id,
            date=activity_date(interval.start),
            seconds=compute_seconds(interval.start, interval.end),
            description=interval.description,
        )
        if any(is_no_bill_tag(tag) for tag in interval.tags):
            activity.billable = False

        debug(
            f"interval {interval.id} -> {project.name} / {task.name} "
            f"({activity.seconds}s on {activity.date})"
        )
        return activity

    def find_project(self, search_term: str) -> MocoProject:
        project = fuzzy_find(
            self.projects, search_term, ["name"], threshold=self.fuzzy_threshold
        )
        if project is None:
            raise NotFoundError(
                f'Could not find project for interval with project name: "{search_term}"'
            )
        if not project.tasks:
            raise ConfigError(
                f'Project "{project.name}" (ID: {project.id}) has no tasks defined'
            )
        return project

    def task_search_terms(self, tags: Iterable[str]) -> List[str]:
        terms = [
            tag
            for tag in tags
            if tag != self.context_tag and not is_no_bill_tag(tag)
        ]
        return terms or [self.default_task]

    def find_task(self, tags: Sequence[str], project: MocoProject) -> Optional[MocoTask]:
        active_tasks = [task for task in project.tasks if task.active]
        if not active_tasks:
            if self.fail_on_missing_task:
                raise ConfigError(
                    f'Project "{project.name}" (ID: {project.id}) has no active tasks'
                )
            warn(f'No active tasks found for project "{project.name}"')
            return None

        ranked = fuzzy_rank(active_tasks, self.task_search_terms(tags), ["name"])
        return ranked[0].thing

    @staticmethod
    def _validate_interval(interval: Interval) -> None:
        if interval is None:
            raise ValidationError("Interval cannot be None")
        if not interval.start or not interval.end:
            raise ValidationError(f"Interval {interval.id} must have start and end dates")
        if not interval.project:
            raise ValidationError(f"Interval {interval.id} must have a project name")


def transform_intervals(
    transformer: IntervalTransformer,
    intervals: Iterable[Interval],
    skip_invalid: bool = False,
) -> List[Optional[MocoActivity]]:
    """Transform a batch; with ``skip_invalid`` failing intervals become ``None``."""

    drafts: List[Optional[MocoActivity]] = []
    for interval in intervals:
        try:
            drafts.append(transformer.to_activity(interval))
        except (ValidationError, NotFoundError, ConfigError) as exc:
            if not skip_invalid:
                raise
            warn(f"Skipping interval {interval.id}: {exc}")
            drafts.append(None)
    return drafts


def summarize(activities: Iterable[Optional[MocoActivity]]) -> List[MocoActivity]:
    """Merge activities sharing date, project and description by summing seconds."""

    summarized: List[MocoActivity] = []
    by_key: Dict[Tuple[str, int, str], MocoActivity] = {}

    for activity in activities:
        if activity is None:
            continue
        key = activity.group_key()
        existing = by_key.get(key)
        if existing is not None:
            existing.seconds += activity.seconds
            continue
        merged = replace(activity)
        by_key[key] = merged
        summarized.append(merged)

    return summarized
