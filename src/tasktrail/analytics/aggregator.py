"""Derived metrics over task history."""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

import structlog

from tasktrail.effort import EffortError, parse_effort
from tasktrail.errors import ValidationError
from tasktrail.history.walker import HistoryWalker
from tasktrail.models.analytics import (
    ActivityItem,
    AuthorActivity,
    ChurnItem,
    EffortGroup,
    EffortSummary,
    StaleItem,
    StatusDuration,
    TimeInStatusResult,
)
from tasktrail.models.history import ChangeEvent
from tasktrail.models.task import IndexEntry
from tasktrail.store.filters import TaskFilter
from tasktrail.store.paths import task_id_from_path
from tasktrail.store.provider import canonical_key
from tasktrail.store.task_store import TaskStore
from tasktrail.window import Scope, TimeWindow, ensure_utc, parse_duration

logger = structlog.get_logger(__name__)

ACTIVITY_GROUPS = ("day", "week", "author", "project")
EFFORT_GROUPS = ("assignee", "status", "project", "type", "priority")
NO_VALUE = "(none)"

# (moment, status active from that moment; None once the record is gone)
Transition = Tuple[datetime, Optional[str]]


def status_timeline(events: Iterable[ChangeEvent]) -> List[Transition]:
    """Extract status transitions from committed events given oldest first."""
    timeline: List[Transition] = []
    for event in events:
        if event.is_working_tree:
            continue
        by_field = {change.field: change for change in event.changes}
        status = by_field["status"].new if "status" in by_field else None
        if "deleted" in by_field:
            timeline.append((event.timestamp, None))
        elif "created" in event.kinds() or "status" in by_field:
            timeline.append((event.timestamp, status))
    return timeline


def status_durations(
    timeline: List[Transition], since: Optional[datetime], until: datetime
) -> Dict[str, float]:
    """Attribute the time between transitions to the active status.

    The status active at ``since`` comes from the latest transition at or
    before it. The final open interval runs to ``until``. Durations add up
    to ``until - max(since, first transition)`` except where no status is set.

    Returns:
        Mapping of status to seconds
    """
    if not timeline:
        return {}
    start = max(since, timeline[0][0]) if since else timeline[0][0]
    if start >= until:
        return {}

    current: Optional[str] = None
    for moment, status in timeline:
        if moment <= start:
            current = status
    durations: Dict[str, float] = {}
    cursor = start
    for moment, status in timeline:
        if moment <= start:
            continue
        if moment > until:
            break
        if current is not None:
            durations[current] = durations.get(current, 0.0) + (moment - cursor).total_seconds()
        cursor, current = moment, status
    if current is not None:
        durations[current] = durations.get(current, 0.0) + (until - cursor).total_seconds()
    return durations


def _week_key(moment: datetime) -> str:
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


class Analytics:
    """Computes time-in-status, churn, authorship, activity and effort metrics.

    History-derived metrics only read the git log; effort aggregation reads
    the task index.

    Example:
        >>> analytics = Analytics(HistoryWalker(settings), TaskStore(settings))
        >>> analytics.churn(window=TimeWindow.parse(since="30d"))
    """

    def __init__(self, walker: HistoryWalker, store: Optional[TaskStore] = None) -> None:
        self.walker = walker
        self.store = store

    def _task_ids(self, scope: Scope) -> List[str]:
        if scope.task_ids:
            return list(scope.task_ids)
        seen: Dict[str, Tuple[str, int]] = {}
        for record in self.walker.commit_log(scope):
            for path in record.paths:
                task_id, prefix, sequence = task_id_from_path(path)
                seen[task_id] = (prefix, sequence)
        return sorted(seen, key=lambda task_id: seen[task_id])

    def time_in_status(
        self, scope: Optional[Scope] = None, window: Optional[TimeWindow] = None
    ) -> TimeInStatusResult:
        """Time spent in each status by the tasks of a scope.

        Args:
            scope: Tasks to include (default: every task with history)
            window: Query window (default: all history up to now)

        Returns:
            Totals per status (descending), with a per-task breakdown
        """
        scope = scope or Scope()
        window = window or TimeWindow()
        since, until = window.bounds()

        histories = self.walker.histories(self._task_ids(scope))
        totals: Dict[str, float] = {}
        result = TimeInStatusResult(since=since, until=until)
        for task_id, history in histories.items():
            result.skipped_revisions += history.skipped_revisions
            durations = status_durations(status_timeline(reversed(history.events)), since, until)
            if not durations:
                continue
            result.per_task[task_id] = durations
            for status, seconds in durations.items():
                totals[status] = totals.get(status, 0.0) + seconds

        grand_total = sum(totals.values())
        result.items = [
            StatusDuration(
                status=status,
                seconds=seconds,
                hours=round(seconds / 3600.0, 2),
                percent=seconds / grand_total if grand_total else 0.0,
            )
            for status, seconds in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        ]
        logger.debug("time_in_status_computed", tasks=len(result.per_task), statuses=len(totals))
        return result

    def churn(self, scope: Optional[Scope] = None, window: Optional[TimeWindow] = None) -> List[ChurnItem]:
        """Commit counts per task inside the window, most changed first."""
        summaries = self.walker.last_changes(scope, window)
        items = [
            ChurnItem(
                task_id=summary.task_id,
                project=summary.project,
                path=summary.path,
                commits=summary.commits,
                last_commit=summary.last_commit,
                last_author=summary.last_author,
                last_date=summary.last_date,
            )
            for summary in summaries
        ]
        items.sort(key=lambda item: (-item.commits, -item.last_date.timestamp(), item.task_id))
        return items

    def authors(self, scope: Optional[Scope] = None, window: Optional[TimeWindow] = None) -> List[AuthorActivity]:
        """Commit authors with their commit counts, most active first."""
        found: Dict[str, AuthorActivity] = {}
        for record in self.walker.commit_log(scope, window):
            activity = found.get(record.author)
            if activity is None:
                found[record.author] = AuthorActivity(
                    author=record.author, email=record.email, commits=1, last_date=record.timestamp
                )
            else:
                activity.commits += 1
        return sorted(found.values(), key=lambda item: (-item.commits, -item.last_date.timestamp(), item.author))

    def activity(
        self,
        scope: Optional[Scope] = None,
        window: Optional[TimeWindow] = None,
        group_by: str = "day",
    ) -> List[ActivityItem]:
        """Count commits per bucket.

        Args:
            scope: Tasks to include
            window: Query window
            group_by: One of day (YYYY-MM-DD), week (YYYY-Www), author, project

        Raises:
            ValidationError: If group_by is not supported
        """
        if group_by not in ACTIVITY_GROUPS:
            raise ValidationError("group_by", f"expected one of {', '.join(ACTIVITY_GROUPS)}")
        buckets: Dict[str, ActivityItem] = {}
        for record in self.walker.commit_log(scope, window):
            if group_by == "day":
                keys = [record.timestamp.strftime("%Y-%m-%d")]
            elif group_by == "week":
                keys = [_week_key(record.timestamp)]
            elif group_by == "author":
                keys = [record.author]
            else:
                keys = sorted({task_id_from_path(path)[1] for path in record.paths})
            for key in keys:
                item = buckets.get(key)
                if item is None:
                    buckets[key] = ActivityItem(key=key, count=1, last_date=record.timestamp)
                else:
                    item.count += 1
                    item.last_date = max(item.last_date, record.timestamp)
        return sorted(buckets.values(), key=lambda item: (-item.count, -item.last_date.timestamp(), item.key))

    def _entries(self, scope: Scope) -> List[IndexEntry]:
        if self.store is None:
            raise ValidationError("store", "effort aggregation needs a task store")
        entries = self.store.list(TaskFilter(project=scope.project))
        if scope.task_ids:
            wanted = set(scope.task_ids)
            entries = [entry for entry in entries if entry.id in wanted]
        return entries

    def effort(
        self,
        scope: Optional[Scope] = None,
        group_by: Optional[str] = None,
        transitions: Optional[str] = None,
        window: Optional[TimeWindow] = None,
    ) -> EffortSummary:
        """Aggregate effort across the current tasks of a scope.

        Unparsable values are excluded from the totals and reported by task id.

        Args:
            scope: Tasks to include
            group_by: Optional grouping: assignee, status, project, type or priority
            transitions: Keep only tasks that moved into this status inside
                ``window``, according to the git history
            window: Window for ``transitions`` (default: all history)
        """
        if group_by is not None and group_by not in EFFORT_GROUPS:
            raise ValidationError("group_by", f"expected one of {', '.join(EFFORT_GROUPS)}")
        entries = self._entries(scope or Scope())
        if transitions:
            entered = self.entered_status(transitions, [entry.id for entry in entries], window)
            entries = [entry for entry in entries if entry.id in entered]
        return summarize_effort(entries, group_by)

    def entered_status(
        self, status: str, task_ids: List[str], window: Optional[TimeWindow] = None
    ) -> Set[str]:
        """Tasks whose committed status changed into ``status`` inside the window.

        A task created with that status counts as entering it. Status values
        are compared ignoring case and separators.
        """
        target = canonical_key(status)
        window = window or TimeWindow()
        _, until = window.bounds()
        entered: Set[str] = set()
        for task_id, history in self.walker.histories(task_ids).items():
            previous: Optional[str] = None
            for moment, current in status_timeline(reversed(history.events)):
                if moment > until:
                    break
                is_target = current is not None and canonical_key(current) == target
                was_target = previous is not None and canonical_key(previous) == target
                if is_target and not was_target and window.contains(moment):
                    entered.add(task_id)
                    break
                previous = current
        return entered

    def stale(
        self,
        threshold: Union[str, timedelta],
        scope: Optional[Scope] = None,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[StaleItem]:
        """Tasks whose last commit is at least ``threshold`` old, oldest first.

        Records that no longer exist on disk are left out when a store is
        attached.

        Args:
            threshold: Minimum age, e.g. ``21d`` or ``8w``
            scope: Tasks to include
            now: Reference time (default: current time)
            limit: Maximum number of items
        """
        age = parse_duration(threshold) if isinstance(threshold, str) else threshold
        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        items: List[StaleItem] = []
        for summary in self.walker.last_changes(scope):
            if now - summary.last_date < age:
                continue
            if self.store is not None and not self.store.exists(summary.task_id):
                continue
            items.append(
                StaleItem(
                    task_id=summary.task_id,
                    project=summary.project,
                    path=summary.path,
                    last_commit=summary.last_commit,
                    last_author=summary.last_author,
                    last_date=summary.last_date,
                    age_days=(now - summary.last_date).days,
                )
            )
        items.sort(key=lambda item: (item.last_date, item.task_id))
        logger.debug("stale_tasks_found", count=len(items), threshold=str(age))
        return items[:limit] if limit is not None else items


def summarize_effort(entries: Iterable[IndexEntry], group_by: Optional[str] = None) -> EffortSummary:
    """Sum and average parsed effort over index entries."""
    summary = EffortSummary()
    hour_counts: Dict[str, int] = {}
    groups: Dict[str, EffortGroup] = {}
    timed = 0

    for entry in entries:
        key = str(getattr(entry, group_by) or NO_VALUE) if group_by else ""
        group = groups.setdefault(key, EffortGroup(key=key)) if group_by else None
        if not entry.effort or not entry.effort.strip():
            summary.missing += 1
            continue
        try:
            parsed = parse_effort(entry.effort)
        except EffortError as e:
            logger.debug("effort_unparsable", task_id=entry.id, effort=entry.effort, error=str(e))
            summary.unparsable.append(entry.id)
            continue
        summary.counted += 1
        if group is not None:
            group.tasks += 1
        if parsed.kind == "time":
            timed += 1
            summary.total_hours += parsed.value
            if group is not None:
                group.total_hours += parsed.value
                hour_counts[key] = hour_counts.get(key, 0) + 1
        else:
            summary.total_points += parsed.value
            if group is not None:
                group.total_points += parsed.value

    summary.average_hours = summary.total_hours / timed if timed else None
    for key, group in groups.items():
        if hour_counts.get(key):
            group.average_hours = group.total_hours / hour_counts[key]
    summary.groups = [groups[key] for key in sorted(groups)]
    return summary
