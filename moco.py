#!/usr/bin/env python3

"""Timewarrior extension to book tracked intervals as MOCO activities."""

import json
import sys
from typing import List, Optional, Sequence

from moco_client import MocoClient
from moco_common import (
    ConfigError,
    Interval,
    MocoActivity,
    MocoConfig,
    MocoError,
    MocoProject,
    debug,
    load_projects_file,
    parse_report,
    resolve_report_config,
    set_debug,
)
from moco_transform import IntervalTransformer, summarize, transform_intervals


def load_catalog(config: MocoConfig, client: Optional[MocoClient]) -> List[MocoProject]:
    if config.projects_file:
        debug(f"loading projects from {config.projects_file}")
        return load_projects_file(config.projects_file)
    if client is None:
        raise ConfigError(
            "Set reports.moco.domain and reports.moco.api_key (or MOCO_API_KEY), "
            "or reports.moco.projects_file"
        )
    return client.get_assigned_projects(active_only=True)


def build_client(config: MocoConfig) -> Optional[MocoClient]:
    if not config.domain or not config.api_key:
        return None
    return MocoClient(config.domain, config.api_key, timeout=config.timeout)


def select_intervals(intervals: Sequence[Interval], exclude_tags: set) -> List[Interval]:
    """Drop the running interval and anything carrying an excluded tag."""

    selected: List[Interval] = []
    for interval in intervals:
        if not interval.end:
            debug(f"interval {interval.id} is still open, skipped")
            continue
        if exclude_tags and any(tag in exclude_tags for tag in interval.tags):
            debug(f"interval {interval.id} has an excluded tag, skipped")
            continue
        selected.append(interval)
    return selected


def write_preview(activities: Sequence[MocoActivity]) -> None:
    payload = [activity.as_payload() for activity in activities]
    sys.stdout.write(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def run(content: str) -> List[MocoActivity]:
    report = parse_report(content)
    config = resolve_report_config(report.config)
    set_debug(config.debug)

    client = build_client(config)
    projects = load_catalog(config, client)
    debug(f"{len(projects)} projects in catalog")

    transformer = IntervalTransformer(
        projects,
        fuzzy_threshold=config.fuzzy_threshold,
        default_task=config.default_task,
        context_tag=config.context_tag,
        fail_on_missing_task=config.fail_on_missing_task,
    )
    intervals = select_intervals(report.to_intervals(), config.exclude_tags)
    drafts = transform_intervals(transformer, intervals, skip_invalid=config.skip_invalid)
    activities = summarize(drafts)

    if not config.submit:
        write_preview(activities)
        return activities

    if client is None:
        raise ConfigError("Submitting requires reports.moco.domain and an API key")
    if activities:
        client.create_activities(activities)
    total_seconds = sum(activity.seconds for activity in activities)
    sys.stdout.write(
        f"Booked {len(activities)} activities ({total_seconds / 3600:.2f}h) in MOCO.\n"
    )
    return activities


def main() -> None:
    try:
        run(sys.stdin.read())
    except MocoError as exc:
        sys.stderr.write(f"{exc}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
