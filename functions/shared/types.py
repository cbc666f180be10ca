"""
Shared Type Definitions.

TypedDicts for the stored records.
Timestamps are epoch milliseconds.
"""

from typing import TypedDict


class DependentCountSnapshot(TypedDict):
    """
    Earlier dependent count used as the forecast baseline.

    updated_at is when the count was recorded, refreshed_at when it was
    captured as the baseline.
    """

    count: int
    updated_at: int
    refreshed_at: int


class GithubOwner(TypedDict, total=False):
    name: str
    name_normalized: str
    star_count: int
    contributor_count: int
    dependent_count: int
    dependent_count_previous: DependentCountSnapshot
    dependent_count_updated_at: int
    updated_at: int


class GithubRepo(TypedDict, total=False):
    owner: str
    owner_normalized: str
    name: str
    name_normalized: str
    star_count: int
    contributor_count: int
    dependent_count: int
    dependent_count_previous: DependentCountSnapshot
    dependent_count_updated_at: int
    updated_at: int


class NpmOrg(TypedDict, total=False):
    name: str
    download_count: int
    download_count_updated_at: int
    day_of_week_averages: list[int]
    updated_at: int


class NpmPackage(TypedDict, total=False):
    name: str
    org: str
    download_count: int
    download_count_updated_at: int
    day_of_week_averages: list[int]
    updated_at: int

