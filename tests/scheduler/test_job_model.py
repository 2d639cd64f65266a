"""Tests for chime/scheduler/job.py"""
from __future__ import annotations

from chime.scheduler.job import Job, JobKind


def test_kind_is_coerced_from_string():
    job = Job(kind="IMAGE", payload="cat.png", due_at=100.0)
    assert job.kind is JobKind.IMAGE


def test_new_jobs_are_active_with_unique_ids():
    a = Job(kind=JobKind.TEXT, payload="a", due_at=1.0)
    b = Job(kind=JobKind.TEXT, payload="b", due_at=1.0)
    assert a.active and b.active
    assert a.id != b.id


def test_delay_never_negative():
    job = Job(kind=JobKind.TEXT, payload="x", due_at=100.0)
    assert job.delay(now=40.0) == 60.0
    assert job.delay(now=500.0) == 0.0


def test_dict_round_trip_keeps_owner():
    job = Job(kind=JobKind.VIDEO, payload="clip.mp4", due_at=123.5, owner_id="agent1")
    restored = Job.from_dict(job.to_dict())
    assert restored == job
