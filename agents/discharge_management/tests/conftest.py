"""Shared fixtures for the discharge management tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from agents.discharge_management.notifications import RecentNotifications
from agents.discharge_management.store import InMemoryRecordStore
from agents.discharge_management.workflow import DischargeWorkflow


LOCAL_TZ = timezone(timedelta(hours=1))
NOW = datetime(2024, 3, 1, 14, 30, tzinfo=LOCAL_TZ)
SPECIALTIES = ["Neurology", "Hematology"]


class FixedClock:
    """Clock pinned to a known instant."""

    def __init__(self, moment: datetime = NOW):
        self.moment = moment

    def now(self) -> datetime:
        return self.moment


class RecordingStore(InMemoryRecordStore):
    """In-memory store that remembers every update call."""

    def __init__(self, tables=None):
        super().__init__(tables)
        self.updates = []

    async def update(self, table, filters, patch):
        self.updates.append({"table": table, "filters": list(filters), "patch": dict(patch)})
        return await super().update(table, filters, patch)


class SlowUpdateStore(RecordingStore):
    """Recording store whose updates yield to the event loop before applying."""

    def __init__(self, tables=None, delay: float = 0.01):
        super().__init__(tables)
        self.delay = delay

    async def update(self, table, filters, patch):
        await asyncio.sleep(self.delay)
        return await super().update(table, filters, patch)


def admission_row(mrn, name, specialty, admission_date="2024-02-28", **overrides):
    row = {
        "mrn": mrn,
        "patient_name": name,
        "admission_date": admission_date,
        "admission_time": "08:15",
        "patient_status": "Active",
        "specialty": specialty,
        "discharge_date": None,
        "discharge_time": None,
        "discharge_note": None,
        "updated_at": datetime(2024, 2, 28, 8, 15, tzinfo=LOCAL_TZ),
    }
    row.update(overrides)
    return row


def consultation_row(mrn, name, specialty, created_at=None, **overrides):
    row = {
        "mrn": mrn,
        "patient_name": name,
        "created_at": created_at or datetime(2024, 2, 29, 9, 0, tzinfo=LOCAL_TZ),
        "status": "Active",
        "consultation_specialty": specialty,
        "requesting_department": "Emergency",
        "updated_at": datetime(2024, 2, 29, 9, 0, tzinfo=LOCAL_TZ),
    }
    row.update(overrides)
    return row


@pytest.fixture
def store():
    """Store holding one active admission and one active consultation."""
    return RecordingStore({
        "patients": [admission_row("A1", "John Doe", "Neurology")],
        "consultations": [consultation_row("C1", "Jane Roe", "Hematology")],
    })


@pytest.fixture
def notifier():
    return RecentNotifications()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def workflow(store, notifier, clock):
    return DischargeWorkflow(store, notifier, SPECIALTIES, clock=clock)
