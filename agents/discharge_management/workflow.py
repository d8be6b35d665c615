"""
Discharge Management Agent - Discharge Workflow

This module implements the state behind the discharge panel.

================================================================================
RESPONSIBILITIES
================================================================================

1. ACTIVE RECORD AGGREGATOR:
   Loads every active admission (newest admission date first) and every
   active consultation (newest request first) into one list, admissions
   before consultations. Either read failing empties the list.

2. DAILY DISCHARGE STATISTICS:
   For each configured specialty, counts admissions discharged today and
   consultations completed today. All counts run concurrently; any failure
   aborts the whole computation and the previous figures are kept.

3. DISCHARGE COMMAND HANDLER:
   Transitions the selected record (Admission -> Discharged,
   Consultation -> Completed), removes it from the local list only after
   the store confirms, clears the form and refreshes the statistics.

Every failure is reported once through the notification sink and raised as
a ``DischargeWorkflowError`` subclass; none of them is fatal.

    ┌──────────────┐   select/count/update   ┌───────────────┐
    │   Workflow   │ ──────────────────────► │  RecordStore  │
    │  (panel)     │                         └───────────────┘
    │              │   success / failure     ┌───────────────┐
    │              │ ──────────────────────► │ Notifications │
    └──────────────┘                         └───────────────┘

================================================================================
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from .notifications import NotificationSink
from .records import (
    ActiveRecord,
    Admission,
    AdmissionStatus,
    Consultation,
    ConsultationStatus,
    DailySpecialtyStatistic,
    DischargeForm,
    RecordKind,
    record_key,
)
from .search import filter_records
from .store import Condition, Ordering, RecordStore, StoreError, eq, gte, lte

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class DischargeWorkflowError(Exception):
    """Base class for user-facing workflow failures."""


class RemoteReadError(DischargeWorkflowError):
    """Loading the active admissions or consultations failed."""


class RemoteCountError(DischargeWorkflowError):
    """A daily statistics count failed."""


class DischargeValidationError(DischargeWorkflowError):
    """No usable selection, or discharge date/time missing."""


class RemoteWriteError(DischargeWorkflowError):
    """The store rejected the discharge update."""


class RecordNotFoundError(DischargeWorkflowError):
    """The requested record is not in the active list."""


# =============================================================================
# CLOCK
# =============================================================================

class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Current local time, timezone-aware."""

    def now(self) -> datetime:
        return datetime.now().astimezone()


def day_window(moment: datetime) -> Tuple[datetime, datetime]:
    """[00:00:00, 23:59:59] of the calendar day containing ``moment``."""
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    end = moment.replace(hour=23, minute=59, second=59, microsecond=0)
    return start, end


# =============================================================================
# WORKFLOW
# =============================================================================

READ_FAILURE_MESSAGE = "Failed to fetch active records"
COUNT_FAILURE_MESSAGE = "Failed to fetch discharge statistics"
VALIDATION_FAILURE_MESSAGE = "Please fill in all required fields"
WRITE_FAILURE_MESSAGE = "Failed to discharge record"
DISCHARGE_SUCCESS_MESSAGE = "Record discharged successfully"


class DischargeWorkflow:
    """
    Panel state plus the operations staff perform on it.

    The workflow owns transient copies only; the store stays authoritative.

    Example:
        >>> workflow = DischargeWorkflow(store, RecentNotifications(), ["Neurology"])
        >>> await workflow.load()
        >>> workflow.select(RecordKind.ADMISSION, "A1")
        >>> await workflow.discharge("2024-03-01", "10:00", "stable")
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: NotificationSink,
        specialties: Sequence[str],
        clock: Optional[Clock] = None,
        admissions_table: str = "patients",
        consultations_table: str = "consultations",
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.specialties: List[str] = list(specialties)
        self.clock: Clock = clock or SystemClock()
        self.admissions_table = admissions_table
        self.consultations_table = consultations_table

        self.records: List[ActiveRecord] = []
        self.statistics: List[DailySpecialtyStatistic] = []
        self.statistics_computed_at: Optional[datetime] = None
        self.selected: Optional[ActiveRecord] = None
        self.form = DischargeForm()
        self._in_flight: Set[Tuple[RecordKind, str]] = set()
        self.loading = True

    # ----- Initial load ------------------------------------------------

    async def load(self) -> None:
        """Run the aggregator and the statistics independently."""
        results = await asyncio.gather(
            self.fetch_active_records(),
            self.fetch_discharge_stats(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, DischargeWorkflowError):
                logger.warning(f"Initial load incomplete: {result}")
            elif isinstance(result, BaseException):
                raise result

    # ----- Active Record Aggregator -------------------------------------

    async def fetch_active_records(self) -> List[ActiveRecord]:
        """Reload the active list from the store (all-or-nothing)."""
        try:
            admission_rows, consultation_rows = await asyncio.gather(
                self.store.select(
                    self.admissions_table,
                    [eq("patient_status", AdmissionStatus.ACTIVE.value)],
                    Ordering("admission_date", descending=True),
                ),
                self.store.select(
                    self.consultations_table,
                    [eq("status", ConsultationStatus.ACTIVE.value)],
                    Ordering("created_at", descending=True),
                ),
            )
            records: List[ActiveRecord] = [Admission.from_row(r) for r in admission_rows or []]
            records.extend(Consultation.from_row(r) for r in consultation_rows or [])
        except (StoreError, TypeError, ValueError) as exc:
            logger.error(f"Error fetching active records: {exc}", exc_info=True)
            self.records = []
            self.notifier.notify_failure(READ_FAILURE_MESSAGE)
            raise RemoteReadError(READ_FAILURE_MESSAGE) from exc
        finally:
            self.loading = False

        self.records = records
        logger.info(
            f"Loaded {len(records)} active records "
            f"({len(admission_rows or [])} admissions, {len(consultation_rows or [])} consultations)"
        )
        return records

    def filtered_records(self, search_term: str = "", specialty: Optional[str] = None) -> List[ActiveRecord]:
        return filter_records(self.records, search_term, specialty)

    # ----- Daily Discharge Statistics ------------------------------------

    async def fetch_discharge_stats(self) -> List[DailySpecialtyStatistic]:
        """
        Recompute today's per-specialty discharge counts.

        Specialties with no discharged admission and no completed
        consultation today are left out. On failure the previously computed
        statistics are kept as they were.
        """
        now = self.clock.now()
        start, end = day_window(now)

        async def specialty_counts(specialty: str) -> DailySpecialtyStatistic:
            admissions, consultations = await asyncio.gather(
                self.store.count(
                    self.admissions_table,
                    [
                        eq("specialty", specialty),
                        eq("patient_status", AdmissionStatus.DISCHARGED.value),
                        gte("updated_at", start),
                        lte("updated_at", end),
                    ],
                ),
                self.store.count(
                    self.consultations_table,
                    [
                        eq("consultation_specialty", specialty),
                        eq("status", ConsultationStatus.COMPLETED.value),
                        gte("updated_at", start),
                        lte("updated_at", end),
                    ],
                ),
            )
            return DailySpecialtyStatistic(
                specialty=specialty,
                admissions=admissions or 0,
                consultations=consultations or 0,
            )

        try:
            results = await asyncio.gather(
                *(specialty_counts(specialty) for specialty in self.specialties)
            )
        except StoreError as exc:
            logger.error(f"Error fetching discharge stats: {exc}", exc_info=True)
            self.notifier.notify_failure(COUNT_FAILURE_MESSAGE)
            raise RemoteCountError(COUNT_FAILURE_MESSAGE) from exc

        self.statistics = [stat for stat in results if stat.has_activity]
        self.statistics_computed_at = now
        logger.info(
            f"Discharge statistics for {start.date().isoformat()}: "
            f"{len(self.statistics)} of {len(self.specialties)} specialties active"
        )
        return self.statistics

    # ----- Selection and form --------------------------------------------

    def find_record(self, kind: RecordKind, mrn: str) -> Optional[ActiveRecord]:
        key = (RecordKind(kind), mrn)
        return next((r for r in self.records if record_key(r) == key), None)

    def select(self, kind: RecordKind, mrn: str) -> ActiveRecord:
        record = self.find_record(kind, mrn)
        if record is None:
            raise RecordNotFoundError(f"No active {RecordKind(kind).value} with MRN {mrn}")
        self.selected = record
        return record

    def clear_selection(self) -> None:
        self.selected = None

    def update_form(
        self,
        discharge_date: Optional[str] = None,
        discharge_time: Optional[str] = None,
        discharge_note: Optional[str] = None,
    ) -> DischargeForm:
        if discharge_date is not None:
            self.form.discharge_date = discharge_date
        if discharge_time is not None:
            self.form.discharge_time = discharge_time
        if discharge_note is not None:
            self.form.discharge_note = discharge_note
        return self.form

    # ----- Discharge Command Handler ---------------------------------------

    async def discharge(
        self,
        discharge_date: Optional[str] = None,
        discharge_time: Optional[str] = None,
        discharge_note: Optional[str] = None,
    ) -> ActiveRecord:
        """
        Submit the panel's discharge form for the selected record.

        Args:
            discharge_date / discharge_time / discharge_note: optional form
                values applied before submitting

        Returns:
            The record that was discharged

        Raises:
            DischargeValidationError: no current selection or missing date/time
            RemoteWriteError: the store update failed
        """
        self.update_form(discharge_date, discharge_time, discharge_note)
        form = DischargeForm(
            self.form.discharge_date,
            self.form.discharge_time,
            self.form.discharge_note,
        )
        return await self._submit(self.selected, form)

    async def discharge_record(self, kind: RecordKind, mrn: str, form: DischargeForm) -> ActiveRecord:
        """
        Discharge the named record with the given form values.

        Unlike ``discharge`` this does not read the shared selection, so
        each caller states which record its form applies to.
        """
        return await self._submit(self.find_record(kind, mrn), form)

    async def _submit(self, record: Optional[ActiveRecord], form: DischargeForm) -> ActiveRecord:
        if (
            record is None
            or self.find_record(record.kind, record.mrn) is None
            or record_key(record) in self._in_flight
            or not form.is_complete()
        ):
            self.notifier.notify_failure(VALIDATION_FAILURE_MESSAGE)
            raise DischargeValidationError(VALIDATION_FAILURE_MESSAGE)

        key = record_key(record)
        table, filters, patch = self._discharge_update(record, form)
        self._in_flight.add(key)
        try:
            matched = await self.store.update(table, filters, patch)
        except StoreError as exc:
            logger.error(f"Error discharging {record.kind.value} {record.mrn}: {exc}", exc_info=True)
            self.notifier.notify_failure(f"{WRITE_FAILURE_MESSAGE}: {exc}")
            raise RemoteWriteError(f"{WRITE_FAILURE_MESSAGE}: {exc}") from exc
        finally:
            self._in_flight.discard(key)

        if matched == 0:
            logger.warning(f"Discharge of {record.kind.value} {record.mrn} matched no rows")
        logger.info(f"Discharged {record.kind.value} {record.mrn} ({matched} row(s) updated)")

        self.notifier.notify_success(DISCHARGE_SUCCESS_MESSAGE)
        self.records = [r for r in self.records if r.mrn != record.mrn]
        # The selection may have moved on while the update was in flight
        if self.selected is not None and self.selected.mrn == record.mrn:
            self.selected = None
            self.form.clear()

        try:
            await self.fetch_discharge_stats()
        except RemoteCountError:
            logger.info("Statistics refresh after discharge failed; keeping previous figures")

        return record

    def _discharge_update(
        self,
        record: ActiveRecord,
        form: DischargeForm,
    ) -> Tuple[str, List[Condition], Dict[str, Any]]:
        now = self.clock.now()
        if isinstance(record, Admission):
            # Earlier stays share the MRN and are already discharged
            return self.admissions_table, [
                eq("mrn", record.mrn),
                eq("patient_status", AdmissionStatus.ACTIVE.value),
            ], {
                "patient_status": AdmissionStatus.DISCHARGED.value,
                "discharge_date": form.discharge_date,
                "discharge_time": form.discharge_time,
                "discharge_note": form.discharge_note or "",
                "updated_at": now,
            }
        # Consultations carry no discharge note, date or time
        return self.consultations_table, [
            eq("mrn", record.mrn),
            eq("status", ConsultationStatus.ACTIVE.value),
        ], {
            "status": ConsultationStatus.COMPLETED.value,
            "updated_at": now,
        }
