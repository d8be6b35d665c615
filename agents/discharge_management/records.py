"""
Discharge Management Agent - Record Types

Admissions and consultations are the two kinds of "active record" shown on
the discharge panel. They are modelled as an explicit tagged variant: each
dataclass carries a ``kind`` discriminator, and rows coming from the record
store are converted by table of origin rather than by sniffing fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union


class RecordKind(str, Enum):
    """Discriminator of the active-record variant."""
    ADMISSION = "admission"
    CONSULTATION = "consultation"


class AdmissionStatus(str, Enum):
    """Lifecycle of an inpatient stay (only Active -> Discharged here)."""
    ACTIVE = "Active"
    DISCHARGED = "Discharged"


class ConsultationStatus(str, Enum):
    """Lifecycle of a consultation request (only Active -> Completed here)."""
    ACTIVE = "Active"
    COMPLETED = "Completed"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _known_fields(cls, row: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls) if f.init}
    return {key: value for key, value in row.items() if key in names}


@dataclass
class Admission:
    """
    One inpatient stay.

    Attributes:
        mrn: Medical record number (store key for updates)
        patient_name: Display name
        specialty: Admitting specialty
        patient_status: Active until discharged
        discharge_*: Set only by the discharge transition
    """
    kind: ClassVar[RecordKind] = RecordKind.ADMISSION
    kind_label: ClassVar[str] = "Admission"
    accepts_discharge_note: ClassVar[bool] = True

    mrn: str
    patient_name: str
    specialty: str
    admission_date: Any = None
    admission_time: Any = None
    patient_status: str = AdmissionStatus.ACTIVE.value
    discharge_date: Any = None
    discharge_time: Any = None
    discharge_note: Optional[str] = None
    updated_at: Any = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Admission":
        return cls(**_known_fields(cls, row))

    @property
    def specialty_name(self) -> str:
        return self.specialty

    @property
    def display_date(self) -> str:
        return _as_text(self.admission_date)

    @property
    def requesting_department(self) -> Optional[str]:
        return None


@dataclass
class Consultation:
    """One specialist consultation request."""
    kind: ClassVar[RecordKind] = RecordKind.CONSULTATION
    kind_label: ClassVar[str] = "Consultation"
    accepts_discharge_note: ClassVar[bool] = False

    mrn: str
    patient_name: str
    consultation_specialty: str
    created_at: Any = None
    status: str = ConsultationStatus.ACTIVE.value
    requesting_department: Optional[str] = None
    updated_at: Any = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Consultation":
        return cls(**_known_fields(cls, row))

    @property
    def specialty_name(self) -> str:
        return self.consultation_specialty

    @property
    def display_date(self) -> str:
        created = _parse_datetime(self.created_at)
        return created.date().isoformat() if created else ""


ActiveRecord = Union[Admission, Consultation]


def record_key(record: ActiveRecord) -> tuple:
    """Identity of a record on the panel (MRNs may repeat across kinds)."""
    return (record.kind, record.mrn)


@dataclass
class DailySpecialtyStatistic:
    """Same-day discharge activity for one specialty."""
    specialty: str
    admissions: int = 0
    consultations: int = 0

    @property
    def has_activity(self) -> bool:
        return self.admissions > 0 or self.consultations > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "specialty": self.specialty,
            "discharged_today": {
                "admissions": self.admissions,
                "consultations": self.consultations,
            },
        }


@dataclass
class DischargeForm:
    """Fields typed into the discharge form for the selected record."""
    discharge_date: str = ""
    discharge_time: str = ""
    discharge_note: str = ""

    def is_complete(self) -> bool:
        return bool(self.discharge_date) and bool(self.discharge_time)

    def clear(self) -> None:
        self.discharge_date = ""
        self.discharge_time = ""
        self.discharge_note = ""


@dataclass
class Notification:
    """A message shown to staff (toast)."""
    level: str
    message: str
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }
