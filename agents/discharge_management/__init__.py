"""
Discharge Management Agent
==========================

Backend of the ward discharge panel: lists active admissions and active
consultation requests, lets staff search and filter them, records
discharges/completions and reports today's discharges per specialty.

Components:
-----------
- config: Environment configuration (store, specialties, API, logging)
- records: Admission / Consultation tagged variant and derived types
- store: RecordStore gateway (SQLAlchemy and in-memory implementations)
- notifications: Success/failure notification sink
- search: Client-side search and specialty filter
- workflow: DischargeWorkflow (aggregator, statistics, discharge handler)
- api: FastAPI REST endpoints

Usage Example:
--------------
```python
from agents.discharge_management.notifications import RecentNotifications
from agents.discharge_management.records import RecordKind
from agents.discharge_management.store import InMemoryRecordStore
from agents.discharge_management.workflow import DischargeWorkflow

workflow = DischargeWorkflow(store, RecentNotifications(), ["Neurology"])
await workflow.load()
workflow.select(RecordKind.ADMISSION, "A1")
await workflow.discharge("2024-03-01", "10:00", "stable")
```

Port: 8005

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Hospital AI Team"
