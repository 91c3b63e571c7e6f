import datetime

from medblock.models import MedicalRecord

# Test users
PATIENT_1 = "patient-1"
PATIENT_2 = "patient-2"
DOCTOR_1 = "doctor-1"
DOCTOR_2 = "doctor-2"

START = datetime.datetime(2025, 1, 15, 10, 0, 0, tzinfo=datetime.timezone.utc)


class FakeClock:
    """Controllable wall clock; every read advances it by `tick`"""

    def __init__(self, start=START, tick=datetime.timedelta(seconds=1)):
        self.current = start
        self.tick = tick

    def __call__(self):
        now = self.current
        self.current = self.current + self.tick
        return now

    def peek(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + datetime.timedelta(**kwargs)


def make_record(record_id, patient_id=PATIENT_1, doctor_id=DOCTOR_1, kind="diagnosis", title=None, **extra):
    return MedicalRecord(
        id=record_id,
        patient_id=patient_id,
        doctor_id=doctor_id,
        kind=kind,
        title=title or f"Record {record_id}",
        description=f"Description of {record_id}",
        timestamp=START,
        **extra
    )
