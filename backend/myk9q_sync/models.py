from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .organizations import OrganizationProfile
from .timefmt import format_mmss, format_precise, parse_seconds, to_whole_seconds

LICENSE_ACTIVE = "Active and Valid"
SCOPE_KINDS = ("show", "trial", "class")

RESULT_STATUS_BY_CODE = {
    "Q": "qualified",
    "NQ": "nq",
    "EX": "excused",
    "ABS": "absent",
    "WD": "withdrawn",
    "DQ": "nq",
}
CODE_BY_RESULT_STATUS = {
    "qualified": "Q",
    "nq": "NQ",
    "excused": "EX",
    "absent": "ABS",
    "withdrawn": "WD",
}


def result_status_for(code: Optional[str]) -> str:
    return RESULT_STATUS_BY_CODE.get((code or "").strip().upper(), "pending")


def result_code_for(status: Optional[str], disqualification_reason: Optional[str] = None) -> str:
    status_key = (status or "").strip().lower()
    if status_key == "nq" and (disqualification_reason or "").strip():
        return "DQ"
    return CODE_BY_RESULT_STATUS.get(status_key, "")


@dataclass(frozen=True)
class SyncScope:
    """Which part of the hierarchy a sync call covers."""

    kind: str
    local_id: int

    def __post_init__(self) -> None:
        if self.kind not in SCOPE_KINDS:
            raise ValueError(f"Scope must be one of {', '.join(SCOPE_KINDS)}, got '{self.kind}'")

    def label(self) -> str:
        return f"{self.kind} {self.local_id}"


@dataclass
class Show:
    show_id: int
    show_name: str
    club_name: str
    organization: str
    start_date: Optional[str]
    end_date: Optional[str]
    license_key: str
    license_status: str = ""
    show_status: str = ""
    site_name: str = ""
    site_address: str = ""
    site_city: str = ""
    site_state: str = ""
    site_zip: str = ""
    secretary_name: str = ""
    secretary_email: str = ""
    secretary_phone: str = ""
    chairman_name: str = ""
    chairman_email: str = ""
    chairman_phone: str = ""
    website: str = ""

    @property
    def license_active(self) -> bool:
        return (self.license_status or "").strip().lower() == LICENSE_ACTIVE.lower()

    def details_record(self) -> Dict[str, Any]:
        """Fields that may be re-patched after the first upload."""

        return {
            "show_status": self.show_status or None,
            "site_name": self.site_name or None,
            "site_address": self.site_address or None,
            "site_city": self.site_city or None,
            "site_state": self.site_state or None,
            "site_zip": self.site_zip or None,
            "secretary_name": self.secretary_name or None,
            "secretary_email": self.secretary_email or None,
            "secretary_phone": self.secretary_phone or None,
            "chairman_name": self.chairman_name or None,
            "chairman_email": self.chairman_email or None,
            "chairman_phone": self.chairman_phone or None,
            "website": self.website or None,
        }

    def to_record(self) -> Dict[str, Any]:
        return {
            "license_key": self.license_key,
            "show_name": self.show_name,
            "club_name": self.club_name,
            "organization": self.organization,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "access_show_id": self.show_id,
            **self.details_record(),
        }


@dataclass
class Trial:
    trial_id: int
    show_id: int
    trial_date: Optional[str]
    trial_number: int
    trial_type: str = ""

    def to_record(self, remote_show_id: int, show: Show) -> Dict[str, Any]:
        return {
            "show_id": remote_show_id,
            "trial_date": self.trial_date,
            "trial_number": self.trial_number,
            "competition_type": self.trial_type or None,
            "organization": show.organization,
            "license_key": show.license_key,
            "access_trial_id": self.trial_id,
        }


@dataclass
class ClassRow:
    class_id: int
    trial_id: int
    element: str
    level: str
    section: str = ""
    division: str = ""
    judge_name: str = ""
    time_limit: str = ""
    time_limit2: str = ""
    time_limit3: str = ""
    area_count: Optional[int] = None
    class_order: Optional[int] = None

    def label(self) -> str:
        parts = [self.element, self.level, self.section or self.division]
        return " ".join(part for part in parts if part)

    def to_record(self, remote_trial_id: int, profile: OrganizationProfile, license_key: str) -> Dict[str, Any]:
        areas = profile.area_count(self.element, self.level, self.area_count)
        return {
            "trial_id": remote_trial_id,
            "element": self.element,
            "level": self.level,
            "section": profile.section_value({"section": self.section, "division": self.division}),
            "judge_name": self.judge_name or None,
            "time_limit_seconds": to_whole_seconds(self.time_limit),
            "time_limit_area2_seconds": to_whole_seconds(self.time_limit2) if areas >= 2 else None,
            "time_limit_area3_seconds": to_whole_seconds(self.time_limit3) if areas >= 3 else None,
            "area_count": areas,
            "class_order": self.class_order,
            "license_key": license_key,
            "access_class_id": self.class_id,
        }


@dataclass
class EntryRow:
    entry_id: int
    class_id: int
    armband: int
    handler_name: str = ""
    dog_call_name: str = ""
    dog_breed: str = ""
    run_order: Optional[int] = None
    entry_status: str = ""
    is_scored: bool = False
    result_code: str = ""
    search_time: str = ""
    area1_time: str = ""
    area2_time: str = ""
    area3_time: str = ""
    correct_finds: int = 0
    incorrect_finds: int = 0
    faults: int = 0
    no_finish: int = 0
    placement: int = 0
    dq_reason: str = ""

    @property
    def search_seconds(self) -> Optional[float]:
        return parse_seconds(self.search_time)

    @property
    def qualified(self) -> bool:
        return self.is_scored and (self.result_code or "").upper() == "Q"

    def base_record(self, remote_class_id: int, license_key: str) -> Dict[str, Any]:
        return {
            "class_id": remote_class_id,
            "armband_number": self.armband,
            "handler_name": self.handler_name,
            "dog_call_name": self.dog_call_name,
            "dog_breed": self.dog_breed or None,
            "exhibitor_order": self.run_order or 0,
            "license_key": license_key,
            "access_entry_id": self.entry_id,
        }

    def scoring_record(self) -> Dict[str, Any]:
        code = (self.result_code or "").strip().upper()
        dq_reason = self.dq_reason or ("Disqualified" if code == "DQ" else "")
        return {
            "is_scored": bool(self.is_scored),
            "result_status": result_status_for(code) if self.is_scored else "pending",
            "search_time_seconds": parse_seconds(self.search_time) or 0,
            "area1_time_seconds": parse_seconds(self.area1_time) or 0,
            "area2_time_seconds": parse_seconds(self.area2_time) or 0,
            "area3_time_seconds": parse_seconds(self.area3_time) or 0,
            "total_correct_finds": self.correct_finds or 0,
            "total_incorrect_finds": self.incorrect_finds or 0,
            "total_faults": self.faults or 0,
            "no_finish_count": self.no_finish or 0,
            "final_placement": self.placement or 0,
            "disqualification_reason": dq_reason or None,
        }


@dataclass
class EntryResult:
    """Scoring fields pulled back from the hosted store for one entry."""

    entry_id: int
    result_code: str
    search_time: str = ""
    area1_time: str = ""
    area2_time: str = ""
    area3_time: str = ""
    correct_finds: int = 0
    incorrect_finds: int = 0
    faults: int = 0
    no_finish: int = 0
    placement: int = 0
    dq_reason: str = ""

    @classmethod
    def from_remote(cls, row: Dict[str, Any]) -> "EntryResult":
        dq_reason = str(row.get("disqualification_reason") or "").strip()

        def count(key: str) -> int:
            try:
                return int(row.get(key) or 0)
            except (TypeError, ValueError):
                return 0

        return cls(
            entry_id=int(row["access_entry_id"]),
            result_code=result_code_for(row.get("result_status"), dq_reason),
            search_time=format_precise(row.get("search_time_seconds")),
            area1_time=format_precise(row.get("area1_time_seconds")),
            area2_time=format_precise(row.get("area2_time_seconds")),
            area3_time=format_precise(row.get("area3_time_seconds")),
            correct_finds=count("total_correct_finds"),
            incorrect_finds=count("total_incorrect_finds"),
            faults=count("total_faults"),
            no_finish=count("no_finish_count"),
            placement=count("final_placement"),
            dq_reason=dq_reason,
        )


@dataclass
class TimeLimits:
    time_limit: str = ""
    time_limit2: str = ""
    time_limit3: str = ""

    @classmethod
    def from_remote(cls, row: Dict[str, Any]) -> "TimeLimits":
        return cls(
            time_limit=format_mmss(row.get("time_limit_seconds")),
            time_limit2=format_mmss(row.get("time_limit_area2_seconds")),
            time_limit3=format_mmss(row.get("time_limit_area3_seconds")),
        )


@dataclass
class ScopeSnapshot:
    show: Optional[Show] = None
    trials: List[Trial] = field(default_factory=list)
    classes: List[ClassRow] = field(default_factory=list)
    entries: List[EntryRow] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return self.show is None

    def classes_for(self, trial_id: int) -> List[ClassRow]:
        return [row for row in self.classes if row.trial_id == trial_id]

    def entries_for(self, class_id: int) -> List[EntryRow]:
        return [row for row in self.entries if row.class_id == class_id]
