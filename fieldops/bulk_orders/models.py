from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

DEFAULT_VALID_STATUSES: Tuple[str, ...] = ("success", "failed", "rejected")


class WorkOrderStatus(str, Enum):
    IMPORTED = "imported"
    COMPLETED = "completed"
    REJECTED = "rejected"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    FLAGGED = "flagged"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class BatchRequest:
    start_date: date
    end_date: date
    valid_statuses: Tuple[str, ...] = DEFAULT_VALID_STATUSES
    continuation_token: Optional[str] = None
    batch_size: Optional[int] = None

    def validate(self) -> None:
        if self.start_date > self.end_date:
            raise ValueError(
                f"start_date {self.start_date.isoformat()} is after end_date {self.end_date.isoformat()}"
            )
        if not self.valid_statuses:
            raise ValueError("valid_statuses must contain at least one status")
        if self.batch_size is not None and self.batch_size < 1:
            raise ValueError(f"batch_size must be positive; got {self.batch_size}")

    def with_token(self, token: Optional[str]) -> "BatchRequest":
        return replace(self, continuation_token=token)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "validStatuses": list(self.valid_statuses),
            "continuationToken": self.continuation_token,
        }
        if self.batch_size is not None:
            payload["batchSize"] = self.batch_size
        return payload


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class BatchResponse:
    orders: Tuple[Mapping[str, Any], ...] = ()
    total_orders: Optional[int] = None
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    continuation_token: Optional[str] = None
    is_complete: bool = False
    filtering_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_more(self) -> bool:
        """True only when the page is not flagged complete and a token exists."""

        return not self.is_complete and bool(self.continuation_token)

    @property
    def estimated_total(self) -> Optional[int]:
        """``totalOrders`` when present, else the search's unfiltered order count."""

        if self.total_orders:
            return self.total_orders
        return _optional_int(self.filtering_metadata.get("unfilteredOrderCount")) or None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "BatchResponse":
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise TypeError(f"search response must be an object; got {type(payload).__name__}")
        raw_orders = payload.get("orders")
        orders = tuple(o for o in raw_orders if isinstance(o, Mapping)) if isinstance(raw_orders, list) else ()
        token = payload.get("continuationToken")
        metadata = payload.get("filteringMetadata")
        return cls(
            orders=orders,
            total_orders=_optional_int(payload.get("totalOrders")),
            current_page=_optional_int(payload.get("currentPage")),
            total_pages=_optional_int(payload.get("totalPages")),
            continuation_token=str(token) if token else None,
            is_complete=bool(payload.get("isComplete", False)),
            filtering_metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )


@dataclass
class ProgressState:
    is_loading: bool = False
    is_paused: bool = False
    is_complete: bool = False
    current_page: int = 0
    total_pages: Optional[int] = None
    processed_orders: int = 0
    total_orders: Optional[int] = None
    progress: float = 0.0
    continuation_token: Optional[str] = None
    error: Optional[str] = None

    def snapshot(self) -> "ProgressState":
        return replace(self)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "is_loading": self.is_loading,
            "is_paused": self.is_paused,
            "is_complete": self.is_complete,
            "current_page": self.current_page,
            "total_pages": self.total_pages,
            "processed_orders": self.processed_orders,
            "total_orders": self.total_orders,
            "progress": self.progress,
            "continuation_token": self.continuation_token,
            "error": self.error,
        }


class OrderLocation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "N/A"
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None


class OrderDriver(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None


class CanonicalWorkOrder(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=False)

    id: str
    order_no: str
    order_no_generated: bool = False
    status: WorkOrderStatus = WorkOrderStatus.IMPORTED
    timestamp: str
    service_date: Optional[str] = None
    end_time: Optional[str] = None
    service_notes: str = ""
    tech_notes: str = ""
    notes: str = ""
    qc_notes: str = ""
    resolution_notes: str = ""
    location: OrderLocation = OrderLocation()
    driver: Optional[OrderDriver] = None
    has_images: bool = False
    signature_url: Optional[str] = None
    tracking_url: Optional[str] = None
    completion_status: Optional[str] = None
    optimoroute_status: Optional[str] = None
    search_response: Optional[Any] = None
    completion_response: Optional[Any] = None

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class ImportResult:
    success: bool = False
    total: int = 0
    imported: int = 0
    duplicates: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total": self.total,
            "imported": self.imported,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "error_details": list(self.error_details),
        }
