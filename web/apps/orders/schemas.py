"""Pydantic schemas for orders.

This module exposes the request/validation schemas used by the orders API
and the read models used to serialize domain snapshots, both for HTTP
responses and for the broadcast transport. Field names are camelCase on
the wire (``groupName``, ``guestNames``) to match the existing guest and
host frontends; legacy spellings such as ``guestId``/``wineIndex`` are
accepted where older clients still send them.
"""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .domain import EventType, Order, OrderEvent, OrderStatus, Selection, SelectionStatus
from .summary import GroupSummary


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SelectionIn(BaseModel):
    """A submitted wine selection.

    Attributes:
        wine_reference: Wine name or catalog id (``wineReference``; ``wine``
            and ``name`` are accepted too).
        status: Optional initial serving status, ``pending`` by default.
    """

    wine_reference: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("wineReference", "wine_reference", "wine", "name"),
    )
    status: SelectionStatus = SelectionStatus.PENDING

    @field_validator("wine_reference", mode="before")
    @classmethod
    def coerce_reference(cls, v):
        """Accept numeric catalog ids by turning them into strings."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    def to_domain(self) -> Selection:
        return Selection(wine_reference=self.wine_reference, status=self.status)


class CreateOrderDTO(_CamelModel):
    """Schema for submitting an order from the guest form.

    Attributes:
        group_name: Display name of the group, required.
        winery_id: Owning winery; the configured default is used when absent.
        guest_names: Guest key -> display name.
        selections: Guest key -> list of selections.
    """

    group_name: str = Field(min_length=1, max_length=255)
    winery_id: Optional[int] = Field(default=None, gt=0)
    guest_names: dict[str, str] = Field(default_factory=dict)
    selections: dict[str, list[SelectionIn]] = Field(default_factory=dict)

    @field_validator("group_name")
    @classmethod
    def strip_group_name(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("Group name is required")
        return v2

    @field_validator("guest_names", mode="before")
    @classmethod
    def blank_guest_names(cls, v):
        """Treat ``null`` display names as blank (guest left the field empty)."""
        if isinstance(v, dict):
            return {str(k): ("" if name is None else name) for k, name in v.items()}
        return v

    @model_validator(mode="after")
    def selections_reference_known_guests(self):
        unknown = sorted(set(self.selections) - set(self.guest_names))
        if unknown:
            raise ValueError(f"Selections for unknown guests: {', '.join(unknown)}")
        return self


class UpdateSelectionDTO(BaseModel):
    """Schema for a staff selection update.

    Without ``status`` the request is a toggle.
    """

    guest_key: str = Field(min_length=1, validation_alias=AliasChoices("guestKey", "guest_key", "guestId", "guest"))
    index: int = Field(ge=0, validation_alias=AliasChoices("index", "selectionIndex", "wineIndex"))
    status: Optional[SelectionStatus] = None

    @field_validator("guest_key", mode="before")
    @classmethod
    def coerce_guest_key(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class SetOrderStatusDTO(BaseModel):
    status: OrderStatus


class SummaryDTO(_CamelModel):
    guest_count: int
    wine_count: int
    has_any_response: bool

    @classmethod
    def from_summary(cls, s: GroupSummary) -> "SummaryDTO":
        return cls(guest_count=s.guest_count, wine_count=s.wine_count, has_any_response=s.has_any_response)


class SelectionRead(_CamelModel):
    wine_reference: str
    status: SelectionStatus


class OrderReadDTO(_CamelModel):
    """Full order snapshot as sent to clients and over the broadcast transport."""

    id: str
    group_name: str
    group_slug: str
    winery_id: int
    guest_names: dict[str, str]
    selections: dict[str, list[SelectionRead]]
    status: OrderStatus
    version: int
    created_at: datetime
    updated_at: datetime
    summary: Optional[SummaryDTO] = None

    @classmethod
    def from_domain(cls, order: Order, summary: Optional[GroupSummary] = None) -> "OrderReadDTO":
        return cls(
            id=order.id,
            group_name=order.group_name,
            group_slug=order.group_slug,
            winery_id=order.winery_id,
            guest_names=dict(order.guest_names),
            selections={
                guest: [SelectionRead(wine_reference=s.wine_reference, status=s.status) for s in entries]
                for guest, entries in order.selections.items()
            },
            status=order.status,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
            summary=SummaryDTO.from_summary(summary) if summary is not None else None,
        )

    def to_domain(self) -> Order:
        return Order(
            id=self.id,
            group_name=self.group_name,
            group_slug=self.group_slug,
            winery_id=self.winery_id,
            guest_names=dict(self.guest_names),
            selections={
                guest: tuple(Selection(wine_reference=s.wine_reference, status=s.status) for s in entries)
                for guest, entries in self.selections.items()
            },
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def order_to_json(order: Order, summary: Optional[GroupSummary] = None) -> dict:
    return OrderReadDTO.from_domain(order, summary).to_json()


class OrderEventDTO(BaseModel):
    """Wire form of an ``OrderEvent``: ``{"type": ..., "order": {...}}``."""

    type: EventType
    order: OrderReadDTO

    @classmethod
    def from_event(cls, event: OrderEvent) -> "OrderEventDTO":
        return cls(type=event.type, order=OrderReadDTO.from_domain(event.order))

    def to_event(self) -> OrderEvent:
        return OrderEvent(type=self.type, order=self.order.to_domain())

    def to_json(self) -> dict:
        return {"type": self.type.value, "order": self.order.to_json()}
