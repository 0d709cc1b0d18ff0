"""
Typed views of Odoo helpdesk records.

Odoo encodes many2one fields as ``false`` when empty, as a bare id in some
projections, and as an ``[id, display_name]`` pair in ``read``/``search_read``.
Records are decoded here, at the client boundary, so the rest of the server
only sees :class:`Ticket` and the :data:`Relation` union.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .mappings import unresolve_category


class Unset(BaseModel):
    """Relation with no target."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["unset"] = "unset"

    @property
    def id(self) -> Optional[int]:
        return None

    @property
    def label(self) -> Optional[str]:
        return None


class IdOnly(BaseModel):
    """Relation known only by its id."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["id"] = "id"
    id: int

    @property
    def label(self) -> Optional[str]:
        return None


class IdAndLabel(BaseModel):
    """Relation with id and display name."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["id_label"] = "id_label"
    id: int
    label: str


Relation = Annotated[Union[Unset, IdOnly, IdAndLabel], Field(discriminator="kind")]

UNSET = Unset()


def decode_relation(raw: Any) -> Union[Unset, IdOnly, IdAndLabel]:
    """Decode an Odoo many2one value.

    Args:
        raw: ``False``/``None``, an integer id, or an ``[id, label]`` pair

    Returns:
        The matching Relation variant

    Raises:
        ValueError: If the value has none of those shapes
    """
    if raw is None or raw is False:
        return UNSET
    if isinstance(raw, bool):
        raise ValueError(f"Unexpected relation value: {raw!r}")
    if isinstance(raw, int):
        return IdOnly(id=raw)
    if isinstance(raw, (list, tuple)) and len(raw) == 2 and isinstance(raw[0], int):
        return IdAndLabel(id=raw[0], label=str(raw[1]))
    raise ValueError(f"Unexpected relation value: {raw!r}")


def _text(raw: Any) -> Optional[str]:
    # Odoo sends False for empty char/text/datetime fields
    if raw is None or raw is False:
        return None
    return str(raw)


def _category_code(raw: Any) -> Optional[str]:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return _text(raw[1])
    return _text(raw)


def _relation_dict(relation: Union[Unset, IdOnly, IdAndLabel]) -> Optional[Dict[str, Any]]:
    if isinstance(relation, Unset):
        return None
    return {"id": relation.id, "name": relation.label}


class Ticket(BaseModel):
    """A ``helpdesk.ticket`` record."""
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    stage: Relation = UNSET
    team: Relation = UNSET
    partner: Relation = UNSET
    category: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    create_date: Optional[str] = None
    write_date: Optional[str] = None
    message_ids: Optional[List[int]] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Ticket":
        """Build a Ticket from a raw ``read``/``search_read`` row."""
        message_ids = record.get("message_ids")
        return cls(
            id=record["id"],
            name=_text(record.get("name")) or "",
            stage=decode_relation(record.get("stage_id")),
            team=decode_relation(record.get("team_id")),
            partner=decode_relation(record.get("partner_id")),
            category=_category_code(record.get("ticket_category")),
            email=_text(record.get("email")),
            description=_text(record.get("description")),
            create_date=_text(record.get("create_date")),
            write_date=_text(record.get("write_date")),
            message_ids=list(message_ids) if isinstance(message_ids, list) else None,
        )

    @property
    def stage_label(self) -> Optional[str]:
        return self.stage.label

    @property
    def category_label(self) -> Optional[str]:
        """Display name of the category, falling back to the raw code."""
        if not self.category:
            return None
        return unresolve_category(self.category) or self.category

    def as_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation returned to MCP clients."""
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "stage": _relation_dict(self.stage),
            "team": _relation_dict(self.team),
            "partner": _relation_dict(self.partner),
            "category": self.category,
            "category_name": self.category_label,
            "email": self.email,
            "description": self.description,
            "create_date": self.create_date,
            "write_date": self.write_date,
        }
        if self.message_ids is not None:
            data["message_ids"] = self.message_ids
        return data
