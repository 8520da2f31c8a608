"""
EastVille Schemas (MongoDB via Pydantic)
Each model = one collection (lowercased name)
- User -> user
- Cluster -> cluster (villas embedded)
- Contact -> contact

Attributes are snake_case; documents and JSON bodies use the camelCase aliases.
Numbers sent for string fields (a phone, a villa id) are stored as strings.
"""

from datetime import datetime
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["admin", "user"]
VillaStatus = Literal["Available", "Sold", "Under Construction"]
ContactStatus = Literal["Pending", "In Progress", "Resolved", "Cancelled"]
Priority = Literal["Low", "Medium", "High", "Urgent"]
Source = Literal["Website", "Phone", "Email", "Walk-in", "Referral"]

VILLA_STATUSES = get_args(VillaStatus)
CONTACT_STATUSES = get_args(ContactStatus)
PRIORITIES = get_args(Priority)
SOURCES = get_args(Source)


def status_key(label: str) -> str:
    """Stats key for a status label: "In Progress" -> "inProgress"."""
    words = label.split()
    if not words:
        return ""
    return words[0].lower() + "".join(w[:1].upper() + w[1:] for w in words[1:])


class Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
    )


class User(Document):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., description="bcrypt hash")
    role: Role = "user"
    is_active: bool = True
    last_login: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class Villa(Document):
    id: str = Field(..., min_length=1)
    status: VillaStatus = "Available"
    size: float = Field(..., gt=0)
    type: str = Field(..., min_length=1)
    price: Optional[float] = Field(None, ge=0)
    bedrooms: Optional[int] = Field(None, ge=1)
    bathrooms: Optional[int] = Field(None, ge=1)
    description: Optional[str] = Field(None, max_length=500)
    features: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)


class Cluster(Document):
    cluster_id: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$")
    cluster_name: str = Field(..., min_length=2, max_length=100)
    x: float
    y: float
    description: Optional[str] = Field(None, max_length=1000)
    amenities: List[str] = Field(default_factory=list)
    villas: List[Villa] = Field(..., min_length=1)
    is_active: bool = True

    @model_validator(mode="after")
    def villa_ids_unique(self):
        seen = set()
        for villa in self.villas:
            if villa.id in seen:
                raise ValueError(f"Duplicate villa id '{villa.id}' in cluster")
            seen.add(villa.id)
        return self


class UpdatedBy(Document):
    """Snapshot of the acting admin, copied when a contact is changed.

    Not a live reference: it is not refreshed if the user is renamed later.
    """
    username: str
    email: str
    user_id: str


class Contact(Document):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=r"^[+]?[1-9][0-9]{0,15}$")
    interested_unit: Optional[str] = Field(None, max_length=200)
    message: str = Field(..., max_length=1000)
    status: ContactStatus = "Pending"
    priority: Priority = "Medium"
    source: Source = "Website"
    updated_by: Optional[UpdatedBy] = None
    sales_comment: Optional[str] = Field(None, max_length=500)
    follow_up_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class ContactPatch(Document):
    """Fields an admin may change on a contact (single or bulk update)."""
    status: Optional[ContactStatus] = None
    priority: Optional[Priority] = None
    source: Optional[Source] = None
    sales_comment: Optional[str] = Field(None, max_length=500)
    follow_up_date: Optional[datetime] = None
    tags: Optional[List[str]] = None

    def to_update(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
