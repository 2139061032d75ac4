# backend/models.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from db import db
from errors import ValidationError

FORM_TYPES = ("enquiry", "popup", "brochure")
DEFAULT_FORM_TYPE = "enquiry"

# Free-text fields accepted from the visitor, in column order.
TEXT_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "programme",
    "city",
    "enroll_timeline",
    "enquiry_type",
    "page_url",
)


class FormSubmission(db.Model):
    __tablename__ = "form_submissions"
    __table_args__ = (
        db.Index("idx_form_type", "form_type"),
        db.Index("idx_email", "email"),
        db.Index("idx_created_at", "created_at"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    form_type = db.Column(
        db.Enum(*FORM_TYPES, name="form_type", validate_strings=True),
        nullable=False,
        default=DEFAULT_FORM_TYPE,
        server_default=DEFAULT_FORM_TYPE,
    )
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    email = db.Column(db.String(255))
    phone = db.Column(db.String(20))
    programme = db.Column(db.String(150))
    city = db.Column(db.String(100))
    enroll_timeline = db.Column(db.String(50))
    enquiry_type = db.Column(db.String(100))
    page_url = db.Column(db.String(500))
    consent = db.Column(db.Boolean, default=False, server_default=db.text("0"))
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.Text)
    created_at = db.Column(db.DateTime, server_default=db.func.current_timestamp())

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in TEXT_FIELDS}
        data.update(
            id=self.id,
            form_type=self.form_type,
            consent=1 if self.consent else 0,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            created_at=self.created_at.isoformat() if self.created_at else None,
        )
        return data


def _text(value: Any) -> Optional[str]:
    # Untrusted JSON: strings stay verbatim, falsy values (None, "", false, 0) are
    # absent, other scalars are stringified.
    if not value:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SubmissionRecord:
    """One captured lead. Construction enforces the contact-info rule."""

    form_type: str = DEFAULT_FORM_TYPE
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    programme: Optional[str] = None
    city: Optional[str] = None
    enroll_timeline: Optional[str] = None
    enquiry_type: Optional[str] = None
    page_url: Optional[str] = None
    consent: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not self.email and not self.phone:
            raise ValidationError("Email or phone is required.")

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> "SubmissionRecord":
        """Build a record from an untrusted request body.

        Only the visitor-editable fields are read from ``payload``; the
        network metadata always comes from the caller.
        """
        if not isinstance(payload, Mapping):
            payload = {}
        values = {name: _text(payload.get(name)) for name in TEXT_FIELDS}
        return cls(
            form_type=_text(payload.get("form_type")) or DEFAULT_FORM_TYPE,
            consent=bool(payload.get("consent")),
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=created_at or _utcnow(),
            **values,
        )

    def to_row(self) -> Dict[str, Any]:
        row = {name: getattr(self, name) for name in TEXT_FIELDS}
        row.update(
            form_type=self.form_type,
            consent=self.consent,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            created_at=self.created_at.replace(tzinfo=None),
        )
        return row

    def to_document(self) -> Dict[str, Any]:
        doc = {"form_type": self.form_type}
        doc.update({name: getattr(self, name) for name in TEXT_FIELDS})
        doc.update(
            consent=1 if self.consent else 0,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            created_at=self.created_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        )
        return doc
