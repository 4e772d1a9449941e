from __future__ import annotations

from ..extensions import db
from invoicing.time_utils import to_utc_z


class Client(db.Model):
    """
    Billing counterparty.

    MB and PIB are the two national registration numbers; each is unique
    across all clients. A client cannot be deleted while any invoice or
    delivery references it (checked in client_service before delete).
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.Index("ix_clients_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    legal_name = db.Column(db.String(255), nullable=False)
    mb = db.Column(db.String(20), nullable=False, unique=True)
    pib = db.Column(db.String(20), nullable=False, unique=True)

    # Address
    address = db.Column(db.Text, nullable=True)
    city = db.Column(db.String(128), nullable=True)
    municipality = db.Column(db.String(128), nullable=True)
    street = db.Column(db.String(255), nullable=True)
    house_number = db.Column(db.String(32), nullable=True)
    google_maps_link = db.Column(db.Text, nullable=True)
    is_manual_address = db.Column(db.Boolean, nullable=False, default=False)

    # Contact channels
    contact_person = db.Column(db.String(255), nullable=True)
    contact = db.Column(db.String(255), nullable=True)
    bank_info = db.Column(db.Text, nullable=True)
    telegram = db.Column(db.String(128), nullable=True)
    instagram = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    # Commercial flags
    installment_payment = db.Column(db.Boolean, nullable=False, default=False)
    installment_term = db.Column(db.Integer, nullable=True)
    showcase = db.Column(db.Boolean, nullable=False, default=False)
    bar = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "legal_name": self.legal_name,
            "mb": self.mb,
            "pib": self.pib,
            "address": self.address,
            "city": self.city,
            "municipality": self.municipality,
            "street": self.street,
            "house_number": self.house_number,
            "google_maps_link": self.google_maps_link,
            "is_manual_address": self.is_manual_address,
            "contact_person": self.contact_person,
            "contact": self.contact,
            "bank_info": self.bank_info,
            "telegram": self.telegram,
            "instagram": self.instagram,
            "phone": self.phone,
            "email": self.email,
            "installment_payment": self.installment_payment,
            "installment_term": self.installment_term,
            "showcase": self.showcase,
            "bar": self.bar,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
