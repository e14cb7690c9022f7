"""
Data models for the sales register.

This module defines the dataclasses used to represent stores, users, sales
and their product lines as stored in the register database.

Schema Design Decisions:
    - IDs are integer serials assigned by the database
    - Sale timestamps are stored in UTC; SQLite keeps them as ISO strings
    - A sale is never edited after creation, only deleted as a whole
    - Product lines belong to exactly one sale and go with it
    - Photos are base64 data URLs as captured by the register front end
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

ROLES = ("admin", "manager", "employee")


def parse_timestamp(value: Any) -> datetime | None:
    """Normalise a database timestamp to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass
class Store:
    """
    A shop location. Every sale and most users belong to one.

    Database Table: stores
    """

    id: int | None
    name: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    is_active: bool = True
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Store:
        return cls(
            id=row["id"],
            name=row["name"],
            address=row.get("address"),
            phone=row.get("phone"),
            email=row.get("email"),
            is_active=bool(row.get("is_active", True)),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass
class User:
    """
    A register operator.

    The password hash is loaded with the user but never exported; see
    ``to_dict``.

    Database Table: users
    """

    id: int | None
    username: str
    password_hash: str = ""
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str = "employee"
    store_id: int | None = None
    is_active: bool = True
    created_at: datetime | None = None

    def to_dict(self, include_password: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role,
            "storeId": self.store_id,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_password:
            data["password"] = self.password_hash
        return data

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> User:
        return cls(
            id=row["id"],
            username=row["username"],
            password_hash=row.get("password") or "",
            email=row.get("email"),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            role=row.get("role") or "employee",
            store_id=row.get("store_id"),
            is_active=bool(row.get("is_active", True)),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass
class ProductLine:
    """
    One product of a sale.

    Attributes:
        type_article: Article designation as written on the packaging.
        categorie: Regulatory category code (e.g. "F2", "F3", "T1").
        quantite: Number of units sold.
        gencode: EAN-13 barcode.
    """

    type_article: str
    categorie: str
    quantite: int
    gencode: str = ""
    id: int | None = None
    sale_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "typeArticle": self.type_article,
            "categorie": self.categorie,
            "quantite": self.quantite,
            "gencode": self.gencode,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ProductLine:
        return cls(
            id=row.get("id"),
            sale_id=row.get("sale_id"),
            type_article=row["type_article"],
            categorie=row["categorie"],
            quantite=int(row["quantite"]),
            gencode=row.get("gencode") or "",
        )


@dataclass
class SaleRecord:
    """
    One regulated transaction.

    A sale belongs to exactly one store and was created by exactly one user.
    Field names follow the French register the data is declared against.

    Attributes:
        id: Database serial, None before insertion.
        store_id: Owning store.
        user_id: Operator who recorded the sale.
        vendeur: Seller name printed on the register.
        nom, prenom: Customer last and first name.
        date_naissance, lieu_naissance: Customer birth date and place.
        type_identite, numero_identite: Identity document type and number.
        autorite_delivrance, date_delivrance: Issuing authority and date.
        mode_paiement: Payment method.
        products: Product lines, in entry order.
        photo_recto, photo_verso, photo_ticket: ID front, ID back, receipt.
        timestamp: Creation time (UTC). Drives retention.

    Database Tables: sales, sale_products
    """

    store_id: int
    user_id: int
    vendeur: str
    nom: str
    prenom: str
    date_naissance: str
    type_identite: str
    numero_identite: str
    autorite_delivrance: str
    date_delivrance: str
    lieu_naissance: str | None = None
    mode_paiement: str | None = None
    date_vente: str | None = None
    products: list[ProductLine] = field(default_factory=list)
    photo_recto: str | None = None
    photo_verso: str | None = None
    photo_ticket: str | None = None
    timestamp: datetime | None = None
    id: int | None = None

    @property
    def total_quantity(self) -> int:
        return sum(p.quantite for p in self.products)

    def to_dict(self, include_photos: bool = True) -> dict[str, Any]:
        data = {
            "id": self.id,
            "storeId": self.store_id,
            "userId": self.user_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "vendeur": self.vendeur,
            "dateVente": self.date_vente,
            "nom": self.nom,
            "prenom": self.prenom,
            "dateNaissance": self.date_naissance,
            "lieuNaissance": self.lieu_naissance,
            "modePaiement": self.mode_paiement,
            "typeIdentite": self.type_identite,
            "numeroIdentite": self.numero_identite,
            "autoriteDelivrance": self.autorite_delivrance,
            "dateDelivrance": self.date_delivrance,
            "products": [p.to_dict() for p in self.products],
        }
        if include_photos:
            data["photoRecto"] = self.photo_recto
            data["photoVerso"] = self.photo_verso
            data["photoTicket"] = self.photo_ticket
        return data

    @classmethod
    def from_row(
        cls,
        row: dict[str, Any],
        products: list[ProductLine] | None = None,
    ) -> SaleRecord:
        return cls(
            id=row["id"],
            store_id=row["store_id"],
            user_id=row["user_id"],
            timestamp=parse_timestamp(row.get("timestamp")),
            vendeur=row["vendeur"],
            date_vente=row.get("date_vente"),
            nom=row["nom"],
            prenom=row["prenom"],
            date_naissance=row["date_naissance"],
            lieu_naissance=row.get("lieu_naissance"),
            mode_paiement=row.get("mode_paiement"),
            type_identite=row["type_identite"],
            numero_identite=row["numero_identite"],
            autorite_delivrance=row["autorite_delivrance"],
            date_delivrance=row["date_delivrance"],
            photo_recto=row.get("photo_recto"),
            photo_verso=row.get("photo_verso"),
            photo_ticket=row.get("photo_ticket"),
            products=products or [],
        )
