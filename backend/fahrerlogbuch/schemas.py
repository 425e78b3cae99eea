from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional, Union

from typing_extensions import Annotated, Literal

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    EmailStr,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from .utils import normalize_license_plate


ProtocolType = Literal["cleaning", "fuel", "pause", "loading", "delivery", "emergency", "maintenance", "expense"]
UserRole = Literal["driver", "admin", "disponent", "geschaftsfuhrer", "buchhaltung", "qm_manager"]
VehicleType = Literal["truck", "trailer"]
ContaminationType = Literal["chemical", "biological", "rust", "dirt", "foreign", "other"]
GoodsType = Literal["food", "non-food", "empties"]
EmergencyType = Literal[
    "vehicle-damage",
    "goods-blocked",
    "personal-injury",
    "delay",
    "break-in",
    "health-incident",
    "breakdown",
    "other",
]
ExpenseType = Literal["parking", "toll", "ferry", "overnight", "food", "other"]

_EMAIL_ADAPTER = TypeAdapter(EmailStr)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptionalDate = Annotated[Optional[dt.date], BeforeValidator(_blank_to_none)]
OptionalEmail = Annotated[Optional[EmailStr], BeforeValidator(_blank_to_none)]


class Attachment(BaseModel):
    """Photo or document, embedded as base64 ``data:`` URI."""

    data_url: str
    mime_type: str

    @field_validator("data_url")
    @classmethod
    def _check_data_url(cls, value: str) -> str:
        header, sep, _ = value.partition(",")
        if not sep or not header.startswith("data:") or not header.endswith(";base64"):
            raise ValueError("Anhang muss eine base64-kodierte data-URL sein.")
        return value


# --- Protocol forms -------------------------------------------------------


class ProtocolBase(BaseModel):
    location: str = Field(min_length=1)
    start_time: Optional[dt.datetime] = None

    @field_validator("location")
    @classmethod
    def _strip_location(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Ort ist ein Pflichtfeld.")
        return value


class CargoAreaFields(BaseModel):
    cargo_area_temperature: float = Field(ge=-50, le=50)
    cargo_area_closed: bool = False
    has_seal: bool = False


class CleaningProtocolCreate(ProtocolBase):
    type: Literal["cleaning"]
    cleaning_type: str = Field(min_length=1)
    cleaning_products: str = Field(min_length=1)
    control_type: str = Field(min_length=1)
    control_result: Literal["i.O.", "n.i.O."]
    water_temperature: float = Field(ge=-50, le=120)
    water_quality: str = Field(min_length=1)
    odometer_reading: int = Field(gt=0)
    photos: List[Attachment] = Field(default_factory=list)
    contamination_types: List[ContaminationType] = Field(default_factory=list)
    contamination_description: Optional[str] = None
    corrective_actions: Optional[str] = None

    @model_validator(mode="after")
    def _require_contamination_details(self) -> "CleaningProtocolCreate":
        if self.control_result != "n.i.O.":
            return self
        issues: List[str] = []
        if not self.contamination_types:
            issues.append("Mindestens eine Art der Kontamination muss ausgewählt werden.")
        if not (self.contamination_description or "").strip():
            issues.append("Beschreibung der Kontamination ist ein Pflichtfeld.")
        if not (self.corrective_actions or "").strip():
            issues.append("Korrekturmaßnahmen sind ein Pflichtfeld.")
        if issues:
            raise ValueError(" ".join(issues))
        return self


class FuelProtocolCreate(ProtocolBase, CargoAreaFields):
    type: Literal["fuel"]
    liters: float = Field(gt=0)
    odometer_reading: int = Field(gt=0)


class PauseProtocolCreate(ProtocolBase, CargoAreaFields):
    type: Literal["pause"]
    duration: int = Field(gt=0)
    message: Optional[str] = None
    odometer_reading: Optional[int] = Field(default=None, gt=0)


class LoadingProtocolCreate(ProtocolBase, CargoAreaFields):
    type: Literal["loading"]
    duration: int = Field(gt=0)
    odometer_reading: int = Field(gt=0)
    goods_type: GoodsType
    articles: OptionalText = None
    articles_other: OptionalText = None
    quantity: Optional[int] = Field(default=None, ge=0)
    packaging: Optional[str] = None
    weight: Optional[float] = Field(default=None, ge=0)
    pallets: Optional[int] = Field(default=None, ge=0)
    crates: Optional[int] = Field(default=None, ge=0)
    required_temperature_min: Optional[float] = None
    required_temperature_max: Optional[float] = None
    photos: List[Attachment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_goods(self) -> "LoadingProtocolCreate":
        issues: List[str] = []
        if self.goods_type in {"food", "non-food"}:
            if not self.articles:
                issues.append("Artikel ist ein Pflichtfeld.")
            elif self.articles == "sonstiges" and not self.articles_other:
                issues.append("Bitte beschreiben Sie die sonstigen Artikel.")
        if self.goods_type == "empties":
            if not self.pallets:
                issues.append("Palettenanzahl ist ein Pflichtfeld.")
            if not self.crates:
                issues.append("Kistenanzahl ist ein Pflichtfeld.")
        if (
            self.required_temperature_min is not None
            and self.required_temperature_max is not None
            and self.required_temperature_min > self.required_temperature_max
        ):
            issues.append("Mindesttemperatur liegt über der Höchsttemperatur.")
        if issues:
            raise ValueError(" ".join(issues))
        return self


class DeliveryProtocolCreate(ProtocolBase, CargoAreaFields):
    type: Literal["delivery"]
    loading_protocol_number: str = Field(min_length=1)
    unloading_duration: int = Field(gt=0)
    odometer_reading: int = Field(gt=0)
    message: Optional[str] = None
    photos: List[Attachment] = Field(default_factory=list)
    pallets: Optional[int] = Field(default=None, ge=0)
    crates: Optional[int] = Field(default=None, ge=0)


class EmergencyProtocolCreate(ProtocolBase):
    type: Literal["emergency"]
    emergency_type: EmergencyType
    description: str = Field(min_length=10)
    actions_taken: str = ""
    photos: List[Attachment] = Field(min_length=1)
    reference_number: Optional[str] = None
    incident_type_description: Optional[str] = None
    help_called: Optional[bool] = None
    estimated_duration: Optional[int] = Field(default=None, ge=0)
    vehicle_immobile: Optional[bool] = None


class MaintenanceProtocolCreate(ProtocolBase):
    type: Literal["maintenance"]
    maintenance_type: Literal["Eigenleistung", "Werkstatt"]
    reason: str = Field(min_length=5)
    description: str = Field(min_length=10)
    duration: int = Field(gt=0)
    odometer_reading: Optional[int] = Field(default=None, gt=0)
    documents: List[Attachment] = Field(default_factory=list)
    truck_license_plate: Optional[str] = None
    trailer_license_plate: Optional[str] = None

    @field_validator("truck_license_plate", "trailer_license_plate", mode="before")
    @classmethod
    def _normalize_plate(cls, value: Any) -> Optional[str]:
        return normalize_license_plate(value)


class ExpenseProtocolCreate(ProtocolBase):
    type: Literal["expense"]
    expense_type: ExpenseType
    amount: float = Field(gt=0)
    description: OptionalText = None
    photos: List[Attachment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_description_for_other(self) -> "ExpenseProtocolCreate":
        if self.expense_type == "other" and not self.description:
            raise ValueError("Bei 'Sonstiges' ist eine Beschreibung erforderlich.")
        return self


ProtocolCreate = Annotated[
    Union[
        CleaningProtocolCreate,
        FuelProtocolCreate,
        PauseProtocolCreate,
        LoadingProtocolCreate,
        DeliveryProtocolCreate,
        EmergencyProtocolCreate,
        MaintenanceProtocolCreate,
        ExpenseProtocolCreate,
    ],
    Discriminator("type"),
]


class ProtocolRecord(BaseModel):
    """Stored protocol; the type specific fields are passed through unchanged."""

    model_config = ConfigDict(extra="allow")
    id: str
    driver_id: str
    type: ProtocolType
    location: str
    start_time: str
    end_time: str
    truck_license_plate: Optional[str] = None
    trailer_license_plate: Optional[str] = None
    transport_order: Optional[str] = None


class ProtocolShareResponse(BaseModel):
    title: str
    text: str
    filename: str
    content: str


class ArchivedTourResponse(BaseModel):
    transport_order: str
    truck_license_plate: str
    trailer_license_plate: str
    protocols: List[ProtocolRecord]


class LocationRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LocationResponse(BaseModel):
    location: str


# --- Auth and users -------------------------------------------------------


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    role: Optional[UserRole] = None


class LoginResponse(BaseModel):
    token: str
    username: str
    roles: List[UserRole]
    active_role: UserRole
    redirect_to: str


class CurrentUserResponse(BaseModel):
    username: str
    roles: List[UserRole]
    active_role: UserRole
    landing_page: str


class UserResponse(BaseModel):
    username: str
    roles: List[UserRole]


class UserCreateRequest(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)
    roles: List[UserRole] = Field(min_length=1)

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 3:
            raise ValueError("Benutzername muss mindestens 3 Zeichen lang sein.")
        return value


class UserUpdateRequest(BaseModel):
    password: Annotated[Optional[Annotated[str, Field(min_length=6)]], BeforeValidator(_blank_to_none)] = None
    roles: Optional[List[UserRole]] = Field(default=None, min_length=1)


# --- Tours ----------------------------------------------------------------


class TourSelectionRequest(BaseModel):
    truck_license_plate: Optional[str] = None
    trailer_license_plate: Optional[str] = None
    transport_order: OptionalText = None
    is_maintenance: bool = False

    @field_validator("truck_license_plate", "trailer_license_plate", mode="before")
    @classmethod
    def _normalize_plate(cls, value: Any) -> Optional[str]:
        return normalize_license_plate(value)

    @model_validator(mode="after")
    def _check_selection(self) -> "TourSelectionRequest":
        if self.is_maintenance:
            if not (self.truck_license_plate or self.trailer_license_plate):
                raise ValueError("Für die Wartung muss mindestens ein LKW oder Anhänger ausgewählt werden.")
        elif not (self.truck_license_plate and self.trailer_license_plate and self.transport_order):
            raise ValueError("Alle Felder sind für eine Tour erforderlich.")
        return self


class ActiveTourResponse(BaseModel):
    truck_license_plate: Optional[str] = None
    trailer_license_plate: Optional[str] = None
    transport_order: str = ""
    started_at: Optional[str] = None
    maintenance_mode: bool = False


class DashboardResponse(BaseModel):
    active_tour: ActiveTourResponse
    protocols: List[ProtocolRecord]


class TourSummaryResponse(BaseModel):
    tour: ActiveTourResponse
    protocols: List[ProtocolRecord]
    driver: str
    end_date: str


class TourSummaryAck(BaseModel):
    message: str


# --- Vehicles -------------------------------------------------------------


class VehicleDetails(BaseModel):
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    vin: Optional[str] = None
    first_registration: OptionalDate = None
    next_hu: OptionalDate = None
    next_sp: OptionalDate = None
    next_uvv: OptionalDate = None
    tachograph_check: OptionalDate = None
    payload_kg: Optional[float] = Field(default=None, ge=0)
    gross_vehicle_weight_kg: Optional[float] = Field(default=None, ge=0)
    length_m: Optional[float] = Field(default=None, ge=0)
    width_m: Optional[float] = Field(default=None, ge=0)
    height_m: Optional[float] = Field(default=None, ge=0)
    axles: Optional[int] = Field(default=None, ge=0)
    cooling_unit: Optional[str] = None
    operating_hours: Optional[float] = Field(default=None, ge=0)
    owner: Optional[str] = None
    insurance_number: Optional[str] = None
    green_sticker: Optional[bool] = None


class VehicleCreateRequest(VehicleDetails):
    type: VehicleType
    license_plate: str = Field(min_length=1)
    maintenance_number: str = Field(min_length=1)
    api_key: Optional[str] = None
    active: bool = True

    @field_validator("license_plate")
    @classmethod
    def _normalize_plate(cls, value: str) -> str:
        normalized = normalize_license_plate(value)
        if not normalized:
            raise ValueError("Kennzeichen ist ein Pflichtfeld.")
        return normalized


class VehicleUpdateRequest(VehicleDetails):
    license_plate: Optional[str] = None
    maintenance_number: Optional[str] = Field(default=None, min_length=1)
    api_key: Optional[str] = None

    @field_validator("license_plate", mode="before")
    @classmethod
    def _normalize_plate(cls, value: Any) -> Optional[str]:
        return normalize_license_plate(value)


class VehicleStatusRequest(BaseModel):
    active: bool


class VehicleResponse(VehicleDetails):
    type: VehicleType
    license_plate: str
    maintenance_number: str
    api_key: Optional[str] = None
    active: bool = True


class VehicleRegistryResponse(BaseModel):
    truck: List[VehicleResponse]
    trailer: List[VehicleResponse]


class PlateSuggestionResponse(BaseModel):
    suggestions: List[str]


class LicensePlatesResponse(BaseModel):
    type: VehicleType
    plates: List[str]


# --- Admin settings -------------------------------------------------------


class CompanySettings(BaseModel):
    logo: Optional[str] = None
    company_name: Optional[str] = None
    street: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    api_key: Optional[str] = None

    @field_validator("logo")
    @classmethod
    def _check_logo(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith("data:image/"):
            raise ValueError("Logo muss als Bild-data-URL übergeben werden.")
        return value or None


class NotificationSettings(BaseModel):
    emails: Optional[str] = None
    whatsapp: Optional[str] = None
    api_uri: Optional[str] = None

    @field_validator("emails")
    @classmethod
    def _check_emails(cls, value: Optional[str]) -> Optional[str]:
        if not value or not value.strip():
            return None
        addresses = [item.strip() for item in value.split(",") if item.strip()]
        for address in addresses:
            try:
                _EMAIL_ADAPTER.validate_python(address)
            except ValidationError as exc:
                raise ValueError(f"Ungültige E-Mail-Adresse: {address}") from exc
        return ", ".join(addresses)

    @field_validator("api_uri")
    @classmethod
    def _check_api_uri(cls, value: Optional[str]) -> Optional[str]:
        if not value or not value.strip():
            return None
        try:
            TypeAdapter(HttpUrl).validate_python(value.strip())
        except ValidationError as exc:
            raise ValueError("Bitte geben Sie eine gültige URL ein.") from exc
        return value.strip()


class SqliteDatabaseSettings(BaseModel):
    db_type: Literal["sqlite"]
    file_path: str = Field(min_length=1)


class RemoteDatabaseSettings(BaseModel):
    db_type: Literal["postgresql", "mariadb"]
    server_address: str = Field(min_length=1)
    port: int = Field(gt=0, le=65535)
    username: str = Field(min_length=1)
    password: Optional[str] = None
    database_name: str = Field(min_length=1)


DatabaseSettings = Annotated[
    Union[SqliteDatabaseSettings, RemoteDatabaseSettings],
    Discriminator("db_type"),
]


class DatabaseSettingsResponse(BaseModel):
    db_type: Literal["sqlite", "postgresql", "mariadb"]
    file_path: Optional[str] = None
    server_address: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    database_name: Optional[str] = None
    password_set: bool = False


# --- Dispatcher -----------------------------------------------------------


class EmployeeBase(BaseModel):
    name: str = Field(min_length=1)
    position: str = Field(min_length=1)
    entry_date: dt.date
    status: Literal["active", "inactive"] = "active"
    email: OptionalEmail = None
    phone: Optional[str] = None
    street: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    monthly_salary: Optional[float] = Field(default=None, ge=0)
    cost_center: Optional[str] = None
    social_security_number: Optional[str] = None
    health_insurance: Optional[str] = None
    weekly_hours: Optional[float] = Field(default=None, ge=0)
    vacation_days: Optional[float] = Field(default=None, ge=0)


class EmployeeResponse(EmployeeBase):
    id: str


class CustomerBase(BaseModel):
    name: str = Field(min_length=1)
    type: Literal["customer", "supplier"] = "customer"
    customer_number: Optional[str] = None
    contact_person: Optional[str] = None
    email: OptionalEmail = None
    phone: Optional[str] = None
    street: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name ist ein Pflichtfeld.")
        return value


class CustomerResponse(CustomerBase):
    id: str


class PlannedTourBase(BaseModel):
    driver: str = Field(min_length=1)
    truck: str = Field(min_length=1)
    trailer: str = Field(min_length=1)
    customer: str = Field(min_length=1)
    description: Optional[str] = None
    remarks: Optional[str] = None
    customer_ref: Optional[str] = None
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    rohertrag: Optional[float] = None
    an_sub: Optional[float] = None
    km: Optional[float] = Field(default=None, ge=0)
    df: Optional[float] = None
    maut: Optional[float] = None
    rechnungsnummer: Optional[str] = None
    rechnung_raus: bool = False
    bezahlt: bool = False
    bezahldatum: Optional[dt.date] = None

    @model_validator(mode="after")
    def _check_times(self) -> "PlannedTourBase":
        if self.start_time and self.end_time and self.end_time < self.start_time:
            raise ValueError("Ende liegt vor dem Beginn der Tour.")
        return self


class PlannedTourResponse(PlannedTourBase):
    tour_nr: str
    km_price: Optional[float] = None


class KilometerPriceRequest(BaseModel):
    rohertrag: float = Field(ge=0)
    km: float = Field(gt=0)


class PlanningWeek(BaseModel):
    week: int
    start_date: dt.date


class PlanningWeekResponse(BaseModel):
    year: int
    week: int
    days: List[dt.date]
    tours: List[PlannedTourResponse]
