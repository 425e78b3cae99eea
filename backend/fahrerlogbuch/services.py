from __future__ import annotations

import datetime as dt
import io
import json
import mimetypes
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from openpyxl import Workbook
from pydantic import BaseModel
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .config import settings
from .logger import get_logger
from .storage import (
    COMPANY_SETTINGS_KEY,
    CUSTOMERS_KEY,
    DATABASE_SETTINGS_KEY,
    EMPLOYEES_KEY,
    NOTIFICATION_SETTINGS_KEY,
    PLANNED_TOURS_KEY,
    USERS_KEY,
    VEHICLES_KEY,
    KeyValueStore,
    active_tour_key,
    maintenance_mode_key,
    protocols_key,
    read_json,
    remove_key,
    write_json,
)
from .token_utils import create_session, delete_session, password_hash, resolve_session, verify_password
from .utils import (
    decode_data_url,
    normalize_license_plate,
    normalize_plate_selection,
    plate_search_key,
    to_data_url,
)

logger = get_logger(__name__)


UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

PROTOCOL_TITLES: Dict[str, str] = {
    "cleaning": "Reinigungsprotokoll",
    "fuel": "Tankprotokoll",
    "pause": "Pausenprotokoll",
    "loading": "Ladeprotokoll",
    "delivery": "Lieferprotokoll",
    "emergency": "Notfallprotokoll",
    "maintenance": "Wartungsprotokoll",
    "expense": "Spesenprotokoll",
}

DEFAULT_USERS: Tuple[Tuple[str, str, str], ...] = (
    ("admin", "admin123", "admin"),
    ("demo", "demo123", "driver"),
)
PROTECTED_USERNAME = "admin"

# Conditional emergency fields and the emergency types they belong to
EMERGENCY_CONDITIONAL_FIELDS: Dict[str, set[str]] = {
    "reference_number": {"vehicle-damage", "goods-blocked"},
    "incident_type_description": {"personal-injury", "health-incident"},
    "help_called": {"personal-injury", "health-incident"},
    "estimated_duration": {"delay", "breakdown"},
    "vehicle_immobile": {"delay", "breakdown"},
}

ATTACHMENT_FIELDS = ("photos", "documents")
ALLOWED_DOCUMENT_TYPES = {"application/pdf"}

TOUR_NUMBER_PREFIX = "T-"
FIRST_TOUR_NUMBER = 10001

PASSWORD_UNCHANGED = "__UNCHANGED__"

NO_ACTIVE_TOUR_DETAIL = "Keine aktive Tour gefunden. Bitte starten Sie eine neue Tour."


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


def _ensure_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(UTC)


def _parse_iso(value: Any) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return _ensure_utc(parsed)


def _format_local(value: Any, fmt: str = "%d.%m.%Y %H:%M") -> str:
    parsed = _parse_iso(value)
    if parsed is None:
        return ""
    return parsed.astimezone(LOCAL_TZ).strftime(fmt)


# --- Users and login --------------------------------------------------------


def _default_users() -> List[Dict[str, Any]]:
    return [
        {"username": username, "password_hash": password_hash(password), "roles": [role]}
        for username, password, role in DEFAULT_USERS
    ]


def load_users(store: KeyValueStore) -> List[Dict[str, Any]]:
    stored = read_json(store, USERS_KEY, None)
    if not isinstance(stored, list):
        users = _default_users()
        write_json(store, USERS_KEY, users)
        return users
    users: List[Dict[str, Any]] = []
    for entry in stored:
        if not isinstance(entry, dict) or not entry.get("username"):
            continue
        roles = entry.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        users.append({**entry, "roles": list(roles)})
    if not any(user["username"] == PROTECTED_USERNAME for user in users):
        users.insert(0, _default_users()[0])
    return users


def _save_users(store: KeyValueStore, users: List[Dict[str, Any]]) -> None:
    write_json(store, USERS_KEY, users)


def _find_user(users: Iterable[Dict[str, Any]], username: str) -> Optional[Dict[str, Any]]:
    for user in users:
        if user["username"] == username:
            return user
    return None


def _choose_active_role(roles: List[str], requested: Optional[str]) -> str:
    if requested and requested in roles:
        return requested
    if "admin" in roles:
        return "admin"
    return roles[0] if roles else "driver"


def landing_page(store: KeyValueStore, username: str, active_role: str) -> str:
    if active_role == "admin":
        return "/admin"
    if active_role == "disponent":
        return "/disponent"
    if active_role == "driver":
        return "/" if get_active_tour(store, username) else "/tour-selection"
    return "/"


def login(
    store: KeyValueStore, username: str, password: str, role: Optional[str] = None
) -> Dict[str, Any]:
    user = _find_user(load_users(store), username)
    if not user or not verify_password(password, user.get("password_hash")):
        logger.warning("Rejected login for %s", username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Ungültiger Benutzername oder Passwort.")
    active_role = _choose_active_role(user["roles"], role)
    record, token = create_session(store, user["username"], user["roles"], active_role)
    logger.info("User %s logged in with role %s", user["username"], active_role)
    return {
        "token": token,
        "username": record["username"],
        "roles": record["roles"],
        "active_role": active_role,
        "redirect_to": landing_page(store, user["username"], active_role),
    }


def logout(store: KeyValueStore, token: str) -> None:
    delete_session(store, token)


def resolve_current_user(store: KeyValueStore, token: str) -> Optional[Dict[str, Any]]:
    record = resolve_session(store, token)
    if record is None:
        return None
    user = _find_user(load_users(store), record["username"])
    active_role = record.get("active_role")
    # user deleted, or the role of this session taken away, while logged in
    if user is None or active_role not in user["roles"]:
        delete_session(store, token)
        return None
    return {"username": user["username"], "roles": list(user["roles"]), "active_role": active_role}


def list_users(store: KeyValueStore) -> List[Dict[str, Any]]:
    users = sorted(load_users(store), key=lambda user: user["username"].casefold())
    return [{"username": user["username"], "roles": user["roles"]} for user in users]


def add_user(store: KeyValueStore, username: str, password: str, roles: List[str]) -> Dict[str, Any]:
    users = load_users(store)
    if _find_user(users, username):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Benutzer existiert bereits")
    user = {"username": username, "password_hash": password_hash(password), "roles": list(roles)}
    users.append(user)
    _save_users(store, users)
    return {"username": username, "roles": user["roles"]}


def update_user(
    store: KeyValueStore, username: str, password: Optional[str], roles: Optional[List[str]]
) -> Dict[str, Any]:
    users = load_users(store)
    user = _find_user(users, username)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Benutzer nicht gefunden")
    if password:
        user["password_hash"] = password_hash(password)
    if roles:
        user["roles"] = list(roles)
    _save_users(store, users)
    return {"username": user["username"], "roles": user["roles"]}


def delete_user(store: KeyValueStore, username: str) -> None:
    if username == PROTECTED_USERNAME:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Der Administrator kann nicht gelöscht werden")
    users = load_users(store)
    if not _find_user(users, username):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Benutzer nicht gefunden")
    _save_users(store, [user for user in users if user["username"] != username])


# --- Active tour ------------------------------------------------------------


def get_active_tour(store: KeyValueStore, username: str) -> Optional[Dict[str, Any]]:
    tour = read_json(store, active_tour_key(username), None)
    if isinstance(tour, dict):
        return {**tour, "maintenance_mode": False}
    maintenance = read_json(store, maintenance_mode_key(username), None)
    if isinstance(maintenance, dict):
        return {**maintenance, "transport_order": "", "maintenance_mode": True}
    return None


def start_tour(
    store: KeyValueStore,
    username: str,
    truck_license_plate: str,
    trailer_license_plate: str,
    transport_order: str,
) -> Dict[str, Any]:
    if get_active_tour(store, username):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Es ist bereits eine Tour aktiv")
    tour = {
        "truck_license_plate": truck_license_plate,
        "trailer_license_plate": trailer_license_plate,
        "transport_order": transport_order.strip(),
        "started_at": _now().isoformat(),
    }
    write_json(store, active_tour_key(username), tour)
    logger.info("Tour %s started by %s", tour["transport_order"], username)
    return {**tour, "maintenance_mode": False}


def start_maintenance_mode(
    store: KeyValueStore,
    username: str,
    truck_license_plate: Optional[str],
    trailer_license_plate: Optional[str],
) -> Dict[str, Any]:
    if get_active_tour(store, username):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Es ist bereits eine Tour aktiv")
    record = {
        "truck_license_plate": truck_license_plate,
        "trailer_license_plate": trailer_license_plate,
        "transport_order": "",
        "started_at": _now().isoformat(),
    }
    write_json(store, maintenance_mode_key(username), record)
    return {**record, "maintenance_mode": True}


def end_tour(store: KeyValueStore, username: str) -> None:
    remove_key(store, active_tour_key(username))
    remove_key(store, maintenance_mode_key(username))


def _require_active_tour(store: KeyValueStore, username: str) -> Dict[str, Any]:
    tour = get_active_tour(store, username)
    if not tour:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Keine aktive Tour")
    return tour


# --- Protocols --------------------------------------------------------------


def list_protocols(store: KeyValueStore, username: str) -> List[Dict[str, Any]]:
    stored = read_json(store, protocols_key(username), [])
    if not isinstance(stored, list):
        logger.error("Protocol collection of %s is not a list, ignoring it", username)
        return []
    return [entry for entry in stored if isinstance(entry, dict)]


def get_protocol(store: KeyValueStore, username: str, protocol_id: str) -> Dict[str, Any]:
    for protocol in list_protocols(store, username):
        if protocol.get("id") == protocol_id:
            return protocol
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Protokoll nicht gefunden")


def _loading_protocols_for_order(protocols: Iterable[Dict[str, Any]], transport_order: str) -> List[Dict[str, Any]]:
    return [
        protocol
        for protocol in protocols
        if protocol.get("type") == "loading" and protocol.get("transport_order") == transport_order
    ]


def next_loading_protocol_number(protocols: Iterable[Dict[str, Any]], transport_order: str) -> str:
    count = len(_loading_protocols_for_order(protocols, transport_order))
    return f"{transport_order}-{count + 1:02d}"


def _contamination_details(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    types = data.pop("contamination_types", None) or []
    description = data.pop("contamination_description", None) or ""
    actions = data.pop("corrective_actions", None) or ""
    if data.get("control_result") != "n.i.O.":
        return None
    return {"types": types, "description": description.strip(), "corrective_actions": actions.strip()}


def add_protocol(store: KeyValueStore, username: str, payload: BaseModel) -> Dict[str, Any]:
    tour = get_active_tour(store, username)
    start_time: Optional[dt.datetime] = getattr(payload, "start_time", None)
    data = payload.model_dump(mode="json", exclude={"start_time"})
    protocol_type = data.pop("type")

    if protocol_type == "maintenance":
        truck = data.pop("truck_license_plate", None) or (tour or {}).get("truck_license_plate")
        trailer = data.pop("trailer_license_plate", None) or (tour or {}).get("trailer_license_plate")
        if not truck and not trailer:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Kein Fahrzeug ausgewählt. Bitte wählen Sie ein Fahrzeug für die Wartung aus.",
            )
        transport_order = tour["transport_order"] if tour and not tour["maintenance_mode"] else None
    else:
        if not tour or tour["maintenance_mode"]:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=NO_ACTIVE_TOUR_DETAIL)
        truck = tour.get("truck_license_plate")
        trailer = tour.get("trailer_license_plate")
        transport_order = tour["transport_order"]

    protocols = list_protocols(store, username)

    if protocol_type == "cleaning":
        data["contamination_details"] = _contamination_details(data)
    elif protocol_type == "loading":
        data["loading_protocol_number"] = next_loading_protocol_number(protocols, transport_order)
    elif protocol_type == "delivery":
        known_numbers = {
            protocol.get("loading_protocol_number")
            for protocol in _loading_protocols_for_order(protocols, transport_order)
        }
        if data["loading_protocol_number"] not in known_numbers:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Ladeprotokoll gehört nicht zur aktiven Tour",
            )
        data["message"] = data.get("message") or ""
    elif protocol_type == "pause":
        data["message"] = data.get("message") or ""
    elif protocol_type == "emergency":
        emergency_type = data["emergency_type"]
        for field, emergency_types in EMERGENCY_CONDITIONAL_FIELDS.items():
            if emergency_type not in emergency_types:
                data.pop(field, None)

    now = _now()
    record = {
        "id": uuid.uuid4().hex,
        "driver_id": username,
        "type": protocol_type,
        **data,
        "start_time": (_ensure_utc(start_time) if start_time else now).isoformat(),
        "end_time": now.isoformat(),
        "truck_license_plate": truck,
        "trailer_license_plate": trailer,
        "transport_order": transport_order,
    }
    write_json(store, protocols_key(username), [record, *protocols])
    logger.info("Stored %s protocol %s for %s", protocol_type, record["id"], username)
    return record


def dashboard_protocols(protocols: Iterable[Dict[str, Any]], tour: Dict[str, Any]) -> List[Dict[str, Any]]:
    if tour.get("maintenance_mode"):
        return [protocol for protocol in protocols if not protocol.get("transport_order")]
    return [protocol for protocol in protocols if protocol.get("transport_order") == tour.get("transport_order")]


def archived_tours(protocols: Iterable[Dict[str, Any]], active_transport_order: Optional[str]) -> List[Dict[str, Any]]:
    grouped: Dict[str, Dict[str, Any]] = {}
    for protocol in protocols:
        order = protocol.get("transport_order")
        if not order or order == active_transport_order:
            continue
        group = grouped.setdefault(
            order,
            {
                "transport_order": order,
                "truck_license_plate": protocol.get("truck_license_plate") or "N/A",
                "trailer_license_plate": protocol.get("trailer_license_plate") or "N/A",
                "protocols": [],
            },
        )
        group["protocols"].append(protocol)

    def newest(group: Dict[str, Any]) -> dt.datetime:
        stamps = [_parse_iso(p.get("end_time")) for p in group["protocols"]]
        return max((stamp for stamp in stamps if stamp), default=dt.datetime.min.replace(tzinfo=UTC))

    return sorted(grouped.values(), key=newest, reverse=True)


def protocol_title(protocol: Dict[str, Any]) -> str:
    return PROTOCOL_TITLES.get(protocol.get("type", ""), "Protokoll")


def share_protocol(protocol: Dict[str, Any]) -> Dict[str, str]:
    title = f"{protocol_title(protocol)} - {_format_local(protocol.get('end_time'), '%d.%m.%Y')}"
    lines = []
    for key, value in protocol.items():
        if isinstance(value, (dict, list)):
            lines.append(f"{key}:\n{json.dumps(value, indent=2, ensure_ascii=False)}")
        else:
            lines.append(f"{key}: {value}")
    return {
        "title": title,
        "text": "\n\n".join(lines),
        "filename": f"protocol-{protocol['id']}.json",
        "content": json.dumps(protocol, indent=2, ensure_ascii=False),
    }


# --- Vehicles ---------------------------------------------------------------


def _coerce_vehicle(entry: Any) -> Optional[Dict[str, Any]]:
    # early registries only stored the plate strings
    if isinstance(entry, str):
        plate = normalize_license_plate(entry)
        return {"license_plate": plate, "maintenance_number": "", "active": True} if plate else None
    if isinstance(entry, dict) and entry.get("license_plate"):
        return {**entry, "active": bool(entry.get("active", True))}
    return None


def _load_registry(store: KeyValueStore) -> Dict[str, List[Dict[str, Any]]]:
    stored = read_json(store, VEHICLES_KEY, {})
    if not isinstance(stored, dict):
        stored = {}
    registry: Dict[str, List[Dict[str, Any]]] = {}
    for vehicle_type in ("truck", "trailer"):
        entries = stored.get(vehicle_type) or []
        registry[vehicle_type] = [vehicle for vehicle in map(_coerce_vehicle, entries) if vehicle]
    return registry


def _find_vehicle(vehicles: List[Dict[str, Any]], license_plate: str) -> Optional[Dict[str, Any]]:
    wanted = normalize_license_plate(license_plate)
    for vehicle in vehicles:
        if normalize_license_plate(vehicle["license_plate"]) == wanted:
            return vehicle
    return None


def _get_vehicle(registry: Dict[str, List[Dict[str, Any]]], vehicle_type: str, license_plate: str) -> Dict[str, Any]:
    vehicle = _find_vehicle(registry[vehicle_type], license_plate)
    if not vehicle:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fahrzeug nicht gefunden")
    return vehicle


def list_vehicles(store: KeyValueStore) -> Dict[str, List[Dict[str, Any]]]:
    registry = _load_registry(store)
    return {
        vehicle_type: [
            {**vehicle, "type": vehicle_type}
            for vehicle in sorted(vehicles, key=lambda item: item["license_plate"])
        ]
        for vehicle_type, vehicles in registry.items()
    }


def add_vehicle(store: KeyValueStore, vehicle_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    registry = _load_registry(store)
    if _find_vehicle(registry[vehicle_type], data["license_plate"]):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Ein Fahrzeug mit dem Kennzeichen {data['license_plate']} existiert bereits.",
        )
    vehicle = {key: value for key, value in data.items() if key != "type"}
    registry[vehicle_type].append(vehicle)
    write_json(store, VEHICLES_KEY, registry)
    return {**vehicle, "type": vehicle_type}


def update_vehicle(
    store: KeyValueStore, vehicle_type: str, license_plate: str, changes: Dict[str, Any]
) -> Dict[str, Any]:
    registry = _load_registry(store)
    vehicle = _get_vehicle(registry, vehicle_type, license_plate)
    new_plate = changes.get("license_plate")
    if new_plate and new_plate != vehicle["license_plate"]:
        clash = _find_vehicle(registry[vehicle_type], new_plate)
        if clash is not None and clash is not vehicle:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Ein Fahrzeug mit dem Kennzeichen {new_plate} existiert bereits.",
            )
    for key, value in changes.items():
        if key == "license_plate" and not value:
            continue
        vehicle[key] = value
    write_json(store, VEHICLES_KEY, registry)
    return {**vehicle, "type": vehicle_type}


def set_vehicle_status(store: KeyValueStore, vehicle_type: str, license_plate: str, active: bool) -> Dict[str, Any]:
    registry = _load_registry(store)
    vehicle = _get_vehicle(registry, vehicle_type, license_plate)
    vehicle["active"] = active
    write_json(store, VEHICLES_KEY, registry)
    return {**vehicle, "type": vehicle_type}


def delete_vehicle(store: KeyValueStore, vehicle_type: str, license_plate: str) -> None:
    registry = _load_registry(store)
    vehicle = _get_vehicle(registry, vehicle_type, license_plate)
    registry[vehicle_type] = [item for item in registry[vehicle_type] if item is not vehicle]
    write_json(store, VEHICLES_KEY, registry)


def unique_license_plates(store: KeyValueStore, username: str, vehicle_type: str) -> List[str]:
    field = "truck_license_plate" if vehicle_type == "truck" else "trailer_license_plate"
    protocol_plates = [protocol.get(field) for protocol in list_protocols(store, username)]
    registry_plates = [
        vehicle["license_plate"] for vehicle in _load_registry(store)[vehicle_type] if vehicle.get("active", True)
    ]
    return normalize_plate_selection([*protocol_plates, *registry_plates])


def suggest_license_plates(
    store: KeyValueStore, username: str, vehicle_type: str, partial: str, limit: int = 5
) -> List[str]:
    prefix = plate_search_key(partial or "")
    if not prefix:
        return []
    return [
        plate
        for plate in unique_license_plates(store, username, vehicle_type)
        if plate_search_key(plate).startswith(prefix)
    ][:limit]


# --- Attachments ------------------------------------------------------------


def build_attachment(content: bytes, filename: str, content_type: Optional[str]) -> Dict[str, str]:
    mime_type = content_type if content_type and content_type != "application/octet-stream" else None
    if not mime_type:
        mime_type, _ = mimetypes.guess_type(filename)
    if not mime_type or not (mime_type.startswith("image/") or mime_type in ALLOWED_DOCUMENT_TYPES):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nur Bilder und PDF-Dokumente sind erlaubt")
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Datei ist leer")
    if len(content) > settings.max_attachment_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Datei ist zu groß")
    return {"data_url": to_data_url(content, mime_type), "mime_type": mime_type}


# --- Admin settings ---------------------------------------------------------


COMPANY_FIELDS = ("logo", "company_name", "street", "zip", "city", "country", "api_key")
NOTIFICATION_FIELDS = ("emails", "whatsapp", "api_uri")


def _load_document(store: KeyValueStore, key: str, fields: Iterable[str]) -> Dict[str, Any]:
    stored = read_json(store, key, {})
    if not isinstance(stored, dict):
        stored = {}
    return {field: stored.get(field) for field in fields}


def get_company_settings(store: KeyValueStore) -> Dict[str, Any]:
    return _load_document(store, COMPANY_SETTINGS_KEY, COMPANY_FIELDS)


def save_company_settings(store: KeyValueStore, updates: Dict[str, Any]) -> Dict[str, Any]:
    current = get_company_settings(store)
    current.update({key: value for key, value in updates.items() if key in COMPANY_FIELDS})
    write_json(store, COMPANY_SETTINGS_KEY, current)
    return current


def store_logo(store: KeyValueStore, content: bytes, filename: str, content_type: Optional[str]) -> Dict[str, Any]:
    attachment = build_attachment(content, filename, content_type)
    if not attachment["mime_type"].startswith("image/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Logo muss ein Bild sein")
    return save_company_settings(store, {"logo": attachment["data_url"]})


def get_notification_settings(store: KeyValueStore) -> Dict[str, Any]:
    return _load_document(store, NOTIFICATION_SETTINGS_KEY, NOTIFICATION_FIELDS)


def save_notification_settings(store: KeyValueStore, data: Dict[str, Any]) -> Dict[str, Any]:
    document = {field: data.get(field) for field in NOTIFICATION_FIELDS}
    write_json(store, NOTIFICATION_SETTINGS_KEY, document)
    return document


def _database_settings_view(document: Dict[str, Any]) -> Dict[str, Any]:
    view = {key: value for key, value in document.items() if key != "password"}
    view["password_set"] = bool(document.get("password"))
    return view


def get_database_settings(store: KeyValueStore) -> Dict[str, Any]:
    stored = read_json(store, DATABASE_SETTINGS_KEY, None)
    if not isinstance(stored, dict) or "db_type" not in stored:
        stored = {"db_type": "sqlite", "file_path": str(settings.sqlite_path)}
    return _database_settings_view(stored)


def save_database_settings(store: KeyValueStore, data: Dict[str, Any]) -> Dict[str, Any]:
    document = dict(data)
    if document.get("password") == PASSWORD_UNCHANGED:
        previous = read_json(store, DATABASE_SETTINGS_KEY, {})
        document["password"] = previous.get("password") if isinstance(previous, dict) else None
    write_json(store, DATABASE_SETTINGS_KEY, document)
    return _database_settings_view(document)


# --- Dispatcher: employees and customers --------------------------------------


def _load_collection(store: KeyValueStore, key: str) -> List[Dict[str, Any]]:
    stored = read_json(store, key, [])
    if not isinstance(stored, list):
        return []
    return [entry for entry in stored if isinstance(entry, dict) and entry.get("id")]


def _get_entry(entries: List[Dict[str, Any]], entry_id: str, detail: str) -> Dict[str, Any]:
    for entry in entries:
        if entry["id"] == entry_id:
            return entry
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def list_employees(store: KeyValueStore) -> List[Dict[str, Any]]:
    return sorted(_load_collection(store, EMPLOYEES_KEY), key=lambda item: item.get("name", "").casefold())


def create_employee(store: KeyValueStore, data: Dict[str, Any]) -> Dict[str, Any]:
    employees = _load_collection(store, EMPLOYEES_KEY)
    employee = {"id": uuid.uuid4().hex, **data}
    employees.append(employee)
    write_json(store, EMPLOYEES_KEY, employees)
    return employee


def update_employee(store: KeyValueStore, employee_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    employees = _load_collection(store, EMPLOYEES_KEY)
    employee = _get_entry(employees, employee_id, "Mitarbeiter nicht gefunden")
    employee.update(data)
    write_json(store, EMPLOYEES_KEY, employees)
    return employee


def delete_employee(store: KeyValueStore, employee_id: str) -> None:
    employees = _load_collection(store, EMPLOYEES_KEY)
    _get_entry(employees, employee_id, "Mitarbeiter nicht gefunden")
    write_json(store, EMPLOYEES_KEY, [item for item in employees if item["id"] != employee_id])


def list_customers(store: KeyValueStore) -> List[Dict[str, Any]]:
    return sorted(_load_collection(store, CUSTOMERS_KEY), key=lambda item: item.get("name", "").casefold())


def _customer_name_taken(customers: List[Dict[str, Any]], name: str, exclude_id: Optional[str] = None) -> bool:
    wanted = name.casefold()
    return any(item.get("name", "").casefold() == wanted and item["id"] != exclude_id for item in customers)


def create_customer(store: KeyValueStore, data: Dict[str, Any]) -> Dict[str, Any]:
    customers = _load_collection(store, CUSTOMERS_KEY)
    if _customer_name_taken(customers, data["name"]):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Ein Eintrag mit dem Namen {data['name']} existiert bereits.",
        )
    customer = {"id": uuid.uuid4().hex, **data}
    customers.append(customer)
    write_json(store, CUSTOMERS_KEY, customers)
    return customer


def update_customer(store: KeyValueStore, customer_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    customers = _load_collection(store, CUSTOMERS_KEY)
    customer = _get_entry(customers, customer_id, "Eintrag nicht gefunden")
    if _customer_name_taken(customers, data["name"], exclude_id=customer_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Ein Eintrag mit dem Namen {data['name']} existiert bereits.",
        )
    customer.update(data)
    write_json(store, CUSTOMERS_KEY, customers)
    return customer


def delete_customer(store: KeyValueStore, customer_id: str) -> None:
    customers = _load_collection(store, CUSTOMERS_KEY)
    _get_entry(customers, customer_id, "Eintrag nicht gefunden")
    write_json(store, CUSTOMERS_KEY, [item for item in customers if item["id"] != customer_id])


# --- Dispatcher: tour planning ------------------------------------------------


def kilometer_price(rohertrag: Optional[float], km: Optional[float]) -> float:
    if not km or km <= 0:
        return 0.0
    return (rohertrag or 0.0) / km


def _tour_number_value(tour_nr: Any) -> Optional[int]:
    if not isinstance(tour_nr, str) or not tour_nr.startswith(TOUR_NUMBER_PREFIX):
        return None
    try:
        return int(tour_nr[len(TOUR_NUMBER_PREFIX) :])
    except ValueError:
        return None


def _derived_km_price(tour: Dict[str, Any]) -> float:
    return round(kilometer_price(tour.get("rohertrag"), tour.get("km")), 2)


def next_tour_number(tours: Iterable[Dict[str, Any]]) -> str:
    numbers = [value for value in (_tour_number_value(tour.get("tour_nr")) for tour in tours) if value is not None]
    next_value = max(numbers) + 1 if numbers else FIRST_TOUR_NUMBER
    return f"{TOUR_NUMBER_PREFIX}{next_value:05d}"


def _load_planned_tours(store: KeyValueStore) -> List[Dict[str, Any]]:
    stored = read_json(store, PLANNED_TOURS_KEY, [])
    if not isinstance(stored, list):
        return []
    return [entry for entry in stored if isinstance(entry, dict) and entry.get("tour_nr")]


def _get_planned_tour(tours: List[Dict[str, Any]], tour_nr: str) -> Dict[str, Any]:
    for tour in tours:
        if tour["tour_nr"] == tour_nr:
            return tour
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tour nicht gefunden")


def _tour_in_week(tour: Dict[str, Any], year: Optional[int], week: Optional[int]) -> bool:
    if year is None and week is None:
        return True
    start = _parse_iso(tour.get("start_time"))
    if start is None:
        return False
    iso_year, iso_week, _ = start.astimezone(LOCAL_TZ).isocalendar()
    if year is not None and iso_year != year:
        return False
    if week is not None and iso_week != week:
        return False
    return True


def list_planned_tours(
    store: KeyValueStore, year: Optional[int] = None, week: Optional[int] = None
) -> List[Dict[str, Any]]:
    tours = [tour for tour in _load_planned_tours(store) if _tour_in_week(tour, year, week)]
    return sorted(tours, key=lambda tour: _tour_number_value(tour["tour_nr"]) or 0)


def create_planned_tour(store: KeyValueStore, data: Dict[str, Any]) -> Dict[str, Any]:
    tours = _load_planned_tours(store)
    tour = {"tour_nr": next_tour_number(tours), **data}
    tour["km_price"] = _derived_km_price(tour)
    tours.append(tour)
    write_json(store, PLANNED_TOURS_KEY, tours)
    logger.info("Planned tour %s for driver %s", tour["tour_nr"], tour.get("driver"))
    return tour


def update_planned_tour(store: KeyValueStore, tour_nr: str, data: Dict[str, Any]) -> Dict[str, Any]:
    tours = _load_planned_tours(store)
    tour = _get_planned_tour(tours, tour_nr)
    tour.update(data)
    tour["km_price"] = _derived_km_price(tour)
    write_json(store, PLANNED_TOURS_KEY, tours)
    return tour


def set_kilometer_price(store: KeyValueStore, tour_nr: str, rohertrag: float, km: float) -> Dict[str, Any]:
    tours = _load_planned_tours(store)
    tour = _get_planned_tour(tours, tour_nr)
    tour["rohertrag"] = rohertrag
    tour["km"] = km
    tour["km_price"] = _derived_km_price(tour)
    write_json(store, PLANNED_TOURS_KEY, tours)
    return tour


def delete_planned_tour(store: KeyValueStore, tour_nr: str) -> None:
    tours = _load_planned_tours(store)
    _get_planned_tour(tours, tour_nr)
    write_json(store, PLANNED_TOURS_KEY, [tour for tour in tours if tour["tour_nr"] != tour_nr])


def weeks_for_year(year: int) -> List[Dict[str, Any]]:
    week_count = dt.date(year, 12, 28).isocalendar()[1]
    return [{"week": week, "start_date": dt.date.fromisocalendar(year, week, 1)} for week in range(1, week_count + 1)]


def planning_week(store: KeyValueStore, year: int, week: int) -> Dict[str, Any]:
    try:
        monday = dt.date.fromisocalendar(year, week, 1)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ungültige Kalenderwoche") from exc
    return {
        "year": year,
        "week": week,
        "days": [monday + dt.timedelta(days=offset) for offset in range(7)],
        "tours": list_planned_tours(store, year, week),
    }


# --- Tour summary and reports -------------------------------------------------


def build_tour_summary(store: KeyValueStore, username: str) -> Dict[str, Any]:
    tour = _require_active_tour(store, username)
    return {
        "tour": tour,
        "protocols": dashboard_protocols(list_protocols(store, username), tour),
        "driver": username,
        "end_date": _now().isoformat(),
    }


def log_tour_summary(data: Any) -> None:
    logger.info("Received tour summary data: %s", json.dumps(data, indent=2, ensure_ascii=False))


def _summary_basename(summary: Dict[str, Any]) -> str:
    order = summary["tour"].get("transport_order") or "wartung"
    safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in order)
    return f"tour-summary-{safe}"


def _protocol_detail_lines(protocol: Dict[str, Any]) -> List[str]:
    skipped = {
        "id",
        "driver_id",
        "type",
        "location",
        "start_time",
        "end_time",
        "truck_license_plate",
        "trailer_license_plate",
        "transport_order",
        *ATTACHMENT_FIELDS,
    }
    lines = []
    for key, value in protocol.items():
        if key in skipped or value is None or value == "":
            continue
        if isinstance(value, bool):
            value = "ja" if value else "nein"
        elif isinstance(value, dict):
            value = ", ".join(f"{k}={', '.join(v) if isinstance(v, list) else v}" for k, v in value.items())
        elif isinstance(value, list):
            value = ", ".join(str(item) for item in value)
        lines.append(f"{key}: {value}")
    attachment_count = sum(len(protocol.get(field) or []) for field in ATTACHMENT_FIELDS)
    if attachment_count:
        lines.append(f"Anhänge: {attachment_count}")
    return lines


def _wrap_text(text: str, width: int) -> List[str]:
    words = text.split()
    if not words:
        return [""]
    lines: List[str] = []
    current = words[0]
    for word in words[1:]:
        if len(current) + 1 + len(word) > width:
            lines.append(current)
            current = word
        else:
            current = f"{current} {word}"
    lines.append(current)
    return lines


def _logo_reader(company: Dict[str, Any]) -> Optional[ImageReader]:
    logo = company.get("logo")
    if not logo:
        return None
    try:
        _, content = decode_data_url(logo)
        return ImageReader(io.BytesIO(content))
    except (ValueError, OSError):
        logger.warning("Company logo could not be decoded, rendering report without it")
        return None


def _render_tour_summary_pdf(summary: Dict[str, Any], company: Dict[str, Any]) -> bytes:
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    margin = 2 * cm
    y = height - margin
    tour = summary["tour"]
    order = tour.get("transport_order") or "Wartung"
    pdf.setTitle(f"Tour-Zusammenfassung {order}")

    logo = _logo_reader(company)
    if logo is not None:
        pdf.drawImage(logo, width - margin - 4 * cm, y - 1.5 * cm, width=4 * cm, height=1.5 * cm, preserveAspectRatio=True, mask="auto")
    if company.get("company_name"):
        pdf.setFont("Helvetica", 10)
        pdf.drawString(margin, y, company["company_name"])
        y -= 0.6 * cm

    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(margin, y, f"Tour-Zusammenfassung {order}")
    y -= 1 * cm
    pdf.setFont("Helvetica", 11)
    for label, value in (
        ("LKW", tour.get("truck_license_plate") or "-"),
        ("Anhänger", tour.get("trailer_license_plate") or "-"),
        ("Fahrer", summary["driver"]),
        ("Abschluss", _format_local(summary["end_date"])),
        ("Protokolle", str(len(summary["protocols"]))),
    ):
        pdf.drawString(margin, y, f"{label}: {value}")
        y -= 0.6 * cm
    y -= 0.4 * cm

    for protocol in sorted(summary["protocols"], key=lambda item: item.get("end_time") or ""):
        if y < 4 * cm:
            pdf.showPage()
            y = height - margin
        pdf.setFont("Helvetica-Bold", 12)
        pdf.drawString(margin, y, protocol_title(protocol))
        y -= 0.6 * cm
        pdf.setFont("Helvetica", 10)
        header = (
            f"{_format_local(protocol.get('start_time'))} - {_format_local(protocol.get('end_time'))}"
            f" | {protocol.get('location', '')}"
        )
        lines = [header]
        for detail in _protocol_detail_lines(protocol):
            lines.extend(_wrap_text(detail, 95))
        for line in lines:
            pdf.drawString(margin + 0.3 * cm, y, line)
            y -= 0.5 * cm
            if y < 2 * cm:
                pdf.showPage()
                y = height - margin
                pdf.setFont("Helvetica", 10)
        y -= 0.4 * cm
    pdf.save()
    return buffer.getvalue()


def _render_tour_summary_xlsx(summary: Dict[str, Any]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Tour"
    tour = summary["tour"]
    ws.append(["Transportauftrag", tour.get("transport_order") or ""])
    ws.append(["LKW", tour.get("truck_license_plate") or ""])
    ws.append(["Anhänger", tour.get("trailer_license_plate") or ""])
    ws.append(["Fahrer", summary["driver"]])
    ws.append(["Abschluss", _format_local(summary["end_date"])])

    sheet = wb.create_sheet("Protokolle")
    sheet.append(["ID", "Protokoll", "Beginn", "Ende", "Ort", "LKW", "Anhänger", "Details"])
    for protocol in summary["protocols"]:
        sheet.append(
            [
                protocol.get("id"),
                protocol_title(protocol),
                _format_local(protocol.get("start_time")),
                _format_local(protocol.get("end_time")),
                protocol.get("location") or "",
                protocol.get("truck_license_plate") or "",
                protocol.get("trailer_license_plate") or "",
                "; ".join(_protocol_detail_lines(protocol)),
            ]
        )
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


EXPORT_MEDIA_TYPES: Dict[str, str] = {
    "json": "application/json",
    "pdf": "application/pdf",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def export_tour_summary(store: KeyValueStore, username: str, export_format: str) -> Tuple[str, bytes, str]:
    if export_format not in EXPORT_MEDIA_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported export format")
    summary = build_tour_summary(store, username)
    filename = f"{_summary_basename(summary)}.{export_format}"
    if export_format == "json":
        content = json.dumps(summary, indent=2, ensure_ascii=False).encode("utf-8")
    elif export_format == "pdf":
        content = _render_tour_summary_pdf(summary, get_company_settings(store))
    else:
        content = _render_tour_summary_xlsx(summary)
    return filename, content, EXPORT_MEDIA_TYPES[export_format]
