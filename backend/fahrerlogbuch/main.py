from __future__ import annotations

import datetime as dt
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .database import engine, get_db
from .logger import get_logger
from .schemas import (
    ActiveTourResponse,
    ArchivedTourResponse,
    Attachment,
    CompanySettings,
    CurrentUserResponse,
    CustomerBase,
    CustomerResponse,
    DashboardResponse,
    DatabaseSettings,
    DatabaseSettingsResponse,
    EmployeeBase,
    EmployeeResponse,
    KilometerPriceRequest,
    LicensePlatesResponse,
    LocationRequest,
    LocationResponse,
    LoginRequest,
    LoginResponse,
    NotificationSettings,
    PlannedTourBase,
    PlannedTourResponse,
    PlanningWeek,
    PlanningWeekResponse,
    PlateSuggestionResponse,
    ProtocolCreate,
    ProtocolRecord,
    ProtocolShareResponse,
    TourSelectionRequest,
    TourSummaryAck,
    TourSummaryResponse,
    UserCreateRequest,
    UserResponse,
    UserUpdateRequest,
    VehicleCreateRequest,
    VehicleRegistryResponse,
    VehicleResponse,
    VehicleStatusRequest,
    VehicleType,
    VehicleUpdateRequest,
)
from .services import (
    add_protocol,
    add_user,
    add_vehicle,
    archived_tours,
    build_attachment,
    build_tour_summary,
    create_customer,
    create_employee,
    create_planned_tour,
    dashboard_protocols,
    delete_customer,
    delete_employee,
    delete_planned_tour,
    delete_user,
    delete_vehicle,
    end_tour,
    export_tour_summary,
    get_active_tour,
    get_company_settings,
    get_database_settings,
    get_notification_settings,
    get_protocol,
    landing_page,
    list_customers,
    list_employees,
    list_planned_tours,
    list_protocols,
    list_users,
    list_vehicles,
    log_tour_summary,
    login,
    logout,
    planning_week,
    resolve_current_user,
    save_company_settings,
    save_database_settings,
    save_notification_settings,
    set_kilometer_price,
    set_vehicle_status,
    share_protocol,
    start_maintenance_mode,
    start_tour,
    store_logo,
    suggest_license_plates,
    unique_license_plates,
    update_customer,
    update_employee,
    update_planned_tour,
    update_user,
    update_vehicle,
    weeks_for_year,
)
from .storage import JsonDirectoryStore, KeyValueStore, SqlStore, StorageError
from .utils import format_coordinates

logger = get_logger(__name__)


models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer_scheme = HTTPBearer(auto_error=False)


@app.exception_handler(StorageError)
def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Speicherzugriff fehlgeschlagen."},
    )


def get_store(db: Session = Depends(get_db)) -> KeyValueStore:
    if settings.storage_backend == "json":
        return JsonDirectoryStore(settings.json_dir)
    return SqlStore(db)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: KeyValueStore = Depends(get_store),
) -> Dict[str, Any]:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Nicht angemeldet",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = resolve_current_user(store, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sitzung ungültig oder abgelaufen",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user["token"] = credentials.credentials
    return user


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user["active_role"] not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Keine Berechtigung")
        return user

    return dependency


require_admin = require_roles("admin")
require_fleet = require_roles("admin", "disponent")
require_dispatch = require_roles("disponent", "admin")


def _attachment_download(filename: str, content: bytes, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# --- Auth ---------------------------------------------------------------------


@app.post("/auth/login", response_model=LoginResponse)
def auth_login(payload: LoginRequest, store: KeyValueStore = Depends(get_store)) -> LoginResponse:
    return LoginResponse(**login(store, payload.username, payload.password, payload.role))


@app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def auth_logout(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    logout(store, user["token"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/auth/me", response_model=CurrentUserResponse)
def auth_me(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> CurrentUserResponse:
    return CurrentUserResponse(
        username=user["username"],
        roles=user["roles"],
        active_role=user["active_role"],
        landing_page=landing_page(store, user["username"], user["active_role"]),
    )


# --- Driver: tour selection, dashboard and protocols ---------------------------


@app.get("/tour-selection")
def tour_selection_options(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
):
    if get_active_tour(store, user["username"]):
        return RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    return {
        "truck": unique_license_plates(store, user["username"], "truck"),
        "trailer": unique_license_plates(store, user["username"], "trailer"),
    }


@app.post("/tour-selection", response_model=ActiveTourResponse, status_code=status.HTTP_201_CREATED)
def tour_selection_submit(
    payload: TourSelectionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
):
    username = user["username"]
    if get_active_tour(store, username):
        return RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    if payload.is_maintenance:
        tour = start_maintenance_mode(store, username, payload.truck_license_plate, payload.trailer_license_plate)
    else:
        tour = start_tour(
            store,
            username,
            payload.truck_license_plate,
            payload.trailer_license_plate,
            payload.transport_order,
        )
    return ActiveTourResponse(**tour)


@app.get("/tour", response_model=ActiveTourResponse)
def tour_active(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> ActiveTourResponse:
    tour = get_active_tour(store, user["username"])
    if not tour:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Keine aktive Tour")
    return ActiveTourResponse(**tour)


@app.post("/tour/end", status_code=status.HTTP_204_NO_CONTENT)
def tour_end(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    end_tour(store, user["username"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/", response_model=DashboardResponse)
def dashboard(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
):
    tour = get_active_tour(store, user["username"])
    if not tour:
        return RedirectResponse("/tour-selection", status_code=status.HTTP_303_SEE_OTHER)
    protocols = dashboard_protocols(list_protocols(store, user["username"]), tour)
    return DashboardResponse(active_tour=ActiveTourResponse(**tour), protocols=protocols)


@app.post("/protocols", response_model=ProtocolRecord, status_code=status.HTTP_201_CREATED)
def protocols_create(
    payload: ProtocolCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> ProtocolRecord:
    return ProtocolRecord(**add_protocol(store, user["username"], payload))


@app.get("/protocols", response_model=list[ProtocolRecord])
def protocols_list(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> list[ProtocolRecord]:
    return [ProtocolRecord(**protocol) for protocol in list_protocols(store, user["username"])]


@app.get("/protocols/{protocol_id}", response_model=ProtocolRecord)
def protocols_detail(
    protocol_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> ProtocolRecord:
    return ProtocolRecord(**get_protocol(store, user["username"], protocol_id))


@app.get("/protocols/{protocol_id}/share", response_model=ProtocolShareResponse)
def protocols_share(
    protocol_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> ProtocolShareResponse:
    return ProtocolShareResponse(**share_protocol(get_protocol(store, user["username"], protocol_id)))


@app.get("/protocols/{protocol_id}/download")
def protocols_download(
    protocol_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    shared = share_protocol(get_protocol(store, user["username"], protocol_id))
    return _attachment_download(shared["filename"], shared["content"].encode("utf-8"), "application/json")


@app.get("/archive", response_model=list[ArchivedTourResponse])
def archive(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> list[ArchivedTourResponse]:
    tour = get_active_tour(store, user["username"])
    active_order = tour.get("transport_order") if tour else None
    groups = archived_tours(list_protocols(store, user["username"]), active_order)
    return [ArchivedTourResponse(**group) for group in groups]


@app.get("/plates/{vehicle_type}", response_model=LicensePlatesResponse)
def plates_list(
    vehicle_type: VehicleType,
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> LicensePlatesResponse:
    return LicensePlatesResponse(type=vehicle_type, plates=unique_license_plates(store, user["username"], vehicle_type))


@app.get("/plates/{vehicle_type}/suggestions", response_model=PlateSuggestionResponse)
def plates_suggestions(
    vehicle_type: VehicleType,
    q: str = Query(default=""),
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> PlateSuggestionResponse:
    return PlateSuggestionResponse(suggestions=suggest_license_plates(store, user["username"], vehicle_type, q))


@app.post("/attachments", response_model=Attachment, status_code=status.HTTP_201_CREATED)
async def attachments_upload(
    file: UploadFile = File(...),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Attachment:
    content = await file.read()
    return Attachment(**build_attachment(content, file.filename or "upload", file.content_type))


@app.post("/location", response_model=LocationResponse)
def location_format(
    payload: LocationRequest,
    user: Dict[str, Any] = Depends(get_current_user),
) -> LocationResponse:
    return LocationResponse(location=format_coordinates(payload.latitude, payload.longitude))


# --- Tour summary -----------------------------------------------------------


@app.get("/tour/summary", response_model=TourSummaryResponse)
def tour_summary(
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> TourSummaryResponse:
    return TourSummaryResponse(**build_tour_summary(store, user["username"]))


@app.get("/tour/summary/export")
def tour_summary_export(
    format: str = Query(default="pdf"),
    user: Dict[str, Any] = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    filename, content, media_type = export_tour_summary(store, user["username"], format)
    return _attachment_download(filename, content, media_type)


@app.post("/api/tour-summary", response_model=TourSummaryAck)
async def tour_summary_receive(request: Request):
    try:
        data = await request.json()
    except ValueError:
        logger.exception("Error processing tour summary")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Error processing request."},
        )
    log_tour_summary(data)
    return TourSummaryAck(message="Tour summary received successfully.")


# --- Admin ------------------------------------------------------------------


@app.get("/admin")
def admin_overview(
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> dict[str, Any]:
    vehicles = list_vehicles(store)
    return {
        "users": len(list_users(store)),
        "trucks": len(vehicles["truck"]),
        "trailers": len(vehicles["trailer"]),
        "company_name": get_company_settings(store).get("company_name"),
    }


@app.get("/admin/users", response_model=list[UserResponse])
def admin_users_list(
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> list[UserResponse]:
    return [UserResponse(**entry) for entry in list_users(store)]


@app.post("/admin/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def admin_users_create(
    payload: UserCreateRequest,
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> UserResponse:
    return UserResponse(**add_user(store, payload.username, payload.password, payload.roles))


@app.patch("/admin/users/{username}", response_model=UserResponse)
def admin_users_update(
    username: str,
    payload: UserUpdateRequest,
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> UserResponse:
    return UserResponse(**update_user(store, username, payload.password, payload.roles))


@app.delete("/admin/users/{username}", status_code=status.HTTP_204_NO_CONTENT)
def admin_users_delete(
    username: str,
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    delete_user(store, username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/vehicles", response_model=VehicleRegistryResponse)
def vehicles_list(
    user: Dict[str, Any] = Depends(require_fleet),
    store: KeyValueStore = Depends(get_store),
) -> VehicleRegistryResponse:
    return VehicleRegistryResponse(**list_vehicles(store))


@app.post("/vehicles", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
def vehicles_create(
    payload: VehicleCreateRequest,
    user: Dict[str, Any] = Depends(require_fleet),
    store: KeyValueStore = Depends(get_store),
) -> VehicleResponse:
    vehicle = add_vehicle(store, payload.type, payload.model_dump(mode="json"))
    return VehicleResponse(**vehicle)


@app.patch("/vehicles/{vehicle_type}/{license_plate}", response_model=VehicleResponse)
def vehicles_update(
    vehicle_type: VehicleType,
    license_plate: str,
    payload: VehicleUpdateRequest,
    user: Dict[str, Any] = Depends(require_fleet),
    store: KeyValueStore = Depends(get_store),
) -> VehicleResponse:
    changes = payload.model_dump(mode="json", exclude_unset=True)
    return VehicleResponse(**update_vehicle(store, vehicle_type, license_plate, changes))


@app.put("/vehicles/{vehicle_type}/{license_plate}/status", response_model=VehicleResponse)
def vehicles_status(
    vehicle_type: VehicleType,
    license_plate: str,
    payload: VehicleStatusRequest,
    user: Dict[str, Any] = Depends(require_fleet),
    store: KeyValueStore = Depends(get_store),
) -> VehicleResponse:
    return VehicleResponse(**set_vehicle_status(store, vehicle_type, license_plate, payload.active))


@app.delete("/vehicles/{vehicle_type}/{license_plate}", status_code=status.HTTP_204_NO_CONTENT)
def vehicles_delete(
    vehicle_type: VehicleType,
    license_plate: str,
    user: Dict[str, Any] = Depends(require_fleet),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    delete_vehicle(store, vehicle_type, license_plate)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/admin/settings/company", response_model=CompanySettings)
def admin_company_get(
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> CompanySettings:
    return CompanySettings(**get_company_settings(store))


@app.put("/admin/settings/company", response_model=CompanySettings)
def admin_company_update(
    payload: CompanySettings,
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> CompanySettings:
    return CompanySettings(**save_company_settings(store, payload.model_dump(exclude_unset=True)))


@app.post("/admin/settings/logo", response_model=CompanySettings)
async def admin_logo_upload(
    file: UploadFile = File(...),
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> CompanySettings:
    content = await file.read()
    return CompanySettings(**store_logo(store, content, file.filename or "logo", file.content_type))


@app.delete("/admin/settings/logo", response_model=CompanySettings)
def admin_logo_delete(
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> CompanySettings:
    return CompanySettings(**save_company_settings(store, {"logo": None}))


@app.get("/admin/settings/notifications", response_model=NotificationSettings)
def admin_notifications_get(
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> NotificationSettings:
    return NotificationSettings(**get_notification_settings(store))


@app.put("/admin/settings/notifications", response_model=NotificationSettings)
def admin_notifications_update(
    payload: NotificationSettings,
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> NotificationSettings:
    return NotificationSettings(**save_notification_settings(store, payload.model_dump()))


@app.get("/admin/settings/database", response_model=DatabaseSettingsResponse)
def admin_database_get(
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> DatabaseSettingsResponse:
    return DatabaseSettingsResponse(**get_database_settings(store))


@app.put("/admin/settings/database", response_model=DatabaseSettingsResponse)
def admin_database_update(
    payload: DatabaseSettings,
    user: Dict[str, Any] = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
) -> DatabaseSettingsResponse:
    return DatabaseSettingsResponse(**save_database_settings(store, payload.model_dump()))


# --- Dispatcher ---------------------------------------------------------------


@app.get("/disponent")
def dispatch_overview(
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> dict[str, Any]:
    year, week, _ = dt.date.today().isocalendar()
    return {
        "year": year,
        "week": week,
        "planned_tours": len(list_planned_tours(store, year, week)),
        "employees": len(list_employees(store)),
        "customers": len(list_customers(store)),
    }


@app.get("/disponent/tours", response_model=list[PlannedTourResponse])
def dispatch_tours_list(
    year: Optional[int] = Query(default=None),
    week: Optional[int] = Query(default=None, ge=1, le=53),
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> list[PlannedTourResponse]:
    return [PlannedTourResponse(**tour) for tour in list_planned_tours(store, year, week)]


@app.post("/disponent/tours", response_model=PlannedTourResponse, status_code=status.HTTP_201_CREATED)
def dispatch_tours_create(
    payload: PlannedTourBase,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> PlannedTourResponse:
    return PlannedTourResponse(**create_planned_tour(store, payload.model_dump(mode="json")))


@app.put("/disponent/tours/{tour_nr}", response_model=PlannedTourResponse)
def dispatch_tours_update(
    tour_nr: str,
    payload: PlannedTourBase,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> PlannedTourResponse:
    return PlannedTourResponse(**update_planned_tour(store, tour_nr, payload.model_dump(mode="json")))


@app.post("/disponent/tours/{tour_nr}/km-price", response_model=PlannedTourResponse)
def dispatch_tours_km_price(
    tour_nr: str,
    payload: KilometerPriceRequest,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> PlannedTourResponse:
    return PlannedTourResponse(**set_kilometer_price(store, tour_nr, payload.rohertrag, payload.km))


@app.delete("/disponent/tours/{tour_nr}", status_code=status.HTTP_204_NO_CONTENT)
def dispatch_tours_delete(
    tour_nr: str,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    delete_planned_tour(store, tour_nr)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/disponent/planning/{year}", response_model=list[PlanningWeek])
def dispatch_planning_weeks(
    year: int,
    user: Dict[str, Any] = Depends(require_dispatch),
) -> list[PlanningWeek]:
    return [PlanningWeek(**week) for week in weeks_for_year(year)]


@app.get("/disponent/planning/{year}/{week}", response_model=PlanningWeekResponse)
def dispatch_planning_week(
    year: int,
    week: int,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> PlanningWeekResponse:
    return PlanningWeekResponse(**planning_week(store, year, week))


@app.get("/disponent/fleet", response_model=VehicleRegistryResponse)
def dispatch_fleet(
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> VehicleRegistryResponse:
    return VehicleRegistryResponse(**list_vehicles(store))


@app.get("/disponent/employees", response_model=list[EmployeeResponse])
def dispatch_employees_list(
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> list[EmployeeResponse]:
    return [EmployeeResponse(**employee) for employee in list_employees(store)]


@app.post("/disponent/employees", response_model=EmployeeResponse, status_code=status.HTTP_201_CREATED)
def dispatch_employees_create(
    payload: EmployeeBase,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> EmployeeResponse:
    return EmployeeResponse(**create_employee(store, payload.model_dump(mode="json")))


@app.put("/disponent/employees/{employee_id}", response_model=EmployeeResponse)
def dispatch_employees_update(
    employee_id: str,
    payload: EmployeeBase,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> EmployeeResponse:
    return EmployeeResponse(**update_employee(store, employee_id, payload.model_dump(mode="json")))


@app.delete("/disponent/employees/{employee_id}", status_code=status.HTTP_204_NO_CONTENT)
def dispatch_employees_delete(
    employee_id: str,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    delete_employee(store, employee_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/disponent/customers", response_model=list[CustomerResponse])
def dispatch_customers_list(
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> list[CustomerResponse]:
    return [CustomerResponse(**customer) for customer in list_customers(store)]


@app.post("/disponent/customers", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
def dispatch_customers_create(
    payload: CustomerBase,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> CustomerResponse:
    return CustomerResponse(**create_customer(store, payload.model_dump(mode="json")))


@app.put("/disponent/customers/{customer_id}", response_model=CustomerResponse)
def dispatch_customers_update(
    customer_id: str,
    payload: CustomerBase,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> CustomerResponse:
    return CustomerResponse(**update_customer(store, customer_id, payload.model_dump(mode="json")))


@app.delete("/disponent/customers/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def dispatch_customers_delete(
    customer_id: str,
    user: Dict[str, Any] = Depends(require_dispatch),
    store: KeyValueStore = Depends(get_store),
) -> Response:
    delete_customer(store, customer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
