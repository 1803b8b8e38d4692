from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from starlette.middleware.trustedhost import TrustedHostMiddleware

from immobilier.config import (
    admin_email,
    admin_password,
    allowed_hosts,
    cors_origins,
    enforce_secure_secrets,
    is_local_dev,
    login_rate_limit,
    max_photos_per_property,
    max_upload_image_bytes,
    session_cookie_name,
    session_cookie_secure,
    session_ttl_hours,
)
from immobilier.db import ENGINE, session_scope
from immobilier.models import Base, Category, Favorite, Message, Property, Role, User, UserSession
from immobilier.rate_limit import login_throttle
from immobilier.security import hash_password, verify_password
from immobilier.sessions import (
    create_session,
    destroy_session,
    destroy_user_sessions,
    get_live_session,
    purge_expired_sessions,
    session_user,
)
from immobilier.storage import (
    PhotoStoreError,
    ensure_uploads_dir,
    is_image_upload,
    looks_like_image,
    photo_path,
    remove_photos,
    safe_upload_ext,
    store_photos,
)


logger = logging.getLogger(__name__)

# Production hardening: ensure we don't run with dangerous defaults.
enforce_secure_secrets()

REQUIRED_PROPERTY_FIELDS = ("title", "description", "price", "surface", "rooms", "type", "address", "category")

# Bounds of the SQL INTEGER column type.
_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1


# -----------------------
# Dependencies
# -----------------------
def get_db():
    with session_scope() as db:
        yield db


@dataclass
class RequestContext:
    session: UserSession | None = None
    user: User | None = None

    @property
    def is_admin(self) -> bool:
        return bool(self.user is not None and self.user.is_admin)


def load_request_context(request: Request, db: Annotated[Session, Depends(get_db)]) -> RequestContext:
    """
    Resolve the session cookie to a user. Installed app-wide, so it runs once per request
    before any route handler; routes that need it get the cached result.
    """
    token = request.cookies.get(session_cookie_name())
    s = get_live_session(db, token)
    if s is None:
        return RequestContext()
    user = db.get(User, int(s.user_id))
    if user is None:
        # Session outlived its user: drop it so the client recovers, but reject this request.
        destroy_session(db, s.token)
        db.commit()
        raise HTTPException(status_code=404, detail="User not found")
    return RequestContext(session=s, user=user)


def get_current_user(ctx: Annotated[RequestContext, Depends(load_request_context)]) -> User:
    if ctx.user is None:
        raise HTTPException(status_code=401, detail="User not authenticated")
    return ctx.user


def get_admin_user(me: Annotated[User, Depends(get_current_user)]) -> User:
    if not me.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return me


app = FastAPI(title="Immobilier API", dependencies=[Depends(load_request_context)])

# Optional host protection (recommend configuring ALLOWED_HOSTS in prod).
app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts())


@app.middleware("http")
async def _security_headers(request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    return resp


# Cookies only travel cross-origin with credentials enabled.
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_error(request, exc: RequestValidationError):
    # Malformed input is a plain 400 across the API.
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error(request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error. Please try again later."})


# -----------------------
# Startup
# -----------------------
def seed_admin_user(db: Session) -> User:
    """
    Signup always creates plain users, so the first administrator is seeded
    from ADMIN_EMAIL / ADMIN_PASSWORD.
    """
    email = admin_email()
    admin = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if admin:
        return admin
    admin = User(
        first_name="Admin",
        last_name="User",
        email=email,
        phone="",
        role=Role.ADMIN.value,
        password_hash=hash_password(admin_password()),
    )
    db.add(admin)
    db.flush()
    logger.info("Seeded administrator account %s", email)
    return admin


@app.on_event("startup")
def on_startup() -> None:
    ensure_uploads_dir()
    if is_local_dev():
        # Local sqlite runs without alembic; deployed databases are migrated instead.
        Base.metadata.create_all(ENGINE)
    try:
        with session_scope() as db:
            purge_expired_sessions(db)
            seed_admin_user(db)
    except SQLAlchemyError as exc:
        # If the DB isn't migrated yet, skip and seed on the next start.
        logger.warning("Startup seeding skipped: %s", exc.__class__.__name__)


# -----------------------
# Serializers
# -----------------------
def _iso(value) -> str:
    return value.isoformat() if value else ""


def _json_list(raw: str | None) -> list[str]:
    try:
        data = json.loads(raw or "[]")
    except ValueError:
        return []
    return [str(x) for x in data] if isinstance(data, list) else []


def _user_out(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "email": u.email,
        "phone": u.phone,
        "role": u.role,
        "createdAt": _iso(u.created_at),
    }


def _agent_out(u: User | None) -> dict[str, Any] | None:
    if u is None:
        return None
    return {
        "id": u.id,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "email": u.email,
        "phone": u.phone,
    }


def _property_out(p: Property, *, include_agent: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": p.id,
        "title": p.title,
        "description": p.description,
        "price": p.price,
        "surface": p.surface,
        "rooms": p.rooms,
        "type": p.type,
        "category": p.category,
        "address": p.address,
        "photos": _json_list(p.photos_json),
        "diagnostics": p.diagnostics,
        "equipment": _json_list(p.equipment_json),
        "publishedAt": _iso(p.published_at),
        "agentId": p.agent_id,
        "isFeatured": bool(p.is_featured),
    }
    if include_agent:
        out["agent"] = _agent_out(p.agent)
    return out


def _favorite_out(f: Favorite, *, include_property: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": f.id,
        "userId": f.user_id,
        "propertyId": f.property_id,
        "addedAt": _iso(f.added_at),
    }
    if include_property:
        out["property"] = _property_out(f.property) if f.property is not None else None
    return out


def _message_out(m: Message) -> dict[str, Any]:
    return {
        "id": m.id,
        "senderId": m.sender_id,
        "receiverId": m.receiver_id,
        "propertyId": m.property_id,
        "content": m.content,
        "sentAt": _iso(m.sent_at),
    }


# -----------------------
# Schemas
# -----------------------
class SignupIn(BaseModel):
    # Field names match the web/mobile signup forms.
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    password: str = ""
    phone: str = ""


class LoginIn(BaseModel):
    email: str = ""
    password: str = ""


class RoleIn(BaseModel):
    role: str = ""


class FavoriteIn(BaseModel):
    propertyId: int | None = None


class MessageIn(BaseModel):
    propertyId: int | None = None
    content: str = ""


# -----------------------
# Health
# -----------------------
@app.get("/health")
def health():
    return {"ok": True}


# -----------------------
# Auth
# -----------------------
@app.post("/signup", status_code=201)
def signup(data: SignupIn, db: Annotated[Session, Depends(get_db)]):
    first_name = (data.first_name or "").strip()
    last_name = (data.last_name or "").strip()
    email = (data.email or "").strip().lower()
    phone = (data.phone or "").strip()
    password = data.password or ""
    if not first_name or not last_name or not email or not password or not phone:
        raise HTTPException(status_code=400, detail="All fields are required.")
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email")

    exists = db.execute(select(User.id).where(User.email == email)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=400, detail="User already exists.")

    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=phone,
        # Signup never grants admin; roles change only through an admin.
        role=Role.USER.value,
        password_hash=hash_password(password),
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        # Concurrent signups can still race past the pre-check; the unique index decides.
        db.rollback()
        raise HTTPException(status_code=400, detail="User already exists.")
    logger.info("Registered user %s", user.id)
    return {"success": True, "message": "User registered successfully!"}


@app.post("/login")
def login(
    data: LoginIn,
    request: Request,
    response: Response,
    ctx: Annotated[RequestContext, Depends(load_request_context)],
    db: Annotated[Session, Depends(get_db)],
):
    if ctx.user is not None:
        raise HTTPException(status_code=403, detail="User already logged in.")
    login_throttle.check(request, scope="login", limit=login_rate_limit())

    email = (data.email or "").strip().lower()
    password = data.password or ""
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password are required.")

    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not verify_password(password, user.password_hash):
        login_throttle.record_failure(request, scope="login")
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    s = create_session(db, user)
    response.set_cookie(
        key=session_cookie_name(),
        value=s.token,
        max_age=session_ttl_hours() * 3600,
        httponly=True,
        samesite="lax",
        secure=session_cookie_secure(),
    )
    logger.info("User %s logged in (role=%s)", user.id, user.role)
    return {"success": True, "message": "Login successful!", "user": session_user(s)}


@app.post("/logout")
def logout(request: Request, response: Response, db: Annotated[Session, Depends(get_db)]):
    if destroy_session(db, request.cookies.get(session_cookie_name())):
        logger.info("Session closed")
    response.delete_cookie(session_cookie_name())
    return {"success": True, "message": "Logged out successfully."}


@app.get("/checkAuth")
def check_auth(ctx: Annotated[RequestContext, Depends(load_request_context)]):
    if ctx.session is None:
        return JSONResponse(status_code=401, content={"isAuthenticated": False})
    return {"isAuthenticated": True, "user": session_user(ctx.session)}


@app.get("/getUserData")
def get_user_data(me: Annotated[User, Depends(get_current_user)]) -> dict[str, Any]:
    return _user_out(me)


# -----------------------
# Admin: users
# -----------------------
@app.get("/users")
def admin_list_users(
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
):
    users = db.execute(select(User).order_by(User.id.asc())).scalars().all()
    return [_user_out(u) for u in users]


@app.put("/users/role/{user_id:int}")
def admin_change_role(
    user_id: int,
    data: RoleIn,
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
):
    role = Role.parse(data.role)
    if role is None:
        raise HTTPException(status_code=400, detail="Invalid role (expected 'user' or 'admin')")
    u = db.get(User, int(user_id))
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    u.role = role.value
    db.add(u)
    logger.info("Admin %s set role of user %s to %s", me.id, u.id, role.value)
    return {"message": "User role updated successfully", "user": _user_out(u)}


def _delete_user_cascade(db: Session, u: User) -> list[str]:
    """
    Remove a user with everything that references them. Returns the photo
    filenames of their listings so the caller can delete the files after commit.
    """
    rows = db.execute(select(Property.id, Property.photos_json).where(Property.agent_id == u.id)).all()
    prop_ids = [int(r[0]) for r in rows]
    photos = [name for r in rows for name in _json_list(r[1])]
    if prop_ids:
        # Delete dependent rows first to avoid FK errors.
        db.execute(delete(Favorite).where(Favorite.property_id.in_(prop_ids)))
        db.execute(delete(Message).where(Message.property_id.in_(prop_ids)))
        db.execute(delete(Property).where(Property.id.in_(prop_ids)))

    db.execute(delete(Favorite).where(Favorite.user_id == u.id))
    db.execute(delete(Message).where(or_(Message.sender_id == u.id, Message.receiver_id == u.id)))
    destroy_user_sessions(db, u.id)
    db.execute(delete(User).where(User.id == u.id))
    return photos


@app.delete("/users/{user_id:int}")
def admin_delete_user(
    user_id: int,
    me: Annotated[User, Depends(get_admin_user)],
    db: Annotated[Session, Depends(get_db)],
):
    if int(user_id) == int(me.id):
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    u = db.get(User, int(user_id))
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    photos = _delete_user_cascade(db, u)
    db.commit()
    # Files go only after the rows are gone, so a failed commit never leaves listings without photos.
    remove_photos(photos)
    logger.info("Admin %s deleted user %s (%s photos removed)", me.id, user_id, len(photos))
    return {"message": "User deleted successfully"}


# -----------------------
# Properties
# -----------------------
def _to_float(raw: str | None) -> float:
    try:
        v = float((raw or "").strip().replace(",", "."))
    except ValueError:
        return 0.0
    return v if math.isfinite(v) else 0.0


def _to_int(raw: str | None) -> int:
    v = int(_to_float(raw))
    return v if _INT_MIN <= v <= _INT_MAX else 0


def _raise_if_too_large(*, size_bytes: int, max_bytes: int) -> None:
    if int(size_bytes) > int(max_bytes):
        raise HTTPException(status_code=413, detail=f"Upload too large (max {max_bytes} bytes)")


def _read_photo_uploads(photos: list[UploadFile]) -> list[tuple[bytes, str]]:
    """
    Validate every upload before anything touches the disk.
    """
    # Browsers send an empty part when the file input is left blank.
    files = [f for f in photos if (f.filename or "").strip()]
    limit = max_photos_per_property()
    if len(files) > limit:
        raise HTTPException(status_code=400, detail=f"Maximum {limit} photos are allowed per property")
    max_bytes = max_upload_image_bytes()
    out: list[tuple[bytes, str]] = []
    for f in files:
        content_type = (f.content_type or "").lower().strip()
        if not is_image_upload(filename=f.filename or "", content_type=content_type):
            raise HTTPException(status_code=400, detail="Only image uploads are allowed")
        # One byte past the limit is enough to know the upload is too large.
        raw = f.file.read(max_bytes + 1)
        if not raw:
            raise HTTPException(status_code=400, detail="Empty upload")
        _raise_if_too_large(size_bytes=len(raw), max_bytes=max_bytes)
        if not looks_like_image(raw):
            raise HTTPException(status_code=400, detail=f"Invalid image: {f.filename}")
        out.append((raw, safe_upload_ext(filename=f.filename or "", content_type=content_type)))
    return out


@app.post("/properties", status_code=201)
def publish_property(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    title: Annotated[str, Form()] = "",
    description: Annotated[str, Form()] = "",
    price: Annotated[str, Form()] = "",
    surface: Annotated[str, Form()] = "",
    rooms: Annotated[str, Form()] = "",
    type: Annotated[str, Form()] = "",
    address: Annotated[str, Form()] = "",
    category: Annotated[str, Form()] = "",
    diagnostics: Annotated[str, Form()] = "",
    equipment: Annotated[list[str] | None, Form()] = None,
    photos: Annotated[list[UploadFile] | None, File()] = None,
):
    fields = {
        "title": title,
        "description": description,
        "price": price,
        "surface": surface,
        "rooms": rooms,
        "type": type,
        "address": address,
        "category": category,
    }
    missing = [name for name in REQUIRED_PROPERTY_FIELDS if not (fields[name] or "").strip()]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")
    cat = Category.parse(category)
    if cat is None:
        raise HTTPException(status_code=400, detail="Invalid category (expected 'sell' or 'rent')")

    uploads = _read_photo_uploads(list(photos or []))
    try:
        filenames = store_photos(uploads)
    except PhotoStoreError:
        raise HTTPException(status_code=500, detail="Failed to store uploaded photos")

    p = Property(
        agent_id=me.id,
        title=title.strip(),
        description=description.strip(),
        price=_to_float(price),
        surface=_to_float(surface),
        rooms=_to_int(rooms),
        type=type.strip(),
        category=cat.value,
        address=address.strip(),
        diagnostics=(diagnostics or "").strip(),
        photos_json=json.dumps(filenames),
        equipment_json=json.dumps([e.strip() for e in (equipment or []) if (e or "").strip()]),
    )
    db.add(p)
    try:
        # Commit here so the photo references exist only if the listing row does.
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        remove_photos(filenames)
        logger.exception("Failed to save property for user %s", me.id)
        raise HTTPException(status_code=500, detail="Internal server error")
    except Exception:
        db.rollback()
        remove_photos(filenames)
        logger.exception("Failed to save property for user %s", me.id)
        raise

    logger.info("User %s published property %s with %s photos", me.id, p.id, len(filenames))
    return {"message": "Property published successfully!", "property": _property_out(p)}


@app.get("/properties")
def list_properties(db: Annotated[Session, Depends(get_db)]):
    items = db.execute(select(Property).order_by(Property.id.asc())).scalars().all()
    return [_property_out(p) for p in items]


@app.get("/properties/category/{category}")
def list_properties_by_category(category: str, db: Annotated[Session, Depends(get_db)]):
    # Exact match: unknown categories simply have no listings.
    stmt = select(Property).where(Property.category == category).order_by(Property.id.asc())
    return [_property_out(p) for p in db.execute(stmt).scalars().all()]


@app.get("/properties/{property_id:int}")
def get_property(property_id: int, db: Annotated[Session, Depends(get_db)]):
    p = db.execute(
        select(Property).options(selectinload(Property.agent)).where(Property.id == int(property_id))
    ).scalar_one_or_none()
    if not p:
        raise HTTPException(status_code=404, detail="Property not found")
    return _property_out(p, include_agent=True)


@app.get("/uploads/{filename}", include_in_schema=False)
def serve_upload(filename: str):
    path = photo_path(filename)
    if not path or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Photo not found")
    return FileResponse(path)


# -----------------------
# Favorites
# -----------------------
def _require_property_id(raw: int | None) -> int:
    if raw is None:
        raise HTTPException(status_code=400, detail="propertyId is required")
    return int(raw)


@app.post("/favorite", status_code=201)
def add_favorite(
    data: FavoriteIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    property_id = _require_property_id(data.propertyId)
    if db.get(Property, property_id) is None:
        raise HTTPException(status_code=404, detail="Property not found")

    fav = Favorite(user_id=me.id, property_id=property_id)
    db.add(fav)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Property is already in favorites.")
    return {"message": "Property added to favorites successfully.", "favorite": _favorite_out(fav)}


@app.delete("/favorite")
def remove_favorite(
    data: FavoriteIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    property_id = _require_property_id(data.propertyId)
    res = db.execute(delete(Favorite).where(Favorite.user_id == me.id, Favorite.property_id == property_id))
    if not res.rowcount:
        raise HTTPException(status_code=404, detail="Favorite not found.")
    return {"message": "Property removed from favorites successfully."}


@app.get("/favorites")
def list_favorites(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    stmt = (
        select(Favorite)
        .options(selectinload(Favorite.property))
        .where(Favorite.user_id == me.id)
        .order_by(Favorite.added_at.desc(), Favorite.id.desc())
    )
    # No favorites is a normal state: 200 with an empty list.
    return [_favorite_out(f, include_property=True) for f in db.execute(stmt).scalars().all()]


# -----------------------
# Messages (contact the agent of a listing)
# -----------------------
@app.post("/messages", status_code=201)
def send_message(
    data: MessageIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    property_id = _require_property_id(data.propertyId)
    content = (data.content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content is required")
    p = db.get(Property, property_id)
    if not p:
        raise HTTPException(status_code=404, detail="Property not found")
    if int(p.agent_id) == int(me.id):
        raise HTTPException(status_code=400, detail="You cannot message yourself about your own listing")

    m = Message(sender_id=me.id, receiver_id=p.agent_id, property_id=p.id, content=content)
    db.add(m)
    db.flush()
    return {"message": "Message sent.", "data": _message_out(m)}


@app.get("/messages")
def list_messages(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    stmt = (
        select(Message)
        .where(or_(Message.sender_id == me.id, Message.receiver_id == me.id))
        .order_by(Message.sent_at.desc(), Message.id.desc())
    )
    return [_message_out(m) for m in db.execute(stmt).scalars().all()]
