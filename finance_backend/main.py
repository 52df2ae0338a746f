import json
from datetime import datetime

import bcrypt
from fastapi import FastAPI, HTTPException, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from finance_backend.config import database_url, frontend_origin, max_payload_bytes
from finance_backend.utils import get_logger

logger = get_logger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

connect_args = {}
if database_url().startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url(), connect_args=connect_args)
metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

finance_states = Table(
    "finance_states",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("state", Text, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class StoredState(BaseModel):
    state: dict
    updated_at: datetime


class LoadResponse(BaseModel):
    ok: bool = True
    data: StoredState | None = None


class SaveResponse(BaseModel):
    ok: bool = True


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def decode_save_body(body: bytes) -> dict:
    if not body:
        raise HTTPException(status_code=400, detail="Missing body.")
    if len(body) > max_payload_bytes():
        raise HTTPException(status_code=413, detail="Payload too large.")
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON.") from exc
    if not isinstance(payload, dict) or "state" not in payload:
        raise HTTPException(status_code=400, detail="Invalid payload.")
    state = payload["state"]
    if not isinstance(state, dict):
        raise HTTPException(status_code=400, detail="State must be a JSON object.")
    return state


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("Created user %s", row["id"])
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/finance/load", response_model=LoadResponse)
def load_finance_state(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> LoadResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            select(finance_states.c.state, finance_states.c.updated_at)
            .where(finance_states.c.user_id == user_id)
            .limit(1)
        ).mappings().first()

    if not row:
        return LoadResponse(data=None)
    try:
        state = json.loads(row["state"])
    except json.JSONDecodeError:
        logger.error("Stored state for user %s is not valid JSON", user_id)
        return LoadResponse(data=None)
    return LoadResponse(data=StoredState(state=state, updated_at=row["updated_at"]))


@app.put("/finance/save", response_model=SaveResponse)
async def save_finance_state(
    request: Request,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SaveResponse:
    body = await request.body()
    return await run_in_threadpool(store_finance_state, x_user_id, body)


def store_finance_state(x_user_id: str | None, body: bytes) -> SaveResponse:
    user_id = get_user_id(x_user_id)
    state = decode_save_body(body)
    serialized = json.dumps(state, ensure_ascii=False, sort_keys=True)
    now = datetime.now()

    with engine.begin() as conn:
        result = conn.execute(
            update(finance_states)
            .where(finance_states.c.user_id == user_id)
            .values(state=serialized, updated_at=now)
        )
        if result.rowcount == 0:
            conn.execute(
                insert(finance_states).values(user_id=user_id, state=serialized, updated_at=now)
            )
    logger.info("Saved finance state for user %s (%d bytes)", user_id, len(serialized))
    return SaveResponse()
