from collections.abc import Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from stockledger.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_business_id(
    x_business_id: str = Header(..., description="Tenant scope the request operates in"),
) -> str:
    cleaned = x_business_id.strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="X-Business-Id header is required")
    return cleaned


def get_actor_id(
    x_actor_id: str = Header(..., description="User or process triggering the stock change"),
) -> str:
    cleaned = x_actor_id.strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="X-Actor-Id header is required")
    return cleaned
