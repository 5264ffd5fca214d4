"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pdfapp.db.session import check_db_connection, get_db

router = APIRouter()


@router.get("/health")
def health_check(db: Session = Depends(get_db)) -> dict:
    """Liveness plus a database round trip."""
    return {"status": "ok", "database": check_db_connection(db)}
