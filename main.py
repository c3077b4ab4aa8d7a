import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException

from db_setup import init_db, get_db_connection, ContactRepository
from db_models import IdentifyRequest, FinalResponse
from exceptions import ClusterIntegrityError, InvalidRequest, PersistenceFailure
from reconcile import identify as reconcile_identity

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield

app = FastAPI(
    title="Contact Reconciliation API",
    version="1.1.0",
    lifespan=lifespan,
)


def get_repository():
    conn = get_db_connection()
    try:
        yield ContactRepository(conn)
    finally:
        conn.close()


@app.get("/")
async def root():
    return {"message": "Contact reconciliation API is up"}


@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest, repo: ContactRepository = Depends(get_repository)):

    try:
        contact = reconcile_identity(repo, request.email, request.phoneNumber)
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ClusterIntegrityError as exc:
        logger.error(f"Inconsistent cluster for {request.email!r}/{request.phoneNumber!r}: {exc}")
        raise HTTPException(status_code=409, detail=str(exc))
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Database error")

    return FinalResponse(contact=contact)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", "8000")))
