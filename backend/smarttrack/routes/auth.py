from fastapi import APIRouter, HTTPException, status, Depends
from .. import schemas
from ..db_store import DatabaseStore
from ..deps import bearer_token, get_store

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/driver/register", response_model=schemas.DriverOut, status_code=status.HTTP_201_CREATED)
def driver_register(payload: schemas.DriverRegisterRequest, store: DatabaseStore = Depends(get_store)):
    return store.register_driver(payload.email, payload.password, payload.display_name)


@router.post("/driver/login", response_model=schemas.DriverLoginResponse)
def driver_login(payload: schemas.DriverLoginRequest, store: DatabaseStore = Depends(get_store)):
    result = store.login(payload.email, payload.password)
    if not result:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return schemas.DriverLoginResponse(access_token=result["token"], expires_at=result["expires"])


@router.post("/driver/logout")
def driver_logout(token: str = Depends(bearer_token), store: DatabaseStore = Depends(get_store)):
    store.logout(token)
    return {"ok": True}
