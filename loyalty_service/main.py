import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response, status
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool
from common.error_handling import add_error_handlers
from common.schemas import BalanceOut, Credentials, OrderOut, WithdrawalOut, WithdrawRequest
from common.security import TokenAuthenticator, Unauthorized
from common.settings import settings, with_flags
from loyalty_service.accrual_client import AccrualClient
from loyalty_service.accrual_worker import AccrualWorker
from loyalty_service.db import SessionLocal, engine, make_engine, make_session_factory
from loyalty_service.models import Base
from loyalty_service.service import LoyaltyService, UploadResult

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

AUTH_HEADER = "Authorization"

router = APIRouter()


def get_service(request: Request) -> LoyaltyService:
    return request.app.state.service


def current_user(authorization: str = Header(default=""), service: LoyaltyService = Depends(get_service)) -> int:
    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    if not token:
        raise Unauthorized("missing token")
    return service.authenticator.verify(token)


@router.get("/health")
def health():
    return {"ok": True, "service": "loyalty"}


@router.post("/api/user/register")
def register(creds: Credentials, service: LoyaltyService = Depends(get_service)):
    token = service.register_user(creds.login, creds.password)
    return Response(status_code=status.HTTP_200_OK, headers={AUTH_HEADER: token})


@router.post("/api/user/login")
def login(creds: Credentials, service: LoyaltyService = Depends(get_service)):
    token = service.authenticate_user(creds.login, creds.password)
    return Response(status_code=status.HTTP_200_OK, headers={AUTH_HEADER: token})


@router.post("/api/user/orders")
async def upload_order(request: Request, user_id: int = Depends(current_user),
                       service: LoyaltyService = Depends(get_service)):
    number = (await request.body()).decode("utf-8", errors="replace").strip()
    result = await run_in_threadpool(service.upload_order, user_id, number)
    if result == UploadResult.ALREADY_UPLOADED:
        return Response(status_code=status.HTTP_200_OK)
    return Response(status_code=status.HTTP_202_ACCEPTED)


@router.get("/api/user/orders", response_model=List[OrderOut], response_model_exclude_none=True)
def list_orders(user_id: int = Depends(current_user), service: LoyaltyService = Depends(get_service)):
    result = service.list_orders(user_id)
    if not result:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return result


@router.get("/api/user/balance", response_model=BalanceOut)
def get_balance(user_id: int = Depends(current_user), service: LoyaltyService = Depends(get_service)):
    return service.get_balance(user_id)


@router.post("/api/user/balance/withdraw")
def withdraw(req: WithdrawRequest, user_id: int = Depends(current_user),
             service: LoyaltyService = Depends(get_service)):
    service.withdraw(user_id, req.order, req.sum)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/api/user/withdrawals", response_model=List[WithdrawalOut])
def list_withdrawals(user_id: int = Depends(current_user), service: LoyaltyService = Depends(get_service)):
    result = service.list_withdrawals(user_id)
    if not result:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return result


def create_app(db_engine: Optional[Engine] = None,
               session_factory: Optional[sessionmaker] = None,
               authenticator: Optional[TokenAuthenticator] = None,
               worker: Optional[AccrualWorker] = None) -> FastAPI:
    db_engine = db_engine or engine
    session_factory = session_factory or SessionLocal
    authenticator = authenticator or TokenAuthenticator(
        settings.load_secret(), settings.token_ttl_seconds, settings.token_issuer)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=db_engine)
        if worker is not None:
            worker.start()
        yield
        if worker is not None:
            worker.stop(timeout=settings.accrual_timeout + 1)
            worker.client.close()

    app = FastAPI(title="Loyalty Service", lifespan=lifespan)
    app.state.service = LoyaltyService(session_factory, authenticator)
    app.add_middleware(GZipMiddleware, minimum_size=500)
    add_error_handlers(app)
    app.include_router(router)
    return app


app = create_app(worker=AccrualWorker(
    AccrualClient(settings.accrual_system_address, timeout=settings.accrual_timeout),
    SessionLocal,
    interval=settings.accrual_poll_interval,
))


def serve(argv: Optional[List[str]] = None):
    """Run the service, taking -a/-d/-r/-s overrides from the command line."""
    import uvicorn
    cfg = with_flags(settings, argv)
    db_engine = make_engine(cfg.database_uri, cfg.db_statement_timeout_ms)
    session_factory = make_session_factory(db_engine)
    worker = AccrualWorker(
        AccrualClient(cfg.accrual_system_address, timeout=cfg.accrual_timeout),
        session_factory,
        interval=cfg.accrual_poll_interval,
    )
    authenticator = TokenAuthenticator(cfg.load_secret(), cfg.token_ttl_seconds, cfg.token_issuer)
    host, port = cfg.listen_host_port
    logger.info(f"Listening on {host}:{port}, accrual system at {cfg.accrual_system_address}")
    uvicorn.run(create_app(db_engine, session_factory, authenticator, worker), host=host, port=port)


if __name__ == "__main__":
    serve()
