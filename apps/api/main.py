import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import Engine
from starlette.concurrency import run_in_threadpool

from core.auth import AuthenticatedUser, SupabaseAuthClient, get_current_user
from core.cache import IdempotencyCache, get_redis_client
from core.config import Settings, load_settings
from core.database import create_db_engine
from core.security import verify_signature
from core.telemetry import configure_logging, instrument_app, setup_telemetry
from domains.payment.errors import PaymentError
from domains.payment.gateway import RazorpayClient, build_gateway
from domains.payment.methods import PaymentMethodService
from domains.payment.receipts import ReceiptService, render_text
from domains.payment.requests import PaymentRequestService, request_to_dict
from domains.payment.schemas import (
    AddPaymentMethodIn,
    CreateOrderRequest,
    CreatePaymentRequestIn,
    PaymentMethodOut,
    PaymentOut,
    ReceiptOut,
    parse_json_body,
)
from domains.payment.service import PaymentService, WebhookOutcome
from domains.payment.store import PaymentStore, SqlPaymentStore

logger = logging.getLogger(__name__)

CORS_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-razorpay-signature",
    "idempotency-key",
]


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    store: Optional[PaymentStore] = None,
    gateway: Optional[RazorpayClient] = None,
    cache: Optional[IdempotencyCache] = None,
    auth_client: Optional[SupabaseAuthClient] = None,
) -> FastAPI:
    """
    App factory. ``uvicorn apps.api.main:create_app --factory``

    Anything not passed in is built from settings, and settings come from
    the environment; missing required configuration fails here, at startup.
    """
    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level)

    # 只關自己建的 client；外面傳進來的由呼叫方負責
    owned: List[Union[RazorpayClient, SupabaseAuthClient]] = []

    if store is None:
        engine = engine or create_db_engine(settings.database_url, settings.db_echo)
        store = SqlPaymentStore(engine)
    if gateway is None:
        gateway = build_gateway(settings)
        if gateway is not None:
            owned.append(gateway)
    if cache is None:
        cache = IdempotencyCache(
            get_redis_client(settings.redis_url), settings.idempotency_ttl_seconds
        )
    if auth_client is None:
        auth_client = SupabaseAuthClient(
            settings.supabase_url, settings.supabase_service_role_key
        )
        owned.append(auth_client)

    if settings.otel_enabled:
        setup_telemetry(settings.service_name, settings.otel_endpoint)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        for client in owned:
            client.close()
        logger.info(f"👋 [API] Shutdown, closed {len(owned)} HTTP client(s)")

    app = FastAPI(title="billpay", lifespan=lifespan)
    app.state.settings = settings
    app.state.auth_client = auth_client
    app.state.payment_service = PaymentService(store, gateway, cache)
    app.state.receipt_service = ReceiptService(store)
    app.state.request_service = PaymentRequestService(store)
    app.state.method_service = PaymentMethodService(store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=CORS_HEADERS,
    )
    register_error_handlers(app)
    register_routes(app)

    if settings.otel_enabled:
        instrument_app(app, engine)
    return app


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request body",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"💥 Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


def register_routes(app: FastAPI) -> None:
    @app.get("/health", tags=["ops"])  # type: ignore
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/payments/orders", tags=["payments"])  # type: ignore
    async def create_order(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
        idempotency_key: Optional[str] = Header(default=None),  # noqa: B008
    ) -> Dict[str, Any]:
        # 先驗身分再讀 body: 沒登入的請求不管 body 長怎樣都是 401
        payload = parse_json_body(CreateOrderRequest, await request.body())
        service: PaymentService = request.app.state.payment_service
        return await run_in_threadpool(
            service.create_order, user.id, payload, idempotency_key
        )

    @app.post("/webhooks/razorpay", tags=["webhook"])  # type: ignore
    async def razorpay_webhook(
        request: Request,
        raw_body: bytes = Depends(verify_signature),  # noqa: B008
        x_razorpay_event_id: Optional[str] = Header(default=None),  # noqa: B008
    ) -> JSONResponse:
        service: PaymentService = request.app.state.payment_service
        result = await run_in_threadpool(
            service.handle_webhook, raw_body, x_razorpay_event_id
        )
        # 找不到對應訂單: 回 202，讓呼叫方分得出來
        status_code = 202 if result.outcome is WebhookOutcome.NOT_FOUND else 200
        return JSONResponse(status_code=status_code, content=result.to_dict())

    @app.get("/payments", tags=["payments"])  # type: ignore
    def list_payments(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> Dict[str, Any]:
        service: PaymentService = request.app.state.payment_service
        payments = service.store.list_by_owner(user.id)
        return {
            "payments": [
                PaymentOut.model_validate(p).model_dump(mode="json") for p in payments
            ]
        }

    @app.post("/payments/{payment_ref}/receipt", tags=["receipts"])  # type: ignore
    def generate_receipt(
        payment_ref: int,
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> JSONResponse:
        receipts: ReceiptService = request.app.state.receipt_service
        receipt, created = receipts.generate(user.id, payment_ref)
        return JSONResponse(
            status_code=201 if created else 200,
            content={
                "created": created,
                "receipt": ReceiptOut.model_validate(receipt).model_dump(mode="json"),
            },
        )

    @app.get("/payments/{payment_ref}/receipt", tags=["receipts"])  # type: ignore
    def get_receipt(
        payment_ref: int,
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> Dict[str, Any]:
        receipts: ReceiptService = request.app.state.receipt_service
        receipt = receipts.get(user.id, payment_ref)
        return {"receipt": ReceiptOut.model_validate(receipt).model_dump(mode="json")}

    @app.get("/payments/{payment_ref}/receipt.txt", tags=["receipts"])  # type: ignore
    def download_receipt(
        payment_ref: int,
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> PlainTextResponse:
        receipts: ReceiptService = request.app.state.receipt_service
        receipt = receipts.get(user.id, payment_ref)
        filename = f"receipt-{receipt.receipt_number}.txt"
        return PlainTextResponse(
            render_text(receipt),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/payment-requests", tags=["requests"])  # type: ignore
    async def create_payment_request(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> JSONResponse:
        payload = parse_json_body(CreatePaymentRequestIn, await request.body())
        requests: PaymentRequestService = request.app.state.request_service
        created = await run_in_threadpool(requests.create, user.id, payload)
        return JSONResponse(
            status_code=201,
            content={"success": True, "request": request_to_dict(created)},
        )

    @app.get("/payment-requests", tags=["requests"])  # type: ignore
    def list_payment_requests(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> Dict[str, Any]:
        requests: PaymentRequestService = request.app.state.request_service
        return {"requests": [request_to_dict(r) for r in requests.list_for(user.id)]}

    @app.post("/payment-methods", tags=["methods"])  # type: ignore
    async def add_payment_method(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> JSONResponse:
        payload = parse_json_body(AddPaymentMethodIn, await request.body())
        methods: PaymentMethodService = request.app.state.method_service
        method = await run_in_threadpool(methods.add, user.id, payload)
        return JSONResponse(
            status_code=201,
            content={
                "success": True,
                "method": PaymentMethodOut.model_validate(method).model_dump(
                    mode="json"
                ),
            },
        )

    @app.get("/payment-methods", tags=["methods"])  # type: ignore
    def list_payment_methods(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> Dict[str, Any]:
        methods: PaymentMethodService = request.app.state.method_service
        return {
            "methods": [
                PaymentMethodOut.model_validate(m).model_dump(mode="json")
                for m in methods.list_for(user.id)
            ]
        }

    @app.delete("/payment-methods/{method_id}", tags=["methods"])  # type: ignore
    def delete_payment_method(
        method_id: int,
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> Dict[str, Any]:
        methods: PaymentMethodService = request.app.state.method_service
        methods.delete(user.id, method_id)
        return {"success": True}

    @app.post("/payment-methods/{method_id}/default", tags=["methods"])  # type: ignore
    def set_default_payment_method(
        method_id: int,
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    ) -> Dict[str, Any]:
        methods: PaymentMethodService = request.app.state.method_service
        method = methods.set_default(user.id, method_id)
        return {
            "success": True,
            "method": PaymentMethodOut.model_validate(method).model_dump(mode="json"),
        }
