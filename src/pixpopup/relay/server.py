"""Server-side conversion relay.

FastAPI application that receives conversions from popups and forwards them
to the Graph Conversions API with hashed matching fields.
"""

import httpx
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..capi import ConversionsApiClient
from ..config import config, validate_config_for_service
from ..exceptions import ConversionsApiError
from ..logging_utils import CheckoutIdContext, get_logger, setup_logging
from ..models import ServerConversionRequest

# Validate configuration
validate_config_for_service("relay")

# Setup logging
setup_logging(config.log_level, config.log_format)
logger = get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="PIX Popup Conversion Relay",
    description="Server-side delivery of popup conversion events",
)

capi_client = ConversionsApiClient()


def _failure(status_code: int, error) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.on_event("shutdown")
async def shutdown():
    await capi_client.close()


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "service": "pixpopup-relay"}


@app.post("/track-conversion")
async def track_conversion(
    request: Request,
    x_checkout_id: str = Header(None, alias="X-Checkout-Id"),
):
    """Relay one conversion event.

    Args:
        request: Body in the camelCase relay format.
        x_checkout_id: Checkout id of the popup that sent the event.

    Returns:
        ``{success, data}`` or ``{success: false, error}`` with the upstream status.
    """
    with CheckoutIdContext(x_checkout_id):
        try:
            body = await request.json()
        except ValueError:
            return _failure(400, "Invalid JSON body")

        if not isinstance(body, dict):
            return _failure(400, "Invalid JSON body")
        if not body.get("pixelId"):
            logger.error("Conversion without pixel id")
            return _failure(400, "Pixel ID is required")
        if not body.get("accessToken"):
            logger.error(f"Conversion for pixel {body['pixelId']} without access token")
            return _failure(400, "Access Token is required")

        try:
            conversion = ServerConversionRequest.model_validate(body)
        except ValidationError as e:
            logger.error(f"Invalid conversion payload: {e}")
            return _failure(400, "Invalid conversion payload")

        try:
            data = await capi_client.send(conversion)
        except ConversionsApiError as e:
            return _failure(e.status_code, e.detail)
        except httpx.HTTPError as e:
            logger.error(f"Conversions API unreachable: {e}", exc_info=True)
            return _failure(500, str(e))

        return {"success": True, "data": data}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting conversion relay on {config.relay_host}:{config.relay_port}")
    uvicorn.run(
        app,
        host=config.relay_host,
        port=config.relay_port,
        log_level=config.log_level.lower(),
    )
