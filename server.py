import uvicorn  # type: ignore

from entitlements.core import config
from entitlements.utils import get_logger

log = get_logger(__name__)

if __name__ == "__main__":
    log.info(f"Running entitlement engine on {config.HOST}:{config.PORT}")
    uvicorn.run("entitlements.main:app", reload=config.RELOAD, host=config.HOST, port=config.PORT)
