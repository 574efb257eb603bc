# app/lambdas/crud_api/handler.py
import json
import logging

from crudkit.config import Settings, build_store
from crudkit.dispatcher import handle_event

settings = Settings.from_env()

logger = logging.getLogger()
logger.setLevel(settings.log_level)

# Created once per container and reused across invocations
store = build_store(settings)


def lambda_handler(event, context):
    """
    CRUD dispatcher behind API Gateway.

    Accepts the direct integration event ({operation, tableName, payload})
    or a proxy integration event whose body is that JSON document.
    """
    logger.info("Received event: %s", json.dumps(event, default=str))

    result = handle_event(event, store)

    logger.info("Responding with status %s", result.status_code)
    return result.to_response()
