"""Serverless entry point, invoked by a scheduled trigger."""

import asyncio
import json

from prnotify.core.logging import get_logger, setup_logging
from prnotify.jobs import JOBS

setup_logging()
logger = get_logger(__name__)


def lambda_handler(event, context):
    """
    Run a batch job. The event may name the job (``{"job": "refresh-tokens"}``);
    anything else runs a dispatch batch.
    """
    job = (event or {}).get("job", "dispatch")
    if job not in JOBS:
        return {"statusCode": 400, "body": json.dumps({"error": f"Unknown job: {job}"})}

    try:
        result = asyncio.run(JOBS[job]())
    except Exception as e:
        logger.error("Scheduled job failed", job=job, error=str(e), exc_info=True)
        return {"statusCode": 500, "body": json.dumps({"error": str(e)})}

    logger.info("Scheduled job finished", job=job)
    return {"statusCode": 200, "body": json.dumps(result, default=str)}
