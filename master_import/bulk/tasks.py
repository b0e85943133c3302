import json
import logging
import os
from typing import Optional

from google.api_core.exceptions import AlreadyExists
from google.cloud import tasks_v2

logger = logging.getLogger("master_import.bulk")

WORKER_EXECUTE_PATH = "/api/imports/worker/execute/{session_id}"


class TaskConfigError(Exception):
    pass


def _get_tasks_config() -> tuple[str, str, str, str]:
    project = os.getenv("GCP_PROJECT_ID")
    location = os.getenv("CLOUD_TASKS_LOCATION")
    queue = os.getenv("CLOUD_TASKS_QUEUE")
    worker_url = os.getenv("CLOUD_TASKS_WORKER_URL")
    if not (project and location and queue and worker_url):
        raise TaskConfigError("Cloud Tasks is not configured.")
    return project, location, queue, worker_url.rstrip("/")


def enqueue_http_task(path: str, payload: dict, task_id: Optional[str] = None) -> bool:
    """Queue a POST to the worker. False when Cloud Tasks is not configured.

    A ``task_id`` makes the task named, so queueing the same id twice is a no-op.
    """
    try:
        project, location, queue, worker_url = _get_tasks_config()
    except TaskConfigError:
        return False

    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(project, location, queue)
    headers = {"Content-Type": "application/json"}
    secret = os.getenv("IMPORT_TASKS_SECRET", "")
    if secret:
        headers["X-Tasks-Secret"] = secret

    task = {
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{worker_url}{path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
        }
    }
    if task_id:
        task["name"] = client.task_path(project, location, queue, task_id)
    try:
        client.create_task(request={"parent": parent, "task": task})
    except AlreadyExists:
        logger.info("import task already queued task_id=%s", task_id)
        return True
    logger.info("import task queued path=%s task_id=%s", path, task_id)
    return True


def enqueue_execute(session_id: str, payload: dict) -> bool:
    return enqueue_http_task(
        WORKER_EXECUTE_PATH.format(session_id=session_id),
        payload,
        task_id=f"import-execute-{session_id}",
    )
