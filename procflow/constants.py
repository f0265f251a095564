"""Shared constants for procflow."""

# Keys written into step output / workflow variables by the engine.
EXTERNAL_TASK_ID_KEY = "externalTaskId"
EXTERNAL_TASK_CREATED_KEY = "taskCreatedAt"
EXTERNAL_TASK_ERROR_KEY = "externalTaskError"
SUBWORKFLOW_INSTANCE_KEY = "subWorkflowInstanceId"

DEFAULT_SUBWORKFLOW_WAIT_TIMEOUT = 100.0
DEFAULT_RETRY_DELAY_SECONDS = 30.0
DEFAULT_SWEEP_INTERVAL = 5.0
DEFAULT_COMPLETION_POLL_INTERVAL = 0.1
