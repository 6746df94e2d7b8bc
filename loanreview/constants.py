DEFAULT_DEFINITION_REF = "loan-review"
DEFAULT_RETENTION_DAYS = 90
TASK_ID_PREFIX = "TSK-"
TICKET_LOG_PREFIX_LENGTH = 20
MAX_FINISHED_EXECUTIONS = 1000
