"""
Stored field names for execution and counter documents.

These names are the external storage contract: other tooling reads the
collections directly, so renaming any of them is a breaking change.
"""

# Execution collection
INSTANCE_ID = "instanceId"
JOB_NAME = "jobName"
JOB_KEY = "jobKey"
EXECUTION_ID = "executionId"
VERSION = "version"
STATUS = "status"
PARAMETERS = "parameters"
STEPS = "steps"
START_TIME = "startTime"
CREATE_TIME = "createTime"
END_TIME = "endTime"
LAST_UPDATED = "lastUpdated"
EXIT_CODE = "exitCode"
EXIT_DESCRIPTION = "exitDescription"
EXECUTION_CONTEXT = "executionContext"
JOB_CONFIGURATION_NAME = "jobConfigurationName"

# Parameter sub-documents
IDENTIFYING = "identifying"

# Step sub-documents
STEP_EXECUTION_ID = "stepExecutionId"
STEP_NAME = "stepName"
READ_COUNT = "readCount"
WRITE_COUNT = "writeCount"
COMMIT_COUNT = "commitCount"
ROLLBACK_COUNT = "rollbackCount"
READ_SKIP_COUNT = "readSkipCount"
PROCESS_SKIP_COUNT = "processSkipCount"
WRITE_SKIP_COUNT = "writeSkipCount"
FILTER_COUNT = "filterCount"

# Counter collection
COUNTER_NAME = "counterName"
COUNTER_VALUE = "value"

# Sequence names, one counter document each
JOB_INSTANCE_SEQUENCE = "jobInstanceId"
JOB_EXECUTION_SEQUENCE = "jobExecutionId"
STEP_EXECUTION_SEQUENCE = "stepExecutionId"

# Default collection names
DEFAULT_JOB_COLLECTION = "jobExecutions"
DEFAULT_COUNTER_COLLECTION = "counters"

# Index names (operational contract)
JOB_INSTANCE_EXECUTION_UNIQUE_INDEX = "jobInstance_jobExecution_unique"
EXECUTION_ID_UNIQUE_INDEX = "jobExecutionId_unique"
INSTANCE_ID_INDEX = "jobInstanceId"
JOB_NAME_INSTANCE_ID_INDEX = "jobName_jobInstanceId"
COUNTER_UNIQUE_INDEX = "counter_unique"
