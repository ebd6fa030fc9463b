PROJECT_DIR_NAME = ".taskmaster"
PRD_DIR_NAME = "prd"
TASKS_DIR_NAME = "tasks"
REPORTS_DIR_NAME = "reports"
TEMPLATES_DIR_NAME = "templates"

PRDS_INDEX_FILE = "prds.json"
TASKS_INDEX_FILE = "tasks.json"
CONFIG_FILE = "ledger.yaml"
DEFAULT_DB_FILE = "taskhero.db"

# Legacy flat layout (pre-.taskmaster)
LEGACY_TASKS_DIR = "tasks"
LEGACY_PRD_DIR = "prd"
LEGACY_REPORTS_DIR = "scripts"  # complexity reports lived among script outputs
LEGACY_TEMPLATES_DIR = "templates"
LEGACY_CONFIG_FILE = ".taskmasterconfig"

INDEX_SCHEMA_VERSION = 2
INDEX_FORMAT_VERSION = "1.0.0"

PRD_STATUS_PENDING = "pending"
PRD_STATUS_IN_PROGRESS = "in-progress"
PRD_STATUS_DONE = "done"
PRD_STATUS_ARCHIVED = "archived"

PRD_STATUSES = (
    PRD_STATUS_PENDING,
    PRD_STATUS_IN_PROGRESS,
    PRD_STATUS_DONE,
    PRD_STATUS_ARCHIVED,
)

PRIORITIES = ("low", "medium", "high", "urgent")
COMPLEXITIES = ("low", "medium", "high")

ISSUE_MISSING_FILE = "missing_file"
ISSUE_HASH_MISMATCH = "hash_mismatch"
ISSUE_SIZE_MISMATCH = "size_mismatch"
ISSUE_WRONG_DIRECTORY = "wrong_directory"
ISSUE_ORPHANED_TASK_LINK = "orphaned_task_link"
ISSUE_MISSING_TASK_LINK = "missing_task_link"
ISSUE_PRD_SOURCE_MISMATCH = "prd_source_mismatch"
ISSUE_MISSING_PRD_REFERENCE = "missing_prd_reference"
ISSUE_CHECK_ERROR = "check_error"

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

COLLISION_REJECT = "reject"
COLLISION_OVERWRITE = "overwrite"
COLLISION_POLICIES = (COLLISION_REJECT, COLLISION_OVERWRITE)

DEFAULT_AUTHOR = "system"
AUTO_FIX_AUTHOR = "auto-fix"

CHANGE_TYPE_CREATED = "created"
CHANGE_TYPE_FILE_MODIFIED = "file_modified"
CHANGE_TYPE_INTEGRITY_FIX = "integrity_fix"
CHANGE_TYPE_ARCHIVED = "archived"

INITIAL_VERSION = "1.0.0"

# Archive bundle members
ARCHIVE_METADATA_FILE = "metadata.json"
ARCHIVE_TASKS_FILE = "tasks.json"
ARCHIVE_FORMAT_VERSION = "1.0.0"

PRD_FILE_EXTENSIONS = (".md", ".txt")

# Resolution hints surfaced in integrity reports
RECOMMENDATION_ERRORS = "Fix critical errors before proceeding with PRD operations"
RECOMMENDATION_WARNINGS = "Review warnings to ensure data consistency"
RECOMMENDATION_PASSED = "All integrity checks passed successfully"
