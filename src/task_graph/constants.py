STATE_DIR_NAME = ".taskgraph"
CONFIG_FILE = "config.yaml"
DEFAULT_TASKS_FILE = "tasks/tasks.json"
TASKS_FILE_ENV = "TASK_GRAPH_TASKS_FILE"

DATA_VERSION = "1.1.0"
DEFAULT_PROJECT_NAME = "Task Graph Project"
DEFAULT_KEEP_BACKUPS = 5
BACKUP_SUFFIX = ".bak"

# Markers that identify a project root when walking up from the cwd.
PROJECT_ROOT_MARKERS = (STATE_DIR_NAME, ".git", "pyproject.toml", "package.json")
MAX_ROOT_SEARCH_DEPTH = 10
