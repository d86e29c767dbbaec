"""Current version of Delve; reported by --version."""

delve_version = "1.2.0"
delve_date = "2021.01.14"

# Name of the interpreter binary used for out-of-process runs
PYTHON_BIN = "python3"

# Environment variable holding the interpreter installation prefix
PYTHON_HOME_ENV_VAR = "PYTHONHOME"

# Subdirectory of PYTHON_HOME_ENV_VAR that holds PYTHON_BIN
PYTHON_HOME_BIN_SUBPATH = "bin"

# Environment variable naming the file a child run dumps its trace into
TRACE_FILE_ENV_VAR = "DELVE_TRACE_FILE"

# Source file extension of the units Delve instruments
SOURCE_FILE_EXTENSION = ".py"

# Scheme of the virtual locations given to in-memory units
MEMORY_URI_SCHEME = "mem"

# Indentation added when an inline suite is split into its own block
INDENT = "    "

# Snapshot organization
TIMESTAMP_FILENAME = "timestamps.txt"
TIMESTAMP_DELIM = "#"
EXTRA_FILES_DIR = "extra_files"

# Separates an error message from the numbered source listing
LISTING_SEPARATOR = "-" * 80
