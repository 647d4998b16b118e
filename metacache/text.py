"""Centralized user-facing text for Metacache."""

from __future__ import annotations


class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "Metacache – a persistent metadata cache for large media collections."
    HELP_VERSION = "Show version and exit."
    HELP_DB = "Path to the cache database (overrides config and METACACHE_DB)."
    HELP_VERBOSE = "Log maintenance steps and per-file decisions to stderr."
    HELP_CONFIG_DIR = "Directory holding config.json (defaults to ~/.metacache)."
    HELP_INIT = "Create the cache database, schema and indexes."
    HELP_STORE = "Store metadata for a file (extracts it when no metadata is given)."
    HELP_STORE_FILE = "Media file the metadata belongs to."
    HELP_STORE_METADATA = "Metadata text to store verbatim."
    HELP_STORE_FROM_FILE = "Read the metadata text from this file."
    HELP_RETRIEVE = "Print cached metadata for a file."
    HELP_RETRIEVE_FILE = "Media file to look up."
    HELP_ALLOW_STALE = "Return cached metadata even if the file changed since it was cached."
    HELP_STATUS = "Show cache location, schema version, size and contents."
    HELP_STATS = "Show hit/miss statistics."
    HELP_CLEAR = "Delete every cached entry and statistic."
    HELP_CLEAR_YES = "Do not ask for confirmation."
    HELP_PRUNE = "Evict cached entries by age, size or access time."
    HELP_PRUNE_AGE = "Remove entries created more than N days ago."
    HELP_PRUNE_SIZE = "Remove the oldest entries until the payload fits the size cap."
    HELP_PRUNE_ACCESS = "Remove entries not read for N days."
    HELP_PRUNE_SMART = "Remove missing files, then apply age, access and size limits."
    HELP_PRUNE_DAYS = "Maximum entry age in days."
    HELP_PRUNE_IDLE_DAYS = "Maximum days since the last read."
    HELP_PRUNE_MAX = "Size cap such as 100MB (defaults to the configured size_limit)."
    HELP_PRUNE_ORDER = "Evict by creation time or by last access."
    HELP_PRUNE_KEEP_MISSING = "Keep entries whose files no longer exist."
    HELP_DEFRAG = "Reclaim free space and refresh indexes (VACUUM, REINDEX, ANALYZE)."
    HELP_REBUILD = "Rebuild the entry table and verify its contents."
    HELP_HEALTH = "Check that the cache exists, passes integrity checks and has a valid schema."
    HELP_MIGRATE = "Upgrade the cache schema to the current version."
    HELP_MIGRATE_TARGET = "Schema version to migrate to."
    HELP_MIGRATE_BACKUP = "Back up the database before each migration step."
    HELP_ROLLBACK = "Restore the backup taken before migrating away from VERSION."
    HELP_ROLLBACK_VERSION = "Schema version to roll back to."
    HELP_BACKUP = "Write a consistent copy of the cache database."
    HELP_BACKUP_DEST = "Backup destination (defaults to a timestamped file next to the cache)."
    HELP_RESTORE = "Replace the cache database with a backup."
    HELP_RESTORE_SOURCE = "Backup file to restore."
    HELP_BENCHMARK = "Compare cached reads with direct extraction."
    HELP_BENCHMARK_LIMIT = "Maximum number of files to benchmark."
    HELP_ITERATIONS = "Number of timed passes over the files."
    HELP_REPORT = "Show cache efficiency and recommendations."
    HELP_PROCESS = "Extract and cache metadata for every media file under a directory."
    HELP_DIRECTORY = "Directory to scan for media files."
    HELP_WORKERS = "Number of parallel extraction workers (1-16)."
    HELP_BATCH_SIZE = "Files classified per batch (1-1000)."
    HELP_RECURSIVE = "Recurse into subdirectories."
    HELP_INCLUDE_HIDDEN = "Include hidden files and directories."
    HELP_FILE_TYPE = "Restrict to image or video files (repeatable)."
    HELP_CHECK_HASH = "Compare content hashes in addition to modification times."
    HELP_CONFIG = "Show or update the persistent configuration."
    HELP_CONFIG_SHOW = "Show the effective configuration."
    HELP_CONFIG_SET = "Set a value, e.g. --set workers=4 (repeatable)."
    HELP_CONFIG_SET_JSON = "Merge a JSON object into the configuration."
    HELP_CONFIG_RESET = "Restore the default configuration."
    HELP_CONFIG_COMPRESSION = "Compress payloads written to the cache from now on."

    ERROR_CONFIG_JSON_INVALID = "Config file is not valid JSON; fix or delete ~/.metacache/config.json."
    ERROR_CONFIG_VALUE_INVALID = "Invalid value for config field '{field}'."
    ERROR_CONFIG_ASSIGNMENT = "Expected KEY=VALUE, got '{value}'."
    ERROR_CONFIG_KEY_UNKNOWN = "Unknown config key '{key}'. Known keys: {known}."
    ERROR_VALUE_RANGE = "{field} must be between {low} and {high}."
    ERROR_SIZE_INVALID = "Invalid size for {field}: {value!r} (expected e.g. 256MB or 1GB)."
    ERROR_DURATION_INVALID = "{field} must be a positive duration."
    ERROR_SIZE_ORDER = "Unknown eviction order '{order}' (expected 'created' or 'accessed')."
    ERROR_SIZE_LIMIT_UNSET = "No size cap given and no size_limit is configured."
    ERROR_POLICY_UNKNOWN = "Unsupported prune policy: {policy}."
    ERROR_METADATA_TYPE = "Metadata must be text or bytes."
    ERROR_VERSION_KEY_RESERVED = "The 'version' statistic is managed by schema migrations."
    ERROR_PAYLOAD_CORRUPTED = "Cached payload could not be decoded."

    ERROR_STORE_MISSING = "Cache database {path} does not exist. Run `metacache init` first."
    ERROR_STORE_DIR_MISSING = "Cache directory {path} does not exist."
    ERROR_STORE_LOCKED = "Cache database {path} stayed locked; try again later."
    ERROR_STORE_UNAVAILABLE = "Cache database {path} is unavailable: {detail}"
    ERROR_STORE_CORRUPTED = "Cache database {path} is corrupted: {detail}"
    ERROR_STORE_UNINITIALIZED = "Cache database {path} is not initialized."
    ERROR_SCHEMA_INVALID = "Cache database {path} has an invalid schema: {detail}"
    ERROR_SCHEMA_VERSION = (
        "Cache database {path} is at schema version {found}, expected {expected}. "
        "Run `metacache migrate`."
    )
    ERROR_SCHEMA_MISSING = "Schema {version} is missing: {missing}."
    ERROR_BACKUP_MISSING = "Backup file {path} does not exist."
    ERROR_BACKUP_NOT_CACHE = "{path} is not a metadata cache database."

    ERROR_VERSION_UNKNOWN = "Unknown schema version '{version}' (known: {known})."
    ERROR_VERSION_UNSUPPORTED = (
        "Schema version {version} is not supported by this release (current: {current})."
    )
    ERROR_VERSION_TARGET_LEGACY = "Cannot migrate to the unversioned legacy layout."
    ERROR_VERSION_FRESH_TARGET = "A new cache can only be created at version {current}."
    ERROR_VERSION_DOWNGRADE = (
        "Cache is at version {current}, newer than {target}; use `metacache rollback`."
    )
    ERROR_MIGRATION_STEP = "Migration {source} -> {target} failed: {detail}"
    ERROR_ROLLBACK_NOT_OLDER = "Cannot roll back to {target}: the cache is at {current}."
    ERROR_ROLLBACK_NO_BACKUP = "No backup for version {version} ({path} not found)."
    ERROR_ROLLBACK_MISMATCH = "Restored backup is at version {found}, expected {expected}."
    ERROR_REBUILD_MISMATCH = (
        "Rebuilt table does not match the original ({before} entries before, {after} after); "
        "the original table was kept."
    )

    ERROR_TOOL_MISSING = "`{tool}` is not installed or not on PATH."
    ERROR_EXTRACT_TIMEOUT = "`{tool}` timed out after {timeout}s on {path}."
    ERROR_EXTRACT_FAILED = "`{tool}` failed on {path} (exit code {code})."
    ERROR_UNSUPPORTED_FILE = "Unsupported media type: {path}."
    ERROR_FILE_GONE = "File no longer exists: {path}"
    ERROR_ROOT_GONE = "Input directory {path} disappeared."
    ERROR_DISPATCH_ABORTED = "Processing aborted: {reason}"
    ERROR_OS = "Filesystem error: {reason}"

    COMPAT_UNINITIALIZED = "Cache is not initialized."
    COMPAT_CURRENT = "Cache schema is current."
    COMPAT_OLDER = "Cache is at version {version}; run `metacache migrate` to upgrade to {current}."
    COMPAT_NEWER = "Cache version {version} is newer than this release supports ({current})."
    HEALTH_OK = "Cache is healthy (schema {version})."

    RECOMMEND_PRUNE = "Enable pruning: {count} entries are older than {days} days."
    RECOMMEND_SIZE_CAP = "Increase the size cap: the cache uses {percent:.0f}% of size_limit."
    RECOMMEND_WARM = "Warm the cache: the hit rate is only {rate:.0f}%."
    RECOMMEND_COMPRESSION = "Enable compression: the cache database is larger than 50MB."

    INFO_INIT_DONE = "Cache initialized at {path} (schema {version})."
    INFO_STORED = "Cached {size} of metadata for {path}."
    INFO_NOT_CACHED = "No cached metadata for {path}."
    INFO_STALE = "Cached metadata for {path} is stale ({status})."
    INFO_CLEARED = "Removed {count} cache entr{plural}."
    INFO_CLEAR_CANCELLED = "Clear cancelled."
    PROMPT_CLEAR = "Delete every entry in {path}?"
    INFO_PRUNED = "Pruned {count} entries, freed {freed} ({remaining} remaining)."
    INFO_DEFRAG_DONE = "Defragmented cache: {before} -> {after} in {seconds:.2f}s."
    INFO_REBUILD_DONE = "Rebuilt cache with {count} entries: {before} -> {after}."
    INFO_HEALTH_STATUS = "Status: {status}. {detail}"
    INFO_MIGRATE_CURRENT = "Cache is already at version {version}."
    INFO_MIGRATE_STEP = "Migrated {source} -> {target} in {seconds:.2f}s."
    INFO_MIGRATE_DONE = "Cache migrated from {source} to {target}."
    INFO_ROLLBACK_DONE = "Rolled back from {source} to {target} ({count} entries)."
    INFO_BACKUP_WRITTEN = "Backup written to {path}."
    INFO_RESTORED = "Restored cache from {path} (schema {version})."
    INFO_NO_FILES = "No media files found in the selected directory."
    INFO_PROCESS_RUNNING = "Processing {count} files under {path}..."
    INFO_RECOMMENDATIONS = "Recommendations:"
    INFO_NO_RECOMMENDATIONS = "No recommendations; the cache looks well tuned."
    INFO_CONFIG_SAVED = "Configuration saved to {path}."
    INFO_CONFIG_RESET = "Configuration reset to defaults."
    INFO_COMPRESSION_SET = "Payload compression: {value}."
    WARNING_FILE_FAILED = "Failed: {path}: {reason}"
    WARNING_MORE_FAILURES = "... and {count} more failures."
    PROGRESS_LABEL = "Extracting"
    PROGRESS_ETA = "ETA {eta}"

    TITLE_STATUS = "Cache status"
    TITLE_STATS = "Cache statistics"
    TITLE_HEALTH = "Cache health"
    TITLE_BENCHMARK = "Benchmark"
    TITLE_REPORT = "Cache efficiency"
    TITLE_PROCESS = "Processing summary"
    TITLE_CONFIG = "Configuration"
    TABLE_HEADER_FIELD = "Field"
    TABLE_HEADER_VALUE = "Value"
    TABLE_HEADER_CHECK = "Check"
    TABLE_HEADER_RESULT = "Result"

    LABEL_PATH = "Database"
    LABEL_VERSION = "Schema version"
    LABEL_ENTRIES = "Entries"
    LABEL_PAYLOAD = "Payload size"
    LABEL_FILE_SIZE = "File size"
    LABEL_SIZE_LIMIT = "Size limit"
    LABEL_SIZE_USAGE = "Size limit usage"
    LABEL_COMPRESSION = "Compression"
    LABEL_OLDEST = "Oldest entry"
    LABEL_NEWEST = "Newest entry"
    LABEL_BY_TYPE = "By type"
    LABEL_HITS = "Hits"
    LABEL_MISSES = "Misses"
    LABEL_HIT_RATE = "Hit rate"
    LABEL_REQUESTS = "Requests"
    LABEL_LAST_DAY = "Added (24h)"
    LABEL_LAST_WEEK = "Added (7d)"
    LABEL_DAILY_GROWTH = "Daily growth"
    LABEL_FILES = "Files"
    LABEL_ITERATIONS = "Iterations"
    LABEL_CACHED_TIME = "With cache"
    LABEL_UNCACHED_TIME = "Without cache"
    LABEL_SPEEDUP = "Speedup"
    LABEL_IMPROVEMENT = "Improvement"
    LABEL_PROCESSED = "Processed"
    LABEL_SKIPPED = "Skipped"
    LABEL_FAILED = "Failed"
    LABEL_STATUS = "Status"
    LABEL_ELAPSED = "Elapsed"
