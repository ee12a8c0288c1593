# Repository layout
CONFIG_FILE_NAME = "config.toml"
DIRNAME_INBOX = "inbox"
DIRNAME_REPO = "repo"
DIRNAME_CRYPT = "crypt"

# Checksum sidecar extension (md5sum text, 32 hex chars)
MD5EXT = "md5sum"
MD5_HEX_LEN = 32

# Per-version crypt description written next to the fragments
CRYPTINFO_SUFFIX = ".cryptinfo.toml"

# Ledger schema version; bumped on breaking changes
SCHEMA_VERSION = 1

# Timestamp window accepted by the filename classifier (YYYYMMDD[hhmmss])
TIMESTAMP_MIN_DIGITS = 8
TIMESTAMP_MAX_DIGITS = 14

# Crypto sizes (AES-256-GCM, Argon2id)
AES_KEY_SIZE = 32
AES_NONCE_SIZE = 12
AES_TAG_SIZE = 16
ARGON2_SALT_SIZE = 16

# Argon2id defaults (19 MiB, 2 iterations, 1 lane)
ARGON2_M_COST = 19 * 1024
ARGON2_T_COST = 2
ARGON2_P_COST = 1

MIN_FRAGMENT_SIZE = 1_048_576  # 1 MiB
DEFAULT_FRAGMENT_SIZE = 16 * 1_048_576  # 16 MiB

DEFAULT_JOBS = 4
IO_BLOCK_SIZE = 64 * 1024
