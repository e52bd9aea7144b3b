"""Immutable constants for CiderPress."""
from pathlib import Path

VERSION = "0.1.0"

# Apple epoch: 2001-01-01T00:00:00Z in Unix time
APPLE_EPOCH_OFFSET = 978307200

# Default paths
DEFAULT_HOME = Path.home() / ".ciderpress"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.yaml"

APPLE_VOICEMEMOS_DIR = (
    Path.home()
    / "Library"
    / "Group Containers"
    / "group.com.apple.VoiceMemos.shared"
    / "Recordings"
)

APPLE_DB_NAME = "CloudRecordings.db"
DB_NAME = "CiderPress-db.sqlite"
JSONL_NAME = "ciderpress.jsonl"

# Foreign schema
ORIGIN_TABLE = "ZCLOUDRECORDING"
ORIGIN_REQUIRED_COLUMNS = ("Z_PK", "ZDATE", "ZPATH")
ORIGIN_TITLE_COLUMNS = ("ZENCRYPTEDTITLE", "ZCUSTOMLABEL")

# Private data permissions
DIR_MODE = 0o700
FILE_MODE = 0o600

# Copying
COPY_CHUNK_SIZE = 1024 * 1024
PARTIAL_SUFFIX = ".partial"

# Transcription estimate: 35 seconds of processing per 10 minutes of audio
ESTIMATE_SECONDS_PER_BLOCK = 35.0
ESTIMATE_AUDIO_BLOCK_SEC = 600.0
# Roughly 1 MiB per minute of .m4a audio
ESTIMATE_BYTES_PER_MINUTE = 1_048_576

DEFAULT_MODEL = "base.en"

MIME_TYPES = {
    "m4a": "audio/m4a",
    "qta": "audio/quicktime",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "aac": "audio/aac",
    "caf": "audio/x-caf",
}

# File extensions
AUDIO_EXTENSIONS = {".m4a", ".qta", ".mp3", ".wav", ".aac", ".caf"}
