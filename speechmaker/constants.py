"""All magic numbers and configuration constants."""

MAX_CHUNK_LENGTH = 5000             # chars: default maximum segment length
MIN_CHUNK_LENGTH_LIMIT = 1000       # lowest accepted max chunk length
MAX_CHUNK_LENGTH_LIMIT = 10000      # highest accepted max chunk length
SENTENCE_SEARCH_WINDOW = 500        # chars: how far back to look for a sentence end

MIN_SPEED = 0.5
MAX_SPEED = 2.0
DEFAULT_SPEED = 1.0

SYNTHESIS_BATCH_SIZE = 3            # segments synthesized concurrently
MERGE_DIRECT_LIMIT = 10             # up to this many units merge in a single pass
MERGE_BATCH_SIZE = 20               # inputs per merge pass when batching

JOB_MAX_ATTEMPTS = 3                # whole-job retries
VOICE_LOAD_MAX_ATTEMPTS = 3         # voice discovery retries
FFMPEG_PROBE_MAX_ATTEMPTS = 3       # ffmpeg probe retries (probe_with_retry)
RETRY_BASE_DELAY = 1.0              # seconds: delay = base * 2 ** attempt

PROGRESS_QUEUED = 5
PROGRESS_SPLIT = 15
PROGRESS_SYNTH_START = 20
PROGRESS_SYNTH_END = 80
PROGRESS_MERGING = 85
PROGRESS_TRANSCODING = 95
PROGRESS_DONE = 100

OUTPUT_FORMATS = ("wav", "mp3")
DEFAULT_OUTPUT_FORMAT = "wav"
UNIT_FORMAT = "wav"
OUTPUT_BITRATE = "128k"             # MP3 output bitrate
OUTPUT_SAMPLE_RATE = 44100          # MP3 output sample rate (Hz)
SUPPORTED_SAMPLE_RATES = (8000, 11025, 16000, 22050, 24000, 32000, 44100, 48000)

FFMPEG_BINARY = "ffmpeg"
FFMPEG_LOOKUP_TIMEOUT = 5.0         # seconds: `which`/`-version` probes
PREVIEW_TIMEOUT = 10.0              # seconds: preview playback hard stop

MAX_TEXT_FILE_BYTES = 10 * 1024 * 1024
TEXT_FILE_EXTENSIONS = (".txt",)
OUTPUT_BASENAME = "speech"
CHUNK_TEMP_PREFIX = "temp_chunks_"
MERGE_TEMP_PREFIX = "merge_temp_"
MERGED_WAV_NAME = "merged.wav"
DEFAULT_OUTPUT_FOLDER_NAME = "SpeechMaker"
VERSION = "0.1.0"

SETTINGS_FILENAME = "settings.json"
SETTINGS_DIR_NAME = ".speechmaker"  # under the user's home directory
