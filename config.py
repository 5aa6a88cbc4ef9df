import os
from dotenv import load_dotenv

load_dotenv()

MIB = 1024 * 1024

# Fast store (Redis). Leave unset to use the in-process store.
REDIS_URL = os.getenv("REDIS_URL")

# Durable store
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./datasets.db")

# Upload limits and chunk planning
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 1024 * MIB))
LARGE_FILE_THRESHOLD_BYTES = int(os.getenv("LARGE_FILE_THRESHOLD_BYTES", 50 * MIB))
LARGE_CHUNK_SIZE = int(os.getenv("LARGE_CHUNK_SIZE", 5 * MIB))
SMALL_CHUNK_SIZE = int(os.getenv("SMALL_CHUNK_SIZE", 2 * MIB))

# TTLs (seconds unless noted)
CHUNK_TTL_SECONDS = int(os.getenv("CHUNK_TTL_SECONDS", 1800))
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", 1800))
PROGRESS_TTL_SECONDS = int(os.getenv("PROGRESS_TTL_SECONDS", 3600))
PREVIEW_TTL_SECONDS = int(os.getenv("PREVIEW_TTL_SECONDS", 1800))
IMAGE_CACHE_TTL_SECONDS = int(os.getenv("IMAGE_CACHE_TTL_SECONDS", 1800))
DATASET_TTL_HOURS = float(os.getenv("DATASET_TTL_HOURS", 24))

# Preview generation
PREVIEW_ROWS = int(os.getenv("PREVIEW_ROWS", 10))
IMAGE_FETCH_TIMEOUT_SECONDS = float(os.getenv("IMAGE_FETCH_TIMEOUT_SECONDS", 10))
IMAGE_FETCH_MAX_BYTES = int(os.getenv("IMAGE_FETCH_MAX_BYTES", 20 * MIB))
IMAGE_BATCH_SIZE = int(os.getenv("IMAGE_BATCH_SIZE", 10))
IMAGE_BATCH_PAUSE_SECONDS = float(os.getenv("IMAGE_BATCH_PAUSE_SECONDS", 0.1))

# Background expiry sweep, 0 disables it
EXPIRY_SWEEP_SECONDS = float(os.getenv("EXPIRY_SWEEP_SECONDS", 60))

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",")
    if origin.strip()
]
