import os
from dotenv import load_dotenv

# Ensure env vars are loaded once here
load_dotenv()

# Log level for the API process and the CLI
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Comma-separated list of origins allowed to call the admin API
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Cloudinary credentials (media host). All three are required for uploads.
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

# Top-level folder every uploaded asset lives under
MEDIA_ROOT_FOLDER = os.getenv("MEDIA_ROOT_FOLDER", "Up4work-portfolio")

# Uploads above this size are rejected (10 MiB)
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

# Timeout (seconds) for calls to the media host
MEDIA_HTTP_TIMEOUT = float(os.getenv("MEDIA_HTTP_TIMEOUT", "40"))

# Reading speed used for "N min read" estimates
WORDS_PER_MINUTE = int(os.getenv("WORDS_PER_MINUTE", "200"))
