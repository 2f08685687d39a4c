import os

# Fingerprint pre-filter
FINGERPRINT_HASH_SIZE = int(os.getenv("FINGERPRINT_HASH_SIZE", "8"))
FINGERPRINT_MATCH_THRESHOLD = int(os.getenv("FINGERPRINT_MATCH_THRESHOLD", "8"))

# Candidate selection and verification fan-out
MAX_CANDIDATES = int(os.getenv("MAX_CANDIDATES", "5"))
VERIFICATION_BATCH_SIZE = int(os.getenv("VERIFICATION_BATCH_SIZE", "3"))

# Background indexing
INDEX_POLL_INTERVAL = float(os.getenv("INDEX_POLL_INTERVAL", "5.0"))

# Completed assessments kept in memory
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "20"))

# Embedding provider: "doubao" (remote description + text embedding) or "clip" (local)
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "doubao")

# Doubao (Volcano Engine Ark) oracle endpoint
DOUBAO_BASE_URL = os.getenv("DOUBAO_BASE_URL", "https://ark.cn-beijing.volces.com/api/v3")
DOUBAO_API_KEY = os.getenv("DOUBAO_API_KEY") or os.getenv("API_KEY")
DOUBAO_CHAT_MODEL = os.getenv("DOUBAO_CHAT_MODEL", "doubao-seed-1-6-vision-250815")
DOUBAO_VISION_MODEL = os.getenv("DOUBAO_VISION_MODEL", DOUBAO_CHAT_MODEL)
DOUBAO_EMBEDDING_MODEL = os.getenv("DOUBAO_EMBEDDING_MODEL", "doubao-embedding-vision")
ORACLE_TIMEOUT = float(os.getenv("ORACLE_TIMEOUT", "60"))
ORACLE_MAX_RETRIES = int(os.getenv("ORACLE_MAX_RETRIES", "5"))

# Local CLIP embeddings
CLIP_MODEL_NAME = os.getenv("CLIP_MODEL_NAME", "openai/clip-vit-base-patch32")

# Uploads
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 20 * 1024 * 1024))  # 20MB default
