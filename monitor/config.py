import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Service settings read from the environment (.env is loaded by the service)."""

    def __init__(self):
        # Chain access
        self.CHAIN_BACKEND = os.getenv("CHAIN_BACKEND", "http").lower()
        self.CHAIN_RPC_URL = os.getenv(
            "CHAIN_RPC_URL", "https://explorer-rpc-http.mainnet.stages.humanode.io"
        )
        self.CHAIN_WS_URL = os.getenv(
            "CHAIN_WS_URL", "wss://explorer-rpc-ws.mainnet.stages.humanode.io"
        )
        self.SS58_FORMAT = int(os.getenv("SS58_FORMAT", "5234"))
        self.CHAIN_TIMEOUT_SECONDS = float(os.getenv("CHAIN_TIMEOUT_SECONDS", "30"))
        # 4 hours of 6 second blocks
        self.DEFAULT_SESSION_LENGTH = int(os.getenv("DEFAULT_SESSION_LENGTH", "2400"))

        # Storage
        self.STORAGE_DB_PATH = os.getenv("STORAGE_DB_PATH", "monitor_documents.db")
        self.POSTGRES_HOST = os.getenv("POSTGRES_HOST")

        # HTTP service
        self.API_KEY = os.getenv("API_KEY")
        self.SERVICE_HOST = os.getenv("SERVICE_HOST", "0.0.0.0")
        self.SERVICE_PORT = int(os.getenv("SERVICE_PORT", os.getenv("PORT", "3000")))

        # In-process scheduler, off when an external cron drives /api/run-monitor
        self.MONITOR_LOOP_ENABLED = _env_bool("MONITOR_LOOP_ENABLED")
        self.MONITOR_CADENCE_SECONDS = int(os.getenv("MONITOR_CADENCE_SECONDS", "60"))
