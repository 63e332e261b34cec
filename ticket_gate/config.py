"""
Environment configuration and constants.
"""
import logging
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables from .env file at module import time
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    app_title: str = "Ticket Gate"
    app_version: str = "0.1.0"
    
    # Prompt sizing for ticket generation
    max_document_chars: int = 2000
    max_total_prompt_chars: int = 14000
    
    # How much of an unparseable LLM response is written to the log
    raw_response_log_chars: int = 1500
    
    # Application Configuration
    log_reasons: bool = True
    debug: bool = False
    log_level: str = "INFO"
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "TICKET_GATE_"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()


def configure_logging(level: str = None) -> None:
    """Apply the configured log level to the root logger."""
    name = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO))
